"""
cogni.search
~~~~~~~~~~~~

外部搜索能力的具体实现。
"""
