"""
cogni
~~~~~

多人协作聊天室后端 —— 实时房间中继 + AI 参与者（Cogni）的回复编排。
"""
