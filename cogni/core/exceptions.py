"""
cogni.core.exceptions
~~~~~~~~~~~~~~~~~~~~~

业务异常分类。

本子系统内没有任何异常会导致进程退出：

- ``RelayError``         —— 向未知房间发言，通过 ack 回报，不抛给传输层
- ``ClassificationError`` —— 决策 / 路由能力失败，按 fail-open / fail-safe 降级
- ``SearchError``        —— 搜索失败，降级为"无可用上下文"标记继续生成
- ``GenerationError``    —— 生成失败，以固定致歉消息收尾并释放房间锁
"""
from __future__ import annotations


class CogniError(Exception):
    """所有业务异常的基类。"""


class RelayError(CogniError):
    """消息中继失败（房间不存在或缺少房间 ID）。"""


class ClassificationError(CogniError):
    """是否回复 / 任务路由分类能力调用失败。"""


class SearchError(CogniError):
    """外部搜索能力调用失败。"""


class GenerationError(CogniError):
    """流式生成能力调用失败。"""
