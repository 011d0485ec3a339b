"""
cogni.services.capabilities
~~~~~~~~~~~~~~~~~~~~~~~~~~~

编排流水线消费的外部能力接口。每个能力只有一个异步方法，
生产环境由 :mod:`cogni.llm.gemini_provider` 和 :mod:`cogni.search.tavily` 实现，
测试中用确定性的替身即可。
"""
from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from cogni.schemas.messages import Message, PromptMessage
from cogni.schemas.pipeline import ClassifierVerdict, SearchHit, TaskRoute


class ShouldRespondClassifier(Protocol):
    async def classify_should_respond(
        self, text: str, history: Sequence[Message],
    ) -> ClassifierVerdict: ...


class TaskClassifier(Protocol):
    async def classify_task(self, text: str) -> TaskRoute: ...


class SearchProvider(Protocol):
    async def search(self, query: str, max_results: int, depth: str) -> list[SearchHit]: ...


class TextGenerator(Protocol):
    """流式文本生成：返回一次性的、有限的文本增量序列。"""

    def generate(self, messages: Sequence[PromptMessage]) -> AsyncIterator[str]: ...
