"""
cogni.services.router
~~~~~~~~~~~~~~~~~~~~~

任务路由 —— 判断回复是否需要外部搜索。分类失败时回落到更便宜、
不依赖外部服务的直接回答路径。
"""
from __future__ import annotations

from cogni.core.logging import get_logger
from cogni.schemas.pipeline import RouteDecision
from cogni.services.capabilities import TaskClassifier

logger = get_logger(__name__)


class TaskRouter:
    """搜索 / 直接回答路由器。"""

    def __init__(self, classifier: TaskClassifier) -> None:
        self.classifier = classifier

    async def route(self, text: str) -> RouteDecision:
        try:
            route = await self.classifier.classify_task(text)
        except Exception as e:
            logger.warning("任务路由分类失败，默认直接回答: %s", e, exc_info=True)
            return RouteDecision(next="proceed", fallback=True)

        if route not in ("search", "proceed"):
            logger.warning("任务路由返回未知结果 %r，默认直接回答", route)
            return RouteDecision(next="proceed", fallback=True)

        logger.info("任务路由 | next=%s", route)
        return RouteDecision(next=route)
