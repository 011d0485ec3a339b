"""
cogni.services.decision
~~~~~~~~~~~~~~~~~~~~~~~

决策引擎 —— 决定 AI 参与者是否回复一条新消息。

按顺序判定:
  1. 提到助手名字（不区分大小写）或以疑问词开头 → 回复，置信度 100，不调用外部能力
  2. 房间此前没有任何历史 → 回复，置信度 100（新房间的第一条消息总会得到回应）
  3. 其余情况交给注入的分类能力；能力失败时 fail-open：回复，置信度 0

:class:`ReplyPolicy` 把决策结果换算成编排器的动作：立即生成、延迟生成或跳过。
"""
from __future__ import annotations

import re
from collections.abc import Sequence

from cogni.core.logging import get_logger
from cogni.schemas.messages import Message
from cogni.schemas.pipeline import Decision
from cogni.services.capabilities import ShouldRespondClassifier

logger = get_logger(__name__)

INTERROGATIVE_WORDS: tuple[str, ...] = (
    "who", "what", "when", "where", "why", "how",
    "can", "could", "would", "will", "should",
    "is", "are", "do", "does", "did",
)

_INTERROGATIVE_RE = re.compile(
    r"^\W*(?:" + "|".join(INTERROGATIVE_WORDS) + r")\b", re.IGNORECASE,
)


class DecisionEngine:
    """是否回复的决策引擎。

    Attributes:
        classifier: 注入的"是否回复"分类能力。
        assistant_name: 助手名字，用于识别直接点名。
        history_turns: 交给分类能力的最近历史条数。
    """

    def __init__(
        self,
        classifier: ShouldRespondClassifier,
        assistant_name: str = "Cogni",
        history_turns: int = 3,
    ) -> None:
        self.classifier = classifier
        self.assistant_name = assistant_name
        self.history_turns = history_turns

    def is_explicit_trigger(self, text: str) -> bool:
        """直接点名助手，或以疑问词开头。"""
        if self.assistant_name.lower() in text.lower():
            return True
        return _INTERROGATIVE_RE.match(text.strip()) is not None

    async def evaluate(self, text: str, history: Sequence[Message]) -> Decision:
        """评估一条新消息。

        Args:
            text: 新消息文本。
            history: 新消息之前的房间历史（按到达顺序）。

        Returns:
            ``Decision``，永不抛异常。
        """
        if self.is_explicit_trigger(text):
            return Decision(
                respond=True, confidence=100,
                reasoning="explicit address or question", source="heuristic",
            )

        if not history:
            return Decision(
                respond=True, confidence=100,
                reasoning="first message in room", source="bootstrap",
            )

        recent = list(history)[-self.history_turns:] if self.history_turns > 0 else []
        try:
            verdict = await self.classifier.classify_should_respond(text, recent)
        except Exception as e:
            # 宁可多说一句，也不要在依赖故障时沉默
            logger.warning("回复决策分类失败，按 fail-open 处理: %s", e, exc_info=True)
            return Decision(
                respond=True, confidence=0,
                reasoning="classifier unavailable", source="fail_open",
            )

        logger.info(
            "回复决策 | respond=%s | confidence=%d | %s",
            verdict.respond, verdict.confidence, verdict.reasoning,
        )
        return Decision(
            respond=verdict.respond,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
            source="classifier",
        )


class ReplyPolicy:
    """把决策换算成动作。

    - ``respond=False`` → 跳过
    - 置信度 ≥ ``high`` → 立即生成
    - ``medium`` ≤ 置信度 < ``high`` → 固定延迟后生成，避免显得过于机械
    - 置信度 < ``medium`` 但 ``respond=True``（如 fail-open）→ 立即生成
    """

    def __init__(self, high: int = 70, medium: int = 40, medium_delay: float = 1.5) -> None:
        self.high = high
        self.medium = medium
        self.medium_delay = medium_delay

    def delay_for(self, decision: Decision) -> float | None:
        """返回生成前需要等待的秒数；``None`` 表示不回复。"""
        if not decision.respond:
            return None
        if self.medium <= decision.confidence < self.high:
            return self.medium_delay
        return 0.0
