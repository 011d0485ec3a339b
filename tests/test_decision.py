"""
tests.test_decision
~~~~~~~~~~~~~~~~~~~

DecisionEngine + ReplyPolicy 单元测试。
"""
from __future__ import annotations

import pytest

from cogni.core.exceptions import ClassificationError
from cogni.schemas.messages import Message
from cogni.schemas.pipeline import ClassifierVerdict, Decision
from cogni.services.decision import DecisionEngine, ReplyPolicy
from tests.fakes import StubClassifier

HISTORY = [Message(sender="Bob", text=f"msg {i}") for i in range(6)]


class TestDecisionEngine:
    """测试是否回复的判定顺序。"""

    @pytest.mark.parametrize(
        "text",
        ["Cogni, what's 2+2?", "hey COGNI", "What time is it?", "  how does this work", "Is it raining?"],
    )
    @pytest.mark.asyncio
    async def test_explicit_trigger_skips_classifier(self, text: str) -> None:
        classifier = StubClassifier()
        engine = DecisionEngine(classifier, assistant_name="Cogni")

        decision = await engine.evaluate(text, HISTORY)

        assert decision.respond is True
        assert decision.confidence == 100
        assert decision.source == "heuristic"
        assert classifier.calls == []

    def test_interrogative_needs_word_boundary(self) -> None:
        """"Whatever" 不是疑问词开头。"""
        engine = DecisionEngine(StubClassifier())
        assert engine.is_explicit_trigger("Whatever, see you later") is False
        assert engine.is_explicit_trigger("Island trip tomorrow") is False

    @pytest.mark.asyncio
    async def test_first_message_in_room_always_answered(self) -> None:
        classifier = StubClassifier()
        engine = DecisionEngine(classifier)

        decision = await engine.evaluate("hello everyone", [])

        assert decision.respond is True
        assert decision.source == "bootstrap"
        assert classifier.calls == []

    @pytest.mark.asyncio
    async def test_classifier_sees_last_three_messages(self) -> None:
        classifier = StubClassifier(ClassifierVerdict(respond=True, confidence=55, reasoning="maybe"))
        engine = DecisionEngine(classifier, history_turns=3)

        decision = await engine.evaluate("nice weather today", HISTORY)

        assert decision == Decision(respond=True, confidence=55, reasoning="maybe", source="classifier")
        text, history = classifier.calls[0]
        assert text == "nice weather today"
        assert [m.text for m in history] == ["msg 3", "msg 4", "msg 5"]

    @pytest.mark.asyncio
    async def test_classifier_failure_fails_open(self) -> None:
        engine = DecisionEngine(StubClassifier(error=ClassificationError("timeout")))

        decision = await engine.evaluate("nice weather today", HISTORY)

        assert decision.respond is True
        assert decision.confidence == 0
        assert decision.source == "fail_open"


class TestReplyPolicy:
    """测试置信度 → 动作的换算。"""

    @pytest.mark.parametrize(
        ("respond", "confidence", "expected"),
        [
            (True, 100, 0.0),
            (True, 70, 0.0),
            (True, 69, 1.5),
            (True, 40, 1.5),
            (True, 10, 0.0),
            (False, 95, None),
            (False, 0, None),
        ],
    )
    def test_delay_for(self, respond: bool, confidence: int, expected: float | None) -> None:
        policy = ReplyPolicy(high=70, medium=40, medium_delay=1.5)
        decision = Decision(respond=respond, confidence=confidence, source="classifier")

        assert policy.delay_for(decision) == expected


class TestClassifierVerdict:
    """测试分类结论的解析与置信度收敛。"""

    def test_parses_camel_case_json(self) -> None:
        verdict = ClassifierVerdict.model_validate_json(
            '{"shouldRespond": true, "confidence": "87.6", "reasoning": "direct question"}',
        )
        assert verdict.respond is True
        assert verdict.confidence == 88

    def test_confidence_is_clamped(self) -> None:
        assert ClassifierVerdict(respond=False, confidence=250).confidence == 100
        assert ClassifierVerdict(respond=False, confidence=-3).confidence == 0
        assert ClassifierVerdict(respond=False, confidence="n/a").confidence == 0
