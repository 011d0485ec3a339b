"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest 配置 —— 所有外部能力（Gemini、Tavily、MongoDB）都用确定性替身代替，
单元测试可在无网络环境下快速运行。
"""
from __future__ import annotations

import os

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("GEMINI_API_KEY", "test-fake-key")
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from cogni.schemas.pipeline import ClassifierVerdict  # noqa: E402
from tests.fakes import (  # noqa: E402
    StubClassifier,
    StubGenerator,
    StubSearch,
    StubTaskClassifier,
)


@pytest.fixture()
def quiet_classifier() -> StubClassifier:
    """对闲聊给出高置信度"不回复"的分类器。"""
    return StubClassifier(ClassifierVerdict(respond=False, confidence=90, reasoning="small talk"))


@pytest.fixture()
def task_classifier() -> StubTaskClassifier:
    return StubTaskClassifier("proceed")


@pytest.fixture()
def search() -> StubSearch:
    return StubSearch()


@pytest.fixture()
def generator() -> StubGenerator:
    return StubGenerator(["2 + 2 ", "= 4."])
