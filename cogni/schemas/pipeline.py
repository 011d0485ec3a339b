"""
cogni.schemas.pipeline
~~~~~~~~~~~~~~~~~~~~~~

AI 回复流水线各阶段的结果模型：决策、路由、搜索上下文。
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TaskRoute = Literal["search", "proceed"]
DecisionSource = Literal["heuristic", "bootstrap", "classifier", "fail_open"]


def _clamp_confidence(value: Any) -> int:
    """把模型返回的置信度（可能是字符串 / 小数）收敛到 0..100 的整数。"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, round(number)))


class ClassifierVerdict(BaseModel):
    """"是否回复"分类能力的原始结论。"""

    model_config = ConfigDict(populate_by_name=True)

    respond: bool = Field(..., alias="shouldRespond")
    confidence: int = Field(default=0, ge=0, le=100)
    reasoning: str = Field(default="")

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> int:
        return _clamp_confidence(value)


class Decision(BaseModel):
    """决策引擎的输出。

    Attributes:
        respond: AI 是否应当回复。
        confidence: 0..100 置信度。
        reasoning: 判断理由（仅用于日志）。
        source: 结论来源：启发式 / 冷启动 / 分类器 / 失败放行。
    """

    respond: bool
    confidence: int = Field(..., ge=0, le=100)
    reasoning: str = ""
    source: DecisionSource


class RouteDecision(BaseModel):
    """任务路由结论。"""

    next: TaskRoute
    fallback: bool = Field(default=False, description="分类失败后的默认路由")


class SearchHit(BaseModel):
    """搜索能力返回的一条原始结果。"""

    title: str = ""
    url: str = ""
    content: str = ""


class SearchSource(BaseModel):
    """回复末尾列出的来源。"""

    title: str
    url: str


class SearchContext(BaseModel):
    """清洗后的搜索上下文。``has_results`` 为假时 ``context_text`` 是无上下文标记。"""

    context_text: str
    sources: list[SearchSource] = Field(default_factory=list)
    has_results: bool = False
