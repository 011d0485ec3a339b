"""
cogni.llm.gemini_provider
~~~~~~~~~~~~~~~~~~~~~~~~~

基于 Google Gemini 的能力实现 —— 只负责与 API 的连接和调用：

- ``classify_should_respond`` —— "是否回复"分类（JSON 模式）
- ``classify_task``           —— 搜索 / 直接回答路由（JSON 模式）
- ``generate``                —— 流式文本生成

不包含任何决策或降级策略，调用失败统一包装为业务异常向上抛出，
fail-open / fail-safe 由 :mod:`cogni.services` 中的调用方决定。
"""
from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Sequence

from google import genai
from google.genai import types
from pydantic import ValidationError

from cogni.core.exceptions import ClassificationError, GenerationError
from cogni.core.logging import get_logger
from cogni.core.settings import settings
from cogni.llm.client import create_gemini_client
from cogni.prompts.classifier import (
    TASK_SYSTEM_PROMPT,
    build_decision_prompt,
    build_decision_system_prompt,
)
from cogni.schemas.messages import Message, PromptMessage
from cogni.schemas.pipeline import ClassifierVerdict, TaskRoute

logger = get_logger(__name__)

_CLASSIFIER_TEMPERATURE: float = 0.3


def to_gemini_contents(
    messages: Sequence[PromptMessage],
) -> tuple[str | None, list[types.Content]]:
    """把中立的 Prompt 消息拆成 Gemini 的 system_instruction 与 contents。

    assistant 角色映射为 Gemini 的 ``model`` 角色。
    """
    system_parts = [m.content for m in messages if m.role == "system"]
    contents = [
        types.Content(
            role="model" if m.role == "assistant" else "user",
            parts=[types.Part.from_text(text=m.content)],
        )
        for m in messages
        if m.role != "system"
    ]
    return ("\n\n".join(system_parts) or None), contents


class GeminiProvider:
    """Gemini 能力提供者。

    Attributes:
        model_name: 生成回复使用的模型。
        classifier_model: 分类使用的轻量模型。
        assistant_name: 助手名字（写入分类 Prompt）。
    """

    def __init__(
        self,
        model_name: str | None = None,
        classifier_model: str | None = None,
        client: genai.Client | None = None,
        assistant_name: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> None:
        """初始化。

        Args:
            model_name: 生成模型，默认 ``settings.GEMINI_MODEL``。
            classifier_model: 分类模型，默认 ``settings.CLASSIFIER_MODEL``。
            client: 可选的 ``genai.Client`` 实例（用于测试注入 mock）。
            assistant_name: 助手名字，默认 ``settings.ASSISTANT_NAME``。
            temperature: 生成温度。
            max_output_tokens: 单次回复最大 token 数。
        """
        self.model_name: str = model_name or settings.GEMINI_MODEL
        self.classifier_model: str = classifier_model or settings.CLASSIFIER_MODEL
        self.assistant_name: str = assistant_name or settings.ASSISTANT_NAME
        self.temperature: float = (
            temperature if temperature is not None else settings.GENERATION_TEMPERATURE
        )
        self.max_output_tokens: int = max_output_tokens or settings.GENERATION_MAX_TOKENS
        self._client: genai.Client = client or create_gemini_client()
        logger.info(
            "LLM 客户端已初始化 | model=%s | classifier=%s",
            self.model_name, self.classifier_model,
        )

    async def _classify_json(self, system_prompt: str, prompt: str) -> str:
        try:
            response = await self._client.aio.models.generate_content(
                model=self.classifier_model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=_CLASSIFIER_TEMPERATURE,
                    response_mime_type="application/json",
                ),
            )
        except Exception as e:
            raise ClassificationError(f"分类模型调用失败: {e!s}") from e
        if not response.text:
            raise ClassificationError("分类模型返回空内容")
        return response.text

    async def classify_should_respond(
        self, text: str, history: Sequence[Message],
    ) -> ClassifierVerdict:
        """判断助手是否应回复这条消息。

        Raises:
            ClassificationError: 调用失败或返回内容无法解析。
        """
        raw = await self._classify_json(
            build_decision_system_prompt(self.assistant_name),
            build_decision_prompt(text, history),
        )
        try:
            return ClassifierVerdict.model_validate_json(raw)
        except ValidationError as e:
            raise ClassificationError(f"无法解析回复决策: {raw[:120]!r}") from e

    async def classify_task(self, text: str) -> TaskRoute:
        """判断回答是否需要外部搜索。

        Raises:
            ClassificationError: 调用失败或返回内容无法解析。
        """
        raw = await self._classify_json(TASK_SYSTEM_PROMPT, text)
        try:
            route = json.loads(raw).get("next")
        except (json.JSONDecodeError, AttributeError) as e:
            raise ClassificationError(f"无法解析任务路由: {raw[:120]!r}") from e
        if route not in ("search", "proceed"):
            raise ClassificationError(f"未知的任务路由: {route!r}")
        return route

    async def generate(self, messages: Sequence[PromptMessage]) -> AsyncGenerator[str, None]:
        """流式生成回复。

        Args:
            messages: 已由上层组装好的角色化 Prompt。

        Yields:
            模型输出的文本增量。

        Raises:
            GenerationError: 建立流或读取流的过程中出错。
        """
        system_instruction, contents = to_gemini_contents(messages)
        try:
            response_stream = await self._client.aio.models.generate_content_stream(
                model=self.model_name,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=system_instruction,
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                ),
            )
            async for chunk in response_stream:
                if chunk.text:
                    yield chunk.text
        except Exception as e:
            logger.error("LLM 流式调用异常: %s", e, exc_info=True)
            raise GenerationError(f"生成失败: {e!s}") from e
