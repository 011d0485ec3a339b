"""
cogni.prompts.assistant
~~~~~~~~~~~~~~~~~~~~~~~

AI 参与者（默认名 "Cogni"）的系统 Prompt、生成 Prompt 组装与最终回复拼装。

将 Prompt 独立管理，方便在不修改编排代码的前提下调整人设和输出规则。
"""
from __future__ import annotations

from collections.abc import Sequence

from cogni.schemas.messages import Message, PromptMessage
from cogni.schemas.pipeline import SearchContext, SearchSource

# ---------------------------------------------------------------------------
# 固定文案
# ---------------------------------------------------------------------------
NO_CONTEXT_MARKER: str = "[No relevant context available from search.]"

APOLOGY_MESSAGE: str = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Could you please try again?"
)

STATUS_TEXT: dict[str, str] = {
    "thinking": "Thinking...",
    "searching": "Searching for information...",
}

SOURCES_HEADING: str = "Sources:"

# ---------------------------------------------------------------------------
# 系统 Prompt —— 定义 AI 参与者的人设与输出规则
# ---------------------------------------------------------------------------
_SYSTEM_PROMPT_TEMPLATE: str = """\
You are {name}, a helpful and engaging AI assistant taking part in a group chat room.
Several people may be talking; earlier messages are prefixed with the speaker's name.
Rules:
1. Answer the latest message clearly and concisely, keeping a natural conversational tone.
2. Give your answer first. Never start with a list of sources.
3. Do not mention, describe or embed images.
4. Do not write raw URLs in your answer; sources are appended separately.
5. If search context is provided, base your answer on it. If it says no relevant context \
is available, say so briefly and answer from general knowledge without inventing facts.\
"""


def build_system_prompt(assistant_name: str) -> str:
    """生成带名字的系统 Prompt。"""
    return _SYSTEM_PROMPT_TEMPLATE.format(name=assistant_name)


def _history_turn(message: Message) -> PromptMessage:
    """把一条房间历史转成角色化的 Prompt 消息：AI 自己的发言是 assistant 轮。"""
    if message.is_automated:
        return PromptMessage(role="assistant", content=message.text)
    return PromptMessage(role="user", content=f"{message.sender}: {message.text}")


def format_sources(sources: Sequence[SearchSource]) -> str:
    """把来源列表格式化为编号清单。"""
    return "\n".join(
        f"{index}. {source.title} ({source.url})"
        for index, source in enumerate(sources, start=1)
    )


def build_generation_messages(
    assistant_name: str,
    history: Sequence[Message],
    query: Message,
    history_turns: int = 5,
    search_context: SearchContext | None = None,
) -> list[PromptMessage]:
    """组装发给生成能力的完整 Prompt。

    顺序为：系统人设 → 最近 ``history_turns`` 条历史 → 当前问题
    （走过搜索路径时，当前问题后附带清洗后的搜索上下文和来源标题）。

    Args:
        assistant_name: AI 参与者名字。
        history: 触发消息之前的房间历史。
        query: 触发消息。
        history_turns: 携带的历史条数。
        search_context: 搜索上下文；直接回答路径为 ``None``。

    Returns:
        ``PromptMessage`` 列表。
    """
    messages = [PromptMessage(role="system", content=build_system_prompt(assistant_name))]
    recent = list(history)[-history_turns:] if history_turns > 0 else []
    messages.extend(_history_turn(m) for m in recent if not m.is_ephemeral)

    content = f"{query.sender}: {query.text}"
    if search_context is not None:
        content += f"\n\nSearch context:\n{search_context.context_text}"
        if search_context.sources:
            titles = "\n".join(f"- {s.title}" for s in search_context.sources)
            content += f"\n\nSource titles:\n{titles}"
    messages.append(PromptMessage(role="user", content=content))
    return messages


def compose_final_reply(answer: str, sources: Sequence[SearchSource] = ()) -> str:
    """拼装最终回复：先答案，有来源时再附一段明确分隔的来源区。"""
    answer = answer.strip()
    if not sources:
        return answer
    return f"{answer}\n\n---\n{SOURCES_HEADING}\n{format_sources(sources)}"
