"""
cogni.prompts.classifier
~~~~~~~~~~~~~~~~~~~~~~~~

"是否回复"与"搜索还是直接回答"两个分类能力使用的 Prompt。
"""
from __future__ import annotations

from collections.abc import Sequence

from cogni.schemas.messages import Message

_DECISION_SYSTEM_TEMPLATE: str = """\
You are the decision-making system for {name}, an AI assistant in a group chat.
Decide whether {name} should reply to the newest message.

Consider:
1. Is the message a question, a request for help, or seeking information or advice?
2. Is the message addressed to {name}? If so, {name} must reply.
3. Is the message addressed to another person by name? Then {name} should stay quiet.
4. Is it casual conversation between humans that needs no AI input?

Respond with JSON only:
{{"shouldRespond": true or false, "confidence": 0-100, "reasoning": "short explanation"}}

High confidence (70-100): very sure. Medium (40-69): factors both ways. Low (0-39): uncertain.
Err on the side of NOT replying to casual chat between humans.\
"""

TASK_SYSTEM_PROMPT: str = """\
You are a task router for a chat assistant. Decide whether answering the message needs \
a fresh web search (current events, recent facts, specific data lookups) or can be \
answered directly from general knowledge and the conversation.
Respond with JSON only: {"next": "search"} or {"next": "proceed"}.\
"""


def build_decision_system_prompt(assistant_name: str) -> str:
    return _DECISION_SYSTEM_TEMPLATE.format(name=assistant_name)


def build_decision_prompt(text: str, history: Sequence[Message]) -> str:
    """把新消息和最近历史拼成分类器的用户输入。"""
    if not history:
        return f'New message in group chat: "{text}"'
    context = "\n".join(f"{m.sender}: {m.text}" for m in history)
    return f'Recent conversation:\n{context}\n\nNew message: "{text}"'
