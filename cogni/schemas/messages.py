"""
cogni.schemas.messages
~~~~~~~~~~~~~~~~~~~~~~

房间消息领域模型。

消息只追加、不修改：AI 的"思考中 / 搜索中"状态是独立的临时消息，
最终回复以一条新消息取代它，而不是原地编辑。
"""
from __future__ import annotations

import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PromptRole = Literal["system", "user", "assistant"]


def now_ms() -> int:
    """当前时间的毫秒时间戳。"""
    return int(time.time() * 1000)


class Message(BaseModel):
    """房间内的一条消息（不可变）。

    Attributes:
        id: 消息唯一标识。流式回复的增量事件与最终消息共用同一个 ID。
        sender: 发送者显示名。
        user_id: 可选的发送者身份标识（AI / 系统消息为空）。
        text: 消息文本。
        timestamp: 毫秒时间戳。
        is_system: 系统消息。
        is_automated: AI 参与者发出的消息。
        is_ephemeral: 临时状态消息（思考中 / 搜索中），不进入历史。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    sender: str
    user_id: str | None = None
    text: str
    timestamp: int = Field(default_factory=now_ms)
    is_system: bool = False
    is_automated: bool = False
    is_ephemeral: bool = False

    @property
    def is_human(self) -> bool:
        """是否为真人发送的消息。"""
        return not (self.is_system or self.is_automated)

    def to_wire(self) -> dict[str, Any]:
        """转换为 ``receive_message`` 事件的载荷。"""
        payload: dict[str, Any] = {
            "id": self.id,
            "sender": self.sender,
            "message": self.text,
            "timestamp": self.timestamp,
        }
        if self.user_id is not None:
            payload["userId"] = self.user_id
        if self.is_automated:
            payload["isAutomated"] = True
        if self.is_system:
            payload["isSystem"] = True
        if self.is_ephemeral:
            payload["isEphemeral"] = True
        return payload


class PromptMessage(BaseModel):
    """发给生成能力的一条角色化 Prompt 消息（与具体 SDK 无关）。"""

    role: PromptRole
    content: str
