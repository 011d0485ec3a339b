"""
cogni.schemas.events
~~~~~~~~~~~~~~~~~~~~

实时事件通道的唯一契约（camelCase 线上字段，snake_case Python 属性）。

入站:
  - ``join_room``    → :class:`JoinRoomPayload`
  - ``leave_room``   → 无载荷
  - ``send_message`` → :class:`SendMessagePayload`，可带 ``ackId`` 请求回执

出站:
  - ``user_joined`` / ``user_left`` → :class:`PresenceData`
  - ``receive_message``             → ``Message.to_wire()``
  - ``message_delta``               → :class:`MessageDeltaData`
  - ``status``                      → :class:`StatusData`
  - ``ack``                         → :class:`AckData`
  - ``error``                       → :class:`ErrorData`
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EventName = Literal["join_room", "leave_room", "send_message"]
StatusState = Literal["thinking", "searching"]


class _WireModel(BaseModel):
    """线上模型基类：按别名输出，同时允许按字段名构造。"""

    model_config = ConfigDict(populate_by_name=True)

    def dump(self) -> dict[str, Any]:
        """按线上字段名序列化，省略空值。"""
        return self.model_dump(by_alias=True, exclude_none=True)


# ── 入站 ──────────────────────────────────────────────────────────────

class InboundFrame(_WireModel):
    """客户端发来的一帧。"""

    event: EventName = Field(..., description="事件名")
    data: dict[str, Any] = Field(default_factory=dict, description="事件载荷")
    ack_id: int | None = Field(default=None, alias="ackId", description="回执编号")


class JoinRoomPayload(_WireModel):
    """加入房间。"""

    room_id: str = Field(..., min_length=1, alias="roomId")
    user_id: str = Field(..., min_length=1, alias="userId")
    username: str = Field(..., min_length=1, max_length=64)


class SendMessagePayload(_WireModel):
    """发送消息。``roomId`` 允许为空，由中继以 ack 回报错误。"""

    room_id: str = Field(default="", alias="roomId")
    message: str = Field(..., min_length=1, max_length=4000)
    sender: str | None = Field(default=None, description="发送者显示名，缺省取连接的用户名")
    user_id: str | None = Field(default=None, alias="userId")
    timestamp: int | None = Field(default=None, description="客户端时间戳（毫秒）")


# ── 出站 ──────────────────────────────────────────────────────────────

class PresenceData(_WireModel):
    """成员加入 / 离开通知。"""

    username: str
    participants: list[str]


class StatusData(_WireModel):
    """AI 参与者的临时状态消息。"""

    state: StatusState
    sender: str
    message: str
    message_id: str = Field(..., alias="messageId")
    timestamp: int
    is_ephemeral: bool = Field(default=True, alias="isEphemeral")


class MessageDeltaData(_WireModel):
    """流式回复的增量片段，同一条回复共用 ``messageId``。"""

    message_id: str = Field(..., alias="messageId")
    sender: str
    delta: str


class AckData(_WireModel):
    """``send_message`` 的回执。``ackId`` 回填客户端请求时给出的编号。"""

    delivered: bool
    ack_id: int | None = Field(default=None, alias="ackId")
    timestamp: int | None = None
    recipient_count: int | None = Field(default=None, alias="recipientCount")
    error: str | None = None


class ErrorData(_WireModel):
    """非致命错误通知（帧格式错误、无权加入房间等）。"""

    error: str
    event: str | None = None
