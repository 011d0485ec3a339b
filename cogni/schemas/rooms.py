"""
cogni.schemas.rooms
~~~~~~~~~~~~~~~~~~~

房间查询相关的 Pydantic 响应模型。
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    room_id: str = Field(..., description="房间唯一标识")
    participants: list[str] = Field(..., description="在场参与者显示名")
    online_count: int = Field(..., description="当前在线连接数（含同一用户的多个标签页）")
    job_state: str | None = Field(default=None, description="当前 AI 回复任务状态")
    queued_jobs: int = Field(default=0, description="排队中的 AI 回复触发数")


class ChatMessageData(BaseModel):
    """单条历史消息。"""

    id: str = Field(..., description="消息 ID")
    sender: str = Field(..., description="发送者显示名")
    user_id: str | None = Field(default=None, description="发送者身份")
    message: str = Field(..., description="消息文本")
    timestamp: int = Field(..., description="毫秒时间戳")
    is_automated: bool = Field(default=False, description="是否为 AI 回复")


class HistoryResponseData(BaseModel):
    """房间历史响应数据。"""

    room_id: str = Field(..., description="房间 ID")
    messages: list[ChatMessageData] = Field(..., description="消息列表（按到达顺序）")
    total: int = Field(..., description="本次返回条数")
    source: Literal["live", "archive"] = Field(default="live", description="数据来源：内存历史或归档")
