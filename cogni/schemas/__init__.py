"""
cogni.schemas
~~~~~~~~~~~~~
Pydantic 模型：房间消息、实时事件契约、流水线结果与 REST 应答体。
"""
from cogni.schemas.api_response import ApiResponse
from cogni.schemas.events import (
    AckData,
    ErrorData,
    InboundFrame,
    JoinRoomPayload,
    MessageDeltaData,
    PresenceData,
    SendMessagePayload,
    StatusData,
)
from cogni.schemas.messages import Message, PromptMessage
from cogni.schemas.pipeline import (
    ClassifierVerdict,
    Decision,
    RouteDecision,
    SearchContext,
    SearchHit,
    SearchSource,
)
from cogni.schemas.rooms import ChatMessageData, HistoryResponseData, RoomInfoData

# 泛型应答体需要显式 rebuild 才能解析前向引用
ApiResponse.model_rebuild()
