"""
cogni.api.ws
~~~~~~~~~~~~

WebSocket 实时事件通道。

提供 ``/ws`` 端点。每一帧都是 JSON::

    {"event": "send_message", "data": {...}, "ackId": 7}

连接建立后先 ``join_room``，之后的 ``send_message`` 都投递到所在房间；
带 ``ackId`` 的帧会收到一个 ``ack`` 事件作为投递回执。
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from cogni.core.logging import get_logger, request_id_ctx_var
from cogni.core.rate_limit import WebSocketRateLimiter
from cogni.core.settings import settings
from cogni.schemas.events import (
    AckData,
    ErrorData,
    InboundFrame,
    JoinRoomPayload,
    SendMessagePayload,
)
from cogni.services.hub import ChatHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()

_QUEUE_SIZE = 20


async def dispatch_frame(hub: ChatHub, connection_id: str, frame: InboundFrame) -> None:
    """把一帧入站事件交给聊天中枢处理。"""
    try:
        if frame.event == "join_room":
            await hub.join_room(connection_id, JoinRoomPayload.model_validate(frame.data))
        elif frame.event == "leave_room":
            await hub.leave_room(connection_id)
        else:
            ack = await hub.send_message(
                connection_id, SendMessagePayload.model_validate(frame.data),
            )
            await _reply_ack(hub, connection_id, frame, ack)
    except ValidationError as e:
        logger.info("事件载荷不合法 | event=%s | %s", frame.event, e.errors()[:1])
        if frame.event == "send_message" and frame.ack_id is not None:
            await _reply_ack(
                hub, connection_id, frame, AckData(delivered=False, error="Invalid payload"),
            )
        else:
            await hub.relay.send_to(
                connection_id, "error",
                ErrorData(error="Invalid payload", event=frame.event).dump(),
            )


async def _reply_ack(hub: ChatHub, connection_id: str, frame: InboundFrame, ack: AckData) -> None:
    if frame.ack_id is None:
        return
    ack.ack_id = frame.ack_id
    await hub.relay.send_to(connection_id, "ack", ack.dump())


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """房间聊天 WebSocket 端点。

    接收与处理分离：接收协程按到达时间做发言限流并解析帧，
    处理协程按顺序把事件交给 :class:`ChatHub`。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    connection_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(connection_id)

    try:
        hub: ChatHub = websocket.app.state.hub
        await websocket.accept()
        hub.connect(connection_id, websocket)
        logger.info("连接已建立 | conn=%s", connection_id)

        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
        queue: asyncio.Queue[InboundFrame | None] = asyncio.Queue(maxsize=_QUEUE_SIZE)

        async def receive_loop() -> None:
            try:
                while True:
                    raw: str = await websocket.receive_text()
                    try:
                        frame = InboundFrame.model_validate_json(raw)
                    except ValidationError:
                        await hub.relay.send_to(
                            connection_id, "error", ErrorData(error="Malformed frame").dump(),
                        )
                        continue

                    # 限流只针对发言，按实际到达时间判断
                    if frame.event == "send_message" and not ws_limiter.is_allowed(connection_id):
                        if frame.ack_id is None:
                            await hub.relay.send_to(
                                connection_id, "error",
                                ErrorData(error="rate_limited", event=frame.event).dump(),
                            )
                        else:
                            await _reply_ack(
                                hub, connection_id, frame,
                                AckData(delivered=False, error="rate_limited"),
                            )
                        continue
                    try:
                        queue.put_nowait(frame)
                    except asyncio.QueueFull:
                        logger.warning("WS 队列已满，丢弃事件 | event=%s", frame.event)
                        await hub.relay.send_to(
                            connection_id, "error",
                            ErrorData(error="Server busy", event=frame.event).dump(),
                        )
            except WebSocketDisconnect:
                pass  # 正常断开
            except Exception as e:
                logger.error("WebSocket 接收异常: %s", e, exc_info=True)
            finally:
                await queue.put(None)  # 通知处理协程结束

        async def process_loop() -> None:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                try:
                    await dispatch_frame(hub, connection_id, frame)
                except Exception as e:
                    logger.error("WebSocket 处理异常: %s | event=%s", e, frame.event, exc_info=True)

        try:
            await asyncio.gather(receive_loop(), process_loop())
        finally:
            await hub.disconnect(connection_id)
            ws_limiter.remove_client(connection_id)
            logger.info("连接已断开 | conn=%s", connection_id)

    finally:
        request_id_ctx_var.reset(token)
