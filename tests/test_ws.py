"""
tests.test_ws
~~~~~~~~~~~~~

WebSocket 端点测试 —— 用 mock 的 WebSocket 驱动接收 / 处理循环，
验证帧解析、回执、限流与断开清理。
"""
from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocketDisconnect

from cogni.api.ws import dispatch_frame, websocket_endpoint
from cogni.core.rate_limit import WebSocketRateLimiter
from cogni.schemas.events import InboundFrame
from tests.fakes import build_hub, join


def _mock_websocket(hub, frames: list[dict[str, Any] | str]) -> MagicMock:
    """按顺序返回给定帧，随后模拟客户端断开。"""
    websocket = MagicMock()
    websocket.app.state.hub = hub
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    websocket.receive_text = AsyncMock(
        side_effect=[f if isinstance(f, str) else json.dumps(f) for f in frames]
        + [WebSocketDisconnect(code=1000)],
    )
    return websocket


def _sent(websocket: MagicMock) -> list[dict[str, Any]]:
    return [c.args[0] for c in websocket.send_json.call_args_list]


JOIN = {"event": "join_room", "data": {"roomId": "r1", "userId": "u-alice", "username": "Alice"}}


class TestWebSocketEndpoint:
    """测试完整的连接生命周期。"""

    @pytest.mark.asyncio
    async def test_join_send_ack_and_cleanup(self) -> None:
        hub = build_hub()
        bob = await join(hub, "c-bob", "r1", "u-bob", "Bob")
        websocket = _mock_websocket(hub, [
            JOIN,
            {"event": "send_message", "data": {"roomId": "r1", "message": "hi bob"}, "ackId": 1},
        ])

        await websocket_endpoint(websocket)
        await hub.orchestrator.wait_idle()

        websocket.accept.assert_awaited_once()
        acks = [f for f in _sent(websocket) if f["event"] == "ack"]
        assert acks[0]["data"]["ackId"] == 1
        assert acks[0]["data"]["delivered"] is True
        assert acks[0]["data"]["recipientCount"] == 1
        assert "hi bob" in bob.texts()
        # 断开后连接被清理，Bob 收到离开通知
        assert hub.registry.participant_names("r1") == ["Bob"]
        assert bob.data_of("user_left")[0]["username"] == "Alice"

    @pytest.mark.asyncio
    async def test_rapid_messages_are_rate_limited(self) -> None:
        hub = build_hub()
        websocket = _mock_websocket(hub, [
            JOIN,
            {"event": "send_message", "data": {"roomId": "r1", "message": "one"}, "ackId": 1},
            {"event": "send_message", "data": {"roomId": "r1", "message": "two"}, "ackId": 2},
        ])

        await websocket_endpoint(websocket)
        await hub.orchestrator.wait_idle()

        acks = {f["data"]["ackId"]: f["data"] for f in _sent(websocket) if f["event"] == "ack"}
        assert acks[1]["delivered"] is True
        assert acks[2] == {"delivered": False, "ackId": 2, "error": "rate_limited"}

    @pytest.mark.asyncio
    async def test_malformed_frame_reports_error(self) -> None:
        hub = build_hub()
        websocket = _mock_websocket(hub, ["not json", {"event": "dance", "data": {}}])

        await websocket_endpoint(websocket)

        errors = [f["data"] for f in _sent(websocket) if f["event"] == "error"]
        assert errors == [{"error": "Malformed frame"}, {"error": "Malformed frame"}]


class TestDispatchFrame:
    """测试单帧分发。"""

    @pytest.mark.asyncio
    async def test_invalid_payload_with_ack(self) -> None:
        hub = build_hub()
        transport = await join(hub, "c-alice", "r1", "u-alice", "Alice")
        frame = InboundFrame.model_validate(
            {"event": "send_message", "data": {"roomId": "r1", "message": ""}, "ackId": 9},
        )

        await dispatch_frame(hub, "c-alice", frame)

        assert transport.data_of("ack") == [{"delivered": False, "ackId": 9, "error": "Invalid payload"}]

    @pytest.mark.asyncio
    async def test_invalid_join_payload(self) -> None:
        hub = build_hub()
        transport = await join(hub, "c-alice", "r1", "u-alice", "Alice")
        frame = InboundFrame.model_validate({"event": "join_room", "data": {"roomId": "r2"}})

        await dispatch_frame(hub, "c-alice", frame)

        assert transport.data_of("error") == [{"error": "Invalid payload", "event": "join_room"}]
        assert hub.registry.get("c-alice").room_id == "r1"

    @pytest.mark.asyncio
    async def test_leave_room(self) -> None:
        hub = build_hub()
        await join(hub, "c-alice", "r1", "u-alice", "Alice")

        await dispatch_frame(hub, "c-alice", InboundFrame(event="leave_room"))

        assert not hub.registry.has_room("r1")


class TestWebSocketRateLimiter:
    """测试发言限流器。"""

    def test_interval(self) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=60)
        assert limiter.is_allowed("c1") is True
        assert limiter.is_allowed("c1") is False
        assert limiter.is_allowed("c2") is True

    def test_remove_client_resets(self) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=60)
        limiter.is_allowed("c1")
        limiter.remove_client("c1")
        assert limiter.is_allowed("c1") is True
        limiter.remove_client("unknown")
