"""
tests.test_api_rooms
~~~~~~~~~~~~~~~~~~~~

房间 REST 接口测试 —— 不触发 lifespan，直接把测试用 ``ChatHub`` 挂到 ``app.state``。
"""
from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from cogni.main import app
from cogni.schemas.messages import Message
from cogni.services.hub import ChatHub
from tests.fakes import FakeTransport, build_hub


@pytest.fixture()
def hub() -> Iterator[ChatHub]:
    hub = build_hub()
    for conn_id, user_id, name in (("c1", "u-alice", "Alice"), ("c2", "u-alice", "Alice"), ("c3", "u-bob", "Bob")):
        hub.connect(conn_id, FakeTransport())
        hub.registry.join("r1", user_id, name, conn_id)
    for i in range(4):
        hub.store.append("r1", Message(sender="Alice", user_id="u-alice", text=f"m{i}", timestamp=1000 + i))
    app.state.hub = hub
    yield hub
    del app.state.hub


@pytest.fixture()
def client(hub: ChatHub) -> TestClient:
    return TestClient(app)


class TestRoomEndpoints:
    """测试房间查询接口。"""

    def test_list_rooms(self, client: TestClient) -> None:
        resp = client.get("/api/rooms")

        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 200
        assert body["data"][0]["room_id"] == "r1"
        assert body["data"][0]["participants"] == ["Alice", "Bob"]
        assert body["data"][0]["online_count"] == 3

    def test_room_info_unknown(self, client: TestClient) -> None:
        body = client.get("/api/rooms/nope").json()

        assert body["code"] == 404
        assert body["data"] is None
        assert body["msg"] == "Room not found"

    def test_room_info(self, client: TestClient) -> None:
        body = client.get("/api/rooms/r1").json()

        assert body["code"] == 200
        assert body["data"]["queued_jobs"] == 0
        assert body["data"]["job_state"] is None

    def test_history_limit(self, client: TestClient) -> None:
        body = client.get("/api/rooms/r1/history", params={"limit": 2}).json()

        assert body["data"]["total"] == 2
        assert [m["message"] for m in body["data"]["messages"]] == ["m2", "m3"]
        assert body["data"]["messages"][0]["user_id"] == "u-alice"

    def test_history_rejects_bad_limit(self, client: TestClient) -> None:
        assert client.get("/api/rooms/r1/history", params={"limit": 0}).status_code == 422

    def test_history_unknown_room(self, client: TestClient) -> None:
        assert client.get("/api/rooms/nope/history").json()["code"] == 404

    def test_health(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["assistant"] == "Cogni"
        assert body["active_rooms"] == 1
        assert body["completed_replies"] == 0

    def test_history_falls_back_to_archive(self, hub: ChatHub, client: TestClient) -> None:
        hub.relay.archive = MagicMock()
        hub.relay.archive.get_history = AsyncMock(return_value=[
            {
                "room_id": "closed",
                "message_id": "m9",
                "sender": "Bob",
                "user_id": "u-bob",
                "text": "see you",
                "timestamp": 2000,
                "is_automated": False,
            },
        ])

        body = client.get("/api/rooms/closed/history").json()

        assert body["code"] == 200
        assert body["data"]["source"] == "archive"
        assert body["data"]["messages"][0]["message"] == "see you"
