"""
tests.test_hub
~~~~~~~~~~~~~~

ChatHub 事件处理测试 —— 在场通知、回执、目录校验与房间查询。
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from cogni.core.settings import Settings
from cogni.schemas.events import JoinRoomPayload
from cogni.services.hub import ChatHub
from tests.fakes import (
    FakeTransport,
    StubClassifier,
    StubGenerator,
    StubSearch,
    StubTaskClassifier,
    build_hub,
    join,
    say,
)


class TestPresence:
    """测试加入 / 离开通知。"""

    @pytest.mark.asyncio
    async def test_two_tabs_announce_participant_once(self) -> None:
        hub = build_hub()
        bob = await join(hub, "c-bob", "r1", "u-bob", "Bob")
        await join(hub, "c-alice-1", "r1", "u-alice", "Alice")
        await join(hub, "c-alice-2", "r1", "u-alice", "Alice")

        assert [d["username"] for d in bob.data_of("user_joined")] == ["Bob", "Alice"]
        assert bob.data_of("user_joined")[-1]["participants"] == ["Bob", "Alice"]

    @pytest.mark.asyncio
    async def test_user_left_only_after_last_tab_closes(self) -> None:
        hub = build_hub()
        bob = await join(hub, "c-bob", "r1", "u-bob", "Bob")
        await join(hub, "c-alice-1", "r1", "u-alice", "Alice")
        await join(hub, "c-alice-2", "r1", "u-alice", "Alice")

        await hub.disconnect("c-alice-1")
        assert bob.data_of("user_left") == []

        await hub.disconnect("c-alice-2")
        assert bob.data_of("user_left") == [{"username": "Alice", "participants": ["Bob"]}]

    @pytest.mark.asyncio
    async def test_explicit_leave_room(self) -> None:
        hub = build_hub()
        bob = await join(hub, "c-bob", "r1", "u-bob", "Bob")
        await join(hub, "c-alice", "r1", "u-alice", "Alice")

        result = await hub.leave_room("c-alice")

        assert result.participant_removed is True
        assert bob.data_of("user_left")[0]["username"] == "Alice"
        # 连接仍在，只是不在房间里了
        assert hub.registry.get("c-alice") is not None

    @pytest.mark.asyncio
    async def test_switching_rooms_announces_departure(self) -> None:
        hub = build_hub()
        bob = await join(hub, "c-bob", "r1", "u-bob", "Bob")
        alice = await join(hub, "c-alice", "r1", "u-alice", "Alice")

        await hub.join_room(
            "c-alice", JoinRoomPayload(room_id="r2", user_id="u-alice", username="Alice"),
        )

        assert bob.data_of("user_left")[0]["username"] == "Alice"
        assert alice.data_of("user_joined")[-1] == {"username": "Alice", "participants": ["Alice"]}
        assert hub.registry.participant_names("r1") == ["Bob"]

    @pytest.mark.asyncio
    async def test_directory_can_reject_join(self) -> None:
        directory = MagicMock()
        directory.can_join = AsyncMock(return_value=False)
        hub = build_hub(directory=directory)
        transport = FakeTransport()
        hub.connect("c-eve", transport)

        result = await hub.join_room(
            "c-eve", JoinRoomPayload(room_id="team", user_id="u-eve", username="Eve"),
        )

        assert result is None
        assert transport.events() == ["error"]
        assert not hub.registry.has_room("team")
        directory.can_join.assert_awaited_once_with("team", "u-eve")


class TestSendMessage:
    """测试发送消息与回执。"""

    @pytest.mark.asyncio
    async def test_ack_and_no_echo(self) -> None:
        hub = build_hub()
        alice = await join(hub, "c-alice", "r1", "u-alice", "Alice")
        bob = await join(hub, "c-bob", "r1", "u-bob", "Bob")
        await hub.send_message("c-bob", say("r1", "hello everyone"))
        await hub.orchestrator.wait_idle("r1")

        ack = await hub.send_message("c-alice", say("r1", "hi bob", timestamp=1700000000000))
        await hub.orchestrator.wait_idle("r1")

        assert ack.delivered is True
        assert ack.timestamp == 1700000000000
        assert ack.recipient_count == 1
        assert "hi bob" not in alice.texts()
        received = [d for d in bob.data_of("receive_message") if d["message"] == "hi bob"]
        assert received[0]["sender"] == "Alice"
        assert received[0]["userId"] == "u-alice"

    @pytest.mark.asyncio
    async def test_other_tabs_of_sender_receive_the_message(self) -> None:
        hub = build_hub()
        tab1 = await join(hub, "c-alice-1", "r1", "u-alice", "Alice")
        tab2 = await join(hub, "c-alice-2", "r1", "u-alice", "Alice")

        ack = await hub.send_message("c-alice-1", say("r1", "synced?"))
        await hub.orchestrator.wait_idle("r1")

        assert ack.recipient_count == 1
        assert "synced?" in tab2.texts()
        assert "synced?" not in tab1.texts()

    @pytest.mark.asyncio
    async def test_missing_room_id(self) -> None:
        hub = build_hub()
        await join(hub, "c-alice", "r1", "u-alice", "Alice")

        ack = await hub.send_message("c-alice", say("", "lost"))

        assert ack.delivered is False
        assert ack.error == "Missing roomId"

    @pytest.mark.asyncio
    async def test_unknown_room(self) -> None:
        hub = build_hub()
        await join(hub, "c-alice", "r1", "u-alice", "Alice")

        ack = await hub.send_message("c-alice", say("ghost-room", "anyone?"))

        assert ack.delivered is False
        assert ack.error == "Room not found"
        assert ack.dump() == {"delivered": False, "error": "Room not found"}
        assert not hub.store.is_busy("ghost-room")

    @pytest.mark.asyncio
    async def test_explicit_sender_overrides_username(self) -> None:
        hub = build_hub()
        await join(hub, "c-alice", "r1", "u-alice", "Alice")
        bob = await join(hub, "c-bob", "r1", "u-bob", "Bob")

        await hub.send_message("c-alice", say("r1", "hey", sender="Ally"))
        await hub.orchestrator.wait_idle("r1")

        assert bob.data_of("receive_message")[0]["sender"] == "Ally"


class TestRoomQueries:
    """测试 REST 使用的房间查询。"""

    @pytest.mark.asyncio
    async def test_room_info_and_list(self) -> None:
        hub = build_hub()
        await join(hub, "c-alice-1", "r1", "u-alice", "Alice")
        await join(hub, "c-alice-2", "r1", "u-alice", "Alice")
        await join(hub, "c-bob", "r2", "u-bob", "Bob")

        info = hub.room_info("r1")

        assert info.participants == ["Alice"]
        assert info.online_count == 2
        assert info.job_state is None
        assert info.queued_jobs == 0
        assert {r.room_id for r in hub.list_rooms()} == {"r1", "r2"}
        assert hub.room_info("nope") is None

    @pytest.mark.asyncio
    async def test_recent_history_reads_live_room(self) -> None:
        hub = build_hub()
        await join(hub, "c-alice", "r1", "u-alice", "Alice")
        await hub.send_message("c-alice", say("r1", "just chatting"))
        await hub.orchestrator.wait_idle("r1")

        history = await hub.recent_history("r1", 10)

        assert history.source == "live"
        assert [m.message for m in history.messages][0] == "just chatting"

    @pytest.mark.asyncio
    async def test_recent_history_falls_back_to_archive(self) -> None:
        """房间已关闭时从归档读取。"""
        archive = MagicMock()
        archive.get_history = AsyncMock(return_value=[
            {
                "room_id": "old",
                "message_id": "m1",
                "sender": "Alice",
                "user_id": "u-alice",
                "text": "from yesterday",
                "timestamp": 1000,
                "is_automated": False,
            },
        ])
        hub = build_hub(archive=archive)

        history = await hub.recent_history("old", 20)

        assert history.source == "archive"
        assert history.total == 1
        assert history.messages[0].id == "m1"
        assert history.messages[0].message == "from yesterday"
        archive.get_history.assert_awaited_once_with("old", limit=20)

    @pytest.mark.asyncio
    async def test_recent_history_unknown_room(self) -> None:
        archive = MagicMock()
        archive.get_history = AsyncMock(return_value=[])

        assert await build_hub(archive=archive).recent_history("nope", 5) is None
        assert await build_hub().recent_history("nope", 5) is None


class TestBuild:
    """测试按配置装配。"""

    def test_build_wires_settings(self) -> None:
        settings = Settings(
            GEMINI_API_KEY="k",
            ASSISTANT_NAME="Nova",
            ROOM_HISTORY_LIMIT=10,
            PROMPT_HISTORY_TURNS=4,
            DECISION_HISTORY_TURNS=6,
            SEARCH_MAX_RESULTS=4,
        )

        hub = ChatHub.build(
            settings,
            should_respond=StubClassifier(),
            task_classifier=StubTaskClassifier(),
            generator=StubGenerator(),
            search_provider=StubSearch(),
        )

        assert hub.store.history_limit == 10
        assert hub.history_window == 6
        assert hub.orchestrator.assistant_name == "Nova"
        assert hub.orchestrator.decision_engine.assistant_name == "Nova"
        assert hub.orchestrator.augmenter.max_results == 4
