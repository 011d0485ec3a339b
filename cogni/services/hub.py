"""
cogni.services.hub
~~~~~~~~~~~~~~~~~~

聊天中枢 —— 显式构造并持有注册表、房间状态、中继和回复编排器，
把实时事件契约（``join_room`` / ``leave_room`` / ``send_message`` / 断开）
翻译成核心操作。

在 FastAPI lifespan 中创建并挂载到 ``app.state.hub``，不依赖任何模块级全局状态。
"""
from __future__ import annotations

from typing import Protocol

from cogni.core.logging import get_logger
from cogni.core.settings import Settings
from cogni.schemas.events import (
    AckData,
    ErrorData,
    JoinRoomPayload,
    PresenceData,
    SendMessagePayload,
)
from cogni.schemas.messages import Message, now_ms
from cogni.schemas.rooms import ChatMessageData, HistoryResponseData, RoomInfoData
from cogni.services.augment import SearchAugmenter
from cogni.services.capabilities import (
    SearchProvider,
    ShouldRespondClassifier,
    TaskClassifier,
    TextGenerator,
)
from cogni.services.decision import DecisionEngine, ReplyPolicy
from cogni.services.orchestrator import ReplyOrchestrator
from cogni.services.registry import (
    Connection,
    ConnectionRegistry,
    JoinResult,
    LeaveResult,
    Transport,
)
from cogni.services.relay import MessageArchive, MessageRelay
from cogni.services.room_store import RoomStateStore
from cogni.services.router import TaskRouter

logger = get_logger(__name__)


class RoomDirectory(Protocol):
    """房间 / 成员目录（由存储协作者提供），核心只把它当作不透明的查询。"""

    async def can_join(self, room_id: str, user_id: str) -> bool: ...


class OpenRoomDirectory:
    """未接入存储时使用的目录：任何人都可以加入任何房间。"""

    async def can_join(self, room_id: str, user_id: str) -> bool:
        return True


class ChatHub:
    """实时房间中继 + AI 回复编排的组合根。

    Attributes:
        registry: 连接注册表。
        store: 房间状态仓库。
        relay: 消息中继。
        orchestrator: AI 回复编排器。
        directory: 房间成员目录。
        history_window: 提交触发时截取的历史条数。
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: RoomStateStore,
        relay: MessageRelay,
        orchestrator: ReplyOrchestrator,
        directory: RoomDirectory | None = None,
        history_window: int = 5,
    ) -> None:
        self.registry = registry
        self.store = store
        self.relay = relay
        self.orchestrator = orchestrator
        self.directory: RoomDirectory = directory or OpenRoomDirectory()
        self.history_window = history_window

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        should_respond: ShouldRespondClassifier,
        task_classifier: TaskClassifier,
        generator: TextGenerator,
        search_provider: SearchProvider,
        archive: MessageArchive | None = None,
        directory: RoomDirectory | None = None,
    ) -> ChatHub:
        """按配置装配全部组件。"""
        store = RoomStateStore(history_limit=settings.ROOM_HISTORY_LIMIT)
        registry = ConnectionRegistry(store)
        relay = MessageRelay(registry, store, archive=archive)
        orchestrator = ReplyOrchestrator(
            registry,
            store,
            relay,
            DecisionEngine(
                should_respond,
                assistant_name=settings.ASSISTANT_NAME,
                history_turns=settings.DECISION_HISTORY_TURNS,
            ),
            TaskRouter(task_classifier),
            SearchAugmenter(
                search_provider,
                max_results=settings.SEARCH_MAX_RESULTS,
                depth=settings.SEARCH_DEPTH,
            ),
            generator,
            policy=ReplyPolicy(
                high=settings.HIGH_CONFIDENCE_THRESHOLD,
                medium=settings.MEDIUM_CONFIDENCE_THRESHOLD,
                medium_delay=settings.MEDIUM_CONFIDENCE_DELAY,
            ),
            assistant_name=settings.ASSISTANT_NAME,
            prompt_history_turns=settings.PROMPT_HISTORY_TURNS,
        )
        return cls(
            registry,
            store,
            relay,
            orchestrator,
            directory=directory,
            history_window=max(settings.PROMPT_HISTORY_TURNS, settings.DECISION_HISTORY_TURNS),
        )

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def connect(self, connection_id: str, transport: Transport) -> Connection:
        return self.registry.register(connection_id, transport)

    async def disconnect(self, connection_id: str) -> LeaveResult:
        result = self.registry.unregister(connection_id)
        await self._after_leave(result)
        return result

    # ── 事件 ──────────────────────────────────────────────────────────

    async def join_room(self, connection_id: str, payload: JoinRoomPayload) -> JoinResult | None:
        """处理 ``join_room``。无权加入时回报 ``error`` 并返回 ``None``。"""
        if not await self.directory.can_join(payload.room_id, payload.user_id):
            logger.warning(
                "拒绝加入房间 | room=%s | user=%s", payload.room_id, payload.user_id,
            )
            await self.relay.send_to(
                connection_id, "error",
                ErrorData(error="Not a member of this room", event="join_room").dump(),
            )
            return None

        result = self.registry.join(
            payload.room_id, payload.user_id, payload.username, connection_id,
        )
        if result.left is not None:
            await self._after_leave(result.left)
        if result.is_new_participant:
            await self.relay.broadcast(
                payload.room_id,
                "user_joined",
                PresenceData(username=payload.username, participants=result.participants).dump(),
            )
        return result

    async def leave_room(self, connection_id: str) -> LeaveResult:
        result = self.registry.leave(connection_id)
        await self._after_leave(result)
        return result

    async def send_message(self, connection_id: str, payload: SendMessagePayload) -> AckData:
        """处理 ``send_message``：中继消息，必要时提交 AI 回复触发，返回回执。"""
        connection = self.registry.get(connection_id)
        sender = payload.sender or (connection.username if connection else None) or "Anonymous"
        user_id = payload.user_id or (connection.user_id if connection else None)

        message = Message(
            sender=sender,
            user_id=user_id,
            text=payload.message,
            timestamp=payload.timestamp or now_ms(),
        )

        result = await self.relay.relay(
            payload.room_id, message,
            origin_connection_id=connection_id,
            snapshot_size=self.history_window,
        )
        if not result.delivered:
            return AckData(delivered=False, error=str(result.error))

        ack = AckData(
            delivered=True,
            timestamp=result.timestamp,
            recipient_count=result.recipient_count,
        )
        # 归档期间最后一名成员可能已离开，房间随之删除
        if not self.registry.has_room(payload.room_id):
            logger.info("房间已删除，不再提交 AI 回复 | room=%s", payload.room_id)
            return ack

        started = self.orchestrator.submit(payload.room_id, message, result.preceding)
        logger.debug(
            "消息已中继 | room=%s | 接收连接=%d | AI 任务%s",
            payload.room_id, result.recipient_count, "已启动" if started else "已排队",
        )
        return ack

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()

    # ── 内部 ──────────────────────────────────────────────────────────

    async def _after_leave(self, result: LeaveResult) -> None:
        if result.room_id is None:
            return
        if result.room_emptied and not result.room_deleted:
            self.orchestrator.mark_cancel_requested(result.room_id)
        if result.participant_removed and not result.room_emptied:
            await self.relay.broadcast(
                result.room_id,
                "user_left",
                PresenceData(
                    username=result.username or "", participants=result.participants,
                ).dump(),
            )

    # ── 查询（REST 使用）────────────────────────────────────────────

    def room_info(self, room_id: str) -> RoomInfoData | None:
        if not self.registry.has_room(room_id):
            return None
        job = self.orchestrator.active_job(room_id)
        return RoomInfoData(
            room_id=room_id,
            participants=self.registry.participant_names(room_id),
            online_count=self.registry.connection_count(room_id),
            job_state=job.state.value if job is not None else None,
            queued_jobs=self.store.pending_count(room_id),
        )

    def list_rooms(self) -> list[RoomInfoData]:
        return [info for info in (self.room_info(r) for r in self.registry.room_ids()) if info]

    async def recent_history(self, room_id: str, limit: int) -> HistoryResponseData | None:
        """房间最近的消息。

        活跃房间读内存历史；房间已删除且配置了归档时回退到归档。
        两边都没有记录时返回 ``None``。
        """
        if room_id in self.store:
            messages = [
                ChatMessageData(
                    id=m.id,
                    sender=m.sender,
                    user_id=m.user_id,
                    message=m.text,
                    timestamp=m.timestamp,
                    is_automated=m.is_automated,
                )
                for m in self.store.recent(room_id, limit)
            ]
            source = "live"
        else:
            archive = self.relay.archive
            if archive is None:
                return None
            stored = await archive.get_history(room_id, limit=limit)
            if not stored:
                return None
            messages = [
                ChatMessageData(
                    id=doc["message_id"],
                    sender=doc["sender"],
                    user_id=doc.get("user_id"),
                    message=doc["text"],
                    timestamp=doc["timestamp"],
                    is_automated=doc.get("is_automated", False),
                )
                for doc in stored
            ]
            source = "archive"
        return HistoryResponseData(
            room_id=room_id, messages=messages, total=len(messages), source=source,
        )
