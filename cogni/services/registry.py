"""
cogni.services.registry
~~~~~~~~~~~~~~~~~~~~~~~

连接注册表 —— 记录每个连接属于哪个房间、哪个参与者。

同一用户可以同时打开多个标签页（多个连接），参与者按用户身份聚合并维护
连接计数；只有计数归零时参与者才真正离开房间，因此"加入 / 离开"通知
每个参与者只广播一次，而不是每个连接一次。

房间在首次有人加入时懒创建；当参与者全部离开 *且* 没有生成任务引用它时删除。
还有任务在跑的空房间会保留到任务结束（见 :meth:`ConnectionRegistry.discard_if_idle`）。
"""
from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, Field

from cogni.core.logging import get_logger
from cogni.schemas.messages import now_ms
from cogni.services.room_store import RoomStateStore

logger = get_logger(__name__)


class Transport(Protocol):
    """可以向客户端推送 JSON 帧的连接（FastAPI ``WebSocket`` 即满足）。"""

    async def send_json(self, data: Any) -> None: ...


class Connection:
    """一个实时连接。

    Attributes:
        connection_id: 连接唯一标识。
        transport: 推送通道，未绑定时为 ``None``（无法接收广播）。
        user_id: 已加入房间时的用户身份。
        username: 已加入房间时的显示名。
        room_id: 当前所在房间。
        joined_at: 加入房间的毫秒时间戳。
    """

    def __init__(self, connection_id: str, transport: Transport | None = None) -> None:
        self.connection_id = connection_id
        self.transport = transport
        self.user_id: str | None = None
        self.username: str | None = None
        self.room_id: str | None = None
        self.joined_at: int | None = None

    def __repr__(self) -> str:
        return f"Connection(id={self.connection_id!r}, room={self.room_id!r}, user={self.user_id!r})"


class Participant:
    """房间内的一个参与者，可能持有多个连接。"""

    def __init__(self, user_id: str, username: str) -> None:
        self.user_id = user_id
        self.username = username
        self.connection_count = 0


class JoinResult(BaseModel):
    """``join`` 的结果。

    Attributes:
        is_new_participant: 是否是该参与者在此房间的第一个连接。
        room_created: 房间是否因本次加入而创建。
        participants: 加入后房间的参与者显示名列表。
        left: 连接从另一个房间切换过来时，离开旧房间的结果。
    """

    is_new_participant: bool
    room_created: bool = False
    participants: list[str] = Field(default_factory=list)
    left: LeaveResult | None = None


class LeaveResult(BaseModel):
    """``leave`` 的结果。未知连接返回全部为假的空结果。

    Attributes:
        participant_removed: 参与者的连接数是否归零并被移出房间。
        room_emptied: 房间参与者是否已清空。
        room_deleted: 房间是否已被删除（有任务在跑时会推迟）。
        room_id: 离开的房间。
        user_id: 离开的用户。
        username: 离开的用户显示名。
        participants: 离开后房间剩余参与者的显示名。
    """

    participant_removed: bool = False
    room_emptied: bool = False
    room_deleted: bool = False
    room_id: str | None = None
    user_id: str | None = None
    username: str | None = None
    participants: list[str] = Field(default_factory=list)


JoinResult.model_rebuild()


class ConnectionRegistry:
    """连接 / 参与者 / 房间成员关系注册表。

    所有操作都是同步的，在单事件循环内天然原子。对未知连接 ID 的操作是幂等空操作，
    从不抛异常。

    Attributes:
        store: 房间状态仓库，用于创建 / 删除房间状态和查询生成任务占用。
    """

    def __init__(self, store: RoomStateStore) -> None:
        self.store = store
        self._connections: dict[str, Connection] = {}
        # room_id -> user_id -> Participant
        self._rooms: dict[str, dict[str, Participant]] = {}

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def register(self, connection_id: str, transport: Transport | None) -> Connection:
        """登记一个刚建立（尚未入房）的连接。重复登记会更新推送通道。"""
        connection = self._connections.get(connection_id)
        if connection is None:
            connection = Connection(connection_id, transport)
            self._connections[connection_id] = connection
        else:
            connection.transport = transport
        return connection

    def unregister(self, connection_id: str) -> LeaveResult:
        """连接断开：先离开房间，再移除连接记录。"""
        result = self.leave(connection_id)
        self._connections.pop(connection_id, None)
        return result

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    # ── 入房 / 离房 ───────────────────────────────────────────────────

    def join(
        self, room_id: str, user_id: str, username: str, connection_id: str,
    ) -> JoinResult:
        """把连接加入房间，参与者连接数 +1。

        连接已在另一个房间时先离开旧房间；已在同一房间时为幂等空操作。
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            connection = self.register(connection_id, None)

        left: LeaveResult | None = None
        if connection.room_id is not None:
            if connection.room_id == room_id and connection.user_id == user_id:
                return JoinResult(
                    is_new_participant=False,
                    participants=self.participant_names(room_id),
                )
            left = self.leave(connection_id)

        room_created = room_id not in self._rooms
        participants = self._rooms.setdefault(room_id, {})
        self.store.ensure(room_id)

        participant = participants.get(user_id)
        if participant is None:
            participant = Participant(user_id, username)
            participants[user_id] = participant
        participant.connection_count += 1

        connection.user_id = user_id
        connection.username = participant.username
        connection.room_id = room_id
        connection.joined_at = now_ms()

        is_new = participant.connection_count == 1
        logger.info(
            "连接加入房间 | room=%s | user=%s | conn=%s | 该用户连接数=%d",
            room_id, user_id, connection_id, participant.connection_count,
        )
        return JoinResult(
            is_new_participant=is_new,
            room_created=room_created,
            participants=self.participant_names(room_id),
            left=left,
        )

    def leave(self, connection_id: str) -> LeaveResult:
        """连接离开当前房间，参与者连接数 -1；归零时移除参与者。"""
        connection = self._connections.get(connection_id)
        if connection is None or connection.room_id is None:
            return LeaveResult()

        room_id = connection.room_id
        user_id = connection.user_id or ""
        username = connection.username
        connection.room_id = None
        connection.user_id = None
        connection.username = None
        connection.joined_at = None

        participants = self._rooms.get(room_id, {})
        participant = participants.get(user_id)
        removed = False
        if participant is not None:
            participant.connection_count = max(0, participant.connection_count - 1)
            if participant.connection_count == 0:
                del participants[user_id]
                removed = True

        emptied = not participants
        deleted = self.discard_if_idle(room_id) if emptied else False
        logger.info(
            "连接离开房间 | room=%s | user=%s | conn=%s | 参与者移除=%s | 房间删除=%s",
            room_id, user_id, connection_id, removed, deleted,
        )
        return LeaveResult(
            participant_removed=removed,
            room_emptied=emptied,
            room_deleted=deleted,
            room_id=room_id,
            user_id=user_id,
            username=username,
            participants=self.participant_names(room_id),
        )

    def discard_if_idle(self, room_id: str) -> bool:
        """房间无参与者且没有活跃 / 排队任务时删除它，返回是否删除。"""
        if room_id not in self._rooms:
            return False
        if self._rooms[room_id] or self.store.is_busy(room_id):
            return False
        del self._rooms[room_id]
        self.store.discard(room_id)
        logger.info("房间已清空并删除 | room=%s", room_id)
        return True

    # ── 查询 ──────────────────────────────────────────────────────────

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def participants(self, room_id: str) -> list[Participant]:
        return list(self._rooms.get(room_id, {}).values())

    def participant_names(self, room_id: str) -> list[str]:
        return [p.username for p in self.participants(room_id)]

    def connections_in(self, room_id: str) -> list[Connection]:
        """房间内的全部连接（按登记顺序）。"""
        return [c for c in self._connections.values() if c.room_id == room_id]

    def connection_count(self, room_id: str) -> int:
        return sum(p.connection_count for p in self.participants(room_id))
