"""
cogni.services.relay
~~~~~~~~~~~~~~~~~~~~

消息中继 —— 有序广播 + 投递回执。

``relay()`` 在房间的发送锁内完成"追加历史 + 扇出"，因此同一房间内所有成员
看到消息的顺序与历史追加顺序完全一致；不同房间之间不保证顺序。

真人消息不会回显给发送它的连接；AI / 系统消息则广播给房间内所有连接。
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from cogni.core.exceptions import RelayError
from cogni.core.logging import get_logger
from cogni.schemas.messages import Message
from cogni.services.registry import Connection, ConnectionRegistry
from cogni.services.room_store import RoomStateStore

logger = get_logger(__name__)


class MessageArchive(Protocol):
    """可选的消息归档（持久化）协作者。"""

    async def save_message(self, room_id: str, message: Message) -> None: ...

    async def get_history(self, room_id: str, limit: int = 50) -> list[Any]: ...


class RelayResult(BaseModel):
    """一次中继的结果。失败时 ``error`` 携带 :class:`RelayError`，不会抛出。"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    delivered: bool
    recipient_count: int = 0
    timestamp: int | None = None
    error: RelayError | None = None
    preceding: list[Message] = Field(default_factory=list)


def _frame(event: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"event": event, "data": data}


class MessageRelay:
    """房间消息中继。

    Attributes:
        registry: 连接注册表（决定广播对象）。
        store: 房间状态仓库（历史 + 发送锁）。
        archive: 可选的消息归档，失败只记日志。
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: RoomStateStore,
        archive: MessageArchive | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.archive = archive

    async def relay(
        self,
        room_id: str,
        message: Message,
        origin_connection_id: str | None = None,
        snapshot_size: int = 0,
    ) -> RelayResult:
        """追加消息到房间历史并广播。

        Args:
            room_id: 目标房间。
            message: 要中继的消息（临时状态消息不应走这里）。
            origin_connection_id: 发起连接，真人消息不回显给它。
            snapshot_size: 需要时在追加前原子地截取最近若干条历史，放入 ``preceding``。

        Returns:
            ``RelayResult``；房间 ID 缺失或房间不存在时 ``delivered=False``。
        """
        if not room_id:
            logger.warning("send_message 缺少 roomId")
            return RelayResult(delivered=False, error=RelayError("Missing roomId"))

        state = self.store.get(room_id)
        if state is None or not self.registry.has_room(room_id):
            logger.warning("房间不存在，消息未中继 | room=%s", room_id)
            return RelayResult(delivered=False, error=RelayError("Room not found"))

        exclude = origin_connection_id if message.is_human else None
        async with state.send_lock:
            preceding = self.store.recent(room_id, snapshot_size)
            self.store.append(room_id, message)
            count = await self._fanout(
                room_id, _frame("receive_message", message.to_wire()), exclude,
            )

        await self._archive(room_id, message)
        return RelayResult(
            delivered=True,
            recipient_count=count,
            timestamp=message.timestamp,
            preceding=preceding,
        )

    async def broadcast(
        self,
        room_id: str,
        event: str,
        data: dict[str, Any],
        exclude_connection_id: str | None = None,
    ) -> int:
        """向房间广播一个不进入历史的事件（在场通知、状态、流式增量）。

        Returns:
            成功送达的连接数；房间不存在时为 0。
        """
        state = self.store.get(room_id)
        if state is None:
            return 0
        async with state.send_lock:
            return await self._fanout(room_id, _frame(event, data), exclude_connection_id)

    async def send_to(self, connection_id: str, event: str, data: dict[str, Any]) -> bool:
        """单独推送给一个连接（回执、错误提示）。"""
        connection = self.registry.get(connection_id)
        if connection is None or connection.transport is None:
            return False
        try:
            await connection.transport.send_json(_frame(event, data))
        except Exception as e:
            logger.warning("推送失败 | conn=%s | event=%s | %s", connection_id, event, e)
            return False
        return True

    async def _fanout(
        self, room_id: str, frame: dict[str, Any], exclude: str | None,
    ) -> int:
        targets: list[Connection] = [
            c for c in self.registry.connections_in(room_id)
            if c.connection_id != exclude and c.transport is not None
        ]
        if not targets:
            return 0
        results = await asyncio.gather(
            *(c.transport.send_json(frame) for c in targets),
            return_exceptions=True,
        )
        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, Exception):
                # 断开的连接由传输层的断开流程负责清理
                logger.warning(
                    "广播失败 | room=%s | conn=%s | %s",
                    room_id, connection.connection_id, result,
                )
            else:
                delivered += 1
        return delivered

    async def _archive(self, room_id: str, message: Message) -> None:
        if self.archive is None:
            return
        try:
            await self.archive.save_message(room_id, message)
        except Exception as e:
            # 持久化失败不应阻塞对话流程
            logger.warning("消息归档失败: %s", e, exc_info=True)
