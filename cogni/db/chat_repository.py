"""
cogni.db.chat_repository
~~~~~~~~~~~~~~~~~~~~~~~~

房间消息归档 —— 封装 MongoDB ``room_messages`` 集合的增查操作。

每条消息一个文档（扁平设计），便于按房间分页回看。临时状态消息不归档。
"""
from __future__ import annotations

from typing import TypedDict

from motor.motor_asyncio import AsyncIOMotorDatabase

from cogni.core.logging import get_logger
from cogni.schemas.messages import Message

logger = get_logger(__name__)

_COLLECTION_NAME = "room_messages"


class StoredMessage(TypedDict):
    """``room_messages`` 集合中的单条记录。"""
    room_id: str
    message_id: str
    sender: str
    user_id: str | None
    text: str
    timestamp: int
    is_automated: bool


class ChatRepository:
    """房间消息归档仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("room_id", 1), ("timestamp", 1)],
            name="idx_room_time",
        )
        self._indexes_created = True
        logger.debug("room_messages 索引已就绪")

    async def save_message(self, room_id: str, message: Message) -> None:
        """归档一条房间消息。"""
        if message.is_ephemeral:
            return
        await self._ensure_indexes()
        doc: StoredMessage = {
            "room_id": room_id,
            "message_id": message.id,
            "sender": message.sender,
            "user_id": message.user_id,
            "text": message.text,
            "timestamp": message.timestamp,
            "is_automated": message.is_automated,
        }
        await self._collection.insert_one(doc)

    async def get_history(self, room_id: str, limit: int = 50) -> list[StoredMessage]:
        """获取指定房间最近 N 条消息（按时间正序）。"""
        await self._ensure_indexes()
        cursor = (
            self._collection
            .find({"room_id": room_id}, {"_id": 0})
            .sort("timestamp", -1)
            .limit(limit)
        )
        messages = await cursor.to_list(length=limit)
        messages.reverse()
        return messages
