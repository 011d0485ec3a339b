"""
cogni.db.directory
~~~~~~~~~~~~~~~~~~

协作组目录 —— 查询 MongoDB ``collaborations`` 集合，判断用户能否加入房间。

房间 ID 即协作组 ID；创建者和成员都可加入。目录里查不到的房间视为临时房间，
任何人都可加入。
"""
from __future__ import annotations

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from cogni.core.logging import get_logger

logger = get_logger(__name__)

_COLLECTION_NAME = "collaborations"


def _as_object_id(value: str) -> ObjectId | str:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return value


class CollaborationDirectory:
    """基于 ``collaborations`` 集合的房间成员目录。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[_COLLECTION_NAME]

    async def can_join(self, room_id: str, user_id: str) -> bool:
        doc = await self._collection.find_one(
            {"_id": _as_object_id(room_id)}, {"creator": 1, "members": 1},
        )
        if doc is None:
            return True
        allowed = {str(m) for m in (doc.get("creator"), *doc.get("members", [])) if m is not None}
        if user_id in allowed:
            return True
        logger.info("用户不是协作组成员 | room=%s | user=%s", room_id, user_id)
        return False
