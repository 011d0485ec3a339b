"""
cogni.db
~~~~~~~~

MongoDB 异步连接管理（可选）。

使用 ``motor`` 的 ``AsyncIOMotorClient`` 在应用生命周期内维护一个全局连接池。
未配置 ``MONGO_URI`` 时不建立连接，消息归档和房间目录都会退化为内存实现。
"""
from __future__ import annotations

from urllib.parse import urlparse, urlunparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from cogni.core.logging import get_logger
from cogni.core.settings import settings

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


def _mask_uri(uri: str) -> str:
    """将 MongoDB URI 中的密码替换为 ``***``，防止日志泄漏凭证。"""
    parsed = urlparse(uri)
    if parsed.password:
        masked = parsed._replace(
            netloc=f"{parsed.username}:***@{parsed.hostname}"
            + (f":{parsed.port}" if parsed.port else ""),
        )
        return urlunparse(masked)
    return uri


async def connect_mongo() -> bool:
    """初始化 MongoDB 连接池。应在 lifespan startup 中调用。

    Returns:
        是否建立了连接（未配置 ``MONGO_URI`` 时返回 ``False``）。
    """
    global _client
    if not settings.MONGO_URI:
        logger.info("未配置 MONGO_URI，跳过消息持久化")
        return False

    _client = AsyncIOMotorClient(settings.MONGO_URI)
    try:
        await _client[settings.MONGO_DB_NAME].command("ping")
    except Exception as e:
        logger.error("MongoDB 连接失败: %s", e, exc_info=True)
        _client.close()
        _client = None
        raise
    logger.info(
        "MongoDB 已连接 | uri=%s | db=%s",
        _mask_uri(settings.MONGO_URI),
        settings.MONGO_DB_NAME,
    )
    return True


async def close_mongo() -> None:
    """关闭 MongoDB 连接池。应在 lifespan shutdown 中调用。"""
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB 连接已关闭")


def get_database() -> AsyncIOMotorDatabase:
    """获取默认数据库实例。

    Raises:
        RuntimeError: 如果在 ``connect_mongo()`` 成功之前调用。
    """
    if _client is None:
        raise RuntimeError("MongoDB 尚未初始化，请先调用 connect_mongo()")
    return _client[settings.MONGO_DB_NAME]
