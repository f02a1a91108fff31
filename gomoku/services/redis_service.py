"""Redis 连接管理。

Redis 只用于多进程之间转发房间通知。未配置 REDIS_URL 或首次连接失败时，
get_redis_client 返回 None，通知网关随即退回进程内分发，不再重试连接。
"""

from __future__ import annotations

import asyncio
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from gomoku import config

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None
_redis_unavailable = False
_redis_lock = asyncio.Lock()


async def _connect(url: str) -> Redis | None:
    client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis 不可用，房间通知改为进程内分发: %s", exc)
        await _close_quietly(client)
        return None
    logger.info("已连接 Redis，房间通知经由 Redis 频道转发")
    return client


async def _close_quietly(client: Redis) -> None:
    try:
        await client.aclose()
    except (RedisError, OSError) as exc:
        logger.debug("关闭 Redis 连接失败: %s", exc)


async def get_redis_client() -> Redis | None:
    """获取共享的 Redis 客户端；未配置或不可用时返回 None。"""
    global _redis_client, _redis_unavailable

    if not config.REDIS_URL or _redis_unavailable:
        return None
    if _redis_client is not None:
        return _redis_client

    async with _redis_lock:
        if _redis_client is None and not _redis_unavailable:
            _redis_client = await _connect(config.REDIS_URL)
            _redis_unavailable = _redis_client is None
        return _redis_client


async def close_redis_client() -> None:
    """关闭 Redis 客户端，下次获取时重新连接。"""
    global _redis_client, _redis_unavailable

    if _redis_client is not None:
        await _close_quietly(_redis_client)
    _redis_client = None
    _redis_unavailable = False
