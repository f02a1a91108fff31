"""实时通知网关 - 房间分组、SSE 连接与消息广播。

通知只是尽力而为：发送失败只记日志，不影响调用方的业务结果。
配置了 Redis 时广播经由 Redis 频道转发，多个 worker 进程各自把消息
投递给本进程内的 SSE 连接；否则直接在进程内投递。
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from gomoku.config import NOTIFY_TIMEOUT_SECONDS, SSE_QUEUE_MAXSIZE
from gomoku.services.redis_service import get_redis_client

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "gomoku:room:"

# Redis 订阅中断后的重连间隔（秒），逐次翻倍直到上限
RELAY_RETRY_INITIAL_SECONDS = 1.0
RELAY_RETRY_MAX_SECONDS = 30.0

RedisGetter = Callable[[], Awaitable[Redis | None]]


def room_channel(room_id: str) -> str:
    return f"{CHANNEL_PREFIX}{room_id}"


class NotificationGateway:
    """房间消息网关。"""

    def __init__(
        self,
        queue_maxsize: int = SSE_QUEUE_MAXSIZE,
        timeout: float = NOTIFY_TIMEOUT_SECONDS,
        redis_getter: RedisGetter = get_redis_client,
        relay_retry_seconds: float = RELAY_RETRY_INITIAL_SECONDS,
    ):
        self.queue_maxsize = max(int(queue_maxsize), 1)
        self.timeout = timeout
        self._redis_getter = redis_getter
        self.relay_retry_seconds = relay_retry_seconds
        # room_id -> 订阅该房间的 user_id
        self._groups: dict[str, set[str]] = {}
        # user_id -> 该用户在本进程内打开的 SSE 队列
        self._connections: dict[str, set[asyncio.Queue]] = {}
        self._relay_task: asyncio.Task | None = None

    # -- 连接管理 --
    def connect(self, user_id: str) -> asyncio.Queue:
        """为用户登记一个 SSE 连接，返回其消息队列。"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_maxsize)
        self._connections.setdefault(user_id, set()).add(queue)
        return queue

    def disconnect(self, user_id: str, queue: asyncio.Queue) -> None:
        queues = self._connections.get(user_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._connections[user_id]

    def has_connection(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    # -- 分组管理 --
    async def subscribe(self, user_id: str, room_id: str) -> None:
        """把用户加入房间分组。"""
        self._groups.setdefault(room_id, set()).add(user_id)

    async def unsubscribe(self, user_id: str, room_id: str) -> None:
        """把用户移出房间分组，不在分组内时什么也不做。"""
        members = self._groups.get(room_id)
        if members is None:
            return
        members.discard(user_id)
        if not members:
            del self._groups[room_id]

    def get_members(self, room_id: str) -> set[str]:
        return set(self._groups.get(room_id, set()))

    # -- 广播 --
    async def broadcast(self, room_id: str, message: dict[str, Any]) -> None:
        """向房间分组广播消息，失败只记录日志。"""
        try:
            payload = json.dumps(message, ensure_ascii=False, default=str)
            await asyncio.wait_for(self._publish(room_id, payload), timeout=self.timeout)
        except Exception as exc:
            logger.warning(
                "房间消息发送失败: room=%s type=%s err=%r",
                room_id,
                message.get("type"),
                exc,
            )

    async def _publish(self, room_id: str, payload: str) -> None:
        redis_client = await self._redis_getter()
        if redis_client is not None:
            try:
                await redis_client.publish(room_channel(room_id), payload)
                return
            except RedisError as exc:
                logger.warning("Redis 发布失败，改为进程内投递: room=%s err=%s", room_id, exc)
        self.deliver_local(room_id, payload)

    def deliver_local(self, room_id: str, payload: str) -> int:
        """投递给本进程内该房间分组成员的所有连接，返回投递的队列数。"""
        delivered = 0
        for user_id in self.get_members(room_id):
            for queue in list(self._connections.get(user_id, ())):
                self._put_drop_oldest(queue, payload)
                delivered += 1
        return delivered

    @staticmethod
    def _put_drop_oldest(queue: asyncio.Queue, payload: str) -> None:
        """队列满时丢弃最旧的一条，保证慢连接不会阻塞广播。"""
        while True:
            try:
                queue.put_nowait(payload)
                return
            except asyncio.QueueFull:
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass

    # -- Redis 转发 --
    async def _relay_loop(self) -> None:
        """订阅 Redis 房间频道，把消息投递到本进程连接。

        订阅中断后按退避间隔重新订阅，只有任务被取消时才退出。
        """
        redis_client = await self._redis_getter()
        if redis_client is None:
            return

        delay = self.relay_retry_seconds
        while True:
            pubsub = redis_client.pubsub()
            try:
                await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
                logger.info("Redis 通知转发已启动")
                delay = self.relay_retry_seconds
                async for message in pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    channel = str(message.get("channel", ""))
                    room_id = channel.removeprefix(CHANNEL_PREFIX)
                    self.deliver_local(room_id, str(message.get("data", "")))
            except asyncio.CancelledError:
                logger.info("Redis 通知转发已停止")
                raise
            except RedisError as exc:
                logger.error("Redis 通知转发中断，%.1f 秒后重新订阅: %s", delay, exc, exc_info=True)
            finally:
                try:
                    await pubsub.aclose()
                except RedisError as exc:
                    logger.debug("关闭 Redis 订阅失败: %s", exc)

            await asyncio.sleep(delay)
            delay = min(delay * 2, RELAY_RETRY_MAX_SECONDS)

    def start_relay(self) -> None:
        if self._relay_task is not None and not self._relay_task.done():
            return
        self._relay_task = asyncio.create_task(self._relay_loop())

    def stop_relay(self) -> None:
        if self._relay_task is not None and not self._relay_task.done():
            self._relay_task.cancel()
        self._relay_task = None


# 全局通知网关
notification_gateway = NotificationGateway()
