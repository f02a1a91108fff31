"""不活跃房间清理服务 - 定期销毁长时间无操作的房间。"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from gomoku.config import CLEANUP_INTERVAL_SECONDS, ROOM_INACTIVITY_MINUTES
from gomoku.services.room_service import REASON_INACTIVITY, RoomService, room_deleted_message, room_service

logger = logging.getLogger(__name__)

# 上一轮清理未结束时跳过本轮
_sweep_lock = asyncio.Lock()


async def cleanup_inactive_rooms(
    service: RoomService | None = None,
    *,
    now: datetime | None = None,
    inactivity_minutes: int = ROOM_INACTIVITY_MINUTES,
) -> dict[str, int]:
    """清理最后活动时间早于阈值的房间。

    单个房间清理失败只记日志，继续处理其余房间。

    Returns:
        {"found": 候选房间数, "deleted": 成功删除数, "failed": 失败数}
    """
    service = service or room_service
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=inactivity_minutes)

    rooms = await service.repo.find_inactive(cutoff)
    stats = {"found": len(rooms), "deleted": 0, "failed": 0}
    if rooms:
        logger.info("找到 %d 个不活跃房间待清理（截止 %s）", len(rooms), cutoff.isoformat())

    for room in rooms:
        try:
            await service.gateway.broadcast(room.id, room_deleted_message(room.id, REASON_INACTIVITY))
            for user_id in room.member_ids():
                await service.gateway.unsubscribe(user_id, room.id)
            await service.repo.delete(room.id, room.status)
            stats["deleted"] += 1
            logger.info("已清理不活跃房间: room=%s status=%s", room.id, room.status)
        except Exception as exc:
            stats["failed"] += 1
            logger.error("清理房间 %s 失败: %s", room.id, exc, exc_info=True)

    return stats


async def run_cleanup_once(service: RoomService | None = None) -> dict[str, int] | None:
    """执行一轮清理；上一轮仍在运行时跳过并返回 None。"""
    if _sweep_lock.locked():
        logger.warning("上一轮房间清理尚未结束，跳过本轮")
        return None
    async with _sweep_lock:
        return await cleanup_inactive_rooms(service)


# 调度器任务引用
_cleanup_task: asyncio.Task | None = None


async def _cleanup_scheduler_loop(interval_seconds: float) -> None:
    """清理调度循环。"""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await run_cleanup_once()
        except asyncio.CancelledError:
            logger.info("房间清理调度器已停止")
            break
        except Exception as exc:
            logger.error("房间清理调度器异常: %s", exc, exc_info=True)


def start_cleanup_scheduler(interval_seconds: float = CLEANUP_INTERVAL_SECONDS) -> None:
    """启动房间清理调度器。"""
    global _cleanup_task
    if _cleanup_task is not None and not _cleanup_task.done():
        return
    _cleanup_task = asyncio.create_task(_cleanup_scheduler_loop(max(interval_seconds, 1)))
    logger.info("房间清理调度器已启动，间隔 %s 秒", interval_seconds)


def stop_cleanup_scheduler() -> None:
    """停止房间清理调度器。"""
    global _cleanup_task
    if _cleanup_task is not None and not _cleanup_task.done():
        _cleanup_task.cancel()
        logger.info("房间清理调度器已请求停止")
    _cleanup_task = None
