"""房间接口控制器 - 创建、加入、落子、离开与 SSE 事件流。"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from gomoku.config import SSE_HEARTBEAT_INTERVAL_SECONDS
from gomoku.exceptions import ValidationError
from gomoku.services.notification_gateway import notification_gateway
from gomoku.services.room_service import room_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

SSE_RETRY_MILLISECONDS = 2000


class CreateRoomRequest(BaseModel):
    user_id: str = Field(..., max_length=64)
    nickname: str = Field(..., max_length=32)


class JoinRoomRequest(BaseModel):
    user_id: str = Field(..., max_length=64)
    nickname: str = Field(..., max_length=32)
    room_id: str = Field(..., max_length=64)


class MoveRequest(BaseModel):
    user_id: str = Field(..., max_length=64)
    room_id: str = Field(..., max_length=64)
    row: int
    col: int


class LeaveRoomRequest(BaseModel):
    user_id: str = Field(..., max_length=64)
    room_id: str = Field(default="", max_length=64)


def _require_text(value: str, field: str) -> str:
    """去除首尾空白，空值视为参数错误。"""
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{field} 不能为空", details={"field": field})
    return text


@router.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("/rooms/create")
async def create_room(payload: CreateRoomRequest) -> dict[str, Any]:
    """创建房间。"""
    room = await room_service.create_room(
        user_id=_require_text(payload.user_id, "user_id"),
        nickname=_require_text(payload.nickname, "nickname"),
    )
    return room.snapshot()


@router.get("/rooms")
async def list_rooms() -> list[dict[str, Any]]:
    """大厅房间列表。"""
    rooms = await room_service.list_rooms()
    return [room.snapshot() for room in rooms]


@router.get("/rooms/{room_id}")
async def get_room(room_id: str) -> dict[str, Any]:
    room = await room_service.get_room(room_id)
    return room.snapshot()


@router.post("/rooms/join")
async def join_room(payload: JoinRoomRequest) -> dict[str, Any]:
    """加入房间（玩家或旁观者）。"""
    room = await room_service.join_room(
        user_id=_require_text(payload.user_id, "user_id"),
        nickname=_require_text(payload.nickname, "nickname"),
        room_id=_require_text(payload.room_id, "room_id"),
    )
    return room.snapshot()


@router.post("/rooms/move")
async def make_move(payload: MoveRequest) -> dict[str, Any]:
    """落子。"""
    room = await room_service.make_move(
        user_id=_require_text(payload.user_id, "user_id"),
        room_id=_require_text(payload.room_id, "room_id"),
        row=payload.row,
        col=payload.col,
    )
    return room.snapshot()


@router.post("/rooms/leave")
async def leave_room(payload: LeaveRoomRequest) -> dict[str, Any]:
    """离开房间；不在房间内也视为成功。"""
    await room_service.leave_room(
        user_id=_require_text(payload.user_id, "user_id"),
        room_id=payload.room_id.strip() or None,
    )
    return {"success": True}


def _format_sse(message: str) -> str:
    """把网关消息（JSON 字符串）转为标准 SSE 格式。"""
    parsed = json.loads(message)
    event_name = parsed.get("type", "message")
    return f"event: {event_name}\ndata: {json.dumps(parsed, ensure_ascii=False)}\n\n"


@router.get("/rooms/{room_id}/events")
async def room_events(request: Request, room_id: str, user_id: str = Query(..., max_length=64)):
    """房间 SSE 事件流。

    建立连接即加入房间分组；该用户的最后一个连接断开时退出分组，并视为离开房间。
    """
    user_id = _require_text(user_id, "user_id")

    async def event_generator():
        queue = notification_gateway.connect(user_id)
        await notification_gateway.subscribe(user_id, room_id)
        try:
            yield f"retry: {SSE_RETRY_MILLISECONDS}\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT_INTERVAL_SECONDS)
                except asyncio.TimeoutError:
                    yield f"event: ping\ndata: {json.dumps({'type': 'ping'})}\n\n"
                    continue
                yield _format_sse(message)
        except asyncio.CancelledError:
            pass
        finally:
            notification_gateway.disconnect(user_id, queue)
            # 分组按用户登记，最后一个连接关闭时才退出
            if not notification_gateway.has_connection(user_id):
                await notification_gateway.unsubscribe(user_id, room_id)
                try:
                    await room_service.handle_disconnect(user_id)
                except Exception as exc:
                    logger.error("处理用户断开连接失败: user=%s err=%s", user_id, exc, exc_info=True)

    return StreamingResponse(event_generator(), media_type="text/event-stream")
