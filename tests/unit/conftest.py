"""单元测试 fixture：内存仓储与可记录消息的通知网关。"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import pytest

from gomoku.exceptions import RoomNotFoundError, StorageError
from gomoku.models.game_room import ROOM_STATUSES, Room
from gomoku.services.notification_gateway import NotificationGateway
from gomoku.services.room_service import RoomService


class InMemoryRoomRepository:
    """按 (status, id) 存储房间副本的内存仓储，行为与 Mongo 仓储一致。"""

    def __init__(self) -> None:
        self.partitions: dict[str, dict[str, dict[str, Any]]] = {status: {} for status in ROOM_STATUSES}
        self.saves: list[tuple[str, str | None, str]] = []
        self.fail_create = False

    def _load(self, data: dict[str, Any]) -> Room:
        return Room.model_validate(data)

    async def get(self, room_id: str) -> Room:
        for status in ROOM_STATUSES:
            data = self.partitions[status].get(room_id)
            if data is not None:
                return self._load(data)
        raise RoomNotFoundError(f"房间不存在: {room_id}")

    async def list_by_statuses(self, statuses: Iterable[str]) -> list[Room]:
        rooms: list[Room] = []
        for status in statuses:
            partition = sorted(self.partitions[status].values(), key=lambda d: d["create_time"], reverse=True)
            rooms.extend(self._load(data) for data in partition)
        return rooms

    async def find_by_user(self, user_id: str) -> Room | None:
        for status in ROOM_STATUSES:
            for data in self.partitions[status].values():
                room = self._load(data)
                if room.has_member(user_id):
                    return room
        return None

    async def find_inactive(self, cutoff: datetime) -> list[Room]:
        return [
            self._load(data)
            for status in ROOM_STATUSES
            for data in self.partitions[status].values()
            if data["last_action_time"] < cutoff
        ]

    async def save(self, room: Room, previous_status: str | None = None) -> Room:
        self.saves.append((room.id, previous_status, room.status))
        if previous_status is not None and previous_status != room.status:
            await self.delete(room.id, previous_status)
        if self.fail_create and previous_status != room.status:
            raise StorageError(f"创建房间失败: {room.id}")
        self.partitions[room.status][room.id] = room.model_dump()
        return room

    async def delete(self, room_id: str, status: str) -> None:
        self.partitions[status].pop(room_id, None)

    def all_rooms(self) -> list[Room]:
        return [self._load(data) for status in ROOM_STATUSES for data in self.partitions[status].values()]

    def put(self, room: Room) -> None:
        """直接写入，用于准备测试数据。"""
        self.partitions[room.status][room.id] = room.model_dump()


class RecordingGateway(NotificationGateway):
    """记录广播与分组变更的网关，仍走真实的进程内投递。"""

    def __init__(self) -> None:
        super().__init__(queue_maxsize=10, timeout=1.0, redis_getter=_no_redis)
        self.messages: list[tuple[str, dict[str, Any]]] = []
        self.unsubscribed: list[tuple[str, str]] = []

    async def broadcast(self, room_id: str, message: dict[str, Any]) -> None:
        self.messages.append((room_id, message))
        await super().broadcast(room_id, message)

    async def unsubscribe(self, user_id: str, room_id: str) -> None:
        self.unsubscribed.append((user_id, room_id))
        await super().unsubscribe(user_id, room_id)

    def types_for(self, room_id: str) -> list[str]:
        return [message["type"] for rid, message in self.messages if rid == room_id]


async def _no_redis():
    return None


@pytest.fixture
def repo() -> InMemoryRoomRepository:
    return InMemoryRoomRepository()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def service(repo: InMemoryRoomRepository, gateway: RecordingGateway) -> RoomService:
    return RoomService(repo, gateway)
