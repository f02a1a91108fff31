"""房间仓储：按 status 分区存储房间文档。

status 同时是分区键，文档一旦写入其分区就不能原地修改 status，
因此状态变化的保存被拆成两步：先从旧分区删除，再在新分区创建。
两步之间没有事务，第二步失败时房间会暂时不可见，错误照常向上抛出。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from beanie.exceptions import DocumentNotFound
from pymongo.errors import PyMongoError

from gomoku.exceptions import RoomNotFoundError, StorageError
from gomoku.models.game_room import ROOM_STATUSES, GameRoomDocument, Room, RoomStatus

logger = logging.getLogger(__name__)


class RoomRepository(Protocol):
    """房间服务依赖的仓储接口。"""

    async def get(self, room_id: str) -> Room: ...

    async def list_by_statuses(self, statuses: Iterable[RoomStatus]) -> list[Room]: ...

    async def find_by_user(self, user_id: str) -> Room | None: ...

    async def find_inactive(self, cutoff: datetime) -> list[Room]: ...

    async def save(self, room: Room, previous_status: RoomStatus | None = None) -> Room: ...

    async def delete(self, room_id: str, status: RoomStatus) -> None: ...


def _member_filter(user_id: str) -> dict:
    return {"$or": [{"players.user_id": user_id}, {"spectators.user_id": user_id}]}


class MongoRoomRepository:
    """基于 Beanie 的房间仓储实现。"""

    def __init__(self, document_model: type[GameRoomDocument] = GameRoomDocument) -> None:
        self.document_model = document_model

    async def get(self, room_id: str) -> Room:
        """按 ID 查找房间，调用方不知道当前状态，因此逐个分区点查。"""
        for status in ROOM_STATUSES:
            try:
                document = await self.document_model.find_one({"_id": room_id, "status": status})
            except PyMongoError as exc:
                raise StorageError(f"查询房间失败: {room_id}", details={"room_id": room_id}) from exc
            if document is not None:
                return Room.from_document(document)
        raise RoomNotFoundError(f"房间不存在: {room_id}", details={"room_id": room_id})

    async def list_by_statuses(self, statuses: Iterable[RoomStatus]) -> list[Room]:
        """按分区列出房间，分区内按创建时间倒序。"""
        rooms: list[Room] = []
        for status in statuses:
            try:
                documents = await self.document_model.find({"status": status}).sort("-create_time").to_list()
            except PyMongoError as exc:
                raise StorageError(f"查询 {status} 房间列表失败") from exc
            rooms.extend(Room.from_document(document) for document in documents)
        return rooms

    async def find_by_user(self, user_id: str) -> Room | None:
        """查找用户（玩家或旁观者）所在的房间，返回第一个匹配。"""
        for status in ROOM_STATUSES:
            try:
                document = await self.document_model.find_one({"status": status, **_member_filter(user_id)})
            except PyMongoError as exc:
                raise StorageError(f"查询用户所在房间失败: {user_id}", details={"user_id": user_id}) from exc
            if document is not None:
                return Room.from_document(document)
        return None

    async def find_inactive(self, cutoff: datetime) -> list[Room]:
        """跨所有分区查找最后活动时间早于 cutoff 的房间。"""
        try:
            documents = await self.document_model.find({"last_action_time": {"$lt": cutoff}}).to_list()
        except PyMongoError as exc:
            raise StorageError("查询不活跃房间失败") from exc
        return [Room.from_document(document) for document in documents]

    async def save(self, room: Room, previous_status: RoomStatus | None = None) -> Room:
        """保存房间。

        - previous_status 为 None：新建
        - 与当前 status 相同：在原分区内整体替换
        - 不同：先删旧分区文档，再在新分区创建
        """
        if previous_status is None:
            await self._create(room)
            return room

        if previous_status == room.status:
            document = self.document_model.from_room(room)
            try:
                await self.document_model.find_one({"_id": room.id, "status": previous_status}).replace_one(document)
            except DocumentNotFound as exc:
                raise RoomNotFoundError(f"房间已不在 {previous_status} 分区: {room.id}", details={"room_id": room.id}) from exc
            except PyMongoError as exc:
                raise StorageError(f"更新房间失败: {room.id}", details={"room_id": room.id}) from exc
            return room

        await self.delete(room.id, previous_status)
        try:
            await self._create(room)
        except StorageError:
            logger.error(
                "房间 %s 已从 %s 分区删除，但写入 %s 分区失败，房间暂时不可见",
                room.id,
                previous_status,
                room.status,
                exc_info=True,
            )
            raise
        return room

    async def delete(self, room_id: str, status: RoomStatus) -> None:
        """从指定分区删除房间，文档不存在时不做任何事。"""
        try:
            await self.document_model.find({"_id": room_id, "status": status}).delete_many()
        except PyMongoError as exc:
            raise StorageError(f"删除房间失败: {room_id}", details={"room_id": room_id}) from exc

    async def _create(self, room: Room) -> None:
        document = self.document_model.from_room(room)
        try:
            await document.insert()
        except PyMongoError as exc:
            raise StorageError(f"创建房间失败: {room.id}", details={"room_id": room.id}) from exc
