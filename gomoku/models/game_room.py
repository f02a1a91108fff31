"""五子棋房间模型。

`Room` 是服务层使用的领域对象；`GameRoomDocument` 是它在 MongoDB 中的持久化形态，
两者字段一致，由仓储层负责互相转换。
"""

from __future__ import annotations

import random
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from beanie import Document
from pymongo import DESCENDING, IndexModel
from pydantic import BaseModel, Field

from gomoku.services.board import BLACK, Board, new_board

RoomStatus = Literal["waiting", "playing", "finished"]

STATUS_WAITING: RoomStatus = "waiting"
STATUS_PLAYING: RoomStatus = "playing"
STATUS_FINISHED: RoomStatus = "finished"

# 按分区扫描时的顺序
ROOM_STATUSES: tuple[RoomStatus, ...] = (STATUS_WAITING, STATUS_PLAYING, STATUS_FINISHED)
ACTIVE_STATUSES: tuple[RoomStatus, ...] = (STATUS_WAITING, STATUS_PLAYING)

DRAW_WINNER = "平局"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_room_id() -> str:
    """生成房间唯一 ID。"""
    return str(uuid.uuid4())


def generate_room_number() -> int:
    """生成 4 位房间号（不保证唯一，仅用于展示）。"""
    return random.randint(1000, 9999)


class Creator(BaseModel):
    """房间创建者。"""

    user_id: str
    nickname: str


class Player(BaseModel):
    """对战玩家，color 1 为黑子，2 为白子。"""

    user_id: str
    nickname: str
    color: int = Field(default=BLACK, ge=1, le=2)
    is_ready: bool = True


class Spectator(BaseModel):
    """旁观者。"""

    user_id: str
    nickname: str
    join_time: datetime = Field(default_factory=utc_now)


class Move(BaseModel):
    """落子记录。"""

    row: int
    col: int
    player: int


class Room(BaseModel):
    """游戏房间。"""

    id: str = Field(default_factory=generate_room_id)
    room_number: int = Field(default_factory=generate_room_number)
    creator: Creator
    players: list[Player] = Field(default_factory=list, max_length=2)
    spectators: list[Spectator] = Field(default_factory=list)
    board: Board = Field(default_factory=new_board)
    current_player: int = BLACK
    status: RoomStatus = STATUS_WAITING
    move_history: list[Move] = Field(default_factory=list)
    winner: str | None = None
    create_time: datetime = Field(default_factory=utc_now)
    update_time: datetime = Field(default_factory=utc_now)
    last_action_time: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_document(cls, document: Any) -> Room:
        return cls.model_validate(document, from_attributes=True)

    def find_player(self, user_id: str) -> Player | None:
        return next((p for p in self.players if p.user_id == user_id), None)

    def find_spectator(self, user_id: str) -> Spectator | None:
        return next((s for s in self.spectators if s.user_id == user_id), None)

    def has_member(self, user_id: str) -> bool:
        return self.find_player(user_id) is not None or self.find_spectator(user_id) is not None

    def player_by_color(self, color: int) -> Player | None:
        return next((p for p in self.players if p.color == color), None)

    def member_ids(self) -> list[str]:
        """玩家与旁观者的 user_id 列表。"""
        return [p.user_id for p in self.players] + [s.user_id for s in self.spectators]

    def touch(self) -> None:
        """刷新更新时间与最后活动时间。"""
        now = utc_now()
        self.update_time = now
        self.last_action_time = now

    def snapshot(self) -> dict[str, Any]:
        """用于接口响应与实时推送的 JSON 快照。"""
        return self.model_dump(mode="json")


class GameRoomDocument(Document):
    """房间在 MongoDB 中的文档，status 同时作为分区键。"""

    id: str = Field(default_factory=generate_room_id)
    room_number: int
    creator: Creator
    players: list[Player] = Field(default_factory=list)
    spectators: list[Spectator] = Field(default_factory=list)
    board: Board = Field(default_factory=new_board)
    current_player: int = BLACK
    status: RoomStatus = STATUS_WAITING
    move_history: list[Move] = Field(default_factory=list)
    winner: str | None = None
    create_time: datetime = Field(default_factory=utc_now)
    update_time: datetime = Field(default_factory=utc_now)
    last_action_time: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "game_rooms"
        indexes = [
            IndexModel([("status", 1), ("create_time", DESCENDING)], name="idx_room_status_created"),
            IndexModel([("last_action_time", 1)], name="idx_room_last_action"),
            IndexModel([("players.user_id", 1)], name="idx_room_player_user"),
            IndexModel([("spectators.user_id", 1)], name="idx_room_spectator_user"),
        ]

    @classmethod
    def from_room(cls, room: Room) -> GameRoomDocument:
        return cls(**room.model_dump())
