"""模型集合。"""

from .game_room import (
    ACTIVE_STATUSES,
    DRAW_WINNER,
    ROOM_STATUSES,
    Creator,
    GameRoomDocument,
    Move,
    Player,
    Room,
    RoomStatus,
    Spectator,
)

__all__ = [
    "ACTIVE_STATUSES",
    "DRAW_WINNER",
    "ROOM_STATUSES",
    "Creator",
    "GameRoomDocument",
    "Move",
    "Player",
    "Room",
    "RoomStatus",
    "Spectator",
]
