"""房间服务 - 处理房间的创建、加入、落子、离开与状态流转。

状态机：waiting -> playing -> finished，另有对局中玩家离开时的 playing -> waiting。
finished 之后只能被删除。

每个操作都是「读取 -> 修改 -> 保存 -> 通知」，读写之间不加锁；
校验失败的操作不会写存储，通知失败不会影响操作结果。
"""

from __future__ import annotations

import logging

from gomoku.exceptions import InvalidStateError, RoomNotFoundError, WrongTurnError
from gomoku.models.game_room import (
    ACTIVE_STATUSES,
    DRAW_WINNER,
    STATUS_FINISHED,
    STATUS_PLAYING,
    STATUS_WAITING,
    Creator,
    Move,
    Player,
    Room,
    Spectator,
)
from gomoku.services import board as board_engine
from gomoku.services.notification_gateway import NotificationGateway, notification_gateway
from gomoku.services.room_repository import MongoRoomRepository, RoomRepository

logger = logging.getLogger(__name__)

MSG_ROOM_UPDATE = "room_update"
MSG_GAME_UPDATE = "game_update"
MSG_ROOM_DELETED = "room_deleted"

REASON_EMPTY = "empty"
REASON_INACTIVITY = "inactivity"


def room_deleted_message(room_id: str, reason: str) -> dict:
    return {"type": MSG_ROOM_DELETED, "data": {"room_id": room_id, "reason": reason}}


class RoomService:
    """房间生命周期管理。"""

    def __init__(self, repository: RoomRepository, gateway: NotificationGateway):
        self.repo = repository
        self.gateway = gateway

    async def get_room(self, room_id: str) -> Room:
        return await self.repo.get(room_id)

    async def list_rooms(self) -> list[Room]:
        """大厅房间列表（等待中与对局中）。"""
        return await self.repo.list_by_statuses(ACTIVE_STATUSES)

    async def create_room(self, user_id: str, nickname: str) -> Room:
        """创建房间，创建者执黑。

        用户已在其他房间时先让其离开，保证一个用户同时只在一个房间。
        """
        existing = await self.repo.find_by_user(user_id)
        if existing is not None:
            await self.leave_room(user_id, existing.id)

        room = Room(
            creator=Creator(user_id=user_id, nickname=nickname),
            players=[Player(user_id=user_id, nickname=nickname, color=board_engine.BLACK, is_ready=True)],
        )
        await self.repo.save(room, None)
        await self.gateway.subscribe(user_id, room.id)

        logger.info("房间已创建: room=%s number=%d creator=%s", room.id, room.room_number, user_id)
        return room

    async def join_room(self, user_id: str, nickname: str, room_id: str) -> Room:
        """加入房间。

        只有等待中的房间接受新玩家，新玩家取空出的颜色并开局；
        其余情况只能旁观，已结束的房间不会重新开局。
        """
        existing = await self.repo.find_by_user(user_id)
        if existing is not None and existing.id != room_id:
            await self.leave_room(user_id, existing.id)

        room = await self.repo.get(room_id)
        if room.has_member(user_id):
            return room

        previous_status = room.status
        if room.status != STATUS_WAITING or len(room.players) >= 2:
            room.spectators.append(Spectator(user_id=user_id, nickname=nickname))
        else:
            room.players.append(
                Player(user_id=user_id, nickname=nickname, color=self._free_color(room), is_ready=True)
            )
            if len(room.players) == 2:
                room.status = STATUS_PLAYING

        room.touch()
        await self.repo.save(room, previous_status)
        await self.gateway.subscribe(user_id, room.id)
        await self.gateway.broadcast(room.id, {"type": MSG_ROOM_UPDATE, "data": room.snapshot()})

        logger.info("用户加入房间: room=%s user=%s status=%s", room.id, user_id, room.status)
        return room

    async def make_move(self, user_id: str, room_id: str, row: int, col: int) -> Room:
        """落子，随后依次判定胜负与平局。"""
        room = await self.repo.get(room_id)
        if room.status != STATUS_PLAYING:
            raise InvalidStateError(
                f"房间当前状态为 {room.status}，不能落子",
                details={"room_id": room_id, "status": room.status},
            )

        mover = room.player_by_color(room.current_player)
        if mover is None or mover.user_id != user_id:
            raise WrongTurnError("还没轮到你", details={"room_id": room_id, "user_id": user_id})

        room.board = board_engine.apply_move(room.board, row, col, room.current_player)
        room.move_history.append(Move(row=row, col=col, player=room.current_player))

        previous_status = room.status
        if board_engine.check_win(room.board, row, col):
            room.status = STATUS_FINISHED
            room.winner = mover.nickname
        elif board_engine.check_draw(room.board):
            room.status = STATUS_FINISHED
            room.winner = DRAW_WINNER
        else:
            room.current_player = board_engine.opponent_of(room.current_player)

        room.touch()
        await self.repo.save(room, previous_status)

        logger.info("落子: room=%s user=%s at=(%d, %d) status=%s", room.id, user_id, row, col, room.status)
        await self.gateway.broadcast(room.id, {"type": MSG_GAME_UPDATE, "data": room.snapshot()})
        return room

    async def leave_room(self, user_id: str, room_id: str | None = None) -> None:
        """离开房间。

        房间 ID 失效时改按用户查找；两者都找不到或用户不在房间内时什么也不做。
        对战玩家全部离开后房间被销毁；对局中有人离开则房间回到等待状态并重置棋盘。
        """
        room = await self._find_room_for_leave(user_id, room_id)
        if room is None:
            return

        player = room.find_player(user_id)
        spectator = room.find_spectator(user_id)
        if player is None and spectator is None:
            return

        previous_status = room.status
        if player is not None:
            room.players.remove(player)
        else:
            room.spectators.remove(spectator)
        await self.gateway.unsubscribe(user_id, room.id)

        if not room.players:
            await self._destroy_room(room, previous_status)
            logger.info("房间已无玩家，已销毁: room=%s", room.id)
            return

        if room.status == STATUS_PLAYING and len(room.players) < 2:
            self._reset_to_waiting(room)

        room.touch()
        await self.repo.save(room, previous_status)
        await self.gateway.broadcast(room.id, {"type": MSG_ROOM_UPDATE, "data": room.snapshot()})
        logger.info("用户离开房间: room=%s user=%s status=%s", room.id, user_id, room.status)

    async def handle_disconnect(self, user_id: str) -> None:
        """实时连接断开时，让用户离开其所在房间。"""
        room = await self.repo.find_by_user(user_id)
        if room is not None:
            await self.leave_room(user_id, room.id)

    async def _find_room_for_leave(self, user_id: str, room_id: str | None) -> Room | None:
        if room_id:
            try:
                return await self.repo.get(room_id)
            except RoomNotFoundError:
                pass
        return await self.repo.find_by_user(user_id)

    async def _destroy_room(self, room: Room, status: str) -> None:
        """踢出全部旁观者、通知房间销毁并删除文档。"""
        for spectator in room.spectators:
            await self.gateway.unsubscribe(spectator.user_id, room.id)
        await self.gateway.broadcast(room.id, room_deleted_message(room.id, REASON_EMPTY))
        await self.repo.delete(room.id, status)

    @staticmethod
    def _free_color(room: Room) -> int:
        """新玩家的颜色：黑方空缺时执黑，否则执白。"""
        if room.player_by_color(board_engine.BLACK) is None:
            return board_engine.BLACK
        return board_engine.WHITE

    @staticmethod
    def _reset_to_waiting(room: Room) -> None:
        """对局中玩家离开：不判负，而是清空棋盘，剩下的玩家改执黑等待新对手。"""
        room.status = STATUS_WAITING
        room.board = board_engine.new_board()
        room.move_history = []
        room.current_player = board_engine.BLACK
        room.winner = None
        remaining = room.players[0]
        remaining.color = board_engine.BLACK
        remaining.is_ready = True


# 全局房间服务
room_service = RoomService(MongoRoomRepository(), notification_gateway)
