"""业务异常定义。

服务层抛出这些异常，由 HTTP 层统一转换为错误响应。
"""

from __future__ import annotations

from typing import Any


class GomokuError(Exception):
    """所有业务异常的基类。"""

    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class RoomNotFoundError(GomokuError):
    """房间不存在。"""

    status_code = 404


class InvalidStateError(GomokuError):
    """当前房间状态不允许该操作。"""

    status_code = 409


class WrongTurnError(GomokuError):
    """不是该玩家的回合。"""

    status_code = 409


class IllegalMoveError(GomokuError):
    """落子坐标越界或位置已被占用。"""

    status_code = 400


class StorageError(GomokuError):
    """文档存储读写失败。"""

    status_code = 503


class ValidationError(GomokuError):
    """请求参数不合法。"""

    status_code = 422
