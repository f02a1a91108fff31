"""五子棋棋盘规则：落子校验、胜负与平局判定。

这里只有纯函数，不做任何 I/O，方便单独测试。
"""

from __future__ import annotations

from gomoku.exceptions import IllegalMoveError

BOARD_SIZE = 15
WIN_LENGTH = 5

EMPTY = 0
BLACK = 1
WHITE = 2

Board = list[list[int]]

# 每条轴线上的两个相反方向：水平、垂直、主对角线、副对角线
AXES: tuple[tuple[tuple[int, int], tuple[int, int]], ...] = (
    ((0, 1), (0, -1)),
    ((1, 0), (-1, 0)),
    ((1, 1), (-1, -1)),
    ((1, -1), (-1, 1)),
)


def new_board() -> Board:
    """生成 15x15 的空棋盘。"""
    return [[EMPTY] * BOARD_SIZE for _ in range(BOARD_SIZE)]


def in_bounds(row: int, col: int) -> bool:
    return 0 <= row < BOARD_SIZE and 0 <= col < BOARD_SIZE


def apply_move(board: Board, row: int, col: int, player: int) -> Board:
    """落子并返回新棋盘，原棋盘不被修改。

    Raises:
        IllegalMoveError: 坐标越界、位置已有棋子或棋子颜色无效
    """
    if player not in (BLACK, WHITE):
        raise IllegalMoveError(f"无效的棋子颜色: {player}", details={"player": player})
    if not in_bounds(row, col):
        raise IllegalMoveError(
            f"落子位置越界: ({row}, {col})",
            details={"row": row, "col": col},
        )
    if board[row][col] != EMPTY:
        raise IllegalMoveError(
            f"该位置已有棋子: ({row}, {col})",
            details={"row": row, "col": col},
        )

    updated = [list(line) for line in board]
    updated[row][col] = player
    return updated


def _count_direction(board: Board, row: int, col: int, step: tuple[int, int], player: int) -> int:
    """沿一个方向统计连续同色棋子数（不含起点，最多 4 步）。"""
    d_row, d_col = step
    count = 0
    for i in range(1, WIN_LENGTH):
        r = row + d_row * i
        c = col + d_col * i
        if not in_bounds(r, c) or board[r][c] != player:
            break
        count += 1
    return count


def check_win(board: Board, row: int, col: int) -> bool:
    """判断刚落下的棋子是否形成五连。"""
    player = board[row][col]
    if player == EMPTY:
        return False

    for forward, backward in AXES:
        count = 1
        count += _count_direction(board, row, col, forward, player)
        count += _count_direction(board, row, col, backward, player)
        if count >= WIN_LENGTH:
            return True
    return False


def check_draw(board: Board) -> bool:
    """棋盘已满即为平局；调用方需先确认没有获胜。"""
    return all(cell != EMPTY for line in board for cell in line)


def count_stones(board: Board) -> int:
    return sum(1 for line in board for cell in line if cell != EMPTY)


def opponent_of(player: int) -> int:
    return WHITE if player == BLACK else BLACK
