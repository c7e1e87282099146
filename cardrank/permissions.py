from __future__ import annotations

from typing import Optional

from .errors import NotFound
from .models import Board, Column


def is_owner(board: Board, requester_id: str) -> bool:
    return board.owner_id == requester_id


def same_board(column_a: Column, column_b: Column) -> bool:
    """Silo check: both columns live on the same board."""
    return column_a.board_id == column_b.board_id


def ensure_board_owner(board: Optional[Board], board_id: str, requester_id: str) -> Board:
    # Missing and foreign boards look the same to the caller.
    if board is None or not is_owner(board, requester_id):
        raise NotFound("Board", board_id)
    return board
