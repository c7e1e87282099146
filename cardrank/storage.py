from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from . import db
from .models import Board, Card, Column
from .tokens import TOKEN_SPACE


_CARD_FIELDS = (
    db.Card.id,
    db.Card.column_id,
    db.Card.name,
    db.Card.rank,
    db.Card.version,
    db.Card.created_at,
)
_COLUMN_FIELDS = (db.ColumnModel.id, db.ColumnModel.board_id, db.ColumnModel.name, db.ColumnModel.wip_limit)
_BOARD_FIELDS = (db.Board.id, db.Board.name, db.Board.owner_id)


def _card(row) -> Card:
    return Card(*row[:6])


def _column(row) -> Column:
    return Column(*row[:4])


def _board(row) -> Board:
    return Board(*row[:3])


class Storage:
    """Row-level reads and compare-and-swap writes against the SQL store.

    Every method takes the caller's session; nothing here holds state between
    calls. Reads select plain columns so each call sees the database's current
    values rather than objects cached in the session.
    """

    # === Point reads ===
    def get_card(self, session: Session, card_id: str) -> Optional[Card]:
        row = session.execute(select(*_CARD_FIELDS).where(db.Card.id == card_id)).first()
        return _card(row) if row else None

    def get_board(self, session: Session, board_id: str) -> Optional[Board]:
        row = session.execute(select(*_BOARD_FIELDS).where(db.Board.id == board_id)).first()
        return _board(row) if row else None

    def load_card(self, session: Session, card_id: str) -> Optional[tuple[Card, Column, Board]]:
        """Card together with its current column and board."""
        row = session.execute(
            select(*_CARD_FIELDS, *_COLUMN_FIELDS, *_BOARD_FIELDS)
            .join(db.ColumnModel, db.ColumnModel.id == db.Card.column_id)
            .join(db.Board, db.Board.id == db.ColumnModel.board_id)
            .where(db.Card.id == card_id)
        ).first()
        if row is None:
            return None
        return _card(row[:6]), _column(row[6:10]), _board(row[10:])

    def load_column(self, session: Session, column_id: str) -> Optional[tuple[Column, Board]]:
        row = session.execute(
            select(*_COLUMN_FIELDS, *_BOARD_FIELDS)
            .join(db.Board, db.Board.id == db.ColumnModel.board_id)
            .where(db.ColumnModel.id == column_id)
        ).first()
        if row is None:
            return None
        return _column(row[:4]), _board(row[4:])

    def column_board_id(self, session: Session, column_id: str) -> Optional[str]:
        return session.execute(
            select(db.ColumnModel.board_id).where(db.ColumnModel.id == column_id)
        ).scalar_one_or_none()

    def current_version(self, session: Session, card_id: str) -> Optional[int]:
        return session.execute(
            select(db.Card.version).where(db.Card.id == card_id)
        ).scalar_one_or_none()

    # === Column scans ===
    def other_ranks(self, session: Session, column_id: str, exclude_card_id: str) -> list[float]:
        return list(
            session.execute(
                select(db.Card.rank)
                .where(db.Card.column_id == column_id, db.Card.id != exclude_card_id)
                .order_by(db.Card.rank)
            ).scalars()
        )

    def ordered_cards(self, session: Session, column_id: str) -> list[Card]:
        rows = session.execute(
            select(*_CARD_FIELDS)
            .where(db.Card.column_id == column_id)
            .order_by(db.Card.rank, db.Card.created_at, db.Card.id)
        )
        return [_card(r) for r in rows]

    def count_cards(self, session: Session, column_id: str) -> int:
        return session.execute(
            select(func.count()).select_from(db.Card).where(db.Card.column_id == column_id)
        ).scalar_one()

    # === Conditional writes; each returns the number of rows affected ===
    def move_card_if_version(
        self,
        session: Session,
        card_id: str,
        expected_version: int,
        column_id: str,
        rank: float,
    ) -> int:
        result = session.execute(
            update(db.Card)
            .where(db.Card.id == card_id, db.Card.version == expected_version)
            .values(column_id=column_id, rank=rank, version=(db.Card.version + 1) % TOKEN_SPACE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def set_rank_if_version(
        self,
        session: Session,
        card_id: str,
        column_id: str,
        expected_version: int,
        rank: float,
    ) -> int:
        result = session.execute(
            update(db.Card)
            .where(
                db.Card.id == card_id,
                db.Card.column_id == column_id,
                db.Card.version == expected_version,
            )
            .values(rank=rank, version=(db.Card.version + 1) % TOKEN_SPACE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


storage = Storage()
