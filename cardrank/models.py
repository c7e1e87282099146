from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .schemas import CardOut
from .tokens import encode_token


# === Read snapshots handed out by the storage layer ===


@dataclass(frozen=True)
class Board:
    id: str
    name: str
    owner_id: str


@dataclass(frozen=True)
class Column:
    id: str
    board_id: str
    name: str
    wip_limit: Optional[int] = None


@dataclass(frozen=True)
class Card:
    id: str
    column_id: str
    name: str
    rank: float
    version: int
    created_at: datetime

    @property
    def concurrency_token(self) -> str:
        return encode_token(self.version)

    def to_out(self) -> CardOut:
        return CardOut(
            id=self.id,
            columnId=self.column_id,
            name=self.name,
            rank=self.rank,
            rowVersion=self.concurrency_token,
            createdAt=self.created_at,
        )

    def to_payload(self) -> dict:
        return self.to_out().model_dump(mode="json")
