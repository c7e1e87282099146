"""Gap detection for a column after a card lands in it.

The check reads every other rank in the column. Columns are expected to stay
small enough that this full scan is cheaper than maintaining a neighbour index;
it is the scaling bound of the design.
"""
from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from .models import Card
from .storage import Storage, storage as default_storage


def rank_needs_repair(others: Iterable[float], rank: float, min_gap: float) -> bool:
    """True when ``rank`` collides with, or sits closer than ``min_gap`` to, a neighbour."""
    pred = None
    succ = None
    for other in others:
        if other == rank:
            return True
        if other < rank and (pred is None or other > pred):
            pred = other
        elif other > rank and (succ is None or other < succ):
            succ = other
    if pred is not None and rank - pred < min_gap:
        return True
    if succ is not None and succ - rank < min_gap:
        return True
    return False


class GapAnalyzer:
    def __init__(self, min_gap: float, storage: Storage = default_storage) -> None:
        self.min_gap = min_gap
        self.storage = storage

    def needs_rebalance(self, session: Session, column_id: str, moved_card: Card) -> bool:
        others = self.storage.other_ranks(session, column_id, moved_card.id)
        return rank_needs_repair(others, moved_card.rank, self.min_gap)
