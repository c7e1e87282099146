"""Column renumbering.

A pass reads the column in ``(rank, created_at)`` order and rewrites every
rank as a multiple of the configured spacing. Each row's version is re-read
right before its conditional write, so the pass only notices writers that
touch a row inside that window. Cards inserted into the column while a pass
runs may keep their old rank until the next move triggers another pass.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .config import RankSettings
from .context import CallContext
from .errors import RebalanceFailed
from .gaps import GapAnalyzer
from .models import Card
from .notifier import Notifier
from .storage import Storage, storage as default_storage

logger = logging.getLogger(__name__)


class RebalanceState(str, enum.Enum):
    IDLE = "idle"
    READING = "reading"
    ASSIGNING = "assigning"
    COMMITTING = "committing"
    CONFLICT_RETRY = "conflict_retry"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RebalanceOutcome:
    column_id: str
    state: RebalanceState
    attempts: int
    card_count: int


class BatchConflict(Exception):
    """A row changed under the pass; the whole batch must be discarded."""

    def __init__(self, card_id: str) -> None:
        super().__init__(card_id)
        self.card_id = card_id


class Rebalancer:
    def __init__(self, settings: RankSettings, notifier: Notifier, storage: Storage = default_storage) -> None:
        self.settings = settings
        self.notifier = notifier
        self.storage = storage
        self.analyzer = GapAnalyzer(settings.min_gap, storage)

    def check_and_rebalance(
        self, session: Session, ctx: CallContext, column_id: str, moved_card: Card
    ) -> Optional[RebalanceOutcome]:
        if not self.analyzer.needs_rebalance(session, column_id, moved_card):
            return None
        return self.rebalance(session, ctx, column_id)

    def rebalance(self, session: Session, ctx: CallContext, column_id: str) -> RebalanceOutcome:
        max_attempts = self.settings.max_attempts
        self._enter(column_id, RebalanceState.IDLE)
        for attempt in range(1, max_attempts + 1):
            ctx.raise_if_cancelled()
            try:
                count = self._run_pass(session, column_id)
            except BatchConflict as exc:
                session.rollback()
                logger.warning(
                    "Concurrency conflict during rebalancing (column %s, card %s). Attempt %d of %d.",
                    column_id, exc.card_id, attempt, max_attempts,
                )
                if attempt < max_attempts:
                    self._enter(column_id, RebalanceState.CONFLICT_RETRY)
                    ctx.sleep(self.settings.retry_base_delay * attempt)
                continue
            except Exception:
                session.rollback()
                raise
            self._enter(column_id, RebalanceState.DONE)
            self._notify(session, column_id)
            return RebalanceOutcome(column_id, RebalanceState.DONE, attempt, count)

        self._enter(column_id, RebalanceState.FAILED)
        logger.error("Rebalancing column %s gave up after %d attempts", column_id, max_attempts)
        raise RebalanceFailed(column_id, max_attempts)

    def _run_pass(self, session: Session, column_id: str) -> int:
        self._enter(column_id, RebalanceState.READING)
        cards = self.storage.ordered_cards(session, column_id)
        logger.info(
            "Rebalancing column %s (count: %d). Gap < min gap (%s). Spacing used: %s.",
            column_id, len(cards), self.settings.min_gap, self.settings.spacing,
        )
        self._enter(column_id, RebalanceState.ASSIGNING)
        for index, card in enumerate(cards):
            version = self.storage.current_version(session, card.id)
            if version is None:
                raise BatchConflict(card.id)
            rank = self.settings.spacing * (index + 1)
            if self.storage.set_rank_if_version(session, card.id, column_id, version, rank) != 1:
                raise BatchConflict(card.id)
        self._enter(column_id, RebalanceState.COMMITTING)
        session.commit()
        return len(cards)

    def _notify(self, session: Session, column_id: str) -> None:
        board_id = self.storage.column_board_id(session, column_id)
        if board_id is not None:
            self.notifier.column_rebalanced(board_id, column_id)

    @staticmethod
    def _enter(column_id: str, state: RebalanceState) -> None:
        logger.debug("Rebalance of column %s -> %s", column_id, state.value)
