from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Optional

from sqlalchemy.orm import Session

from .config import RankSettings
from .context import CallContext
from .errors import Conflict, DomainViolation, NotFound, RebalanceFailed, RequestCancelled, ValidationFailed
from .models import Card, Column
from .notifier import Notifier
from .permissions import is_owner, same_board
from .rebalance import Rebalancer
from .storage import Storage, storage as default_storage
from .tokens import TOKEN_SPACE, decode_token

logger = logging.getLogger(__name__)


class MoveOrchestrator:
    """Entry point for moving a card to a column and rank.

    Every check runs before the single conditional write, so a rejected move
    leaves the store untouched. Once the write commits, a failure while
    repairing the column's ordering is reported but never undoes the move.
    """

    def __init__(self, settings: RankSettings, notifier: Notifier, storage: Storage = default_storage) -> None:
        self.storage = storage
        self.notifier = notifier
        self.rebalancer = Rebalancer(settings, notifier, storage)

    def move(
        self,
        session: Session,
        ctx: CallContext,
        card_id: str,
        target_column_id: str,
        requested_rank: float,
        client_token: Optional[str],
        requester_id: str,
    ) -> Card:
        if not math.isfinite(requested_rank) or requested_rank < 0:
            raise ValidationFailed("rank", "Rank must be a finite number greater than or equal to 0.")

        loaded = self.storage.load_card(session, card_id)
        if loaded is None:
            raise NotFound("Card", card_id)
        card, column, board = loaded
        if not is_owner(board, requester_id):
            # Indistinguishable from a missing card on purpose.
            raise NotFound("Card", card_id)

        target = self.storage.load_column(session, target_column_id)
        if target is None:
            raise NotFound("Column", target_column_id)
        target_column, _ = target
        if not same_board(column, target_column):
            raise DomainViolation("Cannot move card to a column on a different board (cross-board move).")

        expected_version = decode_token(client_token)

        ctx.raise_if_cancelled()
        moved = self._commit_move(session, card, expected_version, target_column_id, requested_rank)
        logger.info(
            "Moved card %s from column %s to %s at rank %s", card_id, column.id, target_column_id, requested_rank
        )
        self._warn_over_wip_limit(session, target_column)

        try:
            ctx.raise_if_cancelled()
            self.rebalancer.check_and_rebalance(session, ctx, target_column_id, moved)
        except (RebalanceFailed, RequestCancelled) as exc:
            snapshot = self._reload(session, moved)
            if isinstance(exc, RebalanceFailed):
                exc.card = snapshot
            self.notifier.card_moved(board.id, snapshot)
            raise

        snapshot = self._reload(session, moved)
        self.notifier.card_moved(board.id, snapshot)
        return snapshot

    def _commit_move(
        self, session: Session, card: Card, expected_version: int, column_id: str, rank: float
    ) -> Card:
        try:
            affected = self.storage.move_card_if_version(session, card.id, expected_version, column_id, rank)
        except Exception:
            session.rollback()
            raise
        if affected != 1:
            session.rollback()
            raise Conflict("Card was modified by another operation. Please reload.")
        session.commit()
        return replace(card, column_id=column_id, rank=rank, version=(expected_version + 1) % TOKEN_SPACE)

    def _reload(self, session: Session, fallback: Card) -> Card:
        return self.storage.get_card(session, fallback.id) or fallback

    def _warn_over_wip_limit(self, session: Session, column: Column) -> None:
        if column.wip_limit is None:
            return
        count = self.storage.count_cards(session, column.id)
        if count > column.wip_limit:
            logger.warning(
                "Column %s holds %d cards, over its WIP limit of %d", column.id, count, column.wip_limit
            )
