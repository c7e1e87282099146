"""Best-effort change notifications.

Events go to topics named after the board. Nothing here guarantees delivery or
ordering, and a topic without subscribers simply drops the event.
"""
from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Protocol

from sqlalchemy.orm import Session

from .models import Card
from .permissions import ensure_board_owner
from .schemas import ColumnRebalancedOut
from .storage import Storage, storage as default_storage

logger = logging.getLogger(__name__)

CARD_MOVED = "moved"
COLUMN_REBALANCED = "rebalanced"


def board_topic(board_id: str) -> str:
    return f"Board_{board_id}"


def rebalance_topic(board_id: str) -> str:
    return f"BoardRebalance_{board_id}"


TOPICS = {CARD_MOVED: board_topic, COLUMN_REBALANCED: rebalance_topic}

# Seconds between keep-alive comments on an idle feed.
FEED_KEEPALIVE = 15.0


class Broker(Protocol):
    def publish(self, topic: str, payload: Any) -> None: ...

    def subscribe(self, topic: str) -> queue.Queue: ...

    def unsubscribe(self, topic: str, q: queue.Queue) -> None: ...


class InMemoryBroker:
    """Topic fan-out to in-process subscriber queues."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[queue.Queue]] = {}

    def subscribe(self, topic: str) -> queue.Queue:
        q: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.setdefault(topic, []).append(q)
        return q

    def unsubscribe(self, topic: str, q: queue.Queue) -> None:
        with self._lock:
            subscribers = self._subscribers.get(topic, [])
            if q in subscribers:
                subscribers.remove(q)
            if not subscribers:
                self._subscribers.pop(topic, None)

    def publish(self, topic: str, payload: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(topic, ()))
        for q in subscribers:
            q.put_nowait(payload)


class Notifier:
    def __init__(self, broker: Broker, storage: Storage = default_storage) -> None:
        self.broker = broker
        self.storage = storage

    def card_moved(self, board_id: str, card: Card) -> None:
        self._publish(board_topic(board_id), card.to_payload())

    def column_rebalanced(self, board_id: str, column_id: str) -> None:
        payload = ColumnRebalancedOut(columnId=column_id, timestamp=datetime.now(timezone.utc))
        self._publish(rebalance_topic(board_id), payload.model_dump(mode="json"))

    def open_board_feed(self, session: Session, board_id: str, requester_id: str, kind: str = CARD_MOVED) -> queue.Queue:
        """Subscribe the requester to one of a board's event streams.

        Only the board owner may listen; anyone else gets the same
        ``NotFound`` as for a board that does not exist.
        """
        if kind not in TOPICS:
            raise ValueError(f"unknown feed kind: {kind}")
        ensure_board_owner(self.storage.get_board(session, board_id), board_id, requester_id)
        return self.broker.subscribe(TOPICS[kind](board_id))

    def stream_board_feed(
        self,
        board_id: str,
        feed: queue.Queue,
        kind: str = CARD_MOVED,
        limit: Optional[int] = None,
        keepalive: float = FEED_KEEPALIVE,
    ) -> Iterator[str]:
        """Render an open feed as server-sent events.

        Stops after ``limit`` events when one is given. The feed is
        unsubscribed however the stream ends, including a client going away.
        """
        topic = TOPICS[kind](board_id)
        sent = 0
        try:
            while limit is None or sent < limit:
                try:
                    payload = feed.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {kind}\ndata: {json.dumps(payload)}\n\n"
                sent += 1
        finally:
            self.broker.unsubscribe(topic, feed)
            logger.debug("Closed %s feed for board %s after %d events", kind, board_id, sent)

    def _publish(self, topic: str, payload: dict) -> None:
        try:
            self.broker.publish(topic, payload)
        except Exception:
            logger.exception("Failed to publish event to %s", topic)
