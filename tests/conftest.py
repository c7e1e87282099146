"""Shared fixtures: an in-memory database per test and row builders."""

import uuid
from datetime import datetime, timedelta

import pytest

from cardrank import db
from cardrank.config import RankSettings
from cardrank.notifier import InMemoryBroker, Notifier
from cardrank.storage import Storage

BASE_TIME = datetime(2026, 1, 1, 9, 0, 0)


@pytest.fixture
def engine():
    engine = db.make_engine("sqlite://")
    db.init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.make_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def rank_settings():
    return RankSettings(min_gap=1.0, spacing=1000.0, max_attempts=3, retry_base_delay=0)


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def notifier(broker):
    return Notifier(broker)


class Builder:
    """Seeds boards, columns and cards directly through the ORM."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._tick = 0

    def _add(self, row):
        row_id = row.id
        with self.session_factory() as session:
            session.add(row)
            session.commit()
        return row_id

    def board(self, owner="u", name="Board"):
        return self._add(db.Board(id=str(uuid.uuid4()), name=name, owner_id=owner))

    def column(self, board_id, name="Todo", wip_limit=None):
        return self._add(db.ColumnModel(id=str(uuid.uuid4()), board_id=board_id, name=name, wip_limit=wip_limit))

    def card(self, column_id, rank, name="Card", version=1, created_at=None):
        if created_at is None:
            self._tick += 1
            created_at = BASE_TIME + timedelta(seconds=self._tick)
        return self._add(
            db.Card(
                id=str(uuid.uuid4()),
                column_id=column_id,
                name=name,
                rank=rank,
                version=version,
                created_at=created_at,
            )
        )

    def fetch(self, card_id):
        with self.session_factory() as session:
            row = session.get(db.Card, card_id)
            return (row.column_id, row.rank, row.version) if row else None

    def ranks(self, column_id):
        with self.session_factory() as session:
            rows = (
                session.query(db.Card)
                .filter(db.Card.column_id == column_id)
                .order_by(db.Card.rank, db.Card.created_at)
                .all()
            )
            return [(r.id, r.rank) for r in rows]


@pytest.fixture
def build(session_factory):
    return Builder(session_factory)


def _drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items


@pytest.fixture
def drain():
    return _drain


class FaultyStorage(Storage):
    """Rejects the first ``fail_writes`` rank writes as if another writer won."""

    def __init__(self, fail_writes=float("inf")):
        self.fail_writes = fail_writes
        self.rank_writes = 0
        self.passes = 0

    def ordered_cards(self, session, column_id):
        self.passes += 1
        return super().ordered_cards(session, column_id)

    def set_rank_if_version(self, session, card_id, column_id, expected_version, rank):
        self.rank_writes += 1
        if self.rank_writes <= self.fail_writes:
            return 0
        return super().set_rank_if_version(session, card_id, column_id, expected_version, rank)


@pytest.fixture
def faulty_storage():
    return FaultyStorage
