import logging

import pytest

from cardrank.config import RankSettings
from cardrank.context import CallContext
from cardrank.errors import RebalanceFailed, RequestCancelled
from cardrank.rebalance import RebalanceState, Rebalancer


def test_rebalance_spaces_ranks_in_order(session, build, rank_settings, notifier):
    board = build.board()
    column = build.column(board)
    a = build.card(column, 100.0)
    b = build.card(column, 100.0000005)
    c = build.card(column, 250.0)

    outcome = Rebalancer(rank_settings, notifier).rebalance(session, CallContext(), column)

    assert outcome.state is RebalanceState.DONE
    assert outcome.attempts == 1
    assert outcome.card_count == 3
    assert build.ranks(column) == [(a, 1000.0), (b, 2000.0), (c, 3000.0)]


def test_rebalance_breaks_collisions_by_creation_time(session, build, rank_settings, notifier):
    board = build.board()
    column = build.column(board)
    older = build.card(column, 100.0)
    newer = build.card(column, 100.0)

    Rebalancer(rank_settings, notifier).rebalance(session, CallContext(), column)

    assert build.ranks(column) == [(older, 1000.0), (newer, 2000.0)]


def test_rebalance_bumps_every_version(session, build, rank_settings, notifier):
    board = build.board()
    column = build.column(board)
    card = build.card(column, 7.0, version=4)

    Rebalancer(rank_settings, notifier).rebalance(session, CallContext(), column)

    assert build.fetch(card) == (column, 1000.0, 5)


def test_rebalance_notifies_board(session, build, rank_settings, notifier, broker, drain):
    board = build.board()
    column = build.column(board)
    build.card(column, 1.0)
    feed = broker.subscribe(f"BoardRebalance_{board}")

    Rebalancer(rank_settings, notifier).rebalance(session, CallContext(), column)

    events = drain(feed)
    assert len(events) == 1
    assert events[0]["columnId"] == column
    assert "timestamp" in events[0]


def test_rebalance_retries_after_conflict(session, build, rank_settings, notifier, faulty_storage, caplog):
    board = build.board()
    column = build.column(board)
    a = build.card(column, 2.0)
    b = build.card(column, 1.0)
    faulty = faulty_storage(fail_writes=1)

    with caplog.at_level(logging.WARNING, logger="cardrank.rebalance"):
        outcome = Rebalancer(rank_settings, notifier, faulty).rebalance(session, CallContext(), column)

    assert outcome.attempts == 2
    assert faulty.passes == 2
    assert build.ranks(column) == [(b, 1000.0), (a, 2000.0)]
    assert sum("Concurrency conflict" in r.getMessage() for r in caplog.records) == 1


def test_rebalance_gives_up_after_max_attempts(
    session, build, rank_settings, notifier, broker, drain, faulty_storage, caplog
):
    board = build.board()
    column = build.column(board)
    a = build.card(column, 10.0)
    b = build.card(column, 10.0)
    faulty = faulty_storage()
    feed = broker.subscribe(f"BoardRebalance_{board}")

    with caplog.at_level(logging.WARNING, logger="cardrank.rebalance"):
        with pytest.raises(RebalanceFailed) as excinfo:
            Rebalancer(rank_settings, notifier, faulty).rebalance(session, CallContext(), column)

    assert excinfo.value.column_id == column
    assert excinfo.value.max_attempts == 3
    assert "rebalance failed" in str(excinfo.value).lower()
    assert faulty.passes == 3
    assert sum("Concurrency conflict" in r.getMessage() for r in caplog.records) == 3
    # Nothing from the failed passes was kept.
    assert build.ranks(column) == [(a, 10.0), (b, 10.0)]
    assert drain(feed) == []


def test_rebalance_backoff_is_linear(session, build, notifier, faulty_storage, monkeypatch):
    board = build.board()
    column = build.column(board)
    build.card(column, 1.0)
    settings = RankSettings(min_gap=1.0, spacing=1000.0, max_attempts=4, retry_base_delay=0.05)
    ctx = CallContext()
    delays = []
    monkeypatch.setattr(ctx, "sleep", delays.append)

    with pytest.raises(RebalanceFailed):
        Rebalancer(settings, notifier, faulty_storage()).rebalance(session, ctx, column)

    assert delays == pytest.approx([0.05, 0.10, 0.15])


def test_rebalance_stops_when_request_is_cancelled(session, build, notifier, faulty_storage):
    board = build.board()
    column = build.column(board)
    build.card(column, 1.0)
    settings = RankSettings(min_gap=1.0, spacing=1000.0, max_attempts=3, retry_base_delay=10.0)
    faulty = faulty_storage()
    ctx = CallContext()
    ctx.cancel()

    with pytest.raises(RequestCancelled):
        Rebalancer(settings, notifier, faulty).rebalance(session, ctx, column)
    assert faulty.passes == 0


def test_check_and_rebalance_skips_healthy_column(session, build, rank_settings, notifier):
    board = build.board()
    column = build.column(board)
    build.card(column, 100.0)
    moved = build.card(column, 102.0)

    rebalancer = Rebalancer(rank_settings, notifier)
    card = rebalancer.storage.get_card(session, moved)

    assert rebalancer.check_and_rebalance(session, CallContext(), column, card) is None
    assert [rank for _, rank in build.ranks(column)] == [100.0, 102.0]
