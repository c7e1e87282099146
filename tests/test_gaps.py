from cardrank.gaps import GapAnalyzer, rank_needs_repair
from cardrank.storage import storage


def test_collision_needs_repair():
    assert rank_needs_repair([50.0, 100.0, 300.0], 100.0, min_gap=1e-6)


def test_tiny_gap_to_predecessor():
    assert rank_needs_repair([100.0], 100.0000005, min_gap=1e-6)


def test_tiny_gap_to_successor():
    assert rank_needs_repair([100.5], 100.0, min_gap=1.0)


def test_wide_gaps_are_fine():
    assert not rank_needs_repair([100.0, 200.0], 150.0, min_gap=1.0)


def test_only_adjacent_neighbours_count():
    # 99.9 is close to 99.5, but neither is a neighbour of 150.
    assert not rank_needs_repair([99.5, 99.9, 300.0], 150.0, min_gap=1.0)


def test_empty_column():
    assert not rank_needs_repair([], 42.0, min_gap=1.0)


def test_analyzer_ignores_the_moved_card(session, build):
    board = build.board()
    column = build.column(board)
    build.card(column, 100.0)
    moved_id = build.card(column, 5000.0)

    analyzer = GapAnalyzer(min_gap=1.0)
    moved = storage.get_card(session, moved_id)
    assert not analyzer.needs_rebalance(session, column, moved)


def test_analyzer_detects_close_neighbour_and_is_idempotent(session, build):
    board = build.board()
    column = build.column(board)
    build.card(column, 100.0)
    moved_id = build.card(column, 100.5)

    analyzer = GapAnalyzer(min_gap=1.0)
    moved = storage.get_card(session, moved_id)
    first = analyzer.needs_rebalance(session, column, moved)
    second = analyzer.needs_rebalance(session, column, moved)
    assert first is True
    assert first == second
