"""Tests for line movement tracking and per-cycle quote diffs."""

import pytest

from linewatch.engine.consensus import compute_best_odds
from linewatch.engine.movement import LineMovementTracker, diff_quotes
from linewatch.models.schemas import Market, MovementDirection


@pytest.fixture
def tracker():
    return LineMovementTracker(max_history=5, steam_threshold=20)


def record_moneyline(tracker, make_game, make_quote, home, away, timestamp_ms, game_id="game_1"):
    game = make_game(game_id=game_id, quotes=[make_quote("draftkings", moneyline=(home, away))])
    tracker.record(game, compute_best_odds(game), timestamp_ms=timestamp_ms)
    return game


class TestLineMovementTracker:

    def test_needs_two_snapshots(self, tracker, make_game, make_quote):
        assert tracker.get_movement("game_1", Market.MONEYLINE) is None
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1_000)
        assert tracker.get_movement("game_1", Market.MONEYLINE) is None

    def test_steam_move_down(self, tracker, make_game, make_quote):
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1_000)
        record_moneyline(tracker, make_game, make_quote, -170, 145, 61_000)

        movement = tracker.get_movement("game_1", Market.MONEYLINE)
        home = movement.sides["home"]

        assert home.from_price == -150
        assert home.to_price == -170
        assert home.change == -20
        assert home.direction is MovementDirection.DOWN
        assert home.magnitude == 20
        assert home.is_steam is True
        assert movement.is_steam is True
        assert movement.timespan_ms == 60_000

        away = movement.sides["away"]
        assert away.direction is MovementDirection.UP
        assert away.is_steam is False

    def test_stable(self, tracker, make_game, make_quote):
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1_000)
        record_moneyline(tracker, make_game, make_quote, -150, 130, 2_000)

        home = tracker.get_movement("game_1", Market.MONEYLINE).sides["home"]
        assert home.change == 0
        assert home.direction is MovementDirection.STABLE
        assert home.is_steam is False

    def test_missing_market_side_is_none(self, tracker, make_game, make_quote):
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1_000)
        record_moneyline(tracker, make_game, make_quote, -155, 135, 2_000)

        movement = tracker.get_movement("game_1", Market.SPREAD)
        assert movement.sides == {"home": None, "away": None}
        assert movement.is_steam is False

    def test_ring_buffer_is_bounded(self, tracker, make_game, make_quote):
        for i in range(8):
            record_moneyline(tracker, make_game, make_quote, -150 - i, 130, 1_000 * (i + 1))

        history = tracker.history("game_1")
        assert len(history) == 5
        # Oldest entries were evicted, order is oldest first
        assert [snap.timestamp_ms for snap in history] == [4_000, 5_000, 6_000, 7_000, 8_000]

        movement = tracker.get_movement("game_1", Market.MONEYLINE)
        assert movement.sides["home"].from_price == -153
        assert movement.sides["home"].to_price == -157

    def test_history_limit(self, tracker, make_game, make_quote):
        for i in range(3):
            record_moneyline(tracker, make_game, make_quote, -150, 130, i)
        assert [s.timestamp_ms for s in tracker.history("game_1", limit=2)] == [1, 2]
        assert tracker.history("game_1", limit=0) == []
        assert tracker.history("unknown") == []

    def test_rejects_tiny_capacity(self):
        with pytest.raises(ValueError):
            LineMovementTracker(max_history=1)

    def test_eviction(self, tracker, make_game, make_quote):
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1, game_id="a")
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1, game_id="b")
        nfl = make_game(game_id="c", sport="americanfootball_nfl",
                        quotes=[make_quote("draftkings", moneyline=(-150, 130))])
        tracker.record(nfl, compute_best_odds(nfl), timestamp_ms=1)

        assert tracker.retain("basketball_nba", ["a"]) == 1
        assert "b" not in tracker
        assert "a" in tracker

        assert tracker.evict_sport("americanfootball_nfl") == 1
        assert "c" not in tracker

        tracker.evict("a")
        assert len(tracker) == 0

    def test_clear(self, tracker, make_game, make_quote):
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1)
        tracker.clear()
        assert tracker.history("game_1") == []


class TestBookmakerMovements:

    def test_consecutive_pairs(self, tracker, make_game, make_quote):
        record_moneyline(tracker, make_game, make_quote, -150, 130, 1_000)
        record_moneyline(tracker, make_game, make_quote, -150, 130, 2_000)
        record_moneyline(tracker, make_game, make_quote, -160, 130, 3_000)
        record_moneyline(tracker, make_game, make_quote, -180, 130, 4_000)

        moves = tracker.bookmaker_movements("game_1", Market.MONEYLINE)

        assert [(m.previous_price, m.current_price, m.timestamp_ms) for m in moves] == [
            (-150, -160, 3_000),
            (-160, -180, 4_000),
        ]
        assert [m.is_steam for m in moves] == [False, True]
        assert moves[0].home_team == "Los Angeles Lakers"

    def test_filters_by_bookmaker_and_market(self, tracker, make_game, make_quote):
        for timestamp_ms, dk_home in ((1_000, -150), (2_000, -170)):
            game = make_game(quotes=[
                make_quote("draftkings", moneyline=(dk_home, 130), totals=(220.5, -110, -110)),
                make_quote("fanduel", moneyline=(-145, 125)),
            ])
            tracker.record(game, compute_best_odds(game), timestamp_ms=timestamp_ms)

        assert tracker.bookmaker_movements("game_1", bookmaker="fanduel") == []
        assert tracker.bookmaker_movements("game_1", Market.TOTALS) == []
        assert len(tracker.bookmaker_movements("game_1", bookmaker="draftkings")) == 1
        assert tracker.bookmaker_movements("unknown") == []


class TestDiffQuotes:

    def test_reports_price_move(self, make_game, make_quote):
        before = [make_game(quotes=[make_quote("draftkings", moneyline=(-150, 130))])]
        after = [make_game(quotes=[make_quote("draftkings", moneyline=(-170, 132))])]

        movements = diff_quotes(before, after, timestamp_ms=5)

        assert len(movements) == 1
        move = movements[0]
        assert (move.bookmaker, move.market, move.side) == ("draftkings", Market.MONEYLINE, "home")
        assert move.price_diff == -20
        assert move.direction is MovementDirection.DOWN
        assert move.is_steam is True
        assert move.timestamp_ms == 5

    def test_reports_line_move(self, make_game, make_quote):
        before = [make_game(quotes=[make_quote("fanduel", spread=(-3.0, -110, -110))])]
        after = [make_game(quotes=[make_quote("fanduel", spread=(-3.5, -110, -110))])]

        movements = diff_quotes(before, after)

        assert {m.side for m in movements} == {"home", "away"}
        assert all(abs(m.line_diff) == 0.5 for m in movements)
        assert not any(m.is_steam for m in movements)

    def test_small_changes_ignored(self, make_game, make_quote):
        before = [make_game(quotes=[make_quote("draftkings", moneyline=(-150, 130))])]
        after = [make_game(quotes=[make_quote("draftkings", moneyline=(-152, 133))])]
        assert diff_quotes(before, after) == []

    def test_new_games_and_books_ignored(self, make_game, make_quote):
        before = [make_game(quotes=[make_quote("draftkings", moneyline=(-150, 130))])]
        after = [
            make_game(quotes=[
                make_quote("draftkings", moneyline=(-150, 130)),
                make_quote("fanduel", moneyline=(-300, 250)),
            ]),
            make_game(game_id="game_2", quotes=[make_quote("draftkings", moneyline=(-300, 250))]),
        ]
        assert diff_quotes(before, after) == []
        assert diff_quotes([], after) == []
