"""Win/loss streak segmentation, batch and incremental."""

from behavioral_analytics.analysis.streaks import (
    StreakTracker,
    classify,
    outcome_from_pnl,
    segment_streaks,
    win_streaks,
)
from behavioral_analytics.core.enums import StreakOutcome, StreakType


def _trades(make_trade, pnls):
    return [make_trade(entry=i * 60, pnl=p) for i, p in enumerate(pnls)]


class TestClassify:
    def test_classes(self, make_trade):
        assert classify(make_trade(pnl=10)) == StreakType.WIN
        assert classify(make_trade(pnl=-10)) == StreakType.LOSS
        assert classify(make_trade(pnl=0)) is None

    def test_outcome_from_pnl(self):
        assert outcome_from_pnl(None) == StreakOutcome.ONGOING
        assert outcome_from_pnl(5) == StreakOutcome.PROFIT
        assert outcome_from_pnl(-5) == StreakOutcome.LOSS
        assert outcome_from_pnl(0) == StreakOutcome.BREAKEVEN


class TestSegmentStreaks:
    def test_empty(self):
        assert segment_streaks([]) == []

    def test_alternating_runs(self, make_trade):
        streaks = segment_streaks(_trades(make_trade, [10, 20, -5, -5, 30]))
        assert [(s.streak_type, s.length) for s in streaks] == [
            (StreakType.WIN, 2),
            (StreakType.LOSS, 2),
            (StreakType.WIN, 1),
        ]

    def test_breakeven_never_splits_a_streak(self, make_trade):
        streaks = segment_streaks(_trades(make_trade, [10, 0, 20, 0, 0, 30, -5]))
        assert streaks[0].streak_type == StreakType.WIN
        assert streaks[0].length == 3
        assert all(t.net_pnl != 0 for s in streaks for t in s.trades)

    def test_outcome_trade_is_first_of_next_run(self, make_trade):
        trades = _trades(make_trade, [10, 20, -5])
        first, last = segment_streaks(trades)
        assert first.outcome_trade.id == trades[2].id
        assert first.outcome == StreakOutcome.LOSS
        assert last.is_ongoing
        assert last.outcome == StreakOutcome.ONGOING

    def test_orders_by_entry_time(self, make_trade):
        trades = _trades(make_trade, [10, 20, -5])
        streaks = segment_streaks(reversed(trades))
        assert streaks[0].trade_ids == [trades[0].id, trades[1].id]

    def test_win_streaks_min_length(self, make_trade):
        trades = _trades(make_trade, [10, 10, 10, 10, -1, 10, 10])
        found = win_streaks(trades, min_length=4)
        assert len(found) == 1
        assert found[0].length == 4
        assert found[0].total_pnl == 40


class TestStreakTracker:
    def test_starts_and_extends(self, make_trade):
        tracker = StreakTracker()
        first = tracker.apply(None, make_trade(entry=0, pnl=10, quantity=10))
        assert first.current.streak_type == StreakType.WIN
        assert first.current.current_length == 1
        assert first.current.baseline_position_size == 1000.0

        second = tracker.apply(first.current, make_trade(entry=60, pnl=15, quantity=20))
        assert second.current.current_length == 2
        assert second.current.total_pnl == 25
        assert second.current.max_position_size == 2000.0
        assert second.current.baseline_position_size == 1000.0
        assert second.ended is None

    def test_opposite_class_ends_streak(self, make_trade):
        tracker = StreakTracker()
        state = tracker.apply(None, make_trade(entry=0, pnl=10)).current
        update = tracker.apply(state, make_trade(entry=60, pnl=-10))
        assert update.ended is not None
        assert update.ended.is_active is False
        assert update.current.streak_type == StreakType.LOSS
        assert update.current.id != update.ended.id

    def test_breakeven_is_ignored(self, make_trade):
        tracker = StreakTracker()
        state = tracker.apply(None, make_trade(entry=0, pnl=10)).current
        update = tracker.apply(state, make_trade(entry=60, pnl=0))
        assert update.changed is False
        assert update.current == state
