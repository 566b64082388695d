"""Property test: streak segmentation.

Batch segmentation and the incremental tracker must agree, breakeven
trades never appear inside a streak, and consecutive streaks always
alternate between win and loss.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings, strategies as st

from behavioral_analytics.analysis.streaks import StreakTracker, classify, segment_streaks
from behavioral_analytics.core.models import Trade

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)

pnls = st.lists(
    st.one_of(st.just(0.0), st.floats(min_value=-500, max_value=500).filter(lambda x: x != 0)),
    max_size=40,
)


def _trades(values):
    return [
        Trade(
            id=f"t{i:03d}",
            user_id="u1",
            symbol="AAPL",
            side="long",
            entry_time=T0 + timedelta(hours=i),
            exit_time=T0 + timedelta(hours=i, minutes=30),
            entry_price=100.0,
            exit_price=100.0 + pnl / 10,
            quantity=10.0,
            pnl=pnl,
        )
        for i, pnl in enumerate(values)
    ]


@given(values=pnls)
@settings(max_examples=200)
def test_streaks_partition_non_breakeven_trades(values):
    trades = _trades(values)
    streaks = segment_streaks(trades)
    flattened = [t.id for s in streaks for t in s.trades]
    assert flattened == [t.id for t in trades if t.net_pnl != 0]


@given(values=pnls)
@settings(max_examples=200)
def test_streaks_are_homogeneous_and_alternate(values):
    streaks = segment_streaks(_trades(values))
    for streak in streaks:
        assert {classify(t) for t in streak.trades} == {streak.streak_type}
    for prev, nxt in zip(streaks, streaks[1:]):
        assert prev.streak_type != nxt.streak_type
        assert prev.outcome_trade is nxt.trades[0]


@given(values=pnls)
@settings(max_examples=200)
def test_tracker_matches_batch(values):
    trades = _trades(values)
    streaks = segment_streaks(trades)
    tracker = StreakTracker()
    state = None
    ended = 0
    for trade in trades:
        update = tracker.apply(state, trade)
        state = update.current
        if update.ended is not None:
            ended += 1

    if not streaks:
        assert state is None
        return
    last = streaks[-1]
    assert state.streak_type == last.streak_type
    assert state.current_length == last.length
    assert state.trade_ids == last.trade_ids
    assert ended == len(streaks) - 1
