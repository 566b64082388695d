"""Property test: revenge episode and account size invariants.

Every revenge candidate must be entered strictly after its trigger's
exit and inside the window, and the reported increase is capped.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings, strategies as st

from behavioral_analytics.analysis.account import estimate_account_size
from behavioral_analytics.analysis.revenge import BATCH_INCREASE_CAP, find_revenge_episodes
from behavioral_analytics.analysis.thresholds import THRESHOLDS
from behavioral_analytics.core.enums import Sensitivity
from behavioral_analytics.core.models import Trade

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)

trade_specs = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=600),       # entry offset, minutes
        st.integers(min_value=1, max_value=240),       # hold, minutes
        st.floats(min_value=-2000, max_value=2000),    # pnl
        st.floats(min_value=0.1, max_value=500),       # quantity
    ),
    max_size=25,
)


def _trades(specs):
    return [
        Trade(
            id=f"t{i:03d}",
            user_id="u1",
            symbol="AAPL" if i % 2 else "MSFT",
            side="long",
            entry_time=T0 + timedelta(minutes=entry),
            exit_time=T0 + timedelta(minutes=entry + hold),
            entry_price=50.0,
            exit_price=50.0 + pnl / qty,
            quantity=qty,
            pnl=pnl,
        )
        for i, (entry, hold, pnl, qty) in enumerate(specs)
    ]


@given(specs=trade_specs, sensitivity=st.sampled_from(list(Sensitivity)))
@settings(max_examples=200)
def test_candidates_inside_window(specs, sensitivity):
    window = 120
    trades = _trades(specs)
    episodes = find_revenge_episodes(trades, THRESHOLDS[sensitivity], None, window_minutes=window)

    triggers = [e.trigger.id for e in episodes]
    assert len(triggers) == len(set(triggers))
    for episode in episodes:
        exit_time = episode.trigger.exit_time
        assert episode.candidates
        for candidate in episode.candidates:
            assert candidate.id != episode.trigger.id
            assert exit_time < candidate.entry_time <= exit_time + timedelta(minutes=window)
        assert 0 < episode.time_window_minutes <= window
        assert 0.0 <= episode.max_increase_percent <= BATCH_INCREASE_CAP
        assert episode.trigger_loss >= THRESHOLDS[sensitivity].min_loss_dollars


@given(specs=trade_specs)
@settings(max_examples=200)
def test_account_size_bounded_by_both_estimates(specs):
    trades = _trades(specs)
    estimate = estimate_account_size(trades)
    if len(trades) < 5:
        assert estimate is None
        return
    sizes = [t.position_size for t in trades]
    assert estimate <= max(sizes) * 10 + 1e-6
    assert estimate <= sum(sizes) / len(sizes) * 50 + 1e-6
