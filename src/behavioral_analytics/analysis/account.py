"""Account size estimation from position-size history.

True equity is never available to this engine, so dollar amounts are
converted into risk percentages against a conservative estimate:

* a single position is assumed to be at most 10% of equity, and
* an average position is assumed to be about 2% of equity.

The smaller of the two implied equity figures wins.
"""

from __future__ import annotations

from typing import Sequence

from behavioral_analytics.core.models import Trade

MIN_TRADES_FOR_ESTIMATE = 5
MAX_POSITION_MULTIPLIER = 10.0
AVG_POSITION_MULTIPLIER = 50.0


def estimate_account_size(trades: Sequence[Trade]) -> float | None:
    """Return a conservative equity estimate, or ``None`` if indeterminate.

    ``None`` is returned for fewer than five trades; callers then apply
    only fixed-dollar thresholds.
    """
    if len(trades) < MIN_TRADES_FOR_ESTIMATE:
        return None

    sizes = [t.position_size for t in trades]
    max_size = max(sizes)
    avg_size = sum(sizes) / len(sizes)
    if max_size <= 0:
        return None
    return min(max_size * MAX_POSITION_MULTIPLIER, avg_size * AVG_POSITION_MULTIPLIER)
