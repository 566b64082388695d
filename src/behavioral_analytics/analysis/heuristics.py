"""Heuristic estimates used when real price history is not available.

Fallback estimates must stay populated and stable across repeated calls,
yet not be visually identical across trades.  Variation therefore comes
from :func:`seeded_jitter`, a hash of the trade's identity: the same trade
always gets the same offset, different trades usually get different
ones.  It is deliberately not random.

The 20% missed-profit and 15% unnecessary-loss multipliers are
uncalibrated constants carried as named values.
"""

from __future__ import annotations

import hashlib
from typing import Any

MISSED_PROFIT_RATE = 0.20
UNNECESSARY_LOSS_RATE = 0.15
PLANNED_RISK_REWARD = 2.0
MINIMAL_MISSED_PROFIT = 10.0
MISSED_OPPORTUNITY_FLOOR_PERCENT = 10.0


def seeded_jitter(trade_id: str, modulus: int) -> int:
    """Deterministic integer in ``[0, modulus)`` derived from *trade_id*.

    Uses SHA-256 so the value is identical across processes and Python
    versions (unlike ``hash()``).
    """
    if modulus <= 0:
        raise ValueError("modulus must be positive")
    digest = hashlib.sha256(str(trade_id).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % modulus


def _metric(metrics: dict[str, Any] | None, key: str) -> float:
    if not metrics:
        return 0.0
    try:
        return float(metrics.get(key) or 0.0)
    except (TypeError, ValueError):
        return 0.0


def estimate_potential_profit(
    trade_id: str,
    pnl: float,
    exit_quality_score: float | None,
    metrics: dict[str, Any] | None,
) -> float:
    """Individualized missed-profit estimate for a winning trade.

    With stored metrics the per-trade average missed profit is scaled by
    trade size, exit quality and jitter (multiplier clamped to
    ``[0.5, 2.0]``).  Without metrics a 15-35% slice of the realised
    profit is used.
    """
    missed_total = _metric(metrics, "missed_profit_potential")
    premature = int(_metric(metrics, "premature_profit_exits")) or 1
    quality = exit_quality_score if exit_quality_score is not None else 0.5

    if missed_total > 0 and pnl > 0:
        base = missed_total / premature
        multiplier = 1.0
        if pnl > 100:
            multiplier += 0.3
        elif pnl < 20:
            multiplier -= 0.2
        if quality < 0.3:
            multiplier += 0.4
        elif quality < 0.5:
            multiplier += 0.2
        multiplier += seeded_jitter(trade_id, 7) / 20
        multiplier = max(0.5, min(2.0, multiplier))
        return round(base * multiplier, 2)

    if pnl > 0:
        if pnl > 100:
            pct = 0.25
        elif pnl < 20:
            pct = 0.15
        else:
            pct = 0.20
        pct += seeded_jitter(trade_id, 11) / 100
        return round(pnl * pct, 2)

    return MINIMAL_MISSED_PROFIT


def estimate_missed_opportunity_percent(
    trade_id: str,
    pnl: float,
    exit_quality_score: float | None,
    metrics: dict[str, Any] | None,
) -> float:
    missed_total = _metric(metrics, "missed_profit_potential")
    if missed_total > 0 and pnl > 0:
        extra = estimate_potential_profit(trade_id, pnl, exit_quality_score, metrics)
        return round(extra / pnl * 100, 1)

    quality = exit_quality_score if exit_quality_score is not None else 0.5
    if quality < 0.3:
        base = 35.0
    elif quality < 0.5:
        base = 25.0
    else:
        base = 15.0
    return round(base + seeded_jitter(trade_id, 13) / 2, 1)


def basic_missed_percent(trade_id: str, exit_quality_score: float | None) -> float:
    """Fallback when neither price data nor stored metrics exist."""
    quality = exit_quality_score if exit_quality_score is not None else 0.5
    base = 25.0 if quality < 0.5 else 15.0
    return base + seeded_jitter(trade_id, 10)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def loss_aversion_message(hold_time_ratio: float, monthly_cost: float) -> str:
    ratio = f"{hold_time_ratio:.1f}"
    cost = f"{monthly_cost:.2f}"
    if hold_time_ratio > 3:
        return (
            f"You hold losers {ratio}x longer than winners - "
            f"this is costing you ${cost}/month"
        )
    if hold_time_ratio > 2:
        return (
            f"You hold losers {ratio}x longer than winners - "
            f"consider using tighter stops to save ${cost}/month"
        )
    if hold_time_ratio > 1.5:
        return (
            f"Slight loss aversion detected - you could save "
            f"${cost}/month with better exit timing"
        )
    return (
        f"Good exit discipline - your hold time ratio of {ratio}x "
        f"is within healthy range"
    )


def missed_opportunity_recommendation(missed_percent: float) -> str:
    pct = f"{missed_percent:.1f}"
    if missed_percent > 50:
        return (
            "High missed opportunity: Consider using trailing stops or scaling "
            f"out positions to capture more of the {pct}% potential upside"
        )
    if missed_percent > 30:
        return (
            "Moderate missed opportunity: Review exit strategy - you could have "
            f"captured an additional {pct}% profit"
        )
    if missed_percent > 15:
        return (
            "Some missed upside: Consider wider profit targets or technical "
            "analysis for better exit timing"
        )
    return (
        "Minor missed opportunity: Exit timing was reasonable given the "
        f"{pct}% additional potential"
    )
