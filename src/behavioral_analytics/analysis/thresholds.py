"""Sensitivity tiers for revenge-trading detection.

A loss is *significant* (a trigger) when it meets either the
percentage-of-estimated-account test or the absolute dollar floor.  New
accounts without an estimate still get dollar-floor protection.
"""

from __future__ import annotations

from dataclasses import dataclass

from behavioral_analytics.core.enums import Sensitivity


@dataclass(frozen=True)
class SensitivityThresholds:
    trigger_loss_percent: float       # % of estimated account
    min_loss_dollars: float           # Absolute floor
    max_minutes_after_loss: int       # Recency window for timing signal
    min_position_size_increase_percent: float
    min_trades_in_10_min: int


THRESHOLDS: dict[Sensitivity, SensitivityThresholds] = {
    Sensitivity.LOW: SensitivityThresholds(
        trigger_loss_percent=5.0,
        min_loss_dollars=1000.0,
        max_minutes_after_loss=5,
        min_position_size_increase_percent=50.0,
        min_trades_in_10_min=5,
    ),
    Sensitivity.MEDIUM: SensitivityThresholds(
        trigger_loss_percent=3.0,
        min_loss_dollars=500.0,
        max_minutes_after_loss=15,
        min_position_size_increase_percent=25.0,
        min_trades_in_10_min=3,
    ),
    Sensitivity.HIGH: SensitivityThresholds(
        trigger_loss_percent=1.0,
        min_loss_dollars=250.0,
        max_minutes_after_loss=30,
        min_position_size_increase_percent=15.0,
        min_trades_in_10_min=2,
    ),
}


def thresholds_for(sensitivity: Sensitivity | str) -> SensitivityThresholds:
    """Look up a tier; unknown values fall back to medium."""
    try:
        return THRESHOLDS[Sensitivity(sensitivity)]
    except ValueError:
        return THRESHOLDS[Sensitivity.MEDIUM]


def is_significant_loss(
    loss_amount: float,
    thresholds: SensitivityThresholds,
    account_size: float | None,
) -> bool:
    """True when *loss_amount* (positive dollars) qualifies as a trigger."""
    if loss_amount <= 0:
        return False
    if loss_amount >= thresholds.min_loss_dollars:
        return True
    if account_size is not None and account_size > 0:
        return loss_amount >= account_size * thresholds.trigger_loss_percent / 100.0
    return False
