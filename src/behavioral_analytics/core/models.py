"""Core domain models for the behavioral analytics engine.

``Trade`` is owned by the external trading/import subsystem and is
read-only here.  Every other model is derived data: created only by a
batch or real-time analysis and rebuilt (delete-then-recreate) on
re-analysis, never patched in place.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .enums import (
    AlertStatus,
    AlertType,
    PatternType,
    Severity,
    StreakOutcome,
    StreakType,
    TradeSide,
)
from .ids import new_id


# ---------------------------------------------------------------------------
# Trade (external, read-only)
# ---------------------------------------------------------------------------

class Trade(BaseModel):
    """A single round-trip trade as recorded by the trading subsystem."""

    id: str
    user_id: str
    symbol: str
    side: TradeSide
    entry_time: datetime
    exit_time: datetime | None = None
    entry_price: float
    exit_price: float | None = None
    quantity: float
    pnl: float | None = None  # Realised, net of commission and fees
    commission: float = 0.0
    fees: float = 0.0
    stop_loss: float | None = None

    @field_validator("side", mode="before")
    @classmethod
    def _parse_side(cls, v: Any) -> TradeSide:
        return TradeSide.parse(v)

    @field_validator("entry_time", "exit_time")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        # Naive timestamps from imports are UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def position_size(self) -> float:
        """Monetary position size (``quantity x entry_price``) for either side."""
        return abs(self.quantity) * self.entry_price

    @property
    def is_closed(self) -> bool:
        return self.exit_time is not None

    @property
    def net_pnl(self) -> float:
        return self.pnl if self.pnl is not None else 0.0

    @property
    def is_winner(self) -> bool:
        return self.net_pnl > 0

    @property
    def is_loser(self) -> bool:
        return self.net_pnl < 0

    @property
    def hold_time_minutes(self) -> float | None:
        if self.exit_time is None:
            return None
        return (self.exit_time - self.entry_time).total_seconds() / 60.0

    @property
    def closed_at(self) -> datetime:
        """Exit time, falling back to entry time for open trades."""
        return self.exit_time or self.entry_time


# ---------------------------------------------------------------------------
# Behavioral pattern
# ---------------------------------------------------------------------------

class BehavioralPattern(BaseModel):
    """A detected occurrence of a behavioral pattern."""

    id: str = Field(default_factory=new_id)
    user_id: str
    pattern_type: PatternType
    severity: Severity
    confidence_score: float = Field(ge=0.0, le=1.0)
    detected_at: datetime
    trigger_trade_id: str | None = None
    context_data: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Revenge trading
# ---------------------------------------------------------------------------

class RevengeTradingEvent(BaseModel):
    """One trigger loss plus the trades entered in reaction to it.

    Every id in ``revenge_trades`` belongs to a trade entered strictly
    after the trigger's exit and within ``time_window_minutes``.
    """

    id: str = Field(default_factory=new_id)
    user_id: str
    trigger_trade_id: str
    trigger_loss_amount: float = Field(gt=0.0)
    revenge_trades: list[str] = Field(default_factory=list)
    total_revenge_trades: int = 0
    time_window_minutes: int = 0
    position_size_increase_percent: float = 0.0
    total_additional_loss: float = 0.0  # Negative means net profit
    pattern_broken: bool = False
    cooling_period_used: bool = False
    trigger_timestamp: datetime
    created_at: datetime
    trade_quality: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Overconfidence
# ---------------------------------------------------------------------------

class OverconfidenceEvent(BaseModel):
    """Position-size escalation observed during a win streak."""

    id: str = Field(default_factory=new_id)
    user_id: str
    win_streak_length: int
    streak_start_date: datetime
    streak_end_date: datetime
    baseline_position_size: float
    peak_position_size: float
    position_size_increase_percent: float
    total_streak_profit: float
    streak_trades: list[str] = Field(default_factory=list)
    severity: Severity
    confidence_score: float = Field(ge=0.0, le=1.0)
    outcome_after_streak: StreakOutcome = StreakOutcome.ONGOING
    outcome_trade_id: str | None = None
    outcome_amount: float | None = None
    outcome_analysis: dict[str, Any] | None = None
    ai_recommendations: dict[str, Any] | None = None
    ai_provider: str | None = None
    ai_generated_at: datetime | None = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Loss aversion
# ---------------------------------------------------------------------------

class LossAversionEvent(BaseModel):
    """Hold-time asymmetry between winners and losers over a window."""

    id: str = Field(default_factory=new_id)
    user_id: str
    analysis_start_date: datetime
    analysis_end_date: datetime
    avg_winner_hold_time_minutes: float
    avg_loser_hold_time_minutes: float
    hold_time_ratio: float
    total_winning_trades: int
    total_losing_trades: int
    premature_profit_exits: int
    extended_loss_holds: int
    estimated_monthly_cost: float
    missed_profit_potential: float
    unnecessary_loss_extension: float
    avg_planned_risk_reward: float
    avg_actual_risk_reward: float
    worst_hold_ratio_symbol: str | None = None
    worst_hold_ratio_value: float | None = None
    avg_missed_profit_percent: float | None = None
    price_history_analyzed: bool = False
    created_at: datetime


class TradeHoldPattern(BaseModel):
    """Per-trade hold-time classification from a loss aversion run."""

    user_id: str
    trade_id: str
    symbol: str
    is_winner: bool
    pnl: float
    hold_time_minutes: float
    exit_quality_score: float = Field(ge=0.0, le=1.0)
    premature_exit: bool = False
    extended_hold: bool = False
    exit_time: datetime | None = None


# ---------------------------------------------------------------------------
# Alerts and streak state
# ---------------------------------------------------------------------------

ALERT_TTL = timedelta(hours=24)


class BehavioralAlert(BaseModel):
    """A user-facing alert raised by a real-time detector."""

    id: str = Field(default_factory=new_id)
    user_id: str
    alert_type: AlertType
    title: str
    message: str
    alert_data: dict[str, Any] = Field(default_factory=dict)
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: datetime
    expires_at: datetime
    acknowledged_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.status == AlertStatus.ACTIVE and self.expires_at > now


class WinLossStreak(BaseModel):
    """Persisted state of a user's current real-time streak."""

    id: str = Field(default_factory=new_id)
    user_id: str
    streak_type: StreakType
    current_length: int = 1
    start_date: datetime
    last_trade_date: datetime
    total_pnl: float = 0.0
    trade_ids: list[str] = Field(default_factory=list)
    baseline_position_size: float = 0.0
    max_position_size: float = 0.0
    is_active: bool = True


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class CacheEntry(BaseModel):
    """A memoized analysis result for one (user, key)."""

    user_id: str
    cache_key: str
    payload: Any
    created_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        """Valid strictly before ``expires_at``."""
        return now < self.expires_at


# ---------------------------------------------------------------------------
# Insufficient data (a result, not an error)
# ---------------------------------------------------------------------------

class InsufficientData(BaseModel):
    """Returned when a detector lacks the trades it needs.

    Carries exact counts so a UI can render a progress indicator.
    """

    analysis: str
    message: str
    current_trades: int
    required_trades: int
    trades_needed: int = 0
    winning_trades: int | None = None
    losing_trades: int | None = None

    @classmethod
    def for_trade_count(
        cls,
        analysis: str,
        current: int,
        required: int,
    ) -> InsufficientData:
        needed = max(required - current, 0)
        return cls(
            analysis=analysis,
            message=(
                f"Need at least {required} completed trades for {analysis} "
                f"analysis. You have {current}; {needed} more needed."
            ),
            current_trades=current,
            required_trades=required,
            trades_needed=needed,
        )

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude_none=True)
        data["insufficient_data"] = True
        return data
