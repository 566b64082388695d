"""SQLAlchemy ORM models for the behavioral analytics database.

``trades`` is owned by the trading/import subsystem and only read here.
Every other table holds derived rows that are rebuilt per user on
re-analysis.  Derived ids are the string UUIDs produced by
:mod:`behavioral_analytics.core.ids`, so batch re-runs write the same
primary keys.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# TradeRecord (read-only)
# ---------------------------------------------------------------------------

class TradeRecord(Base):
    """Round-trip trade, maps to :class:`behavioral_analytics.core.models.Trade`."""

    __tablename__ = "trades"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_new_uuid,
    )
    trade_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    entry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    exit_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    entry_price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    exit_price: Mapped[Decimal | None] = mapped_column(Numeric(24, 8), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    pnl: Mapped[Decimal | None] = mapped_column(Numeric(24, 8), nullable=True)
    commission: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    fees: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    stop_loss: Mapped[Decimal | None] = mapped_column(Numeric(24, 8), nullable=True)

    __table_args__ = (
        Index("ix_trades_user_entry", "user_id", "entry_time"),
        Index("ix_trades_user_exit", "user_id", "exit_time"),
        Index("ix_trades_user_symbol", "user_id", "symbol"),
    )

    def __repr__(self) -> str:
        return (
            f"<TradeRecord(trade_id={self.trade_id!r}, symbol={self.symbol!r}, "
            f"pnl={self.pnl})>"
        )


# ---------------------------------------------------------------------------
# Patterns and events
# ---------------------------------------------------------------------------

class PatternRecord(Base):
    __tablename__ = "behavioral_patterns"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    pattern_type: Mapped[str] = mapped_column(String(48), nullable=False)
    severity: Mapped[str] = mapped_column(String(8), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    trigger_trade_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    context_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_patterns_user_type", "user_id", "pattern_type"),
        Index("ix_patterns_user_detected", "user_id", "detected_at"),
    )


class RevengeEventRecord(Base):
    __tablename__ = "revenge_trading_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_trade_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_loss_amount: Mapped[float] = mapped_column(Float, nullable=False)
    revenge_trades: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    total_revenge_trades: Mapped[int] = mapped_column(Integer, default=0)
    time_window_minutes: Mapped[int] = mapped_column(Integer, default=0)
    position_size_increase_percent: Mapped[float] = mapped_column(Float, default=0.0)
    total_additional_loss: Mapped[float] = mapped_column(Float, default=0.0)
    pattern_broken: Mapped[bool] = mapped_column(Boolean, default=False)
    cooling_period_used: Mapped[bool] = mapped_column(Boolean, default=False)
    trigger_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )
    trade_quality: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_revenge_user_created", "user_id", "created_at"),
    )


class OverconfidenceEventRecord(Base):
    __tablename__ = "overconfidence_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    win_streak_length: Mapped[int] = mapped_column(Integer, nullable=False)
    streak_start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    streak_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    baseline_position_size: Mapped[float] = mapped_column(Float, nullable=False)
    peak_position_size: Mapped[float] = mapped_column(Float, nullable=False)
    position_size_increase_percent: Mapped[float] = mapped_column(Float, nullable=False)
    total_streak_profit: Mapped[float] = mapped_column(Float, nullable=False)
    streak_trades: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    severity: Mapped[str] = mapped_column(String(8), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    outcome_after_streak: Mapped[str] = mapped_column(String(16), default="ongoing")
    outcome_trade_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    outcome_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    outcome_analysis: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    ai_recommendations: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    ai_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ai_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_overconfidence_user_start", "user_id", "streak_start_date"),
    )


class LossAversionEventRecord(Base):
    __tablename__ = "loss_aversion_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    analysis_start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    analysis_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    avg_winner_hold_time_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    avg_loser_hold_time_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    hold_time_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    total_winning_trades: Mapped[int] = mapped_column(Integer, nullable=False)
    total_losing_trades: Mapped[int] = mapped_column(Integer, nullable=False)
    premature_profit_exits: Mapped[int] = mapped_column(Integer, default=0)
    extended_loss_holds: Mapped[int] = mapped_column(Integer, default=0)
    estimated_monthly_cost: Mapped[float] = mapped_column(Float, default=0.0)
    missed_profit_potential: Mapped[float] = mapped_column(Float, default=0.0)
    unnecessary_loss_extension: Mapped[float] = mapped_column(Float, default=0.0)
    avg_planned_risk_reward: Mapped[float] = mapped_column(Float, default=0.0)
    avg_actual_risk_reward: Mapped[float] = mapped_column(Float, default=0.0)
    worst_hold_ratio_symbol: Mapped[str | None] = mapped_column(String(32), nullable=True)
    worst_hold_ratio_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_missed_profit_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_history_analyzed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_loss_aversion_user_end", "user_id", "analysis_end_date"),
    )


class HoldPatternRecord(Base):
    __tablename__ = "trade_hold_patterns"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_new_uuid,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trade_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    is_winner: Mapped[bool] = mapped_column(Boolean, nullable=False)
    pnl: Mapped[float] = mapped_column(Float, nullable=False)
    hold_time_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    exit_quality_score: Mapped[float] = mapped_column(Float, nullable=False)
    premature_exit: Mapped[bool] = mapped_column(Boolean, default=False)
    extended_hold: Mapped[bool] = mapped_column(Boolean, default=False)
    exit_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_hold_patterns_user_exit", "user_id", "exit_time"),
    )


# ---------------------------------------------------------------------------
# Settings, alerts, streak state
# ---------------------------------------------------------------------------

class SettingsRecord(Base):
    __tablename__ = "behavioral_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_new_uuid,
    )
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    revenge_trading_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    revenge_trading_sensitivity: Mapped[str] = mapped_column(String(8), default="medium")
    overconfidence_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    overconfidence_sensitivity: Mapped[str] = mapped_column(String(8), default="medium")
    loss_aversion_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    min_streak_length: Mapped[int] = mapped_column(Integer, default=4)
    position_increase_threshold: Mapped[float] = mapped_column(Float, default=40.0)
    cooling_period_minutes: Mapped[int] = mapped_column(Integer, default=30)
    default_stop_loss_percent: Mapped[float] = mapped_column(Float, default=0.0)
    alert_preferences: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(),
    )


class AlertRecord(Base):
    __tablename__ = "behavioral_alerts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    alert_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_alerts_user_status", "user_id", "status"),
    )


class StreakRecord(Base):
    __tablename__ = "win_loss_streaks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    streak_type: Mapped[str] = mapped_column(String(8), nullable=False)
    current_length: Mapped[int] = mapped_column(Integer, default=1)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_trade_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    trade_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    baseline_position_size: Mapped[float] = mapped_column(Float, default=0.0)
    max_position_size: Mapped[float] = mapped_column(Float, default=0.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index("ix_streaks_user_active", "user_id", "is_active"),
    )


# ---------------------------------------------------------------------------
# CacheRecord
# ---------------------------------------------------------------------------

class CacheRecord(Base):
    """Memoized analysis payload, unique per ``(user_id, cache_key)``."""

    __tablename__ = "analytics_cache"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_new_uuid,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cache_key: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict | list | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "cache_key", name="uq_analytics_cache_user_key"),
        Index("ix_analytics_cache_expires", "expires_at"),
    )
