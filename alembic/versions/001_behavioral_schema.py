"""Behavioral schema: patterns, events, hold patterns, settings, alerts, streaks, cache.

``trades`` is created here for standalone and test databases; in a shared
deployment it already exists and is owned by the trading subsystem.

Revision ID: 001_behavioral
Revises: None
Create Date: 2024-01-01 00:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001_behavioral"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Trades (read-only for the engine)
    op.create_table(
        "trades",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("trade_id", sa.String(64), nullable=False, unique=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("side", sa.String(8), nullable=False),
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("exit_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("entry_price", sa.Numeric(24, 8), nullable=False),
        sa.Column("exit_price", sa.Numeric(24, 8), nullable=True),
        sa.Column("quantity", sa.Numeric(24, 8), nullable=False),
        sa.Column("pnl", sa.Numeric(24, 8), nullable=True),
        sa.Column("commission", sa.Numeric(24, 8), server_default="0"),
        sa.Column("fees", sa.Numeric(24, 8), server_default="0"),
        sa.Column("stop_loss", sa.Numeric(24, 8), nullable=True),
    )
    op.create_index("ix_trades_user_entry", "trades", ["user_id", "entry_time"])
    op.create_index("ix_trades_user_exit", "trades", ["user_id", "exit_time"])
    op.create_index("ix_trades_user_symbol", "trades", ["user_id", "symbol"])

    # Detected patterns
    op.create_table(
        "behavioral_patterns",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("pattern_type", sa.String(48), nullable=False),
        sa.Column("severity", sa.String(8), nullable=False),
        sa.Column("confidence_score", sa.Float, nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trigger_trade_id", sa.String(64), nullable=True),
        sa.Column("context_data", JSONB, nullable=True),
    )
    op.create_index("ix_patterns_user_type", "behavioral_patterns", ["user_id", "pattern_type"])
    op.create_index("ix_patterns_user_detected", "behavioral_patterns", ["user_id", "detected_at"])

    # Revenge trading events
    op.create_table(
        "revenge_trading_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("trigger_trade_id", sa.String(64), nullable=False),
        sa.Column("trigger_loss_amount", sa.Float, nullable=False),
        sa.Column("revenge_trades", JSONB, nullable=False, server_default="[]"),
        sa.Column("total_revenge_trades", sa.Integer, server_default="0"),
        sa.Column("time_window_minutes", sa.Integer, server_default="0"),
        sa.Column("position_size_increase_percent", sa.Float, server_default="0"),
        sa.Column("total_additional_loss", sa.Float, server_default="0"),
        sa.Column("pattern_broken", sa.Boolean, server_default=sa.false()),
        sa.Column("cooling_period_used", sa.Boolean, server_default=sa.false()),
        sa.Column("trigger_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("trade_quality", JSONB, nullable=True),
        sa.CheckConstraint("trigger_loss_amount > 0", name="ck_revenge_trigger_loss_positive"),
    )
    op.create_index("ix_revenge_user_created", "revenge_trading_events", ["user_id", "created_at"])

    # Overconfidence events
    op.create_table(
        "overconfidence_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("win_streak_length", sa.Integer, nullable=False),
        sa.Column("streak_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("streak_end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("baseline_position_size", sa.Float, nullable=False),
        sa.Column("peak_position_size", sa.Float, nullable=False),
        sa.Column("position_size_increase_percent", sa.Float, nullable=False),
        sa.Column("total_streak_profit", sa.Float, nullable=False),
        sa.Column("streak_trades", JSONB, nullable=False, server_default="[]"),
        sa.Column("severity", sa.String(8), nullable=False),
        sa.Column("confidence_score", sa.Float, nullable=False),
        sa.Column("outcome_after_streak", sa.String(16), server_default="ongoing"),
        sa.Column("outcome_trade_id", sa.String(64), nullable=True),
        sa.Column("outcome_amount", sa.Float, nullable=True),
        sa.Column("outcome_analysis", JSONB, nullable=True),
        sa.Column("ai_recommendations", JSONB, nullable=True),
        sa.Column("ai_provider", sa.String(32), nullable=True),
        sa.Column("ai_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "position_size_increase_percent <= 9999.99",
            name="ck_overconfidence_increase_bounded",
        ),
    )
    op.create_index(
        "ix_overconfidence_user_start", "overconfidence_events", ["user_id", "streak_start_date"],
    )

    # Loss aversion runs
    op.create_table(
        "loss_aversion_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("analysis_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("analysis_end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("avg_winner_hold_time_minutes", sa.Float, nullable=False),
        sa.Column("avg_loser_hold_time_minutes", sa.Float, nullable=False),
        sa.Column("hold_time_ratio", sa.Float, nullable=False),
        sa.Column("total_winning_trades", sa.Integer, nullable=False),
        sa.Column("total_losing_trades", sa.Integer, nullable=False),
        sa.Column("premature_profit_exits", sa.Integer, server_default="0"),
        sa.Column("extended_loss_holds", sa.Integer, server_default="0"),
        sa.Column("estimated_monthly_cost", sa.Float, server_default="0"),
        sa.Column("missed_profit_potential", sa.Float, server_default="0"),
        sa.Column("unnecessary_loss_extension", sa.Float, server_default="0"),
        sa.Column("avg_planned_risk_reward", sa.Float, server_default="0"),
        sa.Column("avg_actual_risk_reward", sa.Float, server_default="0"),
        sa.Column("worst_hold_ratio_symbol", sa.String(32), nullable=True),
        sa.Column("worst_hold_ratio_value", sa.Float, nullable=True),
        sa.Column("avg_missed_profit_percent", sa.Float, nullable=True),
        sa.Column("price_history_analyzed", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_loss_aversion_user_end", "loss_aversion_events", ["user_id", "analysis_end_date"],
    )

    # Per-trade hold classification
    op.create_table(
        "trade_hold_patterns",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("trade_id", sa.String(64), nullable=False, unique=True),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("is_winner", sa.Boolean, nullable=False),
        sa.Column("pnl", sa.Float, nullable=False),
        sa.Column("hold_time_minutes", sa.Float, nullable=False),
        sa.Column("exit_quality_score", sa.Float, nullable=False),
        sa.Column("premature_exit", sa.Boolean, server_default=sa.false()),
        sa.Column("extended_hold", sa.Boolean, server_default=sa.false()),
        sa.Column("exit_time", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_hold_patterns_user_exit", "trade_hold_patterns", ["user_id", "exit_time"])

    # Per-user preferences
    op.create_table(
        "behavioral_settings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True),
        sa.Column("revenge_trading_enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("revenge_trading_sensitivity", sa.String(8), server_default="medium"),
        sa.Column("overconfidence_enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("overconfidence_sensitivity", sa.String(8), server_default="medium"),
        sa.Column("loss_aversion_enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("min_streak_length", sa.Integer, server_default="4"),
        sa.Column("position_increase_threshold", sa.Float, server_default="40"),
        sa.Column("cooling_period_minutes", sa.Integer, server_default="30"),
        sa.Column("default_stop_loss_percent", sa.Float, server_default="0"),
        sa.Column("alert_preferences", JSONB, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Alerts
    op.create_table(
        "behavioral_alerts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("alert_type", sa.String(16), nullable=False),
        sa.Column("title", sa.String(128), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("alert_data", JSONB, nullable=True),
        sa.Column("status", sa.String(16), server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_alerts_user_status", "behavioral_alerts", ["user_id", "status"])

    # Real-time streak state
    op.create_table(
        "win_loss_streaks",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("streak_type", sa.String(8), nullable=False),
        sa.Column("current_length", sa.Integer, server_default="1"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_trade_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_pnl", sa.Float, server_default="0"),
        sa.Column("trade_ids", JSONB, nullable=False, server_default="[]"),
        sa.Column("baseline_position_size", sa.Float, server_default="0"),
        sa.Column("max_position_size", sa.Float, server_default="0"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
    )
    op.create_index("ix_streaks_user_active", "win_loss_streaks", ["user_id", "is_active"])

    # Analytics cache
    op.create_table(
        "analytics_cache",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("cache_key", sa.String(255), nullable=False),
        sa.Column("payload", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "cache_key", name="uq_analytics_cache_user_key"),
    )
    op.create_index("ix_analytics_cache_expires", "analytics_cache", ["expires_at"])


def downgrade() -> None:
    op.drop_table("analytics_cache")
    op.drop_table("win_loss_streaks")
    op.drop_table("behavioral_alerts")
    op.drop_table("behavioral_settings")
    op.drop_table("trade_hold_patterns")
    op.drop_table("loss_aversion_events")
    op.drop_table("overconfidence_events")
    op.drop_table("revenge_trading_events")
    op.drop_table("behavioral_patterns")
    op.drop_table("trades")
