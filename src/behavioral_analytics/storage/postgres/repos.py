"""SQL implementations of the storage protocols.

Each repository wraps an :class:`AsyncSession` obtained from
:meth:`behavioral_analytics.storage.postgres.connection.Database.session`;
the session's owner commits.  Conversion helpers translate between core
models (:mod:`behavioral_analytics.core.models`) and ORM records.

Any ``SQLAlchemyError`` is re-raised as
:class:`~behavioral_analytics.core.errors.PersistenceError`.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from behavioral_analytics.core.config import AlertPreferences, BehavioralSettings
from behavioral_analytics.core.enums import (
    AlertStatus,
    AlertType,
    PatternType,
    Sensitivity,
    Severity,
    StreakOutcome,
    StreakType,
)
from behavioral_analytics.core.errors import PersistenceError
from behavioral_analytics.core.filters import TradeFilter
from behavioral_analytics.core.models import (
    BehavioralAlert,
    BehavioralPattern,
    LossAversionEvent,
    OverconfidenceEvent,
    RevengeTradingEvent,
    Trade,
    TradeHoldPattern,
    WinLossStreak,
)

from .models import (
    AlertRecord,
    HoldPatternRecord,
    LossAversionEventRecord,
    OverconfidenceEventRecord,
    PatternRecord,
    RevengeEventRecord,
    SettingsRecord,
    StreakRecord,
    TradeRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _wrap_errors(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Re-raise SQLAlchemy failures as ``PersistenceError``."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("Storage failure in %s: %s", fn.__name__, exc)
            raise PersistenceError(f"{fn.__name__} failed: {exc}") from exc

    return wrapper


def _f(value: Any) -> float | None:
    return float(value) if value is not None else None


def _in_range(stmt: Any, column: Any, start: datetime | None, end: datetime | None) -> Any:
    if start is not None:
        stmt = stmt.where(column >= start)
    if end is not None:
        stmt = stmt.where(column <= end)
    return stmt


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _record_to_trade(record: TradeRecord) -> Trade:
    return Trade(
        id=record.trade_id,
        user_id=record.user_id,
        symbol=record.symbol,
        side=record.side,
        entry_time=record.entry_time,
        exit_time=record.exit_time,
        entry_price=float(record.entry_price),
        exit_price=_f(record.exit_price),
        quantity=float(record.quantity),
        pnl=_f(record.pnl),
        commission=float(record.commission or 0),
        fees=float(record.fees or 0),
        stop_loss=_f(record.stop_loss),
    )


def _pattern_to_record(p: BehavioralPattern) -> PatternRecord:
    return PatternRecord(
        id=p.id,
        user_id=p.user_id,
        pattern_type=p.pattern_type.value,
        severity=p.severity.value,
        confidence_score=p.confidence_score,
        detected_at=p.detected_at,
        trigger_trade_id=p.trigger_trade_id,
        context_data=p.context_data or None,
    )


def _record_to_pattern(r: PatternRecord) -> BehavioralPattern:
    return BehavioralPattern(
        id=r.id,
        user_id=r.user_id,
        pattern_type=PatternType(r.pattern_type),
        severity=Severity(r.severity),
        confidence_score=r.confidence_score,
        detected_at=r.detected_at,
        trigger_trade_id=r.trigger_trade_id,
        context_data=r.context_data or {},
    )


def _record_to_revenge(r: RevengeEventRecord) -> RevengeTradingEvent:
    return RevengeTradingEvent(
        id=r.id,
        user_id=r.user_id,
        trigger_trade_id=r.trigger_trade_id,
        trigger_loss_amount=r.trigger_loss_amount,
        revenge_trades=list(r.revenge_trades or []),
        total_revenge_trades=r.total_revenge_trades,
        time_window_minutes=r.time_window_minutes,
        position_size_increase_percent=r.position_size_increase_percent,
        total_additional_loss=r.total_additional_loss,
        pattern_broken=r.pattern_broken,
        cooling_period_used=r.cooling_period_used,
        trigger_timestamp=r.trigger_timestamp,
        created_at=r.created_at,
        trade_quality=r.trade_quality,
    )


def _overconfidence_values(e: OverconfidenceEvent) -> dict[str, Any]:
    data = e.model_dump(mode="python")
    data["severity"] = e.severity.value
    data["outcome_after_streak"] = e.outcome_after_streak.value
    return data


def _record_to_overconfidence(r: OverconfidenceEventRecord) -> OverconfidenceEvent:
    return OverconfidenceEvent(
        id=r.id,
        user_id=r.user_id,
        win_streak_length=r.win_streak_length,
        streak_start_date=r.streak_start_date,
        streak_end_date=r.streak_end_date,
        baseline_position_size=r.baseline_position_size,
        peak_position_size=r.peak_position_size,
        position_size_increase_percent=r.position_size_increase_percent,
        total_streak_profit=r.total_streak_profit,
        streak_trades=list(r.streak_trades or []),
        severity=Severity(r.severity),
        confidence_score=r.confidence_score,
        outcome_after_streak=StreakOutcome(r.outcome_after_streak),
        outcome_trade_id=r.outcome_trade_id,
        outcome_amount=r.outcome_amount,
        outcome_analysis=r.outcome_analysis,
        ai_recommendations=r.ai_recommendations,
        ai_provider=r.ai_provider,
        ai_generated_at=r.ai_generated_at,
        created_at=r.created_at,
    )


def _record_to_loss_aversion(r: LossAversionEventRecord) -> LossAversionEvent:
    return LossAversionEvent.model_validate(r, from_attributes=True)


def _record_to_hold_pattern(r: HoldPatternRecord) -> TradeHoldPattern:
    return TradeHoldPattern(
        user_id=r.user_id,
        trade_id=r.trade_id,
        symbol=r.symbol,
        is_winner=r.is_winner,
        pnl=r.pnl,
        hold_time_minutes=r.hold_time_minutes,
        exit_quality_score=r.exit_quality_score,
        premature_exit=r.premature_exit,
        extended_hold=r.extended_hold,
        exit_time=r.exit_time,
    )


def _record_to_settings(r: SettingsRecord) -> BehavioralSettings:
    return BehavioralSettings(
        user_id=r.user_id,
        revenge_trading_enabled=r.revenge_trading_enabled,
        revenge_trading_sensitivity=Sensitivity(r.revenge_trading_sensitivity),
        overconfidence_enabled=r.overconfidence_enabled,
        overconfidence_sensitivity=Sensitivity(r.overconfidence_sensitivity),
        loss_aversion_enabled=r.loss_aversion_enabled,
        min_streak_length=r.min_streak_length,
        position_increase_threshold=r.position_increase_threshold,
        cooling_period_minutes=r.cooling_period_minutes,
        default_stop_loss_percent=r.default_stop_loss_percent,
        alert_preferences=AlertPreferences(**(r.alert_preferences or {})),
    )


def _record_to_alert(r: AlertRecord) -> BehavioralAlert:
    return BehavioralAlert(
        id=r.id,
        user_id=r.user_id,
        alert_type=AlertType(r.alert_type),
        title=r.title,
        message=r.message,
        alert_data=r.alert_data or {},
        status=AlertStatus(r.status),
        created_at=r.created_at,
        expires_at=r.expires_at,
        acknowledged_at=r.acknowledged_at,
    )


def _record_to_streak(r: StreakRecord) -> WinLossStreak:
    return WinLossStreak(
        id=r.id,
        user_id=r.user_id,
        streak_type=StreakType(r.streak_type),
        current_length=r.current_length,
        start_date=r.start_date,
        last_trade_date=r.last_trade_date,
        total_pnl=r.total_pnl,
        trade_ids=list(r.trade_ids or []),
        baseline_position_size=r.baseline_position_size,
        max_position_size=r.max_position_size,
        is_active=r.is_active,
    )


# ---------------------------------------------------------------------------
# SqlTradeStore
# ---------------------------------------------------------------------------

class SqlTradeStore:
    """Read-only trade access over the ``trades`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @_wrap_errors
    async def list_trades(
        self,
        flt: TradeFilter,
        *,
        order_by: str = "entry_time",
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Trade]:
        if order_by not in ("entry_time", "exit_time"):
            raise ValueError(f"Unsupported order_by {order_by!r}")
        column = getattr(TradeRecord, order_by)
        stmt = flt.apply(select(TradeRecord), TradeRecord)
        if descending:
            stmt = stmt.order_by(column.desc(), TradeRecord.trade_id.desc())
        else:
            stmt = stmt.order_by(column.asc(), TradeRecord.trade_id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_record_to_trade(r) for r in result.scalars().all()]

    @_wrap_errors
    async def get_trade(self, user_id: str, trade_id: str) -> Trade | None:
        stmt = select(TradeRecord).where(
            TradeRecord.user_id == user_id, TradeRecord.trade_id == trade_id,
        )
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        return _record_to_trade(record) if record is not None else None

    @_wrap_errors
    async def trade_span(self, user_id: str) -> tuple[datetime, datetime] | None:
        stmt = select(
            func.min(TradeRecord.entry_time),
            func.max(func.coalesce(TradeRecord.exit_time, TradeRecord.entry_time)),
        ).where(TradeRecord.user_id == user_id)
        result = await self._session.execute(stmt)
        first, last = result.one()
        if first is None:
            return None
        return first, last


# ---------------------------------------------------------------------------
# SqlBehaviorRepository
# ---------------------------------------------------------------------------

class SqlBehaviorRepository:
    """PostgreSQL implementation of ``IBehaviorRepository``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # -- settings --------------------------------------------------------------

    @_wrap_errors
    async def get_settings(self, user_id: str) -> BehavioralSettings | None:
        stmt = select(SettingsRecord).where(SettingsRecord.user_id == user_id)
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        return _record_to_settings(record) if record is not None else None

    @_wrap_errors
    async def save_settings(self, settings: BehavioralSettings) -> BehavioralSettings:
        values = {
            "user_id": settings.user_id,
            "revenge_trading_enabled": settings.revenge_trading_enabled,
            "revenge_trading_sensitivity": settings.revenge_trading_sensitivity.value,
            "overconfidence_enabled": settings.overconfidence_enabled,
            "overconfidence_sensitivity": settings.overconfidence_sensitivity.value,
            "loss_aversion_enabled": settings.loss_aversion_enabled,
            "min_streak_length": settings.min_streak_length,
            "position_increase_threshold": settings.position_increase_threshold,
            "cooling_period_minutes": settings.cooling_period_minutes,
            "default_stop_loss_percent": settings.default_stop_loss_percent,
            "alert_preferences": settings.alert_preferences.model_dump(),
        }
        stmt = pg_insert(SettingsRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SettingsRecord.user_id],
            set_={k: v for k, v in values.items() if k != "user_id"},
        )
        await self._session.execute(stmt)
        return settings

    # -- patterns --------------------------------------------------------------

    @_wrap_errors
    async def add_pattern(self, pattern: BehavioralPattern) -> None:
        self._session.add(_pattern_to_record(pattern))
        await self._session.flush()

    @_wrap_errors
    async def list_patterns(
        self,
        user_id: str,
        pattern_types: Sequence[PatternType] | None = None,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[BehavioralPattern]:
        stmt = select(PatternRecord).where(PatternRecord.user_id == user_id)
        if pattern_types:
            stmt = stmt.where(PatternRecord.pattern_type.in_([t.value for t in pattern_types]))
        stmt = _in_range(stmt, PatternRecord.detected_at, start, end)
        stmt = stmt.order_by(PatternRecord.detected_at.desc(), PatternRecord.id.desc())
        result = await self._session.execute(stmt)
        return [_record_to_pattern(r) for r in result.scalars().all()]

    @_wrap_errors
    async def delete_patterns(
        self,
        user_id: str,
        pattern_types: Sequence[PatternType],
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        stmt = delete(PatternRecord).where(
            PatternRecord.user_id == user_id,
            PatternRecord.pattern_type.in_([t.value for t in pattern_types]),
        )
        stmt = _in_range(stmt, PatternRecord.detected_at, start, end)
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    # -- revenge ---------------------------------------------------------------

    @_wrap_errors
    async def add_revenge_event(self, event: RevengeTradingEvent) -> None:
        self._session.add(RevengeEventRecord(**event.model_dump(mode="python")))
        await self._session.flush()

    @_wrap_errors
    async def list_revenge_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[RevengeTradingEvent]:
        stmt = select(RevengeEventRecord).where(RevengeEventRecord.user_id == user_id)
        stmt = _in_range(stmt, RevengeEventRecord.created_at, start, end)
        stmt = stmt.order_by(RevengeEventRecord.created_at.desc(), RevengeEventRecord.id.desc())
        result = await self._session.execute(stmt)
        return [_record_to_revenge(r) for r in result.scalars().all()]

    @_wrap_errors
    async def delete_revenge_events(self, user_id: str) -> int:
        result = await self._session.execute(
            delete(RevengeEventRecord).where(RevengeEventRecord.user_id == user_id)
        )
        return result.rowcount or 0

    # -- overconfidence ----------------------------------------------------------

    @_wrap_errors
    async def add_overconfidence_event(self, event: OverconfidenceEvent) -> None:
        self._session.add(OverconfidenceEventRecord(**_overconfidence_values(event)))
        await self._session.flush()

    @_wrap_errors
    async def update_overconfidence_event(self, event: OverconfidenceEvent) -> None:
        values = _overconfidence_values(event)
        values.pop("id")
        await self._session.execute(
            update(OverconfidenceEventRecord)
            .where(OverconfidenceEventRecord.id == event.id)
            .values(**values)
        )

    @_wrap_errors
    async def get_overconfidence_event(
        self, user_id: str, event_id: str,
    ) -> OverconfidenceEvent | None:
        stmt = select(OverconfidenceEventRecord).where(
            OverconfidenceEventRecord.user_id == user_id,
            OverconfidenceEventRecord.id == event_id,
        )
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        return _record_to_overconfidence(record) if record is not None else None

    @_wrap_errors
    async def list_overconfidence_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[OverconfidenceEvent]:
        stmt = select(OverconfidenceEventRecord).where(
            OverconfidenceEventRecord.user_id == user_id
        )
        stmt = _in_range(stmt, OverconfidenceEventRecord.streak_start_date, start, end)
        stmt = stmt.order_by(
            OverconfidenceEventRecord.streak_start_date.desc(),
            OverconfidenceEventRecord.id.desc(),
        )
        result = await self._session.execute(stmt)
        return [_record_to_overconfidence(r) for r in result.scalars().all()]

    @_wrap_errors
    async def delete_overconfidence_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        stmt = delete(OverconfidenceEventRecord).where(
            OverconfidenceEventRecord.user_id == user_id
        )
        stmt = _in_range(stmt, OverconfidenceEventRecord.streak_start_date, start, end)
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    # -- loss aversion -----------------------------------------------------------

    @_wrap_errors
    async def add_loss_aversion_event(self, event: LossAversionEvent) -> None:
        self._session.add(LossAversionEventRecord(**event.model_dump(mode="python")))
        await self._session.flush()

    async def latest_loss_aversion_event(self, user_id: str) -> LossAversionEvent | None:
        rows = await self.list_loss_aversion_events(user_id, limit=1)
        return rows[0] if rows else None

    @_wrap_errors
    async def list_loss_aversion_events(
        self, user_id: str, *, limit: int = 12,
    ) -> list[LossAversionEvent]:
        stmt = (
            select(LossAversionEventRecord)
            .where(LossAversionEventRecord.user_id == user_id)
            .order_by(
                LossAversionEventRecord.analysis_end_date.desc(),
                LossAversionEventRecord.created_at.desc(),
            )
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_record_to_loss_aversion(r) for r in result.scalars().all()]

    @_wrap_errors
    async def upsert_hold_patterns(self, patterns: Iterable[TradeHoldPattern]) -> int:
        count = 0
        for p in patterns:
            values = p.model_dump(mode="python")
            stmt = pg_insert(HoldPatternRecord).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[HoldPatternRecord.trade_id],
                set_={k: v for k, v in values.items() if k != "trade_id"},
            )
            await self._session.execute(stmt)
            count += 1
        return count

    @_wrap_errors
    async def list_hold_patterns(
        self,
        user_id: str,
        *,
        trade_ids: Iterable[str] | None = None,
        premature_winners_only: bool = False,
        limit: int | None = None,
    ) -> list[TradeHoldPattern]:
        stmt = select(HoldPatternRecord).where(HoldPatternRecord.user_id == user_id)
        if trade_ids is not None:
            stmt = stmt.where(HoldPatternRecord.trade_id.in_(list(trade_ids)))
        if premature_winners_only:
            stmt = stmt.where(
                HoldPatternRecord.is_winner.is_(True),
                HoldPatternRecord.premature_exit.is_(True),
            )
        stmt = stmt.order_by(
            HoldPatternRecord.exit_time.desc().nulls_last(),
            HoldPatternRecord.trade_id.desc(),
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_record_to_hold_pattern(r) for r in result.scalars().all()]

    # -- alerts ------------------------------------------------------------------

    @_wrap_errors
    async def add_alert(self, alert: BehavioralAlert) -> None:
        values = alert.model_dump(mode="python")
        values["alert_type"] = alert.alert_type.value
        values["status"] = alert.status.value
        self._session.add(AlertRecord(**values))
        await self._session.flush()

    @_wrap_errors
    async def list_alerts(
        self,
        user_id: str,
        *,
        active_at: datetime | None = None,
    ) -> list[BehavioralAlert]:
        stmt = select(AlertRecord).where(AlertRecord.user_id == user_id)
        if active_at is not None:
            stmt = stmt.where(
                AlertRecord.status == AlertStatus.ACTIVE.value,
                AlertRecord.expires_at > active_at,
            )
        stmt = stmt.order_by(AlertRecord.created_at.desc(), AlertRecord.id.desc())
        result = await self._session.execute(stmt)
        return [_record_to_alert(r) for r in result.scalars().all()]

    @_wrap_errors
    async def acknowledge_alert(
        self, user_id: str, alert_id: str, at: datetime,
    ) -> bool:
        result = await self._session.execute(
            update(AlertRecord)
            .where(AlertRecord.user_id == user_id, AlertRecord.id == alert_id)
            .values(status=AlertStatus.ACKNOWLEDGED.value, acknowledged_at=at)
        )
        return bool(result.rowcount)

    @_wrap_errors
    async def delete_alerts(self, user_id: str) -> int:
        result = await self._session.execute(
            delete(AlertRecord).where(AlertRecord.user_id == user_id)
        )
        return result.rowcount or 0

    # -- streak state ------------------------------------------------------------

    @_wrap_errors
    async def get_active_streak(self, user_id: str) -> WinLossStreak | None:
        stmt = (
            select(StreakRecord)
            .where(StreakRecord.user_id == user_id, StreakRecord.is_active.is_(True))
            .order_by(StreakRecord.start_date.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        return _record_to_streak(record) if record is not None else None

    @_wrap_errors
    async def save_streak(self, streak: WinLossStreak) -> None:
        values = streak.model_dump(mode="python")
        values["streak_type"] = streak.streak_type.value
        stmt = pg_insert(StreakRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[StreakRecord.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        await self._session.execute(stmt)
