"""In-memory trade store and behavior repository.

Used by unit tests, the CLI's offline mode and single-process
deployments.  Rows are copied on the way in and out so callers can
never mutate stored state by accident.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Sequence

from behavioral_analytics.core.config import BehavioralSettings
from behavioral_analytics.core.enums import AlertStatus, PatternType
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

logger = logging.getLogger(__name__)


def _in_range(ts: datetime, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and ts < start:
        return False
    if end is not None and ts > end:
        return False
    return True


# ---------------------------------------------------------------------------
# MemoryTradeStore
# ---------------------------------------------------------------------------

class MemoryTradeStore:
    """Holds trades in a dict keyed by trade id."""

    def __init__(self, trades: Iterable[Trade] | None = None) -> None:
        self._trades: dict[str, Trade] = {}
        for t in trades or ():
            self.add(t)

    def add(self, trade: Trade) -> None:
        self._trades[trade.id] = trade.model_copy()

    def extend(self, trades: Iterable[Trade]) -> None:
        for t in trades:
            self.add(t)

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
        rows = [t for t in self._trades.values() if flt.matches(t)]
        if order_by == "entry_time":
            rows.sort(key=lambda t: (t.entry_time, t.id), reverse=descending)
        else:
            rows.sort(key=lambda t: (t.closed_at, t.id), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [t.model_copy() for t in rows]

    async def get_trade(self, user_id: str, trade_id: str) -> Trade | None:
        t = self._trades.get(trade_id)
        if t is None or t.user_id != user_id:
            return None
        return t.model_copy()

    async def trade_span(self, user_id: str) -> tuple[datetime, datetime] | None:
        rows = [t for t in self._trades.values() if t.user_id == user_id]
        if not rows:
            return None
        return min(t.entry_time for t in rows), max(t.closed_at for t in rows)


# ---------------------------------------------------------------------------
# MemoryBehaviorRepository
# ---------------------------------------------------------------------------

class MemoryBehaviorRepository:
    """Dict-and-list backed implementation of ``IBehaviorRepository``."""

    def __init__(self) -> None:
        self._settings: dict[str, BehavioralSettings] = {}
        self._patterns: list[BehavioralPattern] = []
        self._revenge: list[RevengeTradingEvent] = []
        self._overconfidence: dict[str, OverconfidenceEvent] = {}
        self._loss_aversion: list[LossAversionEvent] = []
        self._hold_patterns: dict[str, TradeHoldPattern] = {}
        self._alerts: dict[str, BehavioralAlert] = {}
        self._streaks: dict[str, WinLossStreak] = {}

    # -- settings --------------------------------------------------------------

    async def get_settings(self, user_id: str) -> BehavioralSettings | None:
        s = self._settings.get(user_id)
        return s.model_copy(deep=True) if s else None

    async def save_settings(self, settings: BehavioralSettings) -> BehavioralSettings:
        self._settings[settings.user_id] = settings.model_copy(deep=True)
        return settings

    # -- patterns --------------------------------------------------------------

    async def add_pattern(self, pattern: BehavioralPattern) -> None:
        self._patterns.append(pattern.model_copy(deep=True))

    async def list_patterns(
        self,
        user_id: str,
        pattern_types: Sequence[PatternType] | None = None,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[BehavioralPattern]:
        types = set(pattern_types) if pattern_types else None
        rows = [
            p for p in self._patterns
            if p.user_id == user_id
            and (types is None or p.pattern_type in types)
            and _in_range(p.detected_at, start, end)
        ]
        rows.sort(key=lambda p: (p.detected_at, p.id), reverse=True)
        return [p.model_copy(deep=True) for p in rows]

    async def delete_patterns(
        self,
        user_id: str,
        pattern_types: Sequence[PatternType],
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        types = set(pattern_types)
        keep = [
            p for p in self._patterns
            if not (
                p.user_id == user_id
                and p.pattern_type in types
                and _in_range(p.detected_at, start, end)
            )
        ]
        removed = len(self._patterns) - len(keep)
        self._patterns = keep
        return removed

    # -- revenge ---------------------------------------------------------------

    async def add_revenge_event(self, event: RevengeTradingEvent) -> None:
        self._revenge.append(event.model_copy(deep=True))

    async def list_revenge_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[RevengeTradingEvent]:
        rows = [
            e for e in self._revenge
            if e.user_id == user_id and _in_range(e.created_at, start, end)
        ]
        rows.sort(key=lambda e: (e.created_at, e.id), reverse=True)
        return [e.model_copy(deep=True) for e in rows]

    async def delete_revenge_events(self, user_id: str) -> int:
        before = len(self._revenge)
        self._revenge = [e for e in self._revenge if e.user_id != user_id]
        return before - len(self._revenge)

    # -- overconfidence ----------------------------------------------------------

    async def add_overconfidence_event(self, event: OverconfidenceEvent) -> None:
        self._overconfidence[event.id] = event.model_copy(deep=True)

    async def update_overconfidence_event(self, event: OverconfidenceEvent) -> None:
        if event.id in self._overconfidence:
            self._overconfidence[event.id] = event.model_copy(deep=True)

    async def get_overconfidence_event(
        self, user_id: str, event_id: str,
    ) -> OverconfidenceEvent | None:
        e = self._overconfidence.get(event_id)
        if e is None or e.user_id != user_id:
            return None
        return e.model_copy(deep=True)

    async def list_overconfidence_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[OverconfidenceEvent]:
        rows = [
            e for e in self._overconfidence.values()
            if e.user_id == user_id and _in_range(e.streak_start_date, start, end)
        ]
        rows.sort(key=lambda e: (e.streak_start_date, e.id), reverse=True)
        return [e.model_copy(deep=True) for e in rows]

    async def delete_overconfidence_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        doomed = [
            k for k, e in self._overconfidence.items()
            if e.user_id == user_id and _in_range(e.streak_start_date, start, end)
        ]
        for k in doomed:
            del self._overconfidence[k]
        return len(doomed)

    # -- loss aversion -----------------------------------------------------------

    async def add_loss_aversion_event(self, event: LossAversionEvent) -> None:
        self._loss_aversion.append(event.model_copy(deep=True))

    async def latest_loss_aversion_event(self, user_id: str) -> LossAversionEvent | None:
        rows = await self.list_loss_aversion_events(user_id, limit=1)
        return rows[0] if rows else None

    async def list_loss_aversion_events(
        self, user_id: str, *, limit: int = 12,
    ) -> list[LossAversionEvent]:
        rows = [e for e in self._loss_aversion if e.user_id == user_id]
        rows.sort(key=lambda e: (e.analysis_end_date, e.created_at), reverse=True)
        return [e.model_copy(deep=True) for e in rows[:limit]]

    async def upsert_hold_patterns(self, patterns: Iterable[TradeHoldPattern]) -> int:
        count = 0
        for p in patterns:
            self._hold_patterns[p.trade_id] = p.model_copy()
            count += 1
        return count

    async def list_hold_patterns(
        self,
        user_id: str,
        *,
        trade_ids: Iterable[str] | None = None,
        premature_winners_only: bool = False,
        limit: int | None = None,
    ) -> list[TradeHoldPattern]:
        ids = set(trade_ids) if trade_ids is not None else None
        rows = [
            p for p in self._hold_patterns.values()
            if p.user_id == user_id
            and (ids is None or p.trade_id in ids)
            and (not premature_winners_only or (p.is_winner and p.premature_exit))
        ]
        rows.sort(key=lambda p: (p.exit_time is not None, p.exit_time, p.trade_id), reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [p.model_copy() for p in rows]

    # -- alerts ------------------------------------------------------------------

    async def add_alert(self, alert: BehavioralAlert) -> None:
        self._alerts[alert.id] = alert.model_copy(deep=True)

    async def list_alerts(
        self,
        user_id: str,
        *,
        active_at: datetime | None = None,
    ) -> list[BehavioralAlert]:
        rows = [
            a for a in self._alerts.values()
            if a.user_id == user_id and (active_at is None or a.is_active(active_at))
        ]
        rows.sort(key=lambda a: (a.created_at, a.id), reverse=True)
        return [a.model_copy(deep=True) for a in rows]

    async def acknowledge_alert(
        self, user_id: str, alert_id: str, at: datetime,
    ) -> bool:
        a = self._alerts.get(alert_id)
        if a is None or a.user_id != user_id:
            return False
        self._alerts[alert_id] = a.model_copy(
            update={"status": AlertStatus.ACKNOWLEDGED, "acknowledged_at": at}
        )
        return True

    async def delete_alerts(self, user_id: str) -> int:
        doomed = [k for k, a in self._alerts.items() if a.user_id == user_id]
        for k in doomed:
            del self._alerts[k]
        return len(doomed)

    # -- streak state ------------------------------------------------------------

    async def get_active_streak(self, user_id: str) -> WinLossStreak | None:
        rows = [s for s in self._streaks.values() if s.user_id == user_id and s.is_active]
        if not rows:
            return None
        rows.sort(key=lambda s: s.start_date, reverse=True)
        return rows[0].model_copy(deep=True)

    async def save_streak(self, streak: WinLossStreak) -> None:
        self._streaks[streak.id] = streak.model_copy(deep=True)

    # -- helpers for tests ---------------------------------------------------------

    def counts(self, user_id: str) -> dict[str, int]:
        return {
            "patterns": sum(1 for p in self._patterns if p.user_id == user_id),
            "revenge_events": sum(1 for e in self._revenge if e.user_id == user_id),
            "overconfidence_events": sum(
                1 for e in self._overconfidence.values() if e.user_id == user_id
            ),
            "loss_aversion_events": sum(
                1 for e in self._loss_aversion if e.user_id == user_id
            ),
            "hold_patterns": sum(
                1 for p in self._hold_patterns.values() if p.user_id == user_id
            ),
            "alerts": sum(1 for a in self._alerts.values() if a.user_id == user_id),
        }
