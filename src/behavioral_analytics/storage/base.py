"""Storage protocols.

``ITradeStore`` reads the externally owned trade table.
``IBehaviorRepository`` persists everything this engine derives.

Two implementations ship for each:

* ``Memory*`` (:mod:`behavioral_analytics.storage.memory`) -- tests and
  single-process use.
* ``Sql*`` (:mod:`behavioral_analytics.storage.postgres.repos`) --
  PostgreSQL via SQLAlchemy async sessions.

Implementations raise
:class:`~behavioral_analytics.core.errors.PersistenceError` on storage
failure.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol, Sequence, runtime_checkable

from behavioral_analytics.core.config import BehavioralSettings
from behavioral_analytics.core.enums import PatternType
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


@runtime_checkable
class ITradeStore(Protocol):
    """Read-only access to trade records."""

    async def list_trades(
        self,
        flt: TradeFilter,
        *,
        order_by: str = "entry_time",
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Trade]:
        """Trades matching *flt*, ordered by ``entry_time`` or ``exit_time``."""
        ...

    async def get_trade(self, user_id: str, trade_id: str) -> Trade | None: ...

    async def trade_span(self, user_id: str) -> tuple[datetime, datetime] | None:
        """Earliest entry and latest exit-or-entry of the user's trades."""
        ...


@runtime_checkable
class IBehaviorRepository(Protocol):
    """CRUD for derived behavioral rows, keyed by user id."""

    # -- settings --------------------------------------------------------------

    async def get_settings(self, user_id: str) -> BehavioralSettings | None: ...

    async def save_settings(self, settings: BehavioralSettings) -> BehavioralSettings: ...

    # -- patterns --------------------------------------------------------------

    async def add_pattern(self, pattern: BehavioralPattern) -> None: ...

    async def list_patterns(
        self,
        user_id: str,
        pattern_types: Sequence[PatternType] | None = None,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[BehavioralPattern]: ...

    async def delete_patterns(
        self,
        user_id: str,
        pattern_types: Sequence[PatternType],
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        """Delete by ``detected_at`` range; returns rows removed."""
        ...

    # -- revenge ---------------------------------------------------------------

    async def add_revenge_event(self, event: RevengeTradingEvent) -> None: ...

    async def list_revenge_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[RevengeTradingEvent]:
        """Newest first by ``created_at``."""
        ...

    async def delete_revenge_events(self, user_id: str) -> int: ...

    # -- overconfidence ----------------------------------------------------------

    async def add_overconfidence_event(self, event: OverconfidenceEvent) -> None: ...

    async def update_overconfidence_event(self, event: OverconfidenceEvent) -> None: ...

    async def get_overconfidence_event(
        self, user_id: str, event_id: str,
    ) -> OverconfidenceEvent | None: ...

    async def list_overconfidence_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[OverconfidenceEvent]:
        """Newest first by ``streak_start_date``; range on the same column."""
        ...

    async def delete_overconfidence_events(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int: ...

    # -- loss aversion -----------------------------------------------------------

    async def add_loss_aversion_event(self, event: LossAversionEvent) -> None: ...

    async def latest_loss_aversion_event(self, user_id: str) -> LossAversionEvent | None: ...

    async def list_loss_aversion_events(
        self, user_id: str, *, limit: int = 12,
    ) -> list[LossAversionEvent]:
        """Newest first by ``analysis_end_date``."""
        ...

    async def upsert_hold_patterns(self, patterns: Iterable[TradeHoldPattern]) -> int: ...

    async def list_hold_patterns(
        self,
        user_id: str,
        *,
        trade_ids: Iterable[str] | None = None,
        premature_winners_only: bool = False,
        limit: int | None = None,
    ) -> list[TradeHoldPattern]:
        """Newest exit first."""
        ...

    # -- alerts ------------------------------------------------------------------

    async def add_alert(self, alert: BehavioralAlert) -> None: ...

    async def list_alerts(
        self,
        user_id: str,
        *,
        active_at: datetime | None = None,
    ) -> list[BehavioralAlert]:
        """Newest first; with *active_at* only unexpired active alerts."""
        ...

    async def acknowledge_alert(
        self, user_id: str, alert_id: str, at: datetime,
    ) -> bool: ...

    async def delete_alerts(self, user_id: str) -> int: ...

    # -- streak state ------------------------------------------------------------

    async def get_active_streak(self, user_id: str) -> WinLossStreak | None: ...

    async def save_streak(self, streak: WinLossStreak) -> None: ...
