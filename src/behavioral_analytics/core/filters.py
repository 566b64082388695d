"""Typed trade query filter shared by every detector.

A :class:`TradeFilter` is built once per analysis and then either
evaluated in memory (:meth:`TradeFilter.matches`) or compiled onto a
SQLAlchemy ``select`` (:meth:`TradeFilter.apply`).  Both paths implement
the same predicate so memory and SQL stores return identical trades.

Usage::

    flt = TradeFilter(user_id="u1", start=since, exclude_symbols=PLACEHOLDER_SYMBOLS)
    trades = await trade_store.list_trades(flt)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from .models import Trade

# Symbols used by demo and seed data; never analysed.
PLACEHOLDER_SYMBOLS: frozenset[str] = frozenset(
    {"TEST", "DEMO", "EXAMPLE", "XXX", "UNKNOWN"}
)


class DateField(str, Enum):
    """Which trade timestamp the start/end bounds apply to."""

    ENTRY = "entry_time"
    EXIT = "exit_time"


@dataclass(frozen=True)
class TradeFilter:
    """Immutable description of which trades an analysis reads.

    ``start`` is inclusive and ``end`` is inclusive, both evaluated
    against ``date_field``.
    """

    user_id: str
    start: datetime | None = None
    end: datetime | None = None
    date_field: DateField = DateField.ENTRY
    trade_ids: frozenset[str] | None = None
    symbols: frozenset[str] | None = None
    exclude_symbols: frozenset[str] = frozenset()
    closed_only: bool = True
    winners_only: bool = False
    losers_only: bool = False

    def with_trade_ids(self, trade_ids: Iterable[str]) -> TradeFilter:
        return replace(self, trade_ids=frozenset(trade_ids))

    # -- in-memory ------------------------------------------------------------

    def matches(self, trade: Trade) -> bool:
        if trade.user_id != self.user_id:
            return False
        if self.closed_only and (trade.exit_time is None or trade.exit_price is None):
            return False
        if self.trade_ids is not None and trade.id not in self.trade_ids:
            return False
        if self.symbols is not None and trade.symbol not in self.symbols:
            return False
        if trade.symbol in self.exclude_symbols:
            return False
        if self.winners_only and not trade.is_winner:
            return False
        if self.losers_only and not trade.is_loser:
            return False

        ts = trade.entry_time if self.date_field == DateField.ENTRY else trade.exit_time
        if self.start is not None and (ts is None or ts < self.start):
            return False
        if self.end is not None and (ts is None or ts > self.end):
            return False
        return True

    # -- SQL ------------------------------------------------------------------

    def apply(self, stmt: Any, model: Any) -> Any:
        """Add WHERE clauses for this filter to a ``select`` over *model*."""
        stmt = stmt.where(model.user_id == self.user_id)
        if self.closed_only:
            stmt = stmt.where(model.exit_time.is_not(None)).where(
                model.exit_price.is_not(None)
            )
        if self.trade_ids is not None:
            stmt = stmt.where(model.trade_id.in_(sorted(self.trade_ids)))
        if self.symbols is not None:
            stmt = stmt.where(model.symbol.in_(sorted(self.symbols)))
        if self.exclude_symbols:
            stmt = stmt.where(model.symbol.not_in(sorted(self.exclude_symbols)))
        if self.winners_only:
            stmt = stmt.where(model.pnl > 0)
        if self.losers_only:
            stmt = stmt.where(model.pnl < 0)

        column = getattr(model, self.date_field.value)
        if self.start is not None:
            stmt = stmt.where(column >= self.start)
        if self.end is not None:
            stmt = stmt.where(column <= self.end)
        return stmt
