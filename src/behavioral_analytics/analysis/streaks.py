"""Win/loss streak segmentation.

Partitions a chronological trade sequence into maximal runs of
same-outcome trades.  Breakeven trades (``pnl == 0``) are skipped
entirely: they neither start, extend nor terminate a streak.

Two entry points share the same rules:

* :func:`segment_streaks` -- batch, over a full history.
* :class:`StreakTracker` -- incremental, one trade at a time against a
  persisted :class:`~behavioral_analytics.core.models.WinLossStreak`.

Usage::

    for streak in segment_streaks(trades):
        if streak.streak_type == StreakType.WIN and streak.length >= 4:
            evaluate(streak)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from behavioral_analytics.core.enums import StreakOutcome, StreakType
from behavioral_analytics.core.ids import new_id
from behavioral_analytics.core.models import Trade, WinLossStreak

logger = logging.getLogger(__name__)


def classify(trade: Trade) -> StreakType | None:
    """Win/loss class of a trade, ``None`` for breakeven."""
    if trade.net_pnl > 0:
        return StreakType.WIN
    if trade.net_pnl < 0:
        return StreakType.LOSS
    return None


def outcome_from_pnl(pnl: float | None) -> StreakOutcome:
    if pnl is None:
        return StreakOutcome.ONGOING
    if pnl > 0:
        return StreakOutcome.PROFIT
    if pnl < 0:
        return StreakOutcome.LOSS
    return StreakOutcome.BREAKEVEN


@dataclass
class Streak:
    """A closed or still-open run of same-class trades."""

    streak_type: StreakType
    trades: list[Trade] = field(default_factory=list)
    # Trade that broke the run; None while the run is still open.
    outcome_trade: Trade | None = None

    @property
    def length(self) -> int:
        return len(self.trades)

    @property
    def start(self) -> datetime:
        return self.trades[0].entry_time

    @property
    def end(self) -> datetime:
        return self.trades[-1].closed_at

    @property
    def total_pnl(self) -> float:
        return sum(t.net_pnl for t in self.trades)

    @property
    def trade_ids(self) -> list[str]:
        return [t.id for t in self.trades]

    @property
    def position_sizes(self) -> list[float]:
        return [t.position_size for t in self.trades]

    @property
    def outcome(self) -> StreakOutcome:
        if self.outcome_trade is None:
            return StreakOutcome.ONGOING
        return outcome_from_pnl(self.outcome_trade.net_pnl)

    @property
    def is_ongoing(self) -> bool:
        return self.outcome_trade is None


def segment_streaks(trades: Iterable[Trade]) -> list[Streak]:
    """Single forward pass over *trades* ordered by entry time."""
    ordered = sorted(trades, key=lambda t: (t.entry_time, t.id))
    streaks: list[Streak] = []
    current: Streak | None = None

    for trade in ordered:
        cls = classify(trade)
        if cls is None:
            continue
        if current is None:
            current = Streak(streak_type=cls, trades=[trade])
        elif cls == current.streak_type:
            current.trades.append(trade)
        else:
            current.outcome_trade = trade
            streaks.append(current)
            current = Streak(streak_type=cls, trades=[trade])

    if current is not None:
        streaks.append(current)
    return streaks


def win_streaks(
    trades: Sequence[Trade],
    *,
    min_length: int = 1,
) -> list[Streak]:
    return [
        s for s in segment_streaks(trades)
        if s.streak_type == StreakType.WIN and s.length >= min_length
    ]


# ---------------------------------------------------------------------------
# Incremental tracking
# ---------------------------------------------------------------------------

@dataclass
class StreakUpdate:
    """Result of applying one trade to the persisted streak state."""

    current: WinLossStreak | None
    ended: WinLossStreak | None = None
    changed: bool = True


class StreakTracker:
    """Applies segmentation rules incrementally to persisted streak state."""

    def apply(self, state: WinLossStreak | None, trade: Trade) -> StreakUpdate:
        cls = classify(trade)
        if cls is None:
            return StreakUpdate(current=state, changed=False)

        size = trade.position_size
        if state is None or not state.is_active:
            return StreakUpdate(current=self._start(trade, cls, size))

        if state.streak_type == cls:
            continued = state.model_copy(
                update={
                    "current_length": state.current_length + 1,
                    "last_trade_date": trade.closed_at,
                    "total_pnl": state.total_pnl + trade.net_pnl,
                    "trade_ids": [*state.trade_ids, trade.id],
                    "max_position_size": max(state.max_position_size, size),
                }
            )
            return StreakUpdate(current=continued)

        ended = state.model_copy(update={"is_active": False})
        logger.debug(
            "Streak ended: user=%s type=%s length=%d",
            state.user_id, state.streak_type.value, state.current_length,
        )
        return StreakUpdate(current=self._start(trade, cls, size), ended=ended)

    @staticmethod
    def _start(trade: Trade, cls: StreakType, size: float) -> WinLossStreak:
        return WinLossStreak(
            id=new_id(),
            user_id=trade.user_id,
            streak_type=cls,
            current_length=1,
            start_date=trade.entry_time,
            last_trade_date=trade.closed_at,
            total_pnl=trade.net_pnl,
            trade_ids=[trade.id],
            baseline_position_size=size,
            max_position_size=size,
            is_active=True,
        )
