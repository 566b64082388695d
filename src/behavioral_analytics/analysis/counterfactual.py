"""Counterfactual price analysis around a trade's exit and entry.

Answers two questions with historical candles:

* **Exit** -- how much further did price run in the trade's favour
  after the exit, before a realistic pullback would have stopped the
  trader out?  The forward walk tracks the running extreme and halts at
  the first retrace by the duration tier's pullback fraction.
* **Entry** -- what was the best achievable entry in a comparable
  window before the real entry?

Horizons, candle resolution and pullback fraction scale with how long
the trade was held (see :func:`select_tier`).  The pullback fractions are
uncalibrated heuristics kept as constants.

Market data failures never propagate: both searches return a neutral
result (``data_available=False``, no improvement) and the failure is
logged once per symbol for the analyzer's lifetime.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from behavioral_analytics.core.enums import DurationTier, TradeSide
from behavioral_analytics.core.errors import ExternalDataError
from behavioral_analytics.core.models import Trade
from behavioral_analytics.market_data.base import IMarketDataProvider

logger = logging.getLogger(__name__)

NOMINAL_QUANTITY = 100  # Units assumed when pricing an improved entry


# ---------------------------------------------------------------------------
# Duration tiers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TierParams:
    tier: DurationTier
    lookahead_minutes: float
    lookback_minutes: float
    resolution: str
    pullback_fraction: float

    @property
    def description(self) -> str:
        return (
            f"{self.tier.value} ({round(self.lookahead_minutes)}m forward, "
            f"{round(self.lookback_minutes)}m back, res={self.resolution})"
        )


def select_tier(hold_minutes: float | None) -> TierParams:
    """Pick horizons for a hold duration; unknown holds count as scalps."""
    h = hold_minutes or 0.0
    if h < 30:
        return TierParams(DurationTier.SCALP, 120, 120, "1", 0.05)
    if h < 240:
        window = min(h * 2, 480)
        return TierParams(DurationTier.DAY_TRADE, window, window, "5", 0.08)
    if h < 1440:
        return TierParams(DurationTier.INTRADAY, 1440, 1440, "15", 0.10)
    if h < 10080:
        return TierParams(
            DurationTier.SWING, min(h, 20160), min(h, 10080), "60", 0.15,
        )
    if h < 43200:
        return TierParams(
            DurationTier.POSITION, min(h, 43200), min(h * 0.5, 20160), "D", 0.20,
        )
    return TierParams(DurationTier.LONG_TERM, 43200, 20160, "D", 0.20)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

@dataclass
class PullbackWalk:
    """Forward price path truncated at the first qualifying pullback."""

    prices: list[float]
    times: list[int]
    pullback_time: int | None
    max_price: float
    min_price: float

    @property
    def pullback_occurred(self) -> bool:
        return self.pullback_time is not None


def walk_until_pullback(
    prices: Sequence[float],
    times: Sequence[int],
    exit_price: float,
    side: TradeSide,
    pullback_fraction: float,
) -> PullbackWalk:
    """Walk *prices* forward from the exit, stopping at the first pullback.

    Long: stop once price has made a new high above the exit and then
    falls to ``running_max * (1 - fraction)``.  Short mirrors this with
    the running low.  The stopping candle is included.
    """
    if not prices:
        return PullbackWalk([], [], None, exit_price, exit_price)

    running_max = exit_price
    running_min = exit_price
    end = len(prices) - 1
    pullback_time: int | None = None

    for i, price in enumerate(prices):
        running_max = max(running_max, price)
        running_min = min(running_min, price)

        if side == TradeSide.LONG:
            hit = running_max > exit_price and price <= running_max * (1 - pullback_fraction)
        else:
            hit = running_min < exit_price and price >= running_min * (1 + pullback_fraction)

        if hit:
            end = i
            pullback_time = times[i]
            break

    eff_prices = list(prices[: end + 1])
    eff_times = list(times[: end + 1])
    return PullbackWalk(
        prices=eff_prices,
        times=eff_times,
        pullback_time=pullback_time,
        max_price=max(eff_prices),
        min_price=min(eff_prices),
    )


def price_at_time(
    times: Sequence[int],
    prices: Sequence[float],
    target: int,
) -> float | None:
    """Price of the candle nearest to *target*; first wins on ties."""
    if not times:
        return None
    best = min(range(len(times)), key=lambda i: (abs(times[i] - target), i))
    return prices[best]


def entry_timing_recommendation(improvement_percent: float, minutes_before: float) -> str:
    pct = f"{improvement_percent:.1f}"
    mins = round(minutes_before)
    if improvement_percent < 1:
        return "Excellent entry timing - you entered near the optimal price point"
    if improvement_percent < 3:
        return (
            f"Good entry timing - only {pct}% from optimal. "
            f"Consider waiting {mins} minutes for better setups"
        )
    if improvement_percent < 5:
        return (
            f"Fair entry timing - you could have saved {pct}% by waiting "
            f"{mins} minutes. Watch for pullbacks before entering"
        )
    return (
        f"Entry was {pct}% above optimal price {mins} minutes earlier. "
        f"Consider using limit orders or waiting for better price action"
    )


def _ts(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _iso(ts: int | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

_CHECKPOINTS: tuple[tuple[str, int], ...] = (
    ("price_after_1_hour", 3600),
    ("price_after_4_hours", 14400),
    ("price_after_1_day", 86400),
)


@dataclass
class ExitAnalysis:
    """Maximum favourable excursion after an exit."""

    symbol: str
    side: TradeSide
    exit_price: float
    quantity: float
    tier: DurationTier
    hold_time_minutes: float
    lookahead_minutes: float
    data_available: bool = False
    checkpoints: dict[str, float] = field(default_factory=dict)
    max_price: float = 0.0
    min_price: float = 0.0
    max_price_time: int | None = None
    min_price_time: int | None = None
    price_direction: str = "unknown"
    volatility_percent: float = 0.0
    pullback_occurred: bool = False
    pullback_time: int | None = None
    error: str | None = None

    @property
    def potential_additional_profit(self) -> float:
        """``(extreme - exit) x qty``, sign-flipped for short."""
        if not self.data_available:
            return 0.0
        if self.side == TradeSide.LONG:
            return (self.max_price - self.exit_price) * self.quantity
        return (self.exit_price - self.min_price) * self.quantity

    def checkpoint_profits(self) -> dict[str, float]:
        sign = 1.0 if self.side == TradeSide.LONG else -1.0
        return {
            key: sign * (price - self.exit_price) * self.quantity
            for key, price in self.checkpoints.items()
        }

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        data["tier"] = self.tier.value
        data["max_price_time"] = _iso(self.max_price_time)
        data["min_price_time"] = _iso(self.min_price_time)
        data["pullback_time"] = _iso(self.pullback_time)
        data["potential_additional_profit"] = round(self.potential_additional_profit, 2)
        return data


@dataclass
class EntryAnalysis:
    """Best achievable entry before the real one."""

    symbol: str
    side: TradeSide
    actual_entry_price: float
    best_entry_price: float
    tier: DurationTier
    lookback_minutes: float
    data_available: bool = False
    best_entry_time: int | None = None
    minutes_before_entry: int = 0
    improvement_dollar: float = 0.0
    improvement_percent: float = 0.0
    improved_pnl: dict[str, float] | None = None
    recommendation: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        data["tier"] = self.tier.value
        data["best_entry_time"] = _iso(self.best_entry_time)
        return data


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class CounterfactualPriceAnalyzer:
    """Exit and entry counterfactuals backed by an ``IMarketDataProvider``.

    Parameters
    ----------
    provider:
        Market data source; ``None`` makes every result neutral.
    """

    def __init__(self, provider: IMarketDataProvider | None) -> None:
        self._provider = provider
        self._warned_symbols: set[str] = set()

    @property
    def is_available(self) -> bool:
        return self._provider is not None

    @property
    def is_configured(self) -> bool:
        return self._provider is not None and bool(self._provider.is_configured)

    def _note_unavailable(self, symbol: str, exc: Exception) -> None:
        if symbol in self._warned_symbols:
            logger.debug("Market data still unavailable for %s: %s", symbol, exc)
            return
        self._warned_symbols.add(symbol)
        logger.warning("Market data unavailable for %s, using neutral result: %s", symbol, exc)

    # -- exit ------------------------------------------------------------------

    async def analyze_exit(self, trade: Trade) -> ExitAnalysis:
        if trade.exit_time is None or trade.exit_price is None:
            raise ValueError(f"Trade {trade.id} is not closed")
        return await self.analyze_exit_at(
            symbol=trade.symbol,
            side=trade.side,
            exit_price=trade.exit_price,
            exit_time=trade.exit_time,
            quantity=abs(trade.quantity),
            hold_minutes=trade.hold_time_minutes,
        )

    async def analyze_exit_at(
        self,
        *,
        symbol: str,
        side: TradeSide,
        exit_price: float,
        exit_time: datetime,
        quantity: float,
        hold_minutes: float | None,
    ) -> ExitAnalysis:
        params = select_tier(hold_minutes)
        result = ExitAnalysis(
            symbol=symbol,
            side=side,
            exit_price=exit_price,
            quantity=quantity,
            tier=params.tier,
            hold_time_minutes=round(hold_minutes or 0.0),
            lookahead_minutes=params.lookahead_minutes,
            max_price=exit_price,
            min_price=exit_price,
        )
        if self._provider is None:
            result.error = "no market data provider"
            return result

        start = _ts(exit_time)
        end = start + int(params.lookahead_minutes * 60)
        try:
            candles = await self._provider.get_candles(symbol, params.resolution, start, end)
            if candles.is_empty:
                raise ExternalDataError(f"no candles for {symbol}")
        except (ExternalDataError, ValueError) as exc:
            self._note_unavailable(symbol, exc)
            result.error = str(exc)
            return result

        series = candles.high if side == TradeSide.LONG else candles.low
        if len(series) != len(candles.times):
            series = candles.close
        walk = walk_until_pullback(
            series, candles.times, exit_price, side, params.pullback_fraction,
        )

        horizon_seconds = params.lookahead_minutes * 60
        for key, offset in _CHECKPOINTS:
            if horizon_seconds >= offset:
                price = price_at_time(walk.times, walk.prices, start + offset)
                result.checkpoints[key] = price if price is not None else exit_price

        result.data_available = True
        result.max_price = walk.max_price
        result.min_price = walk.min_price
        result.max_price_time = walk.times[walk.prices.index(walk.max_price)]
        result.min_price_time = walk.times[walk.prices.index(walk.min_price)]
        result.price_direction = "up" if walk.max_price > exit_price else "down"
        result.volatility_percent = (
            (walk.max_price - walk.min_price) / exit_price * 100 if exit_price else 0.0
        )
        result.pullback_occurred = walk.pullback_occurred
        result.pullback_time = walk.pullback_time
        logger.debug(
            "Exit analysis %s: tier=%s max=%.4f min=%.4f pullback=%s",
            symbol, params.tier.value, walk.max_price, walk.min_price,
            walk.pullback_occurred,
        )
        return result

    # -- entry -----------------------------------------------------------------

    async def analyze_entry(self, trade: Trade) -> EntryAnalysis:
        return await self.analyze_entry_at(
            symbol=trade.symbol,
            side=trade.side,
            entry_price=trade.entry_price,
            entry_time=trade.entry_time,
            exit_price=trade.exit_price,
            hold_minutes=trade.hold_time_minutes,
        )

    async def analyze_entry_at(
        self,
        *,
        symbol: str,
        side: TradeSide,
        entry_price: float,
        entry_time: datetime,
        exit_price: float | None,
        hold_minutes: float | None,
    ) -> EntryAnalysis:
        params = select_tier(hold_minutes)
        result = EntryAnalysis(
            symbol=symbol,
            side=side,
            actual_entry_price=entry_price,
            best_entry_price=entry_price,
            tier=params.tier,
            lookback_minutes=params.lookback_minutes,
        )
        if self._provider is None:
            result.error = "no market data provider"
            return result

        end = _ts(entry_time)
        start = end - int(params.lookback_minutes * 60)
        try:
            candles = await self._provider.get_candles(symbol, params.resolution, start, end)
            if candles.is_empty:
                raise ExternalDataError(f"no candles for {symbol}")
        except (ExternalDataError, ValueError) as exc:
            self._note_unavailable(symbol, exc)
            result.error = str(exc)
            return result

        if side == TradeSide.LONG:
            series = candles.low or candles.close
            best = min(series)
            improvement = entry_price - best
        else:
            series = candles.high or candles.close
            best = max(series)
            improvement = best - entry_price
        best_time = candles.times[series.index(best)]
        improvement_pct = improvement / entry_price * 100 if entry_price else 0.0
        minutes_before = (end - best_time) / 60

        if exit_price is not None:
            sign = 1.0 if side == TradeSide.LONG else -1.0
            actual = sign * (exit_price - entry_price) * NOMINAL_QUANTITY
            better = sign * (exit_price - best) * NOMINAL_QUANTITY
            result.improved_pnl = {
                "actual": actual,
                "with_better_entry": better,
                "improvement": better - actual,
                "improvement_percent": (
                    (better - actual) / abs(actual) * 100 if actual else 0.0
                ),
            }

        result.data_available = True
        result.best_entry_price = best
        result.best_entry_time = best_time
        result.minutes_before_entry = round(minutes_before)
        result.improvement_dollar = round(improvement, 2)
        result.improvement_percent = round(improvement_pct, 2)
        result.recommendation = entry_timing_recommendation(improvement_pct, minutes_before)
        return result
