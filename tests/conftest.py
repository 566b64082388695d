"""Shared fixtures for the behavioral analytics test suite."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from behavioral_analytics.cache import AnalyticsCache, MemoryCacheBackend
from behavioral_analytics.core.clock import SimClock
from behavioral_analytics.core.entitlements import StaticEntitlementGate
from behavioral_analytics.core.models import Trade
from behavioral_analytics.market_data.base import Candles, StaticMarketDataProvider
from behavioral_analytics.storage.memory import MemoryBehaviorRepository, MemoryTradeStore

USER = "user-1"
T0 = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    """Return a SimClock starting at 2024-06-01 00:00 UTC."""
    return SimClock(start=datetime(2024, 6, 1, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------

@pytest.fixture
def make_trade() -> Callable[..., Trade]:
    """Factory for closed trades.

    ``entry`` is minutes after 2024-05-01 14:00 UTC and ``hold`` the
    holding time in minutes.  ``pnl`` defaults to a small winner; pass
    ``hold=None`` for an open trade.
    """
    counter = itertools.count(1)

    def _make(
        *,
        entry: float = 0.0,
        hold: float | None = 30.0,
        pnl: float | None = 50.0,
        symbol: str = "AAPL",
        price: float = 100.0,
        quantity: float = 10.0,
        side: str = "long",
        user_id: str = USER,
        trade_id: str | None = None,
        exit_price: float | None = None,
        stop_loss: float | None = None,
    ) -> Trade:
        entry_time = T0 + timedelta(minutes=entry)
        closed = hold is not None
        if exit_price is None and closed:
            move = (pnl or 0.0) / quantity
            exit_price = price + move if side in ("long", "buy") else price - move
        return Trade(
            id=trade_id or f"t{next(counter):03d}",
            user_id=user_id,
            symbol=symbol,
            side=side,
            entry_time=entry_time,
            exit_time=entry_time + timedelta(minutes=hold) if closed else None,
            entry_price=price,
            exit_price=exit_price if closed else None,
            quantity=quantity,
            pnl=pnl if closed else None,
            stop_loss=stop_loss,
        )

    return _make


@pytest.fixture
def trade_store() -> MemoryTradeStore:
    return MemoryTradeStore()


@pytest.fixture
def repo() -> MemoryBehaviorRepository:
    return MemoryBehaviorRepository()


@pytest.fixture
def gate() -> StaticEntitlementGate:
    """Gate that grants every feature to every user."""
    return StaticEntitlementGate()


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------

def _ts(dt: datetime) -> int:
    return int(dt.timestamp())


@pytest.fixture
def make_candles() -> Callable[..., Candles]:
    """Build a 1-minute candle series from a list of closes.

    ``high`` and ``low`` equal the close unless given explicitly.
    """

    def _make(
        start: datetime,
        closes: list[float],
        *,
        step_minutes: int = 1,
        highs: list[float] | None = None,
        lows: list[float] | None = None,
    ) -> Candles:
        times = [_ts(start) + i * step_minutes * 60 for i in range(len(closes))]
        return Candles(
            times=times,
            open=list(closes),
            high=list(highs if highs is not None else closes),
            low=list(lows if lows is not None else closes),
            close=list(closes),
            volume=[1000.0] * len(closes),
        )

    return _make


@pytest.fixture
def provider() -> StaticMarketDataProvider:
    """Provider with no preloaded series; tests add their own."""
    return StaticMarketDataProvider()


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@pytest.fixture
def cache(sim_clock: SimClock) -> AnalyticsCache:
    return AnalyticsCache(MemoryCacheBackend(), sim_clock)


@pytest.fixture
def no_sleep() -> Callable[[float], Any]:
    """Recording replacement for ``asyncio.sleep``."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
