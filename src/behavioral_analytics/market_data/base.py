"""Market data contract and value types.

``IMarketDataProvider`` is the boundary to external price and news
services.  Implementations raise
:class:`~behavioral_analytics.core.errors.ExternalDataUnavailable` for
failures, timeouts and empty payloads; analyzers catch it and degrade
to neutral results.

``StaticMarketDataProvider`` serves fixed series from memory and is used
by tests and offline re-analysis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Protocol, runtime_checkable

from behavioral_analytics.core.errors import ExternalDataUnavailable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass
class Candles:
    """Column-oriented OHLCV series; ``times`` are unix seconds, ascending."""

    times: list[int] = field(default_factory=list)
    open: list[float] = field(default_factory=list)
    high: list[float] = field(default_factory=list)
    low: list[float] = field(default_factory=list)
    close: list[float] = field(default_factory=list)
    volume: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.times)

    @property
    def is_empty(self) -> bool:
        return not self.times or not self.close

    def datetime_at(self, i: int) -> datetime:
        return datetime.fromtimestamp(self.times[i], tz=timezone.utc)

    def window(self, from_ts: int, to_ts: int) -> Candles:
        """Sub-series with ``from_ts <= t <= to_ts``."""
        idx = [i for i, t in enumerate(self.times) if from_ts <= t <= to_ts]
        return Candles(
            times=[self.times[i] for i in idx],
            open=[self.open[i] for i in idx],
            high=[self.high[i] for i in idx],
            low=[self.low[i] for i in idx],
            close=[self.close[i] for i in idx],
            volume=[self.volume[i] for i in idx] if self.volume else [],
        )

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Candles:
        """Build from the ``{t, o, h, l, c, v}`` candle payload shape."""
        return cls(
            times=[int(t) for t in data.get("t") or []],
            open=[float(x) for x in data.get("o") or []],
            high=[float(x) for x in data.get("h") or []],
            low=[float(x) for x in data.get("l") or []],
            close=[float(x) for x in data.get("c") or []],
            volume=[float(x) for x in data.get("v") or []],
        )


@dataclass(frozen=True)
class NewsItem:
    headline: str
    datetime: int  # unix seconds
    summary: str = ""
    source: str = ""

    @property
    def published_at(self) -> datetime:
        return datetime.fromtimestamp(self.datetime, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class IMarketDataProvider(Protocol):
    """Source of historical candles and company news."""

    @property
    def is_configured(self) -> bool:
        """Whether credentials are present for the full request budget."""
        ...

    async def get_candles(
        self,
        symbol: str,
        resolution: str,
        from_ts: int,
        to_ts: int,
    ) -> Candles:
        """Candles in ``[from_ts, to_ts]``; raises ExternalDataUnavailable."""
        ...

    async def get_company_news(
        self,
        symbol: str,
        from_date: date,
        to_date: date,
    ) -> list[NewsItem]:
        """News items published between the two dates (inclusive)."""
        ...


# ---------------------------------------------------------------------------
# StaticMarketDataProvider  (tests + offline)
# ---------------------------------------------------------------------------

class StaticMarketDataProvider:
    """Serve preloaded series from memory.

    Parameters
    ----------
    candles:
        ``{symbol: Candles}``; requests are answered by slicing the
        series to the requested window regardless of resolution.
    news:
        ``{symbol: [NewsItem, ...]}``.
    failing_symbols:
        Symbols for which every call raises ExternalDataUnavailable.
    """

    def __init__(
        self,
        candles: dict[str, Candles] | None = None,
        news: dict[str, list[NewsItem]] | None = None,
        *,
        failing_symbols: set[str] | None = None,
        configured: bool = True,
    ) -> None:
        self._candles = dict(candles or {})
        self._news = dict(news or {})
        self._failing = set(failing_symbols or ())
        self._configured = configured
        self.calls: list[tuple[str, str, int, int]] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def get_candles(
        self,
        symbol: str,
        resolution: str,
        from_ts: int,
        to_ts: int,
    ) -> Candles:
        self.calls.append((symbol, resolution, from_ts, to_ts))
        if symbol in self._failing:
            raise ExternalDataUnavailable(symbol, "provider error")
        series = self._candles.get(symbol)
        if series is None:
            raise ExternalDataUnavailable(symbol, "no data")
        window = series.window(from_ts, to_ts)
        if window.is_empty:
            raise ExternalDataUnavailable(symbol, "empty candle window")
        return window

    async def get_company_news(
        self,
        symbol: str,
        from_date: date,
        to_date: date,
    ) -> list[NewsItem]:
        if symbol in self._failing:
            raise ExternalDataUnavailable(symbol, "provider error")
        return [
            n for n in self._news.get(symbol, [])
            if from_date <= n.published_at.date() <= to_date
        ]
