"""Finnhub REST client for historical candles and company news.

Implements :class:`~behavioral_analytics.market_data.base.IMarketDataProvider`
with rate limiting, retry with exponential backoff, and conversion of
every failure into ``ExternalDataUnavailable`` (or ``RateLimited`` once
the retry budget is spent on 429 responses).

Usage::

    async with FinnhubClient(api_key=key) as client:
        candles = await client.get_candles("AAPL", "5", from_ts, to_ts)
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import date
from typing import Any

import httpx

from behavioral_analytics.core.config import MarketDataConfig
from behavioral_analytics.core.errors import ExternalDataUnavailable, RateLimited

from .base import Candles, NewsItem

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://finnhub.io/api/v1"

# Free tier without a key is capped far lower than a keyed account.
KEYED_RATE_RPM = 150
UNKEYED_RATE_RPM = 10

VALID_RESOLUTIONS = frozenset({"1", "5", "15", "30", "60", "D", "W", "M"})


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

class TokenBucketRateLimiter:
    """Simple async token-bucket rate limiter.

    Parameters
    ----------
    rate:
        Maximum requests per minute.
    """

    def __init__(self, rate: float) -> None:
        self._rate = rate
        self._tokens = rate
        self._max_tokens = rate
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Block until a token is available."""
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self._last_refill
                self._tokens = min(
                    self._max_tokens,
                    self._tokens + elapsed * (self._rate / 60.0),
                )
                self._last_refill = now

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return

            await asyncio.sleep(60.0 / self._rate)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class FinnhubClient:
    """Async Finnhub client.

    Parameters
    ----------
    api_key:
        Finnhub token.  Without it ``is_configured`` is False and every
        request raises ExternalDataUnavailable.
    base_url:
        API root.
    rate_limit_rpm:
        Requests per minute budget; defaults by key presence.
    max_retries:
        Maximum attempts for transient errors.
    base_backoff:
        Base backoff in seconds for retries.
    timeout:
        HTTP request timeout in seconds.
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        api_key: str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        rate_limit_rpm: float | None = None,
        max_retries: int = 3,
        base_backoff: float = 1.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._max_retries = max(1, max_retries)
        self._base_backoff = base_backoff
        self._timeout = timeout
        self._transport = transport
        rpm = rate_limit_rpm or (KEYED_RATE_RPM if api_key else UNKEYED_RATE_RPM)
        self._rate_limiter = TokenBucketRateLimiter(rpm)
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: MarketDataConfig) -> FinnhubClient:
        return cls(
            config.api_key,
            base_url=config.base_url,
            rate_limit_rpm=config.rate_limit_rpm if config.api_key else None,
            max_retries=config.max_retries,
            base_backoff=config.base_backoff,
            timeout=config.timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> FinnhubClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Endpoints -----------------------------------------------------------

    async def get_candles(
        self,
        symbol: str,
        resolution: str,
        from_ts: int,
        to_ts: int,
    ) -> Candles:
        """Fetch OHLCV candles for ``[from_ts, to_ts]`` (unix seconds).

        Raises
        ------
        ExternalDataUnavailable
            On transport failure, a non-``ok`` status or an empty series.
        """
        if resolution not in VALID_RESOLUTIONS:
            raise ValueError(f"Unsupported resolution {resolution!r}")

        data = await self._request_with_retry(
            "/stock/candle",
            {
                "symbol": symbol.upper(),
                "resolution": resolution,
                "from": int(from_ts),
                "to": int(to_ts),
            },
            symbol,
        )
        if not isinstance(data, dict) or data.get("s") != "ok" or not data.get("c"):
            status = data.get("s") if isinstance(data, dict) else type(data).__name__
            raise ExternalDataUnavailable(symbol, f"no candle data (status={status})")

        candles = Candles.from_payload(data)
        logger.debug(
            "Fetched %d candles for %s res=%s", len(candles), symbol, resolution,
        )
        return candles

    async def get_company_news(
        self,
        symbol: str,
        from_date: date,
        to_date: date,
    ) -> list[NewsItem]:
        """Fetch company news between two dates (inclusive)."""
        data = await self._request_with_retry(
            "/company-news",
            {
                "symbol": symbol.upper(),
                "from": from_date.isoformat(),
                "to": to_date.isoformat(),
            },
            symbol,
        )
        if not isinstance(data, list):
            raise ExternalDataUnavailable(symbol, "malformed news payload")
        return [
            NewsItem(
                headline=str(item.get("headline", "")),
                datetime=int(item.get("datetime") or 0),
                summary=str(item.get("summary", "")),
                source=str(item.get("source", "")),
            )
            for item in data
            if isinstance(item, dict)
        ]

    # -- Retry logic ---------------------------------------------------------

    async def _request_with_retry(
        self,
        path: str,
        params: dict[str, Any],
        symbol: str,
    ) -> Any:
        """Execute a GET request with rate limiting, retry, and backoff.

        Retries on:
        - 5xx server errors
        - 429 rate limit responses (honouring ``Retry-After``)
        - Transport errors (network, timeout, protocol)

        Raises immediately on non-retryable 4xx errors.
        """
        if not self._api_key:
            raise ExternalDataUnavailable(symbol, "API key not configured")
        if self._client is None:
            raise RuntimeError("Client not opened. Use 'async with' or call open().")

        query = {**params, "token": self._api_key}

        for attempt in range(1, self._max_retries + 1):
            await self._rate_limiter.acquire()

            try:
                resp = await self._client.get(path, params=query)
            except httpx.TransportError as exc:
                if attempt == self._max_retries:
                    raise ExternalDataUnavailable(
                        symbol, f"network error after {attempt} attempts: {exc}"
                    ) from exc
                wait = self._backoff_delay(attempt)
                logger.warning(
                    "Network error (attempt %d/%d), retrying in %.1fs: %s",
                    attempt, self._max_retries, wait, exc,
                )
                await asyncio.sleep(wait)
                continue

            if resp.status_code == 200:
                try:
                    return resp.json()
                except ValueError as exc:
                    raise ExternalDataUnavailable(
                        symbol, f"malformed response body: {resp.text[:80]!r}"
                    ) from exc

            if resp.status_code == 429:
                retry_after = float(resp.headers.get("Retry-After", "60"))
                logger.warning(
                    "Rate limited (429), sleeping %.0fs (attempt %d/%d)",
                    retry_after, attempt, self._max_retries,
                )
                if attempt == self._max_retries:
                    raise RateLimited("finnhub")
                await asyncio.sleep(retry_after)
                continue

            if resp.status_code >= 500:
                if attempt == self._max_retries:
                    raise ExternalDataUnavailable(
                        symbol, f"server error {resp.status_code}"
                    )
                wait = self._backoff_delay(attempt)
                logger.warning(
                    "Server error %d (attempt %d/%d), retrying in %.1fs",
                    resp.status_code, attempt, self._max_retries, wait,
                )
                await asyncio.sleep(wait)
                continue

            raise ExternalDataUnavailable(
                symbol, f"API error {resp.status_code}: {resp.text[:200]}"
            )

        raise ExternalDataUnavailable(symbol, "retries exhausted")

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter."""
        base = self._base_backoff * (2 ** (attempt - 1))
        return base + random.uniform(0, base * 0.5)
