"""Periodic removal of expired cache rows.

Read-time expiry in :class:`AnalyticsCache` is what guarantees callers
never see stale data; the sweeper only reclaims storage.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .service import AnalyticsCache

logger = logging.getLogger(__name__)


class CacheSweeper:
    """Runs ``cache.sweep_expired()`` every *interval_hours*."""

    def __init__(self, cache: AnalyticsCache, *, interval_hours: float = 6.0) -> None:
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        self._cache = cache
        self._interval = interval_hours * 3600.0
        self._task: asyncio.Task | None = None
        self._running = False
        self.runs = 0
        self.total_removed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Cache sweeper is already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="cache-sweeper")
        logger.info("Cache sweeper started (interval=%.0fs)", self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Cache sweeper stopped")

    async def run_once(self) -> int:
        removed = await self._cache.sweep_expired()
        self.runs += 1
        self.total_removed += removed
        return removed

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Cache sweep cycle failed")
            await asyncio.sleep(self._interval)
