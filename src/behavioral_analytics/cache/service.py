"""TTL cache for expensive analysis results.

Entries are keyed by ``(user_id, cache_key)``.  ``get`` treats an entry
as absent at or after ``expires_at`` regardless of whether a sweep has
removed it yet.  Backend failures never fail an analysis: they are
logged and surface as a miss (``None``) or ``0``.

Usage::

    cache = AnalyticsCache(MemoryCacheBackend(), clock)
    key = AnalyticsCache.generate_key("top_missed_trades", {"limit": 10})
    await cache.set(user_id, key, payload, ttl_minutes=240)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from behavioral_analytics.core.clock import IClock
from behavioral_analytics.core.models import CacheEntry

from .backends import ICacheBackend

logger = logging.getLogger(__name__)


class AnalyticsCache:
    """Memoizes analysis payloads per user with a TTL.

    Parameters
    ----------
    backend:
        Where entries live (memory, SQL or Redis).
    clock:
        Source of "now" for expiry decisions.
    default_ttl_minutes:
        TTL applied when ``set`` is called without one.
    """

    def __init__(
        self,
        backend: ICacheBackend,
        clock: IClock,
        *,
        default_ttl_minutes: int = 60,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._default_ttl = default_ttl_minutes

    @staticmethod
    def generate_key(analysis_type: str, params: dict[str, Any] | None = None) -> str:
        """Stable key: type then ``k:v`` pairs sorted by name, joined by ``_``."""
        parts = [analysis_type]
        for name in sorted(params or {}):
            value = params[name]  # type: ignore[index]
            if value is None:
                rendered = "null"
            elif isinstance(value, datetime):
                rendered = value.isoformat()
            else:
                rendered = str(value)
            parts.append(f"{name}:{rendered}")
        return "_".join(parts)

    async def get(self, user_id: str, cache_key: str) -> Any | None:
        try:
            entry = await self._backend.get(user_id, cache_key)
        except Exception:
            logger.exception("Cache get failed for %s/%s", user_id, cache_key)
            return None
        if entry is None or not entry.is_fresh(self._clock.now()):
            return None
        logger.debug("Cache hit %s/%s", user_id, cache_key)
        return entry.payload

    async def set(
        self,
        user_id: str,
        cache_key: str,
        payload: Any,
        ttl_minutes: float | None = None,
    ) -> bool:
        now = self._clock.now()
        ttl = self._default_ttl if ttl_minutes is None else ttl_minutes
        entry = CacheEntry(
            user_id=user_id,
            cache_key=cache_key,
            payload=payload,
            created_at=now,
            expires_at=now + timedelta(minutes=ttl),
        )
        try:
            await self._backend.put(entry)
        except Exception:
            logger.exception("Cache set failed for %s/%s", user_id, cache_key)
            return False
        return True

    async def delete(self, user_id: str, cache_key: str | None = None) -> int:
        try:
            return await self._backend.delete(user_id, cache_key)
        except Exception:
            logger.exception("Cache delete failed for %s", user_id)
            return 0

    async def invalidate(
        self,
        user_id: str,
        analysis_types: Iterable[str] | None = None,
    ) -> int:
        """Drop every entry of the user, or only keys starting with a type."""
        if analysis_types is None:
            removed = await self.delete(user_id)
        else:
            removed = 0
            for analysis_type in analysis_types:
                try:
                    removed += await self._backend.delete_prefix(user_id, analysis_type)
                except Exception:
                    logger.exception(
                        "Cache invalidate failed for %s/%s", user_id, analysis_type,
                    )
        if removed:
            logger.info("Invalidated %d cache entries for %s", removed, user_id)
        return removed

    async def sweep_expired(self) -> int:
        try:
            removed = await self._backend.delete_expired(self._clock.now())
        except Exception:
            logger.exception("Cache sweep failed")
            return 0
        if removed:
            logger.info("Swept %d expired cache entries", removed)
        return removed

    async def stats(self, user_id: str | None = None) -> dict[str, int]:
        try:
            total, expired = await self._backend.count(user_id, self._clock.now())
        except Exception:
            logger.exception("Cache stats failed")
            return {"total_entries": 0, "active_entries": 0, "expired_entries": 0}
        return {
            "total_entries": total,
            "active_entries": total - expired,
            "expired_entries": expired,
        }

    async def should_refresh(
        self,
        user_id: str,
        analysis_type: str,
        last_trade_time: datetime | None = None,
    ) -> bool:
        """True when the entry is missing, expired or older than the last trade."""
        try:
            entry = await self._backend.get(user_id, analysis_type)
        except Exception:
            logger.exception("Cache lookup failed for %s/%s", user_id, analysis_type)
            return True
        if entry is None or not entry.is_fresh(self._clock.now()):
            return True
        return last_trade_time is not None and last_trade_time > entry.created_at
