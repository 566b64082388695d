"""Storage backends for :class:`~behavioral_analytics.cache.service.AnalyticsCache`.

A backend only stores and deletes :class:`CacheEntry` rows; freshness is
decided by the cache service against its injected clock.

* :class:`MemoryCacheBackend` -- process-local dict.
* :class:`SqlCacheBackend` -- ``analytics_cache`` table, upsert on
  ``(user_id, cache_key)``.
* :class:`RedisCacheBackend` -- JSON envelope per key under a prefix;
  server-side expiry is set too, but only as hygiene.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as aioredis
from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from behavioral_analytics.core.models import CacheEntry
from behavioral_analytics.storage.postgres.models import CacheRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class ICacheBackend(Protocol):
    async def get(self, user_id: str, cache_key: str) -> CacheEntry | None: ...

    async def put(self, entry: CacheEntry) -> None: ...

    async def delete(self, user_id: str, cache_key: str | None = None) -> int:
        """Delete one key, or every key of the user when *cache_key* is None."""
        ...

    async def delete_prefix(self, user_id: str, prefix: str) -> int: ...

    async def delete_expired(self, now: datetime) -> int:
        """Remove rows with ``expires_at <= now``."""
        ...

    async def count(self, user_id: str | None, now: datetime) -> tuple[int, int]:
        """Return ``(total, expired)`` row counts."""
        ...


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

class MemoryCacheBackend:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], CacheEntry] = {}

    async def get(self, user_id: str, cache_key: str) -> CacheEntry | None:
        entry = self._rows.get((user_id, cache_key))
        return entry.model_copy(deep=True) if entry is not None else None

    async def put(self, entry: CacheEntry) -> None:
        stored = entry.model_copy(update={"payload": copy.deepcopy(entry.payload)})
        self._rows[(entry.user_id, entry.cache_key)] = stored

    async def delete(self, user_id: str, cache_key: str | None = None) -> int:
        if cache_key is not None:
            return 1 if self._rows.pop((user_id, cache_key), None) is not None else 0
        doomed = [k for k in self._rows if k[0] == user_id]
        for k in doomed:
            del self._rows[k]
        return len(doomed)

    async def delete_prefix(self, user_id: str, prefix: str) -> int:
        doomed = [k for k in self._rows if k[0] == user_id and k[1].startswith(prefix)]
        for k in doomed:
            del self._rows[k]
        return len(doomed)

    async def delete_expired(self, now: datetime) -> int:
        doomed = [k for k, e in self._rows.items() if e.expires_at <= now]
        for k in doomed:
            del self._rows[k]
        return len(doomed)

    async def count(self, user_id: str | None, now: datetime) -> tuple[int, int]:
        rows = [e for e in self._rows.values() if user_id is None or e.user_id == user_id]
        return len(rows), sum(1 for e in rows if e.expires_at <= now)


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

class SqlCacheBackend:
    """Backend over ``analytics_cache``; one short session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str, cache_key: str) -> CacheEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CacheRecord).where(
                    CacheRecord.user_id == user_id, CacheRecord.cache_key == cache_key,
                )
            )
            record = result.scalar_one_or_none()
        if record is None:
            return None
        return CacheEntry(
            user_id=record.user_id,
            cache_key=record.cache_key,
            payload=record.payload,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )

    async def put(self, entry: CacheEntry) -> None:
        stmt = pg_insert(CacheRecord).values(
            user_id=entry.user_id,
            cache_key=entry.cache_key,
            payload=entry.payload,
            created_at=entry.created_at,
            expires_at=entry.expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_analytics_cache_user_key",
            set_={
                "payload": stmt.excluded.payload,
                "created_at": stmt.excluded.created_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def _delete(self, stmt: Any) -> int:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount or 0

    async def delete(self, user_id: str, cache_key: str | None = None) -> int:
        stmt = delete(CacheRecord).where(CacheRecord.user_id == user_id)
        if cache_key is not None:
            stmt = stmt.where(CacheRecord.cache_key == cache_key)
        return await self._delete(stmt)

    async def delete_prefix(self, user_id: str, prefix: str) -> int:
        return await self._delete(
            delete(CacheRecord).where(
                CacheRecord.user_id == user_id,
                CacheRecord.cache_key.startswith(prefix, autoescape=True),
            )
        )

    async def delete_expired(self, now: datetime) -> int:
        return await self._delete(delete(CacheRecord).where(CacheRecord.expires_at <= now))

    async def count(self, user_id: str | None, now: datetime) -> tuple[int, int]:
        total = select(func.count()).select_from(CacheRecord)
        expired = total.where(CacheRecord.expires_at <= now)
        if user_id is not None:
            total = total.where(CacheRecord.user_id == user_id)
            expired = expired.where(CacheRecord.user_id == user_id)
        async with self._session_factory() as session:
            n_total = (await session.execute(total)).scalar_one()
            n_expired = (await session.execute(expired)).scalar_one()
        return int(n_total), int(n_expired)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

def _serialize(entry: CacheEntry) -> str:
    return json.dumps(entry.model_dump(mode="json"))


def _deserialize(raw: str | bytes | None) -> CacheEntry | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return CacheEntry.model_validate(json.loads(raw))


def _entry_key(prefix: str, user_id: str, cache_key: str) -> str:
    return f"{prefix}{user_id}:{cache_key}"


class RedisCacheBackend:
    """Redis backend.

    Args:
        redis_url: Redis connection URL.
        prefix: Key namespace. Defaults to ``"behavior:cache:"``.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "behavior:cache:",
    ) -> None:
        self._url = redis_url
        self._prefix = prefix
        self._redis: aioredis.Redis | None = None

    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = aioredis.from_url(self._url, decode_responses=False)
        await self._redis.ping()
        logger.info("Redis cache connected: %s", self._url.split("@")[-1])

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError("RedisCacheBackend not connected. Call connect() first.")
        return self._redis

    async def _scan(self, pattern: str) -> list[bytes]:
        return [k async for k in self.redis.scan_iter(match=pattern, count=100)]

    async def _delete_keys(self, keys: list[bytes]) -> int:
        if not keys:
            return 0
        return int(await self.redis.delete(*keys))

    async def get(self, user_id: str, cache_key: str) -> CacheEntry | None:
        raw = await self.redis.get(_entry_key(self._prefix, user_id, cache_key))
        return _deserialize(raw)

    async def put(self, entry: CacheEntry) -> None:
        # Keep the key a little past expiry so sweeps and stats still see it.
        exat = int(entry.expires_at.timestamp()) + 60
        await self.redis.set(
            _entry_key(self._prefix, entry.user_id, entry.cache_key),
            _serialize(entry),
            exat=exat,
        )

    async def delete(self, user_id: str, cache_key: str | None = None) -> int:
        if cache_key is not None:
            return int(await self.redis.delete(_entry_key(self._prefix, user_id, cache_key)))
        return await self._delete_keys(await self._scan(f"{self._prefix}{user_id}:*"))

    async def delete_prefix(self, user_id: str, prefix: str) -> int:
        return await self._delete_keys(await self._scan(f"{self._prefix}{user_id}:{prefix}*"))

    async def delete_expired(self, now: datetime) -> int:
        doomed: list[bytes] = []
        for key in await self._scan(f"{self._prefix}*"):
            entry = _deserialize(await self.redis.get(key))
            if entry is not None and entry.expires_at <= now:
                doomed.append(key)
        return await self._delete_keys(doomed)

    async def count(self, user_id: str | None, now: datetime) -> tuple[int, int]:
        pattern = f"{self._prefix}{user_id}:*" if user_id else f"{self._prefix}*"
        total = expired = 0
        for key in await self._scan(pattern):
            entry = _deserialize(await self.redis.get(key))
            if entry is None:
                continue
            total += 1
            if entry.expires_at <= now:
                expired += 1
        return total, expired
