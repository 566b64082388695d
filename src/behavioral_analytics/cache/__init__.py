"""Analytics cache.

Public API
----------
AnalyticsCache       TTL memoization with an injected clock
CacheSweeper         Periodic expired-row removal

Backends:
    ICacheBackend, MemoryCacheBackend, SqlCacheBackend, RedisCacheBackend
"""

from behavioral_analytics.cache.backends import (
    ICacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    SqlCacheBackend,
)
from behavioral_analytics.cache.service import AnalyticsCache
from behavioral_analytics.cache.sweeper import CacheSweeper

__all__ = [
    "AnalyticsCache",
    "CacheSweeper",
    "ICacheBackend",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "SqlCacheBackend",
]
