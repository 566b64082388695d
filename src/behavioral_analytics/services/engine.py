"""Composition root: wire detectors, cache and market data from Settings."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from behavioral_analytics.analysis.counterfactual import CounterfactualPriceAnalyzer
from behavioral_analytics.analysis.loss_aversion import LossAversionAnalyzer
from behavioral_analytics.analysis.overconfidence import OverconfidenceDetector
from behavioral_analytics.analysis.recommendations import (
    IRecommendationGenerator,
    ProviderRateLimiter,
    RecommendationService,
)
from behavioral_analytics.analysis.revenge import RevengeTradeDetector
from behavioral_analytics.analysis.trade_quality import TradeQualityAnalyzer
from behavioral_analytics.cache import (
    AnalyticsCache,
    ICacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    SqlCacheBackend,
)
from behavioral_analytics.core.clock import IClock, WallClock
from behavioral_analytics.core.config import Settings
from behavioral_analytics.core.entitlements import IEntitlementGate
from behavioral_analytics.core.enums import CacheBackendKind
from behavioral_analytics.core.errors import ConfigError
from behavioral_analytics.market_data.base import IMarketDataProvider
from behavioral_analytics.storage.base import IBehaviorRepository, ITradeStore

from .behavioral import BehavioralAnalyticsService

logger = logging.getLogger(__name__)


def build_cache_backend(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ICacheBackend:
    kind = settings.cache.backend
    if kind == CacheBackendKind.MEMORY:
        return MemoryCacheBackend()
    if kind == CacheBackendKind.REDIS:
        return RedisCacheBackend(settings.redis_url, prefix=settings.cache.redis_prefix)
    if kind == CacheBackendKind.SQL:
        if session_factory is None:
            raise ConfigError("SQL cache backend requires a database session factory")
        return SqlCacheBackend(session_factory)
    raise ConfigError(f"Unknown cache backend: {kind}")


@dataclass
class BehaviorEngine:
    """Every detector of one engine instance, sharing collaborators."""

    revenge: RevengeTradeDetector
    overconfidence: OverconfidenceDetector
    loss_aversion: LossAversionAnalyzer
    behavioral: BehavioralAnalyticsService
    cache: AnalyticsCache


def build_engine(
    settings: Settings,
    *,
    trade_store: ITradeStore,
    repo: IBehaviorRepository,
    gate: IEntitlementGate,
    clock: IClock | None = None,
    provider: IMarketDataProvider | None = None,
    cache_backend: ICacheBackend | None = None,
    generator: IRecommendationGenerator | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BehaviorEngine:
    clock = clock or WallClock()
    cache = AnalyticsCache(
        cache_backend or MemoryCacheBackend(),
        clock,
        default_ttl_minutes=settings.cache.default_ttl_minutes,
    )
    counterfactual = CounterfactualPriceAnalyzer(provider)
    recommendations = RecommendationService(
        repo, clock, generator, rate_limiter=ProviderRateLimiter(clock),
    )
    common: dict[str, Any] = {
        "trade_store": trade_store,
        "repo": repo,
        "gate": gate,
        "clock": clock,
    }
    logger.info(
        "Building engine: cache=%s market_data=%s generator=%s",
        settings.cache.backend.value,
        "configured" if counterfactual.is_configured else "unconfigured",
        generator.provider if generator is not None else "none",
    )
    return BehaviorEngine(
        revenge=RevengeTradeDetector(
            **common, settings=settings, quality=TradeQualityAnalyzer(provider),
        ),
        overconfidence=OverconfidenceDetector(
            **common,
            cache=cache,
            counterfactual=counterfactual,
            recommendations=recommendations,
            settings=settings,
            sleep=sleep,
        ),
        loss_aversion=LossAversionAnalyzer(
            **common,
            counterfactual=counterfactual,
            cache=cache,
            settings=settings,
            sleep=sleep,
        ),
        behavioral=BehavioralAnalyticsService(**common, cache=cache),
        cache=cache,
    )
