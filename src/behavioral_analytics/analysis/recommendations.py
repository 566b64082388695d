"""Recommendation text for overconfidence events.

The text generator itself is an external collaborator; this module owns
everything around it:

1. Reuse recommendations already stored on the event.
2. Reuse a similar event's recommendations (same severity, streak within
   one trade, increase within 15 points, generated in the last 30 days).
3. Reuse recommendations stored under the same similarity hash.
4. Otherwise call the generator, subject to a per-provider sliding-window
   rate limit, and store the parsed result with its hash.

Any failure, a missing generator or an exhausted budget yields
:data:`FALLBACK_RECOMMENDATIONS`; the primary analysis never fails here.
"""

from __future__ import annotations

import base64
import logging
import math
import re
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol, Sequence, runtime_checkable

from behavioral_analytics.core.clock import IClock
from behavioral_analytics.core.errors import ExternalDataError, RateLimited
from behavioral_analytics.core.models import OverconfidenceEvent, Trade
from behavioral_analytics.storage.base import IBehaviorRepository

logger = logging.getLogger(__name__)

FALLBACK_RECOMMENDATIONS: tuple[str, ...] = (
    "Consider implementing position sizing rules to limit increases during win streaks",
    "Set a maximum position size relative to your account",
    "Take partial profits during extended win streaks",
)

# Requests per minute by provider name.
PROVIDER_RATE_LIMITS: dict[str, int] = {
    "gemini": 10,
    "claude": 50,
    "openai": 50,
    "ollama": 100,
}
DEFAULT_RATE_LIMIT = 10

SIMILAR_STREAK_TOLERANCE = 1
SIMILAR_INCREASE_TOLERANCE = 15.0
SIMILAR_MAX_AGE = timedelta(days=30)
MAX_RECOMMENDATIONS = 4

SOURCE_SIMILAR = "cached_similar"
SOURCE_HASH = "cached_hash"


@runtime_checkable
class IRecommendationGenerator(Protocol):
    """Produces free text from a prompt."""

    @property
    def provider(self) -> str: ...

    async def generate(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class ProviderRateLimiter:
    """Sliding one-minute window of request timestamps per provider."""

    def __init__(
        self,
        clock: IClock,
        limits: dict[str, int] | None = None,
        *,
        default_limit: int = DEFAULT_RATE_LIMIT,
    ) -> None:
        self._clock = clock
        self._limits = dict(PROVIDER_RATE_LIMITS if limits is None else limits)
        self._default = default_limit
        self._calls: dict[str, deque[datetime]] = defaultdict(deque)

    def limit_for(self, provider: str) -> int:
        return self._limits.get(provider, self._default)

    def _prune(self, provider: str) -> deque[datetime]:
        window_start = self._clock.now() - timedelta(minutes=1)
        calls = self._calls[provider]
        while calls and calls[0] <= window_start:
            calls.popleft()
        return calls

    def allow(self, provider: str) -> bool:
        return len(self._prune(provider)) < self.limit_for(provider)

    def acquire(self, provider: str) -> None:
        """Record a request, raising :class:`RateLimited` when over budget."""
        if not self.allow(provider):
            raise RateLimited(provider, self.limit_for(provider))
        self._calls[provider].append(self._clock.now())


# ---------------------------------------------------------------------------
# Trading context, hashing, prompt and parsing
# ---------------------------------------------------------------------------

@dataclass
class TradingContext:
    total_trades: int = 0
    avg_pnl: float = 0.0
    win_rate: float = 0.0
    avg_position_size: float = 0.0
    symbols_traded: int = 0
    trading_days: int = 0

    @classmethod
    def from_trades(cls, trades: Sequence[Trade]) -> TradingContext:
        if not trades:
            return cls()
        n = len(trades)
        first = min(t.entry_time for t in trades)
        last = max(t.entry_time for t in trades)
        return cls(
            total_trades=n,
            avg_pnl=sum(t.net_pnl for t in trades) / n,
            win_rate=sum(1 for t in trades if t.is_winner) / n,
            avg_position_size=sum(t.position_size for t in trades) / n,
            symbols_traded=len({t.symbol for t in trades}),
            trading_days=(last - first).days,
        )

    @property
    def experience_level(self) -> str:
        if self.total_trades > 100:
            return "experienced"
        if self.total_trades > 20:
            return "intermediate"
        return "beginner"

    @property
    def trade_size(self) -> str:
        if self.avg_position_size > 10000:
            return "large"
        if self.avg_position_size > 1000:
            return "medium"
        return "small"

    @property
    def experience_months(self) -> int:
        return max(1, self.trading_days // 30)


def similarity_hash(event: OverconfidenceEvent, context: TradingContext) -> str:
    """16-char key grouping events that should get the same advice."""
    parts = [
        event.severity.value,
        str(event.win_streak_length // 2 * 2),
        str(int(math.floor(event.position_size_increase_percent / 10) * 10)),
        context.experience_level,
        context.trade_size,
    ]
    return base64.b64encode("|".join(parts).encode("utf-8")).decode("ascii")[:16]


def build_prompt(event: OverconfidenceEvent, context: TradingContext) -> str:
    outcome = event.outcome_after_streak.value
    return f"""You are an expert trading psychology consultant analyzing overconfidence behavior. A trader has exhibited the following overconfidence pattern:

OVERCONFIDENCE EVENT DETAILS:
- Win streak length: {event.win_streak_length} consecutive profitable trades
- Position size increase: {event.position_size_increase_percent}% above baseline
- Total profit from streak: ${event.total_streak_profit}
- Severity level: {event.severity.value}
- Confidence score: {event.confidence_score}
- Outcome after streak: {outcome}
- Subsequent trade result: ${event.outcome_amount or 0}

TRADER'S OVERALL PROFILE:
- Total trades: {context.total_trades}
- Average P&L per trade: ${context.avg_pnl:.2f}
- Win rate: {context.win_rate * 100:.1f}%
- Average position size: ${context.avg_position_size:.2f}
- Symbols traded: {context.symbols_traded}
- Trading experience: {context.experience_months} months

Based on this overconfidence event and the trader's profile, provide 3-4 specific, actionable recommendations to help prevent future overconfidence episodes. Focus on:
1. Position sizing discipline
2. Risk management techniques
3. Psychological awareness strategies
4. Practical implementation steps

Format your response as a simple list where each recommendation is on a new line and starts with a dash (-). Keep each recommendation concise (1-2 sentences) but specific to this trader's situation."""


_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s*")
_SENTENCE_RE = re.compile(r"[.!?]+")


def parse_recommendations(text: str | None) -> list[str]:
    """Bullet lines longer than 10 chars, else sentences of 20-200 chars."""
    if not text:
        return []
    lines = [
        _BULLET_RE.sub("", line.strip()).strip()
        for line in text.splitlines()
        if _BULLET_RE.match(line.strip())
    ]
    lines = [line for line in lines if len(line) > 10]
    if lines:
        return lines[:MAX_RECOMMENDATIONS]
    sentences = [s.strip() for s in _SENTENCE_RE.split(text)]
    return [s for s in sentences if 20 < len(s) < 200][:MAX_RECOMMENDATIONS]


def stored_recommendations(data: Any) -> list[str]:
    """Normalize the ``ai_recommendations`` column into a list of strings."""
    if not data:
        return []
    if isinstance(data, dict):
        recs = data.get("recommendations")
        if recs is None:
            return []
        return [str(r) for r in recs] if isinstance(recs, list) else [str(recs)]
    if isinstance(data, list):
        return [str(r) for r in data]
    return [str(data)]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class RecommendationService:
    """Resolves recommendations for an event, cheapest source first.

    Args:
        repo: Where events (and their stored recommendations) live.
        clock: Time source for rate limits and reuse windows.
        generator: Optional text generator; ``None`` always falls back.
        rate_limiter: Shared limiter; a fresh one is built when omitted.
    """

    def __init__(
        self,
        repo: IBehaviorRepository,
        clock: IClock,
        generator: IRecommendationGenerator | None = None,
        *,
        rate_limiter: ProviderRateLimiter | None = None,
    ) -> None:
        self._repo = repo
        self._clock = clock
        self._generator = generator
        self._limiter = rate_limiter or ProviderRateLimiter(clock)

    async def _store(
        self,
        event: OverconfidenceEvent,
        recommendations: list[str],
        provider: str,
        *,
        hash_value: str | None = None,
        source: str,
    ) -> OverconfidenceEvent:
        now = self._clock.now()
        payload: dict[str, Any] = {
            "recommendations": recommendations,
            "generated_at": now.isoformat(),
            "source": source,
        }
        if hash_value is not None:
            payload["similarity_hash"] = hash_value
        updated = event.model_copy(update={
            "ai_recommendations": payload,
            "ai_provider": provider,
            "ai_generated_at": now,
        })
        await self._repo.update_overconfidence_event(updated)
        return updated

    def _reusable(self, candidates: Sequence[OverconfidenceEvent], event_id: str):
        cutoff = self._clock.now() - SIMILAR_MAX_AGE
        for other in candidates:
            if other.id == event_id or not other.ai_recommendations:
                continue
            if other.ai_provider == SOURCE_SIMILAR:
                continue
            if other.ai_generated_at is None or other.ai_generated_at < cutoff:
                continue
            yield other

    def find_similar(
        self,
        event: OverconfidenceEvent,
        others: Sequence[OverconfidenceEvent],
    ) -> list[str]:
        matches = [
            o for o in self._reusable(others, event.id)
            if o.severity == event.severity
            and abs(o.win_streak_length - event.win_streak_length) <= SIMILAR_STREAK_TOLERANCE
            and abs(o.position_size_increase_percent - event.position_size_increase_percent)
            <= SIMILAR_INCREASE_TOLERANCE
        ]
        if not matches:
            return []
        newest = max(matches, key=lambda o: o.ai_generated_at)  # type: ignore[arg-type,return-value]
        return stored_recommendations(newest.ai_recommendations)

    def find_by_hash(
        self,
        event: OverconfidenceEvent,
        others: Sequence[OverconfidenceEvent],
        hash_value: str,
    ) -> list[str]:
        matches = [
            o for o in self._reusable(others, event.id)
            if isinstance(o.ai_recommendations, dict)
            and o.ai_recommendations.get("similarity_hash") == hash_value
        ]
        if not matches:
            return []
        newest = max(matches, key=lambda o: o.ai_generated_at)  # type: ignore[arg-type,return-value]
        return stored_recommendations(newest.ai_recommendations)

    async def recommendations_for(
        self,
        event: OverconfidenceEvent,
        context: TradingContext,
    ) -> tuple[list[str], bool]:
        """Return ``(recommendations, is_fallback)``."""
        try:
            recs = await self._resolve(event, context)
        except RateLimited as exc:
            logger.warning("Recommendation generation skipped: %s", exc)
            recs = []
        except ExternalDataError as exc:
            logger.warning("Recommendation generator failed for event %s: %s", event.id, exc)
            recs = []
        if recs:
            return recs, False
        return list(FALLBACK_RECOMMENDATIONS), True

    async def _resolve(
        self,
        event: OverconfidenceEvent,
        context: TradingContext,
    ) -> list[str]:
        existing = stored_recommendations(event.ai_recommendations)
        if existing:
            return existing

        others = await self._repo.list_overconfidence_events(event.user_id)
        similar = self.find_similar(event, others)
        if similar:
            await self._store(event, similar, SOURCE_SIMILAR, source=SOURCE_SIMILAR)
            return similar

        if self._generator is None:
            return []

        hash_value = similarity_hash(event, context)
        by_hash = self.find_by_hash(event, others, hash_value)
        if by_hash:
            await self._store(event, by_hash, SOURCE_HASH, hash_value=hash_value, source="hash_match")
            return by_hash

        provider = self._generator.provider
        self._limiter.acquire(provider)
        try:
            text = await self._generator.generate(build_prompt(event, context))
        except ExternalDataError:
            raise
        except Exception as exc:
            raise ExternalDataError(f"{provider} generation failed: {exc}") from exc
        recs = parse_recommendations(text)
        if recs:
            await self._store(event, recs, provider, hash_value=hash_value, source="ai_generated")
            logger.info("Generated %d recommendations for event %s via %s", len(recs), event.id, provider)
        return recs
