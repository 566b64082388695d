"""Recommendation resolution: reuse, generation, rate limits and fallback."""

from datetime import datetime, timedelta, timezone

import pytest

from behavioral_analytics.analysis.recommendations import (
    FALLBACK_RECOMMENDATIONS,
    SOURCE_SIMILAR,
    ProviderRateLimiter,
    RecommendationService,
    TradingContext,
    build_prompt,
    parse_recommendations,
    similarity_hash,
    stored_recommendations,
)
from behavioral_analytics.core.enums import Severity
from behavioral_analytics.core.errors import RateLimited
from behavioral_analytics.core.models import OverconfidenceEvent

T0 = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)

BULLETS = """Here is my advice:
- Cap every position at 2% of the account during win streaks
* Take partial profits after the third consecutive winner
1. Review
2) Journal each trade where size grew by more than half
"""


class StubGenerator:
    def __init__(self, text=BULLETS, *, error=None, provider="claude"):
        self._text = text
        self._error = error
        self._provider = provider
        self.prompts = []

    @property
    def provider(self):
        return self._provider

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self._error is not None:
            raise self._error
        return self._text


def _event(**overrides) -> OverconfidenceEvent:
    data = dict(
        user_id="user-1",
        win_streak_length=4,
        streak_start_date=T0,
        streak_end_date=T0 + timedelta(hours=3),
        baseline_position_size=100.0,
        peak_position_size=250.0,
        position_size_increase_percent=150.0,
        total_streak_profit=40.0,
        severity=Severity.HIGH,
        confidence_score=0.9,
        created_at=T0,
    )
    data.update(overrides)
    return OverconfidenceEvent(**data)


class TestParsing:
    def test_bullets(self):
        recs = parse_recommendations(BULLETS)
        assert recs == [
            "Cap every position at 2% of the account during win streaks",
            "Take partial profits after the third consecutive winner",
            "Journal each trade where size grew by more than half",
        ]

    def test_sentence_fallback(self):
        text = (
            "Keep your position sizes consistent across trades. Short. "
            "Take partial profits when a streak extends"
        )
        assert parse_recommendations(text) == [
            "Keep your position sizes consistent across trades",
            "Take partial profits when a streak extends",
        ]

    def test_empty(self):
        assert parse_recommendations("") == []
        assert parse_recommendations(None) == []

    def test_stored_shapes(self):
        assert stored_recommendations({"recommendations": ["a", "b"]}) == ["a", "b"]
        assert stored_recommendations({"recommendations": "one"}) == ["one"]
        assert stored_recommendations({"other": 1}) == []
        assert stored_recommendations(["x"]) == ["x"]
        assert stored_recommendations("plain") == ["plain"]
        assert stored_recommendations(None) == []


class TestContextAndHash:
    def test_context_from_trades(self, make_trade):
        trades = [make_trade(entry=i * 1440, pnl=10 if i % 2 else -10) for i in range(4)]
        context = TradingContext.from_trades(trades)
        assert context.total_trades == 4
        assert context.win_rate == 0.5
        assert context.avg_pnl == 0.0
        assert context.trading_days == 3
        assert context.experience_level == "beginner"
        assert context.trade_size == "small"

    def test_similarity_hash_buckets(self):
        context = TradingContext(total_trades=50, avg_position_size=5000.0)
        four = similarity_hash(_event(win_streak_length=4, position_size_increase_percent=151), context)
        five = similarity_hash(_event(win_streak_length=5, position_size_increase_percent=158), context)
        other = similarity_hash(_event(severity=Severity.LOW), context)
        assert len(four) == 16
        assert four == five
        assert four != other

    def test_prompt_mentions_event(self):
        prompt = build_prompt(_event(), TradingContext())
        assert "Win streak length: 4 consecutive profitable trades" in prompt
        assert "Severity level: high" in prompt


class TestRateLimiter:
    def test_sliding_window(self, sim_clock):
        limiter = ProviderRateLimiter(sim_clock, {"gemini": 2})
        limiter.acquire("gemini")
        limiter.acquire("gemini")
        assert not limiter.allow("gemini")
        with pytest.raises(RateLimited):
            limiter.acquire("gemini")

        sim_clock.advance(seconds=60)
        assert limiter.allow("gemini")

    def test_default_limit(self, sim_clock):
        assert ProviderRateLimiter(sim_clock).limit_for("unknown") == 10
        assert ProviderRateLimiter(sim_clock).limit_for("claude") == 50


class TestService:
    @pytest.mark.asyncio
    async def test_no_generator_falls_back(self, repo, sim_clock):
        event = _event()
        await repo.add_overconfidence_event(event)
        recs, fallback = await RecommendationService(repo, sim_clock).recommendations_for(
            event, TradingContext(),
        )
        assert fallback is True
        assert recs == list(FALLBACK_RECOMMENDATIONS)

    @pytest.mark.asyncio
    async def test_generates_and_stores(self, repo, sim_clock):
        event = _event()
        await repo.add_overconfidence_event(event)
        generator = StubGenerator()
        service = RecommendationService(repo, sim_clock, generator)

        recs, fallback = await service.recommendations_for(event, TradingContext())

        assert fallback is False
        assert len(recs) == 3
        stored = await repo.get_overconfidence_event("user-1", event.id)
        assert stored.ai_provider == "claude"
        assert stored.ai_generated_at == sim_clock.now()
        assert stored.ai_recommendations["source"] == "ai_generated"
        assert stored.ai_recommendations["similarity_hash"]

        # Stored recommendations are reused without another call
        again, _ = await service.recommendations_for(stored, TradingContext())
        assert again == recs
        assert len(generator.prompts) == 1

    @pytest.mark.asyncio
    async def test_similar_event_reuses_recommendations(self, repo, sim_clock):
        first = _event()
        second = _event(win_streak_length=5, position_size_increase_percent=160.0)
        await repo.add_overconfidence_event(first)
        await repo.add_overconfidence_event(second)
        generator = StubGenerator()
        service = RecommendationService(repo, sim_clock, generator)

        recs, _ = await service.recommendations_for(first, TradingContext())
        reused, fallback = await service.recommendations_for(second, TradingContext())

        assert fallback is False
        assert reused == recs
        assert len(generator.prompts) == 1
        stored = await repo.get_overconfidence_event("user-1", second.id)
        assert stored.ai_provider == SOURCE_SIMILAR

    @pytest.mark.asyncio
    async def test_generator_failure_falls_back(self, repo, sim_clock):
        event = _event()
        await repo.add_overconfidence_event(event)
        service = RecommendationService(
            repo, sim_clock, StubGenerator(error=RuntimeError("boom")),
        )
        recs, fallback = await service.recommendations_for(event, TradingContext())
        assert fallback is True
        assert recs == list(FALLBACK_RECOMMENDATIONS)

    @pytest.mark.asyncio
    async def test_rate_limited_falls_back(self, repo, sim_clock):
        event = _event()
        await repo.add_overconfidence_event(event)
        generator = StubGenerator()
        service = RecommendationService(
            repo, sim_clock, generator,
            rate_limiter=ProviderRateLimiter(sim_clock, {"claude": 0}),
        )
        _, fallback = await service.recommendations_for(event, TradingContext())
        assert fallback is True
        assert generator.prompts == []
