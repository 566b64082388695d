"""Entry-quality scoring from news and candles."""

from datetime import datetime, timedelta, timezone

import pytest

from behavioral_analytics.analysis.trade_quality import (
    TradeQualityAnalyzer,
    headline_sentiment,
    position_fallback,
    score_candles,
    score_news,
    summarize_episode,
)
from behavioral_analytics.core.enums import Severity, TradeSide
from behavioral_analytics.market_data.base import Candles, NewsItem, StaticMarketDataProvider

T0 = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)


def _news(minutes_before: float, headline: str) -> NewsItem:
    return NewsItem(
        headline=headline,
        datetime=int((T0 - timedelta(minutes=minutes_before)).timestamp()),
    )


def _bars(closes):
    """61 one-minute bars centred on T0 (entry at index 30)."""
    start = int(T0.timestamp()) - 30 * 60
    times = [start + i * 60 for i in range(len(closes))]
    return Candles(
        times=times, open=list(closes), high=list(closes), low=list(closes),
        close=list(closes), volume=[1.0] * len(closes),
    )


def _chasing_closes():
    closes = [100.0] * 61
    closes[28], closes[29] = 101.0, 102.0
    return closes


def _dip_closes():
    closes = [100.0] * 61
    for i in range(21, 29):
        closes[i] = 105.0
    closes[29] = 104.0
    return closes


class TestSentiment:
    def test_whole_words_only(self):
        assert headline_sentiment("Stock surges on strong earnings beat") == pytest.approx(0.2)
        assert headline_sentiment("Shares drop after downgrade") == pytest.approx(-0.2)
        assert headline_sentiment("Buyback update") == 0.0
        assert headline_sentiment(None) == 0.0

    def test_clamped(self):
        assert headline_sentiment("up gain rise surge jump beat") == 0.5


class TestScoreNews:
    def test_no_relevant_news(self):
        result = score_news([_news(300, "strong beat")], T0)
        assert not result.has_relevant_news
        assert result.score == 0.5

    def test_breaking_news(self):
        result = score_news([_news(10, "strong beat")], T0)
        assert result.has_breaking_news
        assert result.score == pytest.approx(0.76)

    def test_multiple_older_items(self):
        result = score_news([_news(60, "growth ahead"), _news(90, "quiet session")], T0)
        assert result.news_count == 2
        assert not result.has_breaking_news
        assert result.score == pytest.approx(0.61)


class TestScoreCandles:
    def test_chasing_momentum_long(self):
        bars = _bars(_chasing_closes())
        result = score_candles(bars.times, bars.close, T0, TradeSide.LONG)
        assert result.was_chasing_momentum
        assert not result.was_fighting_trend
        assert result.score == pytest.approx(0.3)

    def test_buying_the_dip(self):
        bars = _bars(_dip_closes())
        result = score_candles(bars.times, bars.close, T0, TradeSide.LONG)
        assert not result.was_chasing_momentum
        assert result.score == pytest.approx(0.7)

    def test_short_against_uptrend(self):
        bars = _bars(_dip_closes())
        result = score_candles(bars.times, bars.close, T0, TradeSide.SHORT)
        assert result.was_fighting_trend
        assert result.score == pytest.approx(0.4)

    def test_too_few_bars(self):
        assert score_candles([1, 2, 3], [1.0, 2.0, 3.0], T0, TradeSide.LONG).score == 0.5


class TestEpisodeSummary:
    def test_position_fallback(self, make_trade):
        big = position_fallback(make_trade(quantity=20), 1000.0)
        assert big.entry_timing_score == 0.3
        assert big.is_poor and big.was_chasing_momentum
        assert big.position_increase == 100.0

        normal = position_fallback(make_trade(quantity=11), 1000.0)
        assert normal.entry_timing_score == 0.6
        assert not normal.is_poor

    def test_poor_episode(self, make_trade):
        qualities = [position_fallback(make_trade(quantity=20), 1000.0) for _ in range(2)]
        summary = summarize_episode(qualities)
        assert summary.is_revenge_trading
        assert summary.severity == Severity.HIGH
        assert summary.confidence == pytest.approx(0.88)
        assert summary.to_dict()["severity"] == "high"

    def test_disciplined_episode(self, make_trade):
        qualities = [position_fallback(make_trade(quantity=10), 1000.0) for _ in range(3)]
        summary = summarize_episode(qualities)
        assert not summary.is_revenge_trading
        assert summary.severity == Severity.LOW
        assert summary.confidence == pytest.approx(0.3)


class TestAnalyzer:
    @pytest.mark.asyncio
    async def test_without_provider_uses_position_size(self, make_trade):
        quality = await TradeQualityAnalyzer(None).assess_trade(make_trade(quantity=20), 1000.0)
        assert quality.analysis_mode == "position_fallback"

    @pytest.mark.asyncio
    async def test_failing_provider_uses_position_size(self, make_trade):
        provider = StaticMarketDataProvider(failing_symbols={"AAPL"})
        quality = await TradeQualityAnalyzer(provider).assess_trade(make_trade(), 1000.0)
        assert quality.analysis_mode == "position_fallback"

    @pytest.mark.asyncio
    async def test_chasing_without_news_is_penalised(self, make_trade):
        provider = StaticMarketDataProvider({"AAPL": _bars(_chasing_closes())})
        quality = await TradeQualityAnalyzer(provider).assess_trade(make_trade(), 1000.0)
        assert quality.analysis_mode == "fundamental_analysis"
        assert quality.was_chasing_momentum
        assert quality.entry_timing_score == pytest.approx(0.22)
        assert quality.is_poor

    @pytest.mark.asyncio
    async def test_breaking_news_supports_entry(self, make_trade):
        provider = StaticMarketDataProvider(news={"AAPL": [_news(10, "strong beat")]})
        quality = await TradeQualityAnalyzer(provider).assess_trade(make_trade(), 1000.0)
        assert quality.has_relevant_news
        assert quality.entry_timing_score == pytest.approx(0.856)
        assert not quality.is_poor

    @pytest.mark.asyncio
    async def test_episode_baseline_from_first_five(self, make_trade):
        history = [make_trade(entry=i * 60, quantity=10) for i in range(6)]
        candidates = [make_trade(entry=400, quantity=30)]
        summary = await TradeQualityAnalyzer(None).assess_episode(candidates, history)
        assert summary.metrics[0].position_increase == 200.0
        assert summary.total_trades == 1
