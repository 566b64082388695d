"""Entry-quality scoring for suspected revenge trades.

Each candidate trade is scored from two independent views of the market
at entry:

* **news** -- company headlines in the two hours before entry; breaking
  news (<= 30 min) suggests an informed decision.
* **candles** -- 1-minute bars +-30 min around entry, to spot momentum
  chasing (> 1% move in the last three bars) and trend fighting (> 0.5%
  counter-trend over the prior ten bars).

``quality = news x 0.6 + candles x 0.4`` with a +0.2 bonus for a
well-supported news trade and a -0.2 penalty for chasing without news.
When neither view has data the trade is scored from its position size
relative to the user's baseline instead.

The episode summary is an annotation only; it never decides whether a
revenge event is created.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from behavioral_analytics.core.enums import Severity, TradeSide
from behavioral_analytics.core.errors import ExternalDataError
from behavioral_analytics.core.models import Trade
from behavioral_analytics.market_data.base import IMarketDataProvider

logger = logging.getLogger(__name__)

NEWS_LOOKBACK = timedelta(hours=2)
BREAKING_NEWS_MINUTES = 30
CANDLE_HALF_WINDOW = timedelta(minutes=30)
MIN_CANDLES = 10
CHASE_THRESHOLD = 0.01
TREND_THRESHOLD = 0.005

NEWS_WEIGHT = 0.6
CANDLE_WEIGHT = 0.4

_POSITIVE_WORDS = frozenset({
    "up", "gain", "rise", "surge", "jump", "beat", "strong", "good",
    "positive", "growth", "profit", "upgrade", "buy",
})
_NEGATIVE_WORDS = frozenset({
    "down", "fall", "drop", "plunge", "miss", "weak", "bad", "negative",
    "loss", "cut", "downgrade", "sell",
})
_WORD_RE = re.compile(r"[a-z]+")


def headline_sentiment(headline: str | None) -> float:
    """Keyword sentiment in ``[-0.5, 0.5]``, +-0.1 per distinct keyword."""
    if not headline:
        return 0.0
    words = set(_WORD_RE.findall(headline.lower()))
    score = 0.1 * len(words & _POSITIVE_WORDS) - 0.1 * len(words & _NEGATIVE_WORDS)
    return max(-0.5, min(0.5, round(score, 10)))


def price_trend(prices: Sequence[float]) -> float:
    """Fractional change from the first to the last price."""
    if len(prices) < 2 or not prices[0]:
        return 0.0
    return (prices[-1] - prices[0]) / prices[0]


# ---------------------------------------------------------------------------
# Per-view assessments
# ---------------------------------------------------------------------------

@dataclass
class NewsAssessment:
    score: float = 0.5
    has_relevant_news: bool = False
    news_count: int = 0
    has_breaking_news: bool = False


@dataclass
class CandleAssessment:
    score: float = 0.5
    was_chasing_momentum: bool = False
    was_fighting_trend: bool = False
    trend_before: float = 0.0
    recent_move: float = 0.0


def score_news(items: Sequence[Any], entry_time: datetime) -> NewsAssessment:
    """Score headlines (objects with ``headline`` and ``published_at``)."""
    window_start = entry_time - NEWS_LOOKBACK
    relevant = [n for n in items if window_start <= n.published_at <= entry_time]
    if not relevant:
        return NewsAssessment()

    breaking = any(
        (entry_time - n.published_at).total_seconds() / 60 <= BREAKING_NEWS_MINUTES
        for n in relevant
    )
    avg_sentiment = sum(headline_sentiment(n.headline) for n in relevant) / len(relevant)

    if breaking:
        score = min(0.5 + avg_sentiment * 0.3 + 0.2, 1.0)
    elif len(relevant) >= 2:
        score = min(0.5 + avg_sentiment * 0.2 + 0.1, 0.8)
    else:
        score = 0.5 + avg_sentiment * 0.1

    return NewsAssessment(
        score=max(score, 0.1),
        has_relevant_news=True,
        news_count=len(relevant),
        has_breaking_news=breaking,
    )


def score_candles(
    times: Sequence[int],
    closes: Sequence[float],
    entry_time: datetime,
    side: TradeSide,
) -> CandleAssessment:
    """Momentum and trend read of the bars leading into an entry."""
    if len(closes) < MIN_CANDLES or len(times) != len(closes):
        return CandleAssessment()

    target = int(entry_time.timestamp())
    entry_index = min(range(len(times)), key=lambda i: abs(times[i] - target))
    if entry_index < 5 or entry_index >= len(closes) - 5:
        return CandleAssessment()

    before = list(closes[max(0, entry_index - 10):entry_index])
    trend = price_trend(before)
    recent = (before[-1] - before[-4]) / before[-4] if len(before) > 3 and before[-4] else 0.0

    if side == TradeSide.LONG:
        chasing = recent > CHASE_THRESHOLD
        fighting = trend < -TREND_THRESHOLD
        buying_dip = recent < 0 < trend
    else:
        chasing = recent < -CHASE_THRESHOLD
        fighting = trend > TREND_THRESHOLD
        buying_dip = trend < 0 < recent

    score = 0.5
    if chasing:
        score -= 0.2
    if fighting:
        score -= 0.1
    if buying_dip:
        score += 0.2

    return CandleAssessment(
        score=max(0.1, min(0.9, score)),
        was_chasing_momentum=chasing,
        was_fighting_trend=fighting,
        trend_before=trend,
        recent_move=recent,
    )


# ---------------------------------------------------------------------------
# Trade and episode results
# ---------------------------------------------------------------------------

@dataclass
class TradeQuality:
    trade_id: str
    symbol: str
    entry_timing_score: float
    was_chasing_momentum: bool
    was_fighting_trend: bool
    has_relevant_news: bool
    news_score: float
    candle_score: float
    analysis_mode: str
    position_increase: float | None = None
    is_poor: bool = False


@dataclass
class EpisodeQuality:
    is_revenge_trading: bool
    confidence: float
    severity: Severity
    average_quality_score: float
    poor_quality_ratio: float
    news_influenced_ratio: float
    momentum_chasing_count: int
    trend_fighting_count: int
    news_influenced_count: int
    total_trades: int
    metrics: list[TradeQuality] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


def summarize_episode(qualities: Sequence[TradeQuality]) -> EpisodeQuality:
    n = len(qualities)
    poor = sum(
        int(q.was_chasing_momentum) + int(q.was_fighting_trend) + int(q.is_poor)
        for q in qualities
    )
    chasing = sum(1 for q in qualities if q.was_chasing_momentum)
    fighting = sum(1 for q in qualities if q.was_fighting_trend)
    news = sum(1 for q in qualities if q.has_relevant_news)

    avg = sum(q.entry_timing_score for q in qualities) / n if n else 0.5
    poor_ratio = poor / n if n else 0.0
    news_ratio = news / n if n else 0.0

    is_revenge = (
        avg < 0.4
        or poor_ratio > 0.3
        or (n > 0 and chasing >= math.ceil(n * 0.4) and news_ratio < 0.3)
    )
    if is_revenge:
        confidence = 0.5 + min(poor_ratio * 0.3, 0.3) + min((0.5 - avg) * 0.4, 0.2)
    else:
        confidence = max(0.3, 0.8 - avg)

    severity = Severity.LOW
    if is_revenge:
        if avg < 0.2 or poor_ratio > 0.8:
            severity = Severity.HIGH
        elif avg < 0.35 or poor_ratio > 0.6:
            severity = Severity.MEDIUM

    return EpisodeQuality(
        is_revenge_trading=is_revenge,
        confidence=min(confidence, 1.0),
        severity=severity,
        average_quality_score=avg,
        poor_quality_ratio=poor_ratio,
        news_influenced_ratio=news_ratio,
        momentum_chasing_count=chasing,
        trend_fighting_count=fighting,
        news_influenced_count=news,
        total_trades=n,
        metrics=list(qualities),
    )


def position_fallback(trade: Trade, baseline_size: float) -> TradeQuality:
    """Score a trade from its size relative to *baseline_size* alone."""
    size = trade.position_size
    increase = (size - baseline_size) / baseline_size * 100 if baseline_size > 0 else 0.0
    if increase > 50:
        score, poor = 0.3, True
    elif increase > 20:
        score, poor = 0.4, True
    else:
        score, poor = 0.6, False
    return TradeQuality(
        trade_id=trade.id,
        symbol=trade.symbol,
        entry_timing_score=score,
        was_chasing_momentum=increase > 50,
        was_fighting_trend=False,
        has_relevant_news=False,
        news_score=0.5,
        candle_score=0.5,
        analysis_mode="position_fallback",
        position_increase=round(increase, 2),
        is_poor=poor,
    )


class TradeQualityAnalyzer:
    """Scores revenge candidates using news and 1-minute candles.

    Parameters
    ----------
    provider:
        Market data source.  ``None`` scores every trade by position size.
    """

    def __init__(self, provider: IMarketDataProvider | None) -> None:
        self._provider = provider
        self._warned: set[str] = set()

    def _note_failure(self, symbol: str, exc: Exception) -> None:
        if symbol in self._warned:
            return
        self._warned.add(symbol)
        logger.warning("Trade quality data unavailable for %s: %s", symbol, exc)

    async def assess_trade(self, trade: Trade, baseline_size: float) -> TradeQuality:
        if self._provider is None:
            return position_fallback(trade, baseline_size)

        news: NewsAssessment | None = None
        candles: CandleAssessment | None = None
        entry = trade.entry_time

        try:
            items = await self._provider.get_company_news(
                trade.symbol, (entry - NEWS_LOOKBACK).date(), entry.date(),
            )
            news = score_news(items, entry)
        except (ExternalDataError, ValueError) as exc:
            self._note_failure(trade.symbol, exc)

        try:
            series = await self._provider.get_candles(
                trade.symbol,
                "1",
                int((entry - CANDLE_HALF_WINDOW).timestamp()),
                int((entry + CANDLE_HALF_WINDOW).timestamp()),
            )
            candles = score_candles(series.times, series.close, entry, trade.side)
        except (ExternalDataError, ValueError) as exc:
            self._note_failure(trade.symbol, exc)

        if news is None and candles is None:
            return position_fallback(trade, baseline_size)

        news = news or NewsAssessment()
        candles = candles or CandleAssessment()
        quality = news.score * NEWS_WEIGHT + candles.score * CANDLE_WEIGHT
        if news.has_relevant_news and news.score > 0.7:
            quality = min(quality + 0.2, 1.0)
        elif candles.was_chasing_momentum and not news.has_relevant_news:
            quality = max(quality - 0.2, 0.0)

        return TradeQuality(
            trade_id=trade.id,
            symbol=trade.symbol,
            entry_timing_score=quality,
            was_chasing_momentum=candles.was_chasing_momentum,
            was_fighting_trend=candles.was_fighting_trend,
            has_relevant_news=news.has_relevant_news,
            news_score=news.score,
            candle_score=candles.score,
            analysis_mode="fundamental_analysis",
            is_poor=quality < 0.4,
        )

    async def assess_episode(
        self,
        revenge_trades: Sequence[Trade],
        all_trades: Sequence[Trade],
    ) -> EpisodeQuality:
        """Score every candidate of one revenge episode."""
        if len(all_trades) > 5:
            baseline = sum(t.position_size for t in all_trades[:5]) / 5
        elif revenge_trades:
            baseline = revenge_trades[0].position_size
        else:
            baseline = 1000.0

        qualities = [await self.assess_trade(t, baseline) for t in revenge_trades]
        return summarize_episode(qualities)
