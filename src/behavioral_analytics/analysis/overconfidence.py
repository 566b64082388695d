"""Overconfidence detection: position-size escalation during win streaks.

A win streak of at least ``min_streak_length`` trades is flagged when its
peak monetary position exceeds the baseline by ``position_increase_threshold``
percent.  The baseline is the mean position of the user's first five
trades, falling back to the mean of the streak's first three.

When a streak ends, the trade that ended it gets an outcome forensics
pass that decides whether the following loss was overconfidence or bad
luck:

======================================  ======
Finding                                 Points
======================================  ======
Entry improvable by more than 5%        +2
Exit beyond the default stop            +3
No stop while a default is configured   +1
======================================  ======

The verdict annotates the event only; it never blocks trading.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence

import numpy as np

from behavioral_analytics.cache.service import AnalyticsCache
from behavioral_analytics.core.clock import IClock
from behavioral_analytics.core.config import (
    AnalysisConfig,
    BehavioralSettings,
    Settings,
    resolve_analysis_config,
)
from behavioral_analytics.core.entitlements import IEntitlementGate, require_feature
from behavioral_analytics.core.enums import (
    AlertType,
    FeatureKey,
    PatternType,
    Severity,
    StreakOutcome,
    StreakType,
    TradeSide,
    Verdict,
)
from behavioral_analytics.core.filters import PLACEHOLDER_SYMBOLS, DateField, TradeFilter
from behavioral_analytics.core.ids import derived_id
from behavioral_analytics.core.models import (
    ALERT_TTL,
    BehavioralAlert,
    BehavioralPattern,
    InsufficientData,
    OverconfidenceEvent,
    Trade,
)
from behavioral_analytics.storage.base import IBehaviorRepository, ITradeStore

from .counterfactual import CounterfactualPriceAnalyzer, EntryAnalysis, ExitAnalysis
from .recommendations import RecommendationService, TradingContext
from .streaks import Streak, StreakTracker, win_streaks

logger = logging.getLogger(__name__)

MAX_INCREASE_PERCENT = 9999.99
BASE_CONFIDENCE = 0.6
BASELINE_TRADES = 5
STREAK_FALLBACK_TRADES = 3
MIN_EVALUATED_STREAK = 3

POOR_ENTRY_PERCENT = 5.0
GOOD_ENTRY_PERCENT = 2.0
POOR_ENTRY_POINTS = 2
HELD_PAST_STOP_POINTS = 3
NO_STOP_POINTS = 1
MAX_VERDICT_SCORE = 6

_OUTCOME_STATUS = {
    StreakOutcome.LOSS: "warning",
    StreakOutcome.PROFIT: "success",
    StreakOutcome.ONGOING: "info",
}


# ---------------------------------------------------------------------------
# Streak assessment
# ---------------------------------------------------------------------------

@dataclass
class StreakAssessment:
    streak: Streak
    baseline_position_size: float
    peak_position_size: float
    increase_percent: float
    total_profit: float
    avg_position_size: float
    profit_margin: float
    severity: Severity
    confidence: float


def baseline_position_size(trades: Sequence[Trade]) -> float | None:
    """Mean position of the first five trades, ``None`` with fewer."""
    if len(trades) < BASELINE_TRADES:
        return None
    first = trades[:BASELINE_TRADES]
    return sum(t.position_size for t in first) / BASELINE_TRADES


def increase_percent(peak: float, baseline: float) -> float:
    if baseline <= 0:
        return 0.0
    return min((peak - baseline) / baseline * 100.0, MAX_INCREASE_PERCENT)


def classify_streak_severity(pct: float, profit_margin: float) -> Severity:
    if pct > 150 or (pct > 75 and profit_margin < 0.02):
        return Severity.HIGH
    if pct > 75 or (pct > 40 and profit_margin < 0.05):
        return Severity.MEDIUM
    return Severity.LOW


def assess_streak(
    streak: Streak,
    baseline: float | None,
    threshold: float,
) -> StreakAssessment | None:
    """Evaluate a win streak; ``None`` when it shows no escalation."""
    if streak.length < MIN_EVALUATED_STREAK:
        return None

    sizes = streak.position_sizes
    if baseline is None or baseline <= 0:
        head = sizes[:STREAK_FALLBACK_TRADES]
        baseline = sum(head) / len(head)
    if baseline <= 0:
        return None

    peak = max(sizes)
    pct = increase_percent(peak, baseline)
    if pct < threshold:
        return None

    total_profit = streak.total_pnl
    avg_size = float(np.mean(sizes))
    margin = total_profit / (avg_size * streak.length) if avg_size > 0 else 0.0

    confidence = BASE_CONFIDENCE
    if float(np.std(sizes)) > avg_size * 0.3:
        confidence += 0.1
    confidence += min(pct * 0.002, 0.2)

    return StreakAssessment(
        streak=streak,
        baseline_position_size=baseline,
        peak_position_size=peak,
        increase_percent=pct,
        total_profit=total_profit,
        avg_position_size=avg_size,
        profit_margin=margin,
        severity=classify_streak_severity(pct, margin),
        confidence=min(confidence, 1.0),
    )


# ---------------------------------------------------------------------------
# Outcome forensics
# ---------------------------------------------------------------------------

@dataclass
class StopLossCheck:
    had_stop_loss: bool
    actual_stop_loss: float | None
    recommended_stop_loss: float | None
    default_stop_loss_percent: float
    held_past_stop: bool = False
    additional_loss: float = 0.0

    @property
    def adherence_rating(self) -> str:
        if self.held_past_stop:
            return "poor"
        return "good" if self.had_stop_loss else "none"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["adherence_rating"] = self.adherence_rating
        return data


def check_stop_loss(trade: Trade, default_stop_percent: float) -> StopLossCheck:
    """Would the user's default stop have fired before the realised exit?"""
    check = StopLossCheck(
        had_stop_loss=trade.stop_loss is not None,
        actual_stop_loss=trade.stop_loss,
        recommended_stop_loss=None,
        default_stop_loss_percent=default_stop_percent,
    )
    if default_stop_percent <= 0 or trade.exit_price is None:
        return check

    qty = abs(trade.quantity)
    exit_price = trade.exit_price
    if trade.side == TradeSide.LONG:
        stop = trade.entry_price * (1 - default_stop_percent / 100)
        if exit_price < stop:
            check.held_past_stop = True
            check.additional_loss = (stop - exit_price) * qty
    else:
        stop = trade.entry_price * (1 + default_stop_percent / 100)
        if exit_price > stop:
            check.held_past_stop = True
            check.additional_loss = (exit_price - stop) * qty
    check.recommended_stop_loss = stop
    return check


@dataclass
class OutcomeVerdict:
    verdict: Verdict
    label: str
    score: int
    reasons: list[str] = field(default_factory=list)
    positive_factors: list[str] = field(default_factory=list)
    recommendation: str = ""
    max_score: int = MAX_VERDICT_SCORE

    @property
    def is_overconfidence(self) -> bool:
        return self.score >= 2

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "verdict_label": self.label,
            "overconfidence_score": self.score,
            "max_score": self.max_score,
            "is_overconfidence": self.is_overconfidence,
            "reasons": list(self.reasons),
            "positive_factors": list(self.positive_factors),
            "recommendation": self.recommendation,
        }


_VERDICT_TEXT: dict[Verdict, tuple[str, str]] = {
    Verdict.TRUE_OVERCONFIDENCE: (
        "True Overconfidence",
        "This loss was preventable. The combination of poor entry timing and not "
        "respecting stop loss indicates overconfidence from the winning streak.",
    ),
    Verdict.PRUDENT_TRADE: (
        "Prudent Trade",
        "This was a well-executed trade with good entry timing and stop loss "
        "discipline. The loss was due to market conditions, not overconfidence.",
    ),
    Verdict.PARTIAL_OVERCONFIDENCE: (
        "Partial Overconfidence",
        "Some aspects of this trade showed overconfidence. Review the specific "
        "issues to improve future trades.",
    ),
    Verdict.BAD_LUCK: (
        "Bad Luck",
        "The trade setup was reasonable, but market conditions were unfavorable.",
    ),
}


def determine_verdict(
    trade: Trade,
    entry: EntryAnalysis | None,
    stop: StopLossCheck | None,
    exit_: ExitAnalysis | None,
    default_stop_percent: float,
) -> OutcomeVerdict:
    score = 0
    reasons: list[str] = []
    positives: list[str] = []

    if entry is not None and entry.data_available:
        if entry.improvement_percent > POOR_ENTRY_PERCENT:
            score += POOR_ENTRY_POINTS
            reasons.append(
                f"Poor entry timing: Could have entered {entry.improvement_percent:.1f}% better"
            )
        elif entry.improvement_percent < GOOD_ENTRY_PERCENT:
            positives.append("Entry timing was near optimal")

    if stop is not None:
        if stop.held_past_stop:
            score += HELD_PAST_STOP_POINTS
            reasons.append(
                "Held past recommended stop loss: Additional loss of "
                f"${stop.additional_loss:.2f}"
            )
        elif stop.had_stop_loss:
            positives.append("Respected stop loss discipline")
        if not stop.had_stop_loss and default_stop_percent > 0:
            score += NO_STOP_POINTS
            reasons.append("No stop loss set despite having default stop loss configured")

    if (
        trade.is_loser
        and exit_ is not None
        and exit_.data_available
        and exit_.potential_additional_profit <= 0
    ):
        positives.append("Exited at appropriate time before further decline")

    if score >= 3:
        verdict = Verdict.TRUE_OVERCONFIDENCE
    elif score == 0 and len(positives) >= 2:
        verdict = Verdict.PRUDENT_TRADE
    elif 0 < score < 3:
        verdict = Verdict.PARTIAL_OVERCONFIDENCE
    else:
        verdict = Verdict.BAD_LUCK

    label, recommendation = _VERDICT_TEXT[verdict]
    return OutcomeVerdict(
        verdict=verdict,
        label=label,
        score=score,
        reasons=reasons,
        positive_factors=positives,
        recommendation=recommendation,
    )


# ---------------------------------------------------------------------------
# Helpers for reports
# ---------------------------------------------------------------------------

def _trade_summary(trade: Trade) -> dict[str, Any]:
    return {
        "id": trade.id,
        "symbol": trade.symbol,
        "side": trade.side.value,
        "entry_time": trade.entry_time.isoformat(),
        "exit_time": trade.exit_time.isoformat() if trade.exit_time else None,
        "entry_price": trade.entry_price,
        "exit_price": trade.exit_price,
        "quantity": trade.quantity,
        "pnl": trade.net_pnl,
        "commission": trade.commission,
        "fees": trade.fees,
        "position_size": trade.position_size,
    }


def pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": pages,
        "has_next_page": page < pages,
        "has_previous_page": page > 1,
    }


def event_statistics(events: Sequence[OverconfidenceEvent]) -> dict[str, Any]:
    n = len(events)
    losses = sum(1 for e in events if e.outcome_after_streak == StreakOutcome.LOSS)
    profits = sum(1 for e in events if e.outcome_after_streak == StreakOutcome.PROFIT)
    streak_profits = sum(e.total_streak_profit for e in events)
    losses_after = sum(
        abs(e.outcome_amount) for e in events
        if e.outcome_amount is not None and e.outcome_amount < 0
    )
    return {
        "total_events": n,
        "avg_streak_length": sum(e.win_streak_length for e in events) / n if n else 0.0,
        "avg_position_increase": (
            sum(e.position_size_increase_percent for e in events) / n if n else 0.0
        ),
        "total_streak_profits": streak_profits,
        "total_losses_after_streaks": losses_after,
        "streaks_ending_in_loss": losses,
        "streaks_ending_in_profit": profits,
        "high_severity_count": sum(1 for e in events if e.severity == Severity.HIGH),
        "medium_severity_count": sum(1 for e in events if e.severity == Severity.MEDIUM),
        "low_severity_count": sum(1 for e in events if e.severity == Severity.LOW),
        "loss_rate": round(losses / n * 100, 1) if n else 0.0,
        "profit_rate": round(profits / n * 100, 1) if n else 0.0,
        "performance_impact": losses_after - streak_profits,
        "success_rate": profits / n * 100 if n else 0.0,
    }


# ---------------------------------------------------------------------------
# Detector service
# ---------------------------------------------------------------------------

class OverconfidenceDetector:
    """Batch and real-time overconfidence detection for one engine instance.

    Parameters
    ----------
    trade_store, repo, gate, clock:
        Collaborators shared with the other detectors.
    cache:
        Optional analytics cache for :meth:`get_analysis`.
    counterfactual:
        Optional price analyzer for outcome forensics.
    recommendations:
        Optional recommendation service; static advice when omitted.
    settings:
        Service settings; defaults when omitted.
    sleep:
        Awaitable used between recommendation batches.
    """

    def __init__(
        self,
        *,
        trade_store: ITradeStore,
        repo: IBehaviorRepository,
        gate: IEntitlementGate,
        clock: IClock,
        cache: AnalyticsCache | None = None,
        counterfactual: CounterfactualPriceAnalyzer | None = None,
        recommendations: RecommendationService | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._trades = trade_store
        self._repo = repo
        self._gate = gate
        self._clock = clock
        self._cache = cache
        self._counterfactual = counterfactual
        self._recommendations = recommendations or RecommendationService(repo, clock)
        self._settings = settings or Settings()
        self._sleep = sleep
        self._tracker = StreakTracker()

    async def _config(self, user_id: str) -> AnalysisConfig:
        return await resolve_analysis_config(self._repo, self._settings, user_id)

    # -- batch -----------------------------------------------------------------

    async def analyze_history(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any] | InsufficientData:
        """Clear and rebuild overconfidence events for the range."""
        await require_feature(self._gate, user_id, FeatureKey.OVERCONFIDENCE_ANALYTICS)
        config = await self._config(user_id)

        await self._repo.delete_overconfidence_events(user_id, start=start, end=end)
        await self._repo.delete_patterns(
            user_id, [PatternType.OVERCONFIDENCE_BIAS], start=start, end=end,
        )

        trades = await self._trades.list_trades(TradeFilter(
            user_id=user_id,
            start=start,
            end=end,
            date_field=DateField.EXIT,
            exclude_symbols=PLACEHOLDER_SYMBOLS,
        ))
        required = config.detection.overconfidence_min_trades
        if len(trades) < required:
            return InsufficientData.for_trade_count("overconfidence", len(trades), required)

        baseline = baseline_position_size(trades)
        created = 0
        for streak in win_streaks(trades, min_length=config.min_streak_length):
            assessment = assess_streak(streak, baseline, config.position_increase_threshold)
            if assessment is None:
                continue
            event = await self._build_event(user_id, assessment, config)
            await self._repo.add_overconfidence_event(event)
            await self._repo.add_pattern(self._build_pattern(event))
            created += 1
            logger.debug(
                "Overconfidence event: user=%s length=%d increase=%.1f%% severity=%s",
                user_id, event.win_streak_length, event.position_size_increase_percent,
                event.severity.value,
            )

        if self._cache is not None:
            await self._cache.invalidate(user_id)
        logger.info(
            "Overconfidence history rebuilt: user=%s trades=%d events=%d",
            user_id, len(trades), created,
        )
        return {
            "trades_analyzed": len(trades),
            "overconfidence_events_created": created,
            "message": f"Created {created} overconfidence events",
        }

    async def _build_event(
        self,
        user_id: str,
        assessment: StreakAssessment,
        config: AnalysisConfig,
    ) -> OverconfidenceEvent:
        streak = assessment.streak
        outcome_trade = streak.outcome_trade
        outcome_analysis = None
        if outcome_trade is not None:
            outcome_analysis = await self.analyze_outcome(
                outcome_trade, config.default_stop_loss_percent,
            )
        return OverconfidenceEvent(
            id=derived_id("overconfidence_event", user_id, streak.trades[0].id),
            user_id=user_id,
            win_streak_length=streak.length,
            streak_start_date=streak.start,
            streak_end_date=streak.end,
            baseline_position_size=round(assessment.baseline_position_size, 2),
            peak_position_size=round(assessment.peak_position_size, 2),
            position_size_increase_percent=round(assessment.increase_percent, 2),
            total_streak_profit=round(assessment.total_profit, 2),
            streak_trades=streak.trade_ids,
            severity=assessment.severity,
            confidence_score=round(assessment.confidence, 4),
            outcome_after_streak=streak.outcome,
            outcome_trade_id=outcome_trade.id if outcome_trade else None,
            outcome_amount=outcome_trade.net_pnl if outcome_trade else None,
            outcome_analysis=outcome_analysis,
            created_at=streak.end,
        )

    @staticmethod
    def _build_pattern(event: OverconfidenceEvent) -> BehavioralPattern:
        return BehavioralPattern(
            id=derived_id("overconfidence_pattern", event.user_id, event.id),
            user_id=event.user_id,
            pattern_type=PatternType.OVERCONFIDENCE_BIAS,
            severity=event.severity,
            confidence_score=event.confidence_score,
            detected_at=event.streak_start_date,
            context_data={
                "overconfidence_event_id": event.id,
                "win_streak_length": event.win_streak_length,
                "position_size_increase_percent": event.position_size_increase_percent,
                "total_streak_profit": event.total_streak_profit,
                "peak_position_size": event.peak_position_size,
                "baseline_position_size": event.baseline_position_size,
            },
        )

    async def analyze_outcome(
        self,
        trade: Trade,
        default_stop_percent: float,
    ) -> dict[str, Any] | None:
        """Forensics on the trade that ended a streak."""
        if not trade.is_closed or trade.exit_price is None:
            return None

        entry: EntryAnalysis | None = None
        exit_: ExitAnalysis | None = None
        if self._counterfactual is not None:
            entry = await self._counterfactual.analyze_entry(trade)
            exit_ = await self._counterfactual.analyze_exit(trade)
        stop = check_stop_loss(trade, default_stop_percent)
        verdict = determine_verdict(trade, entry, stop, exit_, default_stop_percent)

        return {
            "entry_analysis": entry.to_dict() if entry and entry.data_available else None,
            "stop_loss_analysis": stop.to_dict(),
            "exit_analysis": exit_.to_dict() if exit_ and exit_.data_available else None,
            "verdict": verdict.to_dict(),
            "trade_details": {
                "symbol": trade.symbol,
                "entry_price": trade.entry_price,
                "exit_price": trade.exit_price,
                "side": trade.side.value,
                "pnl": trade.net_pnl,
                "hold_time_minutes": round(trade.hold_time_minutes or 0.0),
                "actual_stop_loss": trade.stop_loss,
            },
        }

    # -- report ----------------------------------------------------------------

    async def get_analysis(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Paginated events with recommendations and statistics (cached)."""
        await require_feature(self._gate, user_id, FeatureKey.OVERCONFIDENCE_ANALYTICS)
        page = max(page, 1)
        limit = max(limit, 1)

        key = AnalyticsCache.generate_key(
            "overconfidence_analysis",
            {"start": start, "end": end, "page": page, "limit": limit},
        )
        if self._cache is not None:
            cached = await self._cache.get(user_id, key)
            if cached is not None:
                return cached

        config = await self._config(user_id)
        events = await self._repo.list_overconfidence_events(user_id, start=start, end=end)
        page_events = events[(page - 1) * limit:page * limit]

        all_trades = await self._trades.list_trades(TradeFilter(user_id=user_id))
        by_id = {t.id: t for t in all_trades}
        context = TradingContext.from_trades(all_trades)

        rendered: list[dict[str, Any]] = []
        batch = max(config.enrichment.ai_batch_size, 1)
        for i in range(0, len(page_events), batch):
            if i > 0:
                await self._sleep(config.enrichment.ai_batch_delay_seconds)
            for event in page_events[i:i + batch]:
                recs, is_fallback = await self._recommendations.recommendations_for(
                    event, context,
                )
                rendered.append(self._render_event(event, recs, is_fallback, by_id))

        result = {
            "events": rendered,
            "statistics": event_statistics(events),
            "win_streak_analysis": {
                "longest_streak": max((e.win_streak_length for e in events), default=0),
                "avg_streak_length": (
                    sum(e.win_streak_length for e in events) / len(events) if events else 0.0
                ),
                "avg_position_growth": (
                    sum(e.position_size_increase_percent for e in events) / len(events)
                    if events else 0.0
                ),
            },
            "pagination": pagination(page, limit, len(events)),
        }
        if self._cache is not None:
            await self._cache.set(
                user_id, key, result,
                ttl_minutes=self._settings.cache.overconfidence_ttl_minutes,
            )
        return result

    @staticmethod
    def _render_event(
        event: OverconfidenceEvent,
        recommendations: list[str],
        is_fallback: bool,
        trades: dict[str, Trade],
    ) -> dict[str, Any]:
        data = event.model_dump(mode="json", exclude={"ai_recommendations"})
        data["outcome_status"] = _OUTCOME_STATUS.get(event.outcome_after_streak, "neutral")
        data["total_impact"] = event.outcome_amount or 0.0
        data["recommendations"] = recommendations
        data["recommendations_fallback"] = is_fallback
        streak_trades = sorted(
            (trades[i] for i in event.streak_trades if i in trades),
            key=lambda t: t.entry_time,
        )
        data["streak_trade_details"] = [_trade_summary(t) for t in streak_trades]
        outcome = trades.get(event.outcome_trade_id) if event.outcome_trade_id else None
        data["outcome_trade_details"] = _trade_summary(outcome) if outcome else None
        return data

    # -- real-time -------------------------------------------------------------

    async def detect_realtime(self, user_id: str, trade: Trade) -> dict[str, Any] | None:
        """Update the live streak with *trade*; alert on escalation."""
        await require_feature(self._gate, user_id, FeatureKey.OVERCONFIDENCE_ANALYTICS)
        config = await self._config(user_id)
        if not config.overconfidence_enabled:
            return None

        state = await self._repo.get_active_streak(user_id)
        update = self._tracker.apply(state, trade)
        if update.changed:
            if update.ended is not None:
                await self._repo.save_streak(update.ended)
            if update.current is not None:
                await self._repo.save_streak(update.current)

        streak = update.current
        if (
            streak is None
            or streak.streak_type != StreakType.WIN
            or streak.current_length < config.min_streak_length
            or streak.baseline_position_size <= 0
        ):
            return None

        pct = increase_percent(streak.max_position_size, streak.baseline_position_size)
        if pct < config.position_increase_threshold:
            return None

        margin = streak.total_pnl / (streak.max_position_size * streak.current_length)
        message = (
            f"Overconfidence Alert: Your position sizes have increased {pct:.1f}% "
            f"during this {streak.current_length}-trade win streak"
        )
        if pct > 100 or (pct > 50 and margin < 0.02):
            severity = Severity.HIGH
            message += ". Consider reducing position size to manage risk."
        else:
            severity = Severity.MEDIUM
            if pct > 75:
                message += ". Monitor your position sizing carefully."

        now = self._clock.now()
        alert = BehavioralAlert(
            user_id=user_id,
            alert_type=AlertType.WARNING,
            title="Overconfidence Alert",
            message=message,
            alert_data={
                "pattern": PatternType.OVERCONFIDENCE_BIAS.value,
                "severity": severity.value,
                "streak_length": streak.current_length,
                "position_increase": round(pct, 2),
                "trade_id": trade.id,
            },
            created_at=now,
            expires_at=now + ALERT_TTL,
        )
        await self._repo.add_alert(alert)
        logger.info(
            "Overconfidence alert: user=%s streak=%d increase=%.1f%%",
            user_id, streak.current_length, pct,
        )
        return {
            "type": "overconfidence_alert",
            "alert_id": alert.id,
            "message": message,
            "severity": severity.value,
            "streak_length": streak.current_length,
            "position_increase": pct,
            "total_profit": streak.total_pnl,
            "profit_margin": margin,
            "recommendation": (
                "Consider taking a break or reducing position size"
                if pct > 75 else "Monitor position sizing closely"
            ),
        }

    # -- settings --------------------------------------------------------------

    async def update_settings(self, user_id: str, **changes: Any) -> BehavioralSettings:
        """Merge *changes* into the stored settings (validated) and save."""
        current = await self._repo.get_settings(user_id) or BehavioralSettings(user_id=user_id)
        merged = BehavioralSettings.model_validate(
            {**current.model_dump(), **changes, "user_id": user_id}
        )
        saved = await self._repo.save_settings(merged)
        if self._cache is not None:
            await self._cache.invalidate(user_id, ["overconfidence_analysis"])
        return saved
