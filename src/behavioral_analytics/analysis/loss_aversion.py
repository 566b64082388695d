"""Loss aversion: do winners get cut short while losers are left to run?

Hold times of closed winners and losers are compared over an analysis
window.  A winner held for less than half the average winner hold is a
*premature exit*; a losing (or breakeven) trade held for more than 1.5x
the average loser hold is an *extended hold*.

Financial impact starts from flat heuristics (20% of a premature winner's
profit missed, 15% of an extended loser's loss avoidable).  A bounded,
throttled sample of premature winners is then re-priced with real
post-exit candles; measured figures replace the heuristic for the trades
that were sampled.

Every run appends one :class:`LossAversionEvent` so that the history can
be charted, and upserts a :class:`TradeHoldPattern` per trade.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Sequence

from behavioral_analytics.cache.service import AnalyticsCache
from behavioral_analytics.core.clock import IClock
from behavioral_analytics.core.config import AnalysisConfig, Settings, resolve_analysis_config
from behavioral_analytics.core.entitlements import IEntitlementGate, require_feature
from behavioral_analytics.core.enums import FeatureKey
from behavioral_analytics.core.filters import PLACEHOLDER_SYMBOLS, DateField, TradeFilter
from behavioral_analytics.core.models import (
    InsufficientData,
    LossAversionEvent,
    Trade,
    TradeHoldPattern,
)
from behavioral_analytics.storage.base import IBehaviorRepository, ITradeStore

from .counterfactual import CounterfactualPriceAnalyzer
from .heuristics import (
    MISSED_OPPORTUNITY_FLOOR_PERCENT,
    MISSED_PROFIT_RATE,
    PLANNED_RISK_REWARD,
    UNNECESSARY_LOSS_RATE,
    basic_missed_percent,
    estimate_missed_opportunity_percent,
    estimate_potential_profit,
    loss_aversion_message,
    missed_opportunity_recommendation,
)

logger = logging.getLogger(__name__)

PREMATURE_FRACTION = 0.5
EXTENDED_FRACTION = 1.5
WINNER_QUALITY_SPAN = 1.2
LOSER_QUALITY_SPAN = 2.0
MIN_LOSER_QUALITY = 0.1
RATIO_CAP = 99.99

EXAMPLE_PROFIT_FRACTION = 0.5
MAX_EXAMPLE_TRADES = 5
STORED_EXAMPLE_TRADES = 10
TOP_MISSED_DEFAULT_LOOKBACK = timedelta(days=365)

ANALYSIS_NAME = "loss aversion"


# ---------------------------------------------------------------------------
# Hold-time statistics
# ---------------------------------------------------------------------------

def _hold(trade: Trade) -> float:
    return trade.hold_time_minutes or 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def hold_time_ratio(avg_winner_hold: float, avg_loser_hold: float) -> float:
    """``avg loser hold / avg winner hold``; 1.0 when winners have no hold."""
    if avg_winner_hold <= 0:
        return 1.0
    return avg_loser_hold / avg_winner_hold


def exit_quality_score(
    trade: Trade,
    avg_winner_hold: float,
    avg_loser_hold: float,
) -> float:
    hold = _hold(trade)
    if trade.is_winner:
        if avg_winner_hold <= 0:
            return 0.5
        score = min(hold / (avg_winner_hold * WINNER_QUALITY_SPAN), 1.0)
    else:
        if avg_loser_hold <= 0:
            return 0.5
        score = max(1.0 - hold / (avg_loser_hold * LOSER_QUALITY_SPAN), MIN_LOSER_QUALITY)
    return round(score, 2)


def classify_holds(
    user_id: str,
    trades: Sequence[Trade],
    avg_winner_hold: float,
    avg_loser_hold: float,
) -> list[TradeHoldPattern]:
    """One hold pattern per trade.  Breakeven trades count as non-winners."""
    patterns: list[TradeHoldPattern] = []
    for trade in trades:
        hold = _hold(trade)
        premature = trade.is_winner and hold < avg_winner_hold * PREMATURE_FRACTION
        extended = (not trade.is_winner) and hold > avg_loser_hold * EXTENDED_FRACTION
        patterns.append(TradeHoldPattern(
            user_id=user_id,
            trade_id=trade.id,
            symbol=trade.symbol,
            is_winner=trade.is_winner,
            pnl=trade.net_pnl,
            hold_time_minutes=round(hold, 2),
            exit_quality_score=exit_quality_score(trade, avg_winner_hold, avg_loser_hold),
            premature_exit=premature,
            extended_hold=extended,
            exit_time=trade.exit_time,
        ))
    return patterns


def analysis_days(trades: Sequence[Trade]) -> int:
    """Whole days spanned by *trades* (first entry to last exit), at least 1."""
    if not trades:
        return 30
    first = min(t.entry_time for t in trades)
    last = max(t.closed_at for t in trades)
    return max(1, math.ceil((last - first).total_seconds() / 86400))


@dataclass
class FinancialImpact:
    estimated_monthly_cost: float
    missed_profit_potential: float
    unnecessary_loss_extension: float
    avg_planned_risk_reward: float
    avg_actual_risk_reward: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def financial_impact(
    patterns: Sequence[TradeHoldPattern],
    winners: Sequence[Trade],
    losers: Sequence[Trade],
    days: int,
    measured_missed: dict[str, float] | None = None,
) -> FinancialImpact:
    """Cost of premature exits and extended holds, scaled to 30 days.

    *measured_missed* maps trade ids to missed profit measured from real
    price history; those trades use the measurement instead of the 20%
    heuristic.
    """
    measured_missed = measured_missed or {}
    missed = 0.0
    unnecessary = 0.0
    for p in patterns:
        if p.is_winner and p.premature_exit:
            if p.trade_id in measured_missed:
                missed += max(measured_missed[p.trade_id], 0.0)
            else:
                missed += p.pnl * MISSED_PROFIT_RATE
        elif not p.is_winner and p.extended_hold:
            unnecessary += abs(p.pnl) * UNNECESSARY_LOSS_RATE

    monthly = (missed + unnecessary) / max(days, 1) * 30

    avg_loss = _mean([abs(t.net_pnl) for t in losers])
    if avg_loss > 0 and winners:
        actual_rr = _mean([t.net_pnl / avg_loss for t in winners])
    else:
        actual_rr = 0.0

    return FinancialImpact(
        estimated_monthly_cost=round(monthly, 2),
        missed_profit_potential=round(missed, 2),
        unnecessary_loss_extension=round(unnecessary, 2),
        avg_planned_risk_reward=round(PLANNED_RISK_REWARD, 2),
        avg_actual_risk_reward=round(actual_rr, 2),
    )


def worst_symbol(trades: Sequence[Trade]) -> tuple[str | None, float]:
    """Symbol with the largest loser/winner hold ratio.

    Only symbols with at least one winner and one loser are ranked.
    """
    by_symbol: dict[str, tuple[list[float], list[float]]] = {}
    for trade in trades:
        wins, losses = by_symbol.setdefault(trade.symbol, ([], []))
        if trade.is_winner:
            wins.append(_hold(trade))
        elif trade.is_loser:
            losses.append(_hold(trade))

    best: tuple[str | None, float] = (None, 0.0)
    for symbol in sorted(by_symbol):
        wins, losses = by_symbol[symbol]
        if not wins or not losses:
            continue
        avg_win = _mean(wins)
        if avg_win <= 0:
            continue
        ratio = _mean(losses) / avg_win
        if ratio > best[1]:
            best = (symbol, ratio)
    return best


# ---------------------------------------------------------------------------
# Price-history sample
# ---------------------------------------------------------------------------

@dataclass
class PriceHistorySample:
    total_analyzed: int = 0
    total_missed_profit: float = 0.0
    avg_missed_profit_percent: float = 0.0
    example_trades: list[dict[str, Any]] = field(default_factory=list)
    measured_missed: dict[str, float] = field(default_factory=dict)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_analyzed": self.total_analyzed,
            "total_missed_profit": self.total_missed_profit,
            "avg_missed_profit_percent": self.avg_missed_profit_percent,
            "example_trades": self.example_trades,
            "summary": self.summary,
        }


def _trade_view(trade: Trade) -> dict[str, Any]:
    return {
        "id": trade.id,
        "trade_id": trade.id,
        "symbol": trade.symbol,
        "side": trade.side.value,
        "entry_time": trade.entry_time.isoformat(),
        "exit_time": trade.exit_time.isoformat() if trade.exit_time else None,
        "entry_price": trade.entry_price,
        "exit_price": trade.exit_price,
        "quantity": trade.quantity,
        "actual_profit": trade.net_pnl,
        "hold_time_minutes": round(_hold(trade)),
    }


# ---------------------------------------------------------------------------
# Analyzer service
# ---------------------------------------------------------------------------

class LossAversionAnalyzer:
    """Hold-time asymmetry analysis with counterfactual enrichment.

    Parameters
    ----------
    trade_store, repo, gate, clock:
        Collaborators shared with the other detectors.
    counterfactual:
        Price analyzer for premature-exit sampling and top missed trades.
        ``None`` skips price history entirely.
    cache:
        Optional analytics cache for :meth:`top_missed_trades`.
    settings:
        Service settings; defaults when omitted.
    sleep:
        Awaitable used to throttle market data calls.
    """

    def __init__(
        self,
        *,
        trade_store: ITradeStore,
        repo: IBehaviorRepository,
        gate: IEntitlementGate,
        clock: IClock,
        counterfactual: CounterfactualPriceAnalyzer | None = None,
        cache: AnalyticsCache | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._trades = trade_store
        self._repo = repo
        self._gate = gate
        self._clock = clock
        self._counterfactual = counterfactual
        self._cache = cache
        self._settings = settings or Settings()
        self._sleep = sleep

    async def _config(self, user_id: str) -> AnalysisConfig:
        return await resolve_analysis_config(self._repo, self._settings, user_id)

    # -- analysis ----------------------------------------------------------------

    async def analyze(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any] | InsufficientData | None:
        """Run the analysis over ``[start, end]`` and persist the result.

        The window defaults to the user's whole trade history.  Returns
        ``None`` when the user has disabled loss aversion analysis.
        """
        await require_feature(self._gate, user_id, FeatureKey.BEHAVIORAL_ANALYTICS)
        config = await self._config(user_id)
        if not config.loss_aversion_enabled:
            logger.debug("Loss aversion disabled for user=%s", user_id)
            return None

        required = config.detection.loss_aversion_min_trades
        if start is None or end is None:
            span = await self._trades.trade_span(user_id)
            if span is None:
                return InsufficientData.for_trade_count(ANALYSIS_NAME, 0, required)
            start = start or span[0]
            end = end or span[1]

        candidates = await self._trades.list_trades(TradeFilter(
            user_id=user_id, start=start, date_field=DateField.ENTRY,
        ))
        trades = [
            t for t in candidates
            if t.exit_time is not None and t.exit_time <= end and t.pnl is not None
        ]
        if len(trades) < required:
            return InsufficientData.for_trade_count(ANALYSIS_NAME, len(trades), required)

        winners = [t for t in trades if t.is_winner]
        losers = [t for t in trades if t.is_loser]
        if not winners or not losers:
            return InsufficientData(
                analysis=ANALYSIS_NAME,
                message=(
                    "Loss aversion analysis needs both winning and losing trades. "
                    f"You have {len(winners)} winning and {len(losers)} losing trades."
                ),
                current_trades=len(trades),
                required_trades=required,
                winning_trades=len(winners),
                losing_trades=len(losers),
            )

        avg_winner = _mean([_hold(t) for t in winners])
        avg_loser = _mean([_hold(t) for t in losers])
        ratio = hold_time_ratio(avg_winner, avg_loser)
        patterns = classify_holds(user_id, trades, avg_winner, avg_loser)

        by_id = {t.id: t for t in trades}
        premature = [by_id[p.trade_id] for p in patterns if p.is_winner and p.premature_exit]
        sample = await self._sample_price_history(user_id, premature, config)

        impact = financial_impact(
            patterns, winners, losers, analysis_days(trades), sample.measured_missed,
        )
        symbol, symbol_ratio = worst_symbol(trades)

        event = LossAversionEvent(
            user_id=user_id,
            analysis_start_date=start,
            analysis_end_date=end,
            avg_winner_hold_time_minutes=round(avg_winner),
            avg_loser_hold_time_minutes=round(avg_loser),
            hold_time_ratio=round(min(ratio, RATIO_CAP), 2),
            total_winning_trades=len(winners),
            total_losing_trades=len(losers),
            premature_profit_exits=len(premature),
            extended_loss_holds=sum(1 for p in patterns if p.extended_hold),
            estimated_monthly_cost=impact.estimated_monthly_cost,
            missed_profit_potential=impact.missed_profit_potential,
            unnecessary_loss_extension=impact.unnecessary_loss_extension,
            avg_planned_risk_reward=impact.avg_planned_risk_reward,
            avg_actual_risk_reward=impact.avg_actual_risk_reward,
            worst_hold_ratio_symbol=symbol,
            worst_hold_ratio_value=round(min(symbol_ratio, RATIO_CAP), 2) if symbol else None,
            avg_missed_profit_percent=min(sample.avg_missed_profit_percent, RATIO_CAP),
            price_history_analyzed=sample.total_analyzed > 0,
            created_at=self._clock.now(),
        )
        await self._repo.add_loss_aversion_event(event)
        await self._repo.upsert_hold_patterns(patterns)
        if self._cache is not None:
            await self._cache.invalidate(user_id, ["top_missed_trades", "loss_aversion"])

        logger.info(
            "Loss aversion analyzed: user=%s trades=%d ratio=%.2f monthly_cost=%.2f",
            user_id, len(trades), ratio, impact.estimated_monthly_cost,
        )
        return {
            "event_id": event.id,
            "message": loss_aversion_message(ratio, impact.estimated_monthly_cost),
            "analysis_start_date": start.isoformat(),
            "analysis_end_date": end.isoformat(),
            "avg_winner_hold_time": avg_winner,
            "avg_loser_hold_time": avg_loser,
            "hold_time_ratio": ratio,
            "total_trades": len(trades),
            "winners": len(winners),
            "losers": len(losers),
            "premature_profit_exits": event.premature_profit_exits,
            "extended_loss_holds": event.extended_loss_holds,
            "financial_impact": impact.to_dict(),
            "worst_symbol": (
                {"symbol": symbol, "hold_time_ratio": round(symbol_ratio, 2)}
                if symbol else None
            ),
            "price_history_analysis": sample.to_dict(),
        }

    async def _sample_size(self, user_id: str, config: AnalysisConfig) -> tuple[int, float]:
        enrichment = config.enrichment
        if self._counterfactual is None or not self._counterfactual.is_available:
            return 0, 0.0
        if not self._counterfactual.is_configured:
            return enrichment.unconfigured_sample_size, enrichment.unconfigured_delay_seconds
        pro = await self._gate.has_feature_access(user_id, FeatureKey.MARKET_DATA_PRO.value)
        size = enrichment.pro_sample_size if pro else enrichment.standard_sample_size
        return size, enrichment.configured_delay_seconds

    async def _sample_price_history(
        self,
        user_id: str,
        premature: Sequence[Trade],
        config: AnalysisConfig,
    ) -> PriceHistorySample:
        size, delay = await self._sample_size(user_id, config)
        sampled = list(premature[:size])
        if not sampled:
            return PriceHistorySample(summary="No premature exits sampled")

        sample = PriceHistorySample()
        percents: list[float] = []
        examples: list[dict[str, Any]] = []
        for i, trade in enumerate(sampled):
            if i > 0:
                await self._sleep(delay)
            analysis = await self._counterfactual.analyze_exit(trade)
            if not analysis.data_available:
                continue
            optimal = analysis.potential_additional_profit
            actual = trade.net_pnl
            sample.total_analyzed += 1
            sample.measured_missed[trade.id] = optimal
            sample.total_missed_profit += max(0.0, optimal)
            if actual:
                percents.append(optimal / abs(actual) * 100)
            if actual > 0 and optimal > actual * EXAMPLE_PROFIT_FRACTION:
                view = _trade_view(trade)
                view["missed_opportunity_percent"] = round(optimal / actual * 100, 1)
                view["potential_additional_profit"] = {
                    "optimal": round(optimal, 2),
                    **{k: round(v, 2) for k, v in analysis.checkpoint_profits().items()},
                }
                view["price_movement"] = analysis.to_dict()
                examples.append(view)

        examples.sort(key=lambda e: e["missed_opportunity_percent"], reverse=True)
        sample.example_trades = examples[:MAX_EXAMPLE_TRADES]
        sample.total_missed_profit = round(sample.total_missed_profit, 2)
        sample.avg_missed_profit_percent = round(_mean(percents), 1)
        sample.summary = (
            f"Analyzed {sample.total_analyzed} of {len(sampled)} sampled premature exits"
        )
        logger.debug(
            "Price history sample: user=%s sampled=%d analyzed=%d missed=%.2f",
            user_id, len(sampled), sample.total_analyzed, sample.total_missed_profit,
        )
        return sample

    # -- top missed trades ---------------------------------------------------------

    async def top_missed_trades(
        self,
        user_id: str,
        limit: int = 20,
        start: datetime | None = None,
        end: datetime | None = None,
        *,
        force_refresh: bool = False,
    ) -> dict[str, Any]:
        """Winners ranked by how much more they could have made (cached)."""
        await require_feature(self._gate, user_id, FeatureKey.BEHAVIORAL_ANALYTICS)
        key = AnalyticsCache.generate_key(
            "top_missed_trades", {"limit": limit, "start": start, "end": end},
        )
        if self._cache is not None and not force_refresh:
            cached = await self._cache.get(user_id, key)
            if cached is not None:
                return cached

        config = await self._config(user_id)
        enrichment = config.enrichment
        cache_cfg = self._settings.cache

        winners = await self._trades.list_trades(
            TradeFilter(
                user_id=user_id,
                start=start or self._clock.now() - TOP_MISSED_DEFAULT_LOOKBACK,
                end=end,
                date_field=DateField.EXIT,
                exclude_symbols=PLACEHOLDER_SYMBOLS,
                winners_only=True,
            ),
            order_by=DateField.EXIT.value,
            descending=True,
        )
        if not winners:
            result: dict[str, Any] = {
                "top_missed_trades": [],
                "total_analyzed": 0,
                "total_eligible_trades": 0,
                "total_missed_profit": 0.0,
                "avg_missed_opportunity_percent": 0.0,
                "trades_with_real_price_data": 0,
                "message": "No completed winning trades found for analysis",
            }
            if self._cache is not None:
                await self._cache.set(
                    user_id, key, result, ttl_minutes=cache_cfg.top_missed_empty_ttl_minutes,
                )
            return result

        latest = await self._repo.latest_loss_aversion_event(user_id)
        metrics = latest.model_dump() if latest is not None else None
        stored = {
            p.trade_id: p
            for p in await self._repo.list_hold_patterns(
                user_id, trade_ids=[t.id for t in winners],
            )
        }

        analyzed: list[dict[str, Any]] = []
        total_missed = 0.0
        with_real_data = 0
        for i, trade in enumerate(winners[:enrichment.top_missed_scan_limit]):
            pattern = stored.get(trade.id)
            quality = pattern.exit_quality_score if pattern is not None else None
            row = _trade_view(trade)
            row["exit_quality_score"] = quality
            row["premature_exit"] = pattern.premature_exit if pattern is not None else None

            missed = 0.0
            percent = 0.0
            real = False
            if self._counterfactual is not None and i < enrichment.top_missed_price_analysis_limit:
                if i > 0:
                    await self._sleep(enrichment.top_missed_delay_seconds)
                exit_analysis = await self._counterfactual.analyze_exit(trade)
                if exit_analysis.data_available and exit_analysis.potential_additional_profit > 0:
                    missed = exit_analysis.potential_additional_profit
                    percent = missed / trade.net_pnl * 100
                    real = True
                    with_real_data += 1
                    row["price_movement"] = exit_analysis.to_dict()
                    await self._sleep(enrichment.top_missed_delay_seconds)
                    entry_analysis = await self._counterfactual.analyze_entry(trade)
                    row["entry_analysis"] = (
                        entry_analysis.to_dict() if entry_analysis.data_available else None
                    )

            if not real:
                if metrics is not None:
                    missed = estimate_potential_profit(trade.id, trade.net_pnl, quality, metrics)
                    percent = estimate_missed_opportunity_percent(
                        trade.id, trade.net_pnl, quality, metrics,
                    )
                else:
                    percent = basic_missed_percent(trade.id, quality)
                    missed = trade.net_pnl * percent / 100
                exit_price = trade.exit_price or 0.0
                row["price_movement"] = {
                    "max_price": exit_price * (1 + percent / 100),
                    "min_price": exit_price * (1 - percent / 100),
                    "price_direction": "estimated",
                    "volatility_percent": percent,
                }
                row["entry_analysis"] = None

            if percent <= MISSED_OPPORTUNITY_FLOOR_PERCENT:
                continue
            row["missed_opportunity_percent"] = round(percent, 1)
            row["potential_additional_profit"] = {"optimal": round(missed, 2)}
            row["has_real_price_data"] = real
            row["recommendation"] = missed_opportunity_recommendation(percent)
            analyzed.append(row)
            total_missed += missed

        analyzed.sort(key=lambda r: r["missed_opportunity_percent"], reverse=True)
        top = analyzed[:max(limit, 0)]
        result = {
            "top_missed_trades": top,
            "total_analyzed": len(winners),
            "total_eligible_trades": len(analyzed),
            "total_missed_profit": round(total_missed, 2),
            "avg_missed_opportunity_percent": round(
                _mean([r["missed_opportunity_percent"] for r in analyzed]), 1,
            ),
            "trades_with_real_price_data": with_real_data,
            "message": (
                f"Found {len(top)} trades with significant missed opportunities "
                f"out of {len(winners)} analyzed"
            ),
        }
        if self._cache is not None:
            await self._cache.set(
                user_id, key, result, ttl_minutes=cache_cfg.top_missed_ttl_minutes,
            )
        return result

    # -- stored reports ------------------------------------------------------------

    async def complete_analysis(self, user_id: str) -> dict[str, Any] | None:
        """Rebuild the latest report from stored rows without market data."""
        await require_feature(self._gate, user_id, FeatureKey.BEHAVIORAL_ANALYTICS)
        latest = await self._repo.latest_loss_aversion_event(user_id)
        if latest is None:
            return None
        metrics = latest.model_dump()

        patterns = await self._repo.list_hold_patterns(
            user_id, premature_winners_only=True, limit=STORED_EXAMPLE_TRADES,
        )
        trades = {
            t.id: t
            for t in await self._trades.list_trades(
                TradeFilter(user_id=user_id).with_trade_ids(p.trade_id for p in patterns),
            )
        }

        examples: list[dict[str, Any]] = []
        for p in patterns:
            trade = trades.get(p.trade_id)
            if trade is None:
                continue
            row = _trade_view(trade)
            row["exit_quality_score"] = p.exit_quality_score
            row["missed_opportunity_percent"] = estimate_missed_opportunity_percent(
                p.trade_id, p.pnl, p.exit_quality_score, metrics,
            )
            row["potential_additional_profit"] = {
                "optimal": estimate_potential_profit(
                    p.trade_id, p.pnl, p.exit_quality_score, metrics,
                ),
            }
            exit_price = trade.exit_price or 0.0
            row["price_movement"] = {
                "max_price": exit_price * 1.05,
                "min_price": exit_price * 0.95,
                "price_direction": "estimated",
                "volatility_percent": 5.0,
            }
            row["recommendation"] = (
                "Estimates based on stored analysis - rerun for live price data"
            )
            examples.append(row)

        avg_missed = latest.avg_missed_profit_percent or _stored_missed_percent(
            examples, latest,
        )
        return {
            "message": loss_aversion_message(
                latest.hold_time_ratio, latest.estimated_monthly_cost,
            ),
            "avg_winner_hold_time": latest.avg_winner_hold_time_minutes,
            "avg_loser_hold_time": latest.avg_loser_hold_time_minutes,
            "hold_time_ratio": latest.hold_time_ratio,
            "total_trades": latest.total_winning_trades + latest.total_losing_trades,
            "winners": latest.total_winning_trades,
            "losers": latest.total_losing_trades,
            "financial_impact": {
                "estimated_monthly_cost": latest.estimated_monthly_cost,
                "missed_profit_potential": latest.missed_profit_potential,
                "unnecessary_loss_extension": latest.unnecessary_loss_extension,
                "avg_planned_risk_reward": latest.avg_planned_risk_reward,
                "avg_actual_risk_reward": latest.avg_actual_risk_reward,
            },
            "price_history_analysis": {
                "total_analyzed": len(examples),
                "total_missed_profit": latest.missed_profit_potential,
                "avg_missed_profit_percent": avg_missed,
                "example_trades": examples,
            },
        }

    async def historical_trends(self, user_id: str, limit: int = 12) -> list[dict[str, Any]]:
        """Stored runs in chronological order."""
        await require_feature(self._gate, user_id, FeatureKey.BEHAVIORAL_ANALYTICS)
        events = await self._repo.list_loss_aversion_events(user_id, limit=limit)
        return [
            {
                "analysis_end_date": e.analysis_end_date.isoformat(),
                "hold_time_ratio": e.hold_time_ratio,
                "estimated_monthly_cost": e.estimated_monthly_cost,
                "total_trades": e.total_winning_trades + e.total_losing_trades,
            }
            for e in reversed(events)
        ]


def _stored_missed_percent(
    examples: Sequence[dict[str, Any]],
    latest: LossAversionEvent,
) -> float:
    """Average missed percent from example rows, else from event totals."""
    valid = [
        e for e in examples
        if e["actual_profit"] and e["potential_additional_profit"]["optimal"]
    ]
    if valid:
        total = sum(
            e["potential_additional_profit"]["optimal"] / abs(e["actual_profit"]) * 100
            for e in valid
        )
        return round(total / len(valid), 1)

    if latest.premature_profit_exits > 0 and latest.missed_profit_potential > 0:
        per_trade = latest.missed_profit_potential / latest.premature_profit_exits
        assumed_profit = max(50.0, per_trade * 2)
        return round(per_trade / assumed_profit * 100, 1)
    return 0.0
