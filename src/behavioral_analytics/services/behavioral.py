"""User-facing behavioral analytics: settings, overview, revenge history and alerts.

Detectors write patterns, events and alerts; this service reads them back
for display, manages per-user preferences and keeps the analytics cache
consistent when a user's trades change.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from behavioral_analytics.analysis.overconfidence import pagination
from behavioral_analytics.cache.service import AnalyticsCache
from behavioral_analytics.core.clock import IClock
from behavioral_analytics.core.config import BehavioralSettings
from behavioral_analytics.core.entitlements import IEntitlementGate, require_feature
from behavioral_analytics.core.enums import FeatureKey, PatternType, Severity
from behavioral_analytics.core.errors import ConfigError
from behavioral_analytics.core.filters import TradeFilter
from behavioral_analytics.core.models import BehavioralPattern, RevengeTradingEvent, Trade
from behavioral_analytics.storage.base import IBehaviorRepository, ITradeStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
RELATED_PATTERN_LIMIT = 10
RECENT_ALERT_LIMIT = 10
RELATED_PATTERN_CONFIDENCE = 0.8


def outcome_type(event: RevengeTradingEvent) -> str:
    """``loss`` when the revenge trades lost money, ``profit`` when they made it."""
    if event.total_additional_loss > 0:
        return "loss"
    if event.total_additional_loss < 0:
        return "profit"
    return "neutral"


def _rate(count: int, total: int) -> float:
    return round(count / total * 100, 1) if total else 0.0


def pattern_summary(patterns: list[BehavioralPattern]) -> list[dict[str, Any]]:
    """Per pattern type: count, mean confidence, severity counts and latest detection."""
    grouped: dict[PatternType, list[BehavioralPattern]] = defaultdict(list)
    for p in patterns:
        grouped[p.pattern_type].append(p)

    rows = []
    for pattern_type, items in grouped.items():
        rows.append({
            "pattern_type": pattern_type.value,
            "total_occurrences": len(items),
            "avg_confidence": sum(p.confidence_score for p in items) / len(items),
            "high_severity_count": sum(1 for p in items if p.severity == Severity.HIGH),
            "medium_severity_count": sum(1 for p in items if p.severity == Severity.MEDIUM),
            "low_severity_count": sum(1 for p in items if p.severity == Severity.LOW),
            "last_occurrence": max(p.detected_at for p in items).isoformat(),
        })
    rows.sort(key=lambda r: (-r["total_occurrences"], r["pattern_type"]))
    return rows


def revenge_statistics(events: list[RevengeTradingEvent]) -> dict[str, Any]:
    n = len(events)
    losses = sum(1 for e in events if e.total_additional_loss > 0)
    broken = sum(1 for e in events if e.pattern_broken)
    cooled = sum(1 for e in events if e.cooling_period_used)

    def avg(values: list[float]) -> float:
        return sum(values) / n if n else 0.0

    return {
        "total_events": n,
        "avg_trades_per_event": avg([e.total_revenge_trades for e in events]),
        "avg_duration_minutes": avg([e.time_window_minutes for e in events]),
        "avg_size_increase": avg([e.position_size_increase_percent for e in events]),
        "total_additional_loss": round(sum(e.total_additional_loss for e in events), 2),
        "loss_events": losses,
        "profit_or_neutral_events": n - losses,
        "pattern_broken_count": broken,
        "cooling_period_used_count": cooled,
        "loss_rate": _rate(losses, n),
        "pattern_break_rate": _rate(broken, n),
        "cooling_period_usage_rate": _rate(cooled, n),
    }


def _trade_detail(trade: Trade) -> dict[str, Any]:
    data = trade.model_dump(mode="json")
    data["total_cost"] = trade.position_size
    return data


class BehavioralAnalyticsService:
    """Read side of the engine plus settings and alert management.

    Parameters
    ----------
    trade_store, repo, gate, clock:
        Collaborators shared with the detectors.
    cache:
        Analytics cache to invalidate when trades or settings change.
    """

    def __init__(
        self,
        *,
        trade_store: ITradeStore,
        repo: IBehaviorRepository,
        gate: IEntitlementGate,
        clock: IClock,
        cache: AnalyticsCache | None = None,
    ) -> None:
        self._trades = trade_store
        self._repo = repo
        self._gate = gate
        self._clock = clock
        self._cache = cache

    # -- settings ------------------------------------------------------------------

    async def get_settings(self, user_id: str) -> BehavioralSettings:
        """Stored preferences, or the defaults when the user has none."""
        stored = await self._repo.get_settings(user_id)
        return stored or BehavioralSettings(user_id=user_id)

    async def update_settings(self, user_id: str, **changes: Any) -> BehavioralSettings:
        current = await self.get_settings(user_id)
        try:
            merged = BehavioralSettings.model_validate(
                {**current.model_dump(), **changes, "user_id": user_id}
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid behavioral settings for {user_id}: {exc}") from exc
        saved = await self._repo.save_settings(merged)
        if self._cache is not None:
            await self._cache.invalidate(user_id)
        logger.info("Behavioral settings updated: user=%s fields=%s", user_id, sorted(changes))
        return saved

    # -- overview --------------------------------------------------------------------

    async def overview(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        await require_feature(self._gate, user_id, FeatureKey.BEHAVIORAL_ANALYTICS)
        patterns = await self._repo.list_patterns(user_id, start=start, end=end)
        alerts = [
            a for a in await self._repo.list_alerts(user_id)
            if (start is None or a.created_at >= start) and (end is None or a.created_at <= end)
        ]
        settings = await self._repo.get_settings(user_id)
        return {
            "patterns": pattern_summary(patterns),
            "recent_alerts": [
                a.model_dump(mode="json") for a in alerts[:RECENT_ALERT_LIMIT]
            ],
            "settings": settings.model_dump(mode="json") if settings is not None else None,
        }

    # -- revenge history -------------------------------------------------------------

    async def revenge_analysis(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> dict[str, Any]:
        """Paginated revenge events (newest first) with trade details and rates."""
        await require_feature(self._gate, user_id, FeatureKey.REVENGE_TRADING_DETECTION)
        page = max(page, 1)
        limit = max(limit, 1)

        events = await self._repo.list_revenge_events(user_id, start=start, end=end)
        page_events = events[(page - 1) * limit:page * limit]

        ids: set[str] = set()
        for e in page_events:
            ids.add(e.trigger_trade_id)
            ids.update(e.revenge_trades)
        trades = {
            t.id: t
            for t in await self._trades.list_trades(
                TradeFilter(user_id=user_id, closed_only=False).with_trade_ids(ids),
            )
        }

        return {
            "events": [self._render_event(e, trades) for e in page_events],
            "statistics": revenge_statistics(events),
            "pagination": pagination(page, limit, len(events)),
        }

    @staticmethod
    def _render_event(
        event: RevengeTradingEvent,
        trades: dict[str, Trade],
    ) -> dict[str, Any]:
        data = event.model_dump(mode="json")
        data["trade_count"] = len(event.revenge_trades)
        data["outcome_type"] = outcome_type(event)

        trigger = trades.get(event.trigger_trade_id)
        data["trigger_trade"] = _trade_detail(trigger) if trigger is not None else None

        related = [trades[tid] for tid in event.revenge_trades if tid in trades]
        related.sort(key=lambda t: t.entry_time, reverse=True)
        rows = []
        for trade in related[:RELATED_PATTERN_LIMIT]:
            row = _trade_detail(trade)
            same = trigger is not None and trade.symbol == trigger.symbol
            row["pattern_type"] = (
                PatternType.SAME_SYMBOL_REVENGE if same else PatternType.EMOTIONAL_REACTIVE
            ).value
            row["severity"] = Severity.MEDIUM.value
            row["confidence_score"] = RELATED_PATTERN_CONFIDENCE
            row["detected_at"] = trade.entry_time.isoformat()
            rows.append(row)
        data["related_patterns"] = rows
        return data

    # -- alerts ------------------------------------------------------------------------

    async def active_alerts(self, user_id: str) -> list[dict[str, Any]]:
        alerts = await self._repo.list_alerts(user_id, active_at=self._clock.now())
        return [a.model_dump(mode="json") for a in alerts]

    async def acknowledge_alert(self, user_id: str, alert_id: str) -> bool:
        acknowledged = await self._repo.acknowledge_alert(user_id, alert_id, self._clock.now())
        if not acknowledged:
            logger.debug("Alert not found for acknowledgement: user=%s alert=%s", user_id, alert_id)
        return acknowledged

    # -- maintenance -------------------------------------------------------------------

    async def clear_history(self, user_id: str) -> dict[str, int]:
        """Delete every derived revenge/overconfidence row and alert of the user."""
        removed = {
            "revenge_events": await self._repo.delete_revenge_events(user_id),
            "overconfidence_events": await self._repo.delete_overconfidence_events(user_id),
            "patterns": await self._repo.delete_patterns(user_id, list(PatternType)),
            "alerts": await self._repo.delete_alerts(user_id),
        }
        if self._cache is not None:
            removed["cache_entries"] = await self._cache.invalidate(user_id)
        logger.info("Behavioral history cleared: user=%s removed=%s", user_id, removed)
        return removed

    async def on_trades_changed(self, user_id: str) -> int:
        """Drop cached analyses after trades were imported, edited or deleted."""
        if self._cache is None:
            return 0
        return await self._cache.invalidate(user_id)
