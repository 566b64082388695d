"""Revenge trading detection.

Two paths share the trigger definition from
:mod:`~behavioral_analytics.analysis.thresholds`:

* **Real-time** (:meth:`RevengeTradeDetector.analyze_new_trade`) -- one
  incoming trade is checked against the user's recent significant losses
  by four independent sub-detectors (frequency spike, position-size
  escalation, immediate timing, same-symbol re-entry).  Detections are
  persisted with alerts and a recommended cooling-off period.
* **Historical** (:meth:`RevengeTradeDetector.analyze_history`) -- the
  whole history is rebuilt from a clean slate: each significant loss
  collects the trades entered within two hours of its exit and, if the
  creation gate passes, yields one aggregated event.

The pure functions below hold every rule; the detector class only reads
trades, writes rows and applies entitlements and user settings.

Usage::

    detector = RevengeTradeDetector(
        trade_store=store, repo=repo, gate=gate, clock=WallClock(),
    )
    analysis = await detector.analyze_new_trade(user_id, trade)
    if analysis is not None and analysis.is_revenge:
        show(analysis.alerts)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from behavioral_analytics.core.clock import IClock
from behavioral_analytics.core.config import (
    AnalysisConfig,
    DetectionConfig,
    Settings,
    resolve_analysis_config,
)
from behavioral_analytics.core.entitlements import IEntitlementGate, require_feature
from behavioral_analytics.core.enums import (
    REVENGE_PATTERN_TYPES,
    AlertType,
    FeatureKey,
    PatternType,
    RevengeSignal,
    Severity,
)
from behavioral_analytics.core.filters import DateField, TradeFilter
from behavioral_analytics.core.ids import derived_id, new_id
from behavioral_analytics.core.models import (
    ALERT_TTL,
    BehavioralAlert,
    BehavioralPattern,
    RevengeTradingEvent,
    Trade,
)
from behavioral_analytics.storage.base import IBehaviorRepository, ITradeStore

from .account import estimate_account_size
from .thresholds import SensitivityThresholds, is_significant_loss, thresholds_for
from .trade_quality import TradeQualityAnalyzer

logger = logging.getLogger(__name__)

SAME_SYMBOL_RECENT_MINUTES = 30
REVENGE_CONFIDENCE = 0.7
MAX_COOLING_MINUTES = 120
BATCH_INCREASE_CAP = 999.0
BATCH_PATTERN_CONFIDENCE = 0.75

_COOLING_BASE = {Severity.LOW: 15, Severity.MEDIUM: 30, Severity.HIGH: 60}

_SIGNAL_LABELS = {
    RevengeSignal.FREQUENCY: "frequency_spike",
    RevengeSignal.POSITION_SIZE: "size_increase",
    RevengeSignal.TIMING: "immediate_trading",
    RevengeSignal.SAME_SYMBOL: "same_symbol_revenge",
}


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60.0


def loss_amount(trade: Trade) -> float:
    """Positive dollar loss of a losing trade, else 0."""
    return -trade.net_pnl if trade.net_pnl < 0 else 0.0


# ---------------------------------------------------------------------------
# Sub-detectors
# ---------------------------------------------------------------------------

@dataclass
class SignalResult:
    signal: RevengeSignal
    detected: bool = False
    confidence: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return _SIGNAL_LABELS[self.signal]


def frequency_signal(
    recent: Sequence[Trade],
    triggers: Sequence[Trade],
    now: datetime,
    thresholds: SensitivityThresholds,
    *,
    window_minutes: int = 10,
) -> SignalResult:
    """Trades entered after any trigger and within the last *window_minutes*."""
    window_start = now - timedelta(minutes=window_minutes)
    exits = [t.closed_at for t in triggers]
    count = sum(
        1 for t in recent
        if t.entry_time >= window_start and any(t.entry_time > x for x in exits)
    )
    return SignalResult(
        signal=RevengeSignal.FREQUENCY,
        detected=count >= thresholds.min_trades_in_10_min,
        confidence=min(count / 5.0, 1.0),
        details={"trades_in_window": count},
    )


def position_size_signal(
    trade: Trade,
    recent: Sequence[Trade],
    triggers: Sequence[Trade],
    thresholds: SensitivityThresholds,
) -> SignalResult:
    """Change of the new trade's position versus positions before the trigger."""
    result = SignalResult(signal=RevengeSignal.POSITION_SIZE)
    if len(recent) < 2 or not triggers:
        return result

    first_exit = min(t.closed_at for t in triggers)
    before = [
        t for t in recent
        if t.id != trade.id and t.entry_time <= first_exit
    ]
    if not before:
        return result

    avg_before = sum(t.position_size for t in before) / len(before)
    if avg_before <= 0:
        return result

    current = trade.position_size
    pct = (current - avg_before) / avg_before * 100.0
    result.detected = abs(pct) >= thresholds.min_position_size_increase_percent
    result.confidence = min(abs(pct) / 50.0, 1.0)
    result.details = {
        "position_size_change": round(pct, 2),
        "avg_previous_size": round(avg_before),
        "current_size": round(current),
    }
    return result


def timing_signal(
    triggers: Sequence[Trade],
    now: datetime,
    thresholds: SensitivityThresholds,
) -> SignalResult:
    result = SignalResult(signal=RevengeSignal.TIMING)
    if not triggers:
        return result
    latest = max(t.closed_at for t in triggers)
    minutes = max(_minutes(now - latest), 0.0)
    limit = thresholds.max_minutes_after_loss
    result.detected = minutes <= limit
    result.confidence = max(0.0, 1.0 - minutes / limit)
    result.details = {"minutes_since_loss": round(minutes, 1)}
    return result


def same_symbol_signal(
    trade: Trade,
    triggers: Sequence[Trade],
    now: datetime,
) -> SignalResult:
    result = SignalResult(signal=RevengeSignal.SAME_SYMBOL)
    matching = [t for t in triggers if t.symbol == trade.symbol and t.id != trade.id]
    if not matching:
        return result
    latest = max(t.closed_at for t in matching)
    minutes = _minutes(now - latest)
    result.detected = True
    result.confidence = 0.8 if minutes <= SAME_SYMBOL_RECENT_MINUTES else 0.5
    result.details = {"symbol": trade.symbol, "minutes_since_symbol_loss": round(minutes, 1)}
    return result


# ---------------------------------------------------------------------------
# Real-time evaluation
# ---------------------------------------------------------------------------

@dataclass
class RevengeAnalysis:
    """Outcome of checking one trade against recent triggers."""

    trade_id: str
    is_revenge: bool
    confidence: float
    severity: Severity
    signals: list[SignalResult]
    metrics: dict[str, Any]
    trigger_trade_ids: list[str]
    cooling_period_minutes: int = 0
    alerts: list[BehavioralAlert] = field(default_factory=list)
    event_id: str | None = None

    @property
    def detected(self) -> list[SignalResult]:
        return [s for s in self.signals if s.detected]

    @property
    def pattern_labels(self) -> list[str]:
        return [s.label for s in self.detected]

    @property
    def pattern_type(self) -> PatternType:
        if any(s.signal == RevengeSignal.SAME_SYMBOL for s in self.detected):
            return PatternType.SAME_SYMBOL_REVENGE
        return PatternType.EMOTIONAL_REACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "is_revenge_trading": self.is_revenge,
            "confidence": round(self.confidence, 4),
            "severity": self.severity.value,
            "patterns": self.pattern_labels,
            "signals": {
                s.label: {"detected": s.detected, "confidence": round(s.confidence, 4)}
                for s in self.signals
            },
            "metrics": self.metrics,
            "trigger_trade_ids": self.trigger_trade_ids,
            "cooling_period_minutes": self.cooling_period_minutes,
            "alerts": [a.model_dump(mode="json") for a in self.alerts],
            "event_id": self.event_id,
        }


def classify_severity(confidence: float, pattern_count: int) -> Severity:
    if confidence >= 0.8 or pattern_count >= 3:
        return Severity.HIGH
    if confidence >= 0.6 or pattern_count >= 2:
        return Severity.MEDIUM
    return Severity.LOW


def recommended_cooling_period(severity: Severity, confidence: float) -> int:
    base = _COOLING_BASE[severity]
    return min(MAX_COOLING_MINUTES, round(base * (1 + confidence)))


def evaluate_revenge(
    trade: Trade,
    recent: Sequence[Trade],
    triggers: Sequence[Trade],
    thresholds: SensitivityThresholds,
    now: datetime,
    *,
    frequency_window_minutes: int = 10,
) -> RevengeAnalysis:
    """Run the four sub-detectors and aggregate their verdicts."""
    signals = [
        frequency_signal(
            recent, triggers, now, thresholds, window_minutes=frequency_window_minutes,
        ),
        position_size_signal(trade, recent, triggers, thresholds),
        timing_signal(triggers, now, thresholds),
        same_symbol_signal(trade, triggers, now),
    ]
    detected = [s for s in signals if s.detected]
    confidence = max((s.confidence for s in detected), default=0.0)
    is_revenge = len(detected) >= 2 or confidence >= REVENGE_CONFIDENCE
    severity = classify_severity(confidence, len(detected))

    latest = max(triggers, key=lambda t: t.closed_at) if triggers else None
    metrics: dict[str, Any] = {
        "trade_count": len(recent),
        "trigger_loss": loss_amount(latest) if latest else 0.0,
        "time_since_loss": round(_minutes(now - latest.closed_at), 1) if latest else None,
    }
    for s in signals:
        if s.signal == RevengeSignal.POSITION_SIZE:
            metrics.update(s.details)

    return RevengeAnalysis(
        trade_id=trade.id,
        is_revenge=is_revenge,
        confidence=confidence,
        severity=severity,
        signals=signals,
        metrics=metrics,
        trigger_trade_ids=[t.id for t in triggers][:3],
        cooling_period_minutes=(
            recommended_cooling_period(severity, confidence) if is_revenge else 0
        ),
    )


def build_alerts(
    analysis: RevengeAnalysis,
    user_id: str,
    now: datetime,
    *,
    symbol: str | None = None,
) -> list[BehavioralAlert]:
    """One alert per detected sub-pattern, plus a blocking alert when high."""
    alerts: list[BehavioralAlert] = []
    expires = now + ALERT_TTL

    def _alert(alert_type: AlertType, title: str, message: str, **data: Any) -> None:
        alerts.append(BehavioralAlert(
            user_id=user_id,
            alert_type=alert_type,
            title=title,
            message=message,
            alert_data={"trade_id": analysis.trade_id, **data},
            created_at=now,
            expires_at=expires,
        ))

    m = analysis.metrics
    for s in analysis.detected:
        if s.signal == RevengeSignal.FREQUENCY:
            _alert(
                AlertType.WARNING,
                "Rapid Trading After Loss",
                f"You've placed {m['trade_count']} trades in a short time after a loss. "
                "Historical data shows this often leads to additional losses.",
                pattern=s.label, confidence=round(s.confidence, 2),
            )
        elif s.signal == RevengeSignal.POSITION_SIZE:
            _alert(
                AlertType.WARNING,
                "Position Size Increase",
                f"Your position size has increased by {m['position_size_change']}% after a "
                f"loss (from ${m['avg_previous_size']:,} avg to ${m['current_size']:,}). "
                "Consider your risk management strategy.",
                pattern=s.label, confidence=round(s.confidence, 2),
            )
        elif s.signal == RevengeSignal.TIMING:
            _alert(
                AlertType.RECOMMENDATION,
                "Consider a Break",
                f"You're trading {s.details['minutes_since_loss']:.0f} minutes after a loss. "
                "Consider taking a break to avoid emotional decisions.",
                pattern=s.label, confidence=round(s.confidence, 2),
            )
        elif s.signal == RevengeSignal.SAME_SYMBOL:
            _alert(
                AlertType.WARNING,
                "Same Symbol Re-entry",
                f"You're re-entering {symbol or s.details.get('symbol')} shortly after "
                "losing on it. Make sure this trade follows your plan.",
                pattern=s.label, confidence=round(s.confidence, 2),
            )

    if analysis.severity == Severity.HIGH:
        _alert(
            AlertType.BLOCKING,
            "Trading Pause Recommended",
            "Multiple revenge trading indicators detected. "
            "Consider pausing trading for 30 minutes.",
            severity=analysis.severity.value,
            cooling_period_minutes=analysis.cooling_period_minutes,
        )
    return alerts


# ---------------------------------------------------------------------------
# Historical episodes
# ---------------------------------------------------------------------------

@dataclass
class RevengeEpisode:
    """A trigger loss and every trade entered within the window after it."""

    trigger: Trade
    candidates: list[Trade]

    @property
    def trigger_loss(self) -> float:
        return loss_amount(self.trigger)

    @property
    def increases(self) -> list[float]:
        base = self.trigger.position_size
        if base <= 0:
            return [0.0 for _ in self.candidates]
        return [(c.position_size - base) / base * 100.0 for c in self.candidates]

    @property
    def max_increase_percent(self) -> float:
        """Largest absolute size change against the trigger, capped."""
        return min(max((abs(x) for x in self.increases), default=0.0), BATCH_INCREASE_CAP)

    @property
    def peak_increase_percent(self) -> float:
        """Signed change of the largest candidate position against the trigger."""
        return max(self.increases, default=0.0)

    @property
    def total_additional_loss(self) -> float:
        return -sum(c.net_pnl for c in self.candidates)

    @property
    def time_window_minutes(self) -> int:
        latest = max(c.entry_time for c in self.candidates)
        return math.ceil(_minutes(latest - self.trigger.closed_at))

    @property
    def first_entry(self) -> datetime:
        return min(c.entry_time for c in self.candidates)


def find_revenge_episodes(
    trades: Sequence[Trade],
    thresholds: SensitivityThresholds,
    account_size: float | None,
    *,
    window_minutes: int = 120,
) -> list[RevengeEpisode]:
    """Forward scan; each significant loss is evaluated exactly once."""
    ordered = sorted(trades, key=lambda t: (t.entry_time, t.id))
    window = timedelta(minutes=window_minutes)
    processed: set[str] = set()
    episodes: list[RevengeEpisode] = []

    for trigger in ordered:
        if trigger.id in processed or trigger.exit_time is None:
            continue
        if not is_significant_loss(loss_amount(trigger), thresholds, account_size):
            continue
        processed.add(trigger.id)

        exit_time = trigger.exit_time
        candidates = [
            t for t in ordered
            if t.id != trigger.id and exit_time < t.entry_time <= exit_time + window
        ]
        if candidates:
            episodes.append(RevengeEpisode(trigger=trigger, candidates=candidates))
    return episodes


def should_create_event(episode: RevengeEpisode, detection: DetectionConfig) -> bool:
    if episode.peak_increase_percent > detection.batch_min_increase_percent:
        return True
    base = episode.trigger.position_size
    if len(episode.candidates) >= 2 and any(
        c.position_size > base * detection.batch_size_multiple for c in episode.candidates
    ):
        return True
    return episode.trigger_loss > detection.batch_large_loss_dollars


def episode_to_event(user_id: str, episode: RevengeEpisode) -> RevengeTradingEvent:
    trigger = episode.trigger
    return RevengeTradingEvent(
        id=derived_id("revenge_event", user_id, trigger.id),
        user_id=user_id,
        trigger_trade_id=trigger.id,
        trigger_loss_amount=episode.trigger_loss,
        revenge_trades=[c.id for c in episode.candidates],
        total_revenge_trades=len(episode.candidates),
        time_window_minutes=episode.time_window_minutes,
        position_size_increase_percent=round(episode.max_increase_percent, 2),
        total_additional_loss=round(episode.total_additional_loss, 2),
        trigger_timestamp=trigger.closed_at,
        created_at=episode.first_entry,
    )


def episode_patterns(
    user_id: str,
    episode: RevengeEpisode,
    event_id: str,
) -> list[BehavioralPattern]:
    trigger = episode.trigger
    patterns = []
    for cand, increase in zip(episode.candidates, episode.increases):
        same = cand.symbol == trigger.symbol
        patterns.append(BehavioralPattern(
            id=derived_id("revenge_pattern", user_id, trigger.id, cand.id),
            user_id=user_id,
            pattern_type=(
                PatternType.SAME_SYMBOL_REVENGE if same else PatternType.EMOTIONAL_REACTIVE
            ),
            severity=Severity.MEDIUM,
            confidence_score=BATCH_PATTERN_CONFIDENCE,
            detected_at=cand.entry_time,
            trigger_trade_id=trigger.id,
            context_data={
                "event_id": event_id,
                "revenge_trade_id": cand.id,
                "trigger_symbol": trigger.symbol,
                "revenge_symbol": cand.symbol,
                "trigger_loss": episode.trigger_loss,
                "minutes_after_loss": round(_minutes(cand.entry_time - trigger.closed_at), 1),
                "position_size_increase": round(min(increase, BATCH_INCREASE_CAP), 2),
            },
        ))
    return patterns


# ---------------------------------------------------------------------------
# Detector service
# ---------------------------------------------------------------------------

class RevengeTradeDetector:
    """Reads trades, applies entitlements and settings, persists detections.

    Parameters
    ----------
    trade_store:
        Source of the user's trades.
    repo:
        Where patterns, events and alerts are written.
    gate:
        Entitlement checks.
    clock:
        "Now" for real-time windows and alert expiry.
    settings:
        Service settings; defaults when omitted.
    quality:
        Optional trade-quality analyzer for batch annotation.
    """

    def __init__(
        self,
        *,
        trade_store: ITradeStore,
        repo: IBehaviorRepository,
        gate: IEntitlementGate,
        clock: IClock,
        settings: Settings | None = None,
        quality: TradeQualityAnalyzer | None = None,
    ) -> None:
        self._trades = trade_store
        self._repo = repo
        self._gate = gate
        self._clock = clock
        self._settings = settings or Settings()
        self._quality = quality

    async def _config(self, user_id: str) -> AnalysisConfig:
        return await resolve_analysis_config(self._repo, self._settings, user_id)

    # -- real-time -------------------------------------------------------------

    async def analyze_new_trade(self, user_id: str, trade: Trade) -> RevengeAnalysis | None:
        """Check one incoming trade; ``None`` when there is nothing to check.

        Raises :class:`EntitlementDenied` when the user lacks the feature.
        """
        await require_feature(self._gate, user_id, FeatureKey.REVENGE_TRADING_DETECTION)
        config = await self._config(user_id)
        if not config.revenge_enabled:
            return None

        det = config.detection
        now = self._clock.now()
        thresholds = thresholds_for(config.revenge_sensitivity)

        recent = await self._trades.list_trades(
            TradeFilter(
                user_id=user_id,
                start=now - timedelta(minutes=det.activity_window_minutes),
                closed_only=False,
            ),
        )
        if all(t.id != trade.id for t in recent):
            recent.append(trade)
        recent.sort(key=lambda t: (t.entry_time, t.id))

        account_trades = await self._trades.list_trades(
            TradeFilter(
                user_id=user_id,
                start=now - timedelta(days=det.account_lookback_days),
                closed_only=False,
            ),
        )
        account_size = estimate_account_size(account_trades)

        losses = await self._trades.list_trades(
            TradeFilter(
                user_id=user_id,
                start=now - timedelta(minutes=det.trigger_lookback_minutes),
                date_field=DateField.EXIT,
                losers_only=True,
            ),
            order_by="exit_time",
        )
        triggers = [
            t for t in losses
            if t.id != trade.id
            and is_significant_loss(loss_amount(t), thresholds, account_size)
        ]
        if not triggers:
            return None

        analysis = evaluate_revenge(
            trade, recent, triggers, thresholds, now,
            frequency_window_minutes=det.frequency_window_minutes,
        )
        if not analysis.is_revenge:
            return analysis

        analysis.alerts = build_alerts(analysis, user_id, now, symbol=trade.symbol)
        await self._persist_realtime(user_id, trade, triggers, analysis, now)
        logger.info(
            "Revenge trading detected: user=%s trade=%s severity=%s patterns=%s",
            user_id, trade.id, analysis.severity.value, ",".join(analysis.pattern_labels),
        )
        return analysis

    async def _persist_realtime(
        self,
        user_id: str,
        trade: Trade,
        triggers: Sequence[Trade],
        analysis: RevengeAnalysis,
        now: datetime,
    ) -> None:
        await self._repo.add_pattern(BehavioralPattern(
            user_id=user_id,
            pattern_type=analysis.pattern_type,
            severity=analysis.severity,
            confidence_score=analysis.confidence,
            detected_at=now,
            trigger_trade_id=analysis.trigger_trade_ids[0] if analysis.trigger_trade_ids else None,
            context_data={
                "patterns": analysis.pattern_labels,
                "metrics": analysis.metrics,
                "trigger_trades": analysis.trigger_trade_ids,
                "trade_id": trade.id,
            },
        ))

        prior = [t for t in triggers if t.closed_at < trade.entry_time]
        if prior:
            trigger = max(prior, key=lambda t: t.closed_at)
            event = RevengeTradingEvent(
                id=new_id(),
                user_id=user_id,
                trigger_trade_id=trigger.id,
                trigger_loss_amount=loss_amount(trigger),
                revenge_trades=[trade.id],
                total_revenge_trades=1,
                time_window_minutes=math.ceil(_minutes(trade.entry_time - trigger.closed_at)),
                position_size_increase_percent=float(
                    analysis.metrics.get("position_size_change", 0.0)
                ),
                total_additional_loss=-trade.net_pnl if trade.is_closed else 0.0,
                trigger_timestamp=trigger.closed_at,
                created_at=trade.entry_time,
            )
            await self._repo.add_revenge_event(event)
            analysis.event_id = event.id

        for alert in analysis.alerts:
            await self._repo.add_alert(alert)

    # -- historical ------------------------------------------------------------

    async def analyze_history(self, user_id: str) -> dict[str, Any]:
        """Clear and rebuild the user's revenge events from all closed trades."""
        await require_feature(self._gate, user_id, FeatureKey.BEHAVIORAL_ANALYTICS)
        config = await self._config(user_id)

        await self._repo.delete_revenge_events(user_id)
        await self._repo.delete_patterns(user_id, REVENGE_PATTERN_TYPES)
        await self._repo.delete_alerts(user_id)

        trades = await self._trades.list_trades(TradeFilter(user_id=user_id))
        account_size = estimate_account_size(trades)
        thresholds = thresholds_for(config.revenge_sensitivity)
        det = config.detection

        episodes = find_revenge_episodes(
            trades, thresholds, account_size, window_minutes=det.revenge_window_minutes,
        )

        created = 0
        for episode in episodes:
            if not should_create_event(episode, det):
                continue
            event = episode_to_event(user_id, episode)
            if self._quality is not None and config.enrichment.trade_quality_enabled:
                summary = await self._quality.assess_episode(episode.candidates, trades)
                event = event.model_copy(update={"trade_quality": summary.to_dict()})
            await self._repo.add_revenge_event(event)
            for pattern in episode_patterns(user_id, episode, event.id):
                await self._repo.add_pattern(pattern)
            created += 1

        logger.info(
            "Revenge history rebuilt: user=%s trades=%d episodes=%d events=%d",
            user_id, len(trades), len(episodes), created,
        )
        return {
            "trades_analyzed": len(trades),
            "revenge_events_created": created,
            "message": f"Created {created} revenge trading events",
        }
