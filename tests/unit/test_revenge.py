"""Revenge trading detection: sub-detectors, episodes and the detector service."""

from datetime import datetime, timedelta, timezone

import pytest

from behavioral_analytics.analysis.revenge import (
    RevengeTradeDetector,
    classify_severity,
    evaluate_revenge,
    episode_to_event,
    find_revenge_episodes,
    frequency_signal,
    position_size_signal,
    recommended_cooling_period,
    same_symbol_signal,
    should_create_event,
    timing_signal,
)
from behavioral_analytics.analysis.thresholds import thresholds_for
from behavioral_analytics.core.clock import SimClock
from behavioral_analytics.core.config import BehavioralSettings, DetectionConfig
from behavioral_analytics.core.entitlements import StaticEntitlementGate
from behavioral_analytics.core.enums import AlertType, PatternType, Sensitivity, Severity
from behavioral_analytics.core.errors import EntitlementDenied

T0 = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)
MEDIUM = thresholds_for(Sensitivity.MEDIUM)
HIGH = thresholds_for(Sensitivity.HIGH)


def _at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


# ---------------------------------------------------------------------------
# Sub-detectors
# ---------------------------------------------------------------------------

class TestSignals:
    def test_frequency_counts_only_trades_after_a_trigger(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600)
        recent = [
            make_trade(entry=26, hold=None),  # In window but before the trigger exit
            make_trade(entry=31, hold=None),
            make_trade(entry=32, hold=None),
            make_trade(entry=33, hold=None),
        ]
        result = frequency_signal(recent, [trigger], _at(35), MEDIUM)
        assert result.details["trades_in_window"] == 3
        assert result.detected
        assert result.confidence == pytest.approx(0.6)

    def test_position_size_compares_with_pre_trigger_average(self, make_trade):
        before = make_trade(entry=-30, hold=20, pnl=10, quantity=10)
        trigger = make_trade(entry=0, hold=30, pnl=-600, quantity=10)
        new = make_trade(entry=34, hold=None, quantity=30)
        result = position_size_signal(new, [before, trigger, new], [trigger], MEDIUM)
        assert result.detected
        assert result.details["position_size_change"] == pytest.approx(200.0)
        assert result.details["avg_previous_size"] == 1000
        assert result.confidence == 1.0

    def test_position_size_decrease_also_detected(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600, quantity=10)
        new = make_trade(entry=34, hold=None, quantity=5)
        result = position_size_signal(new, [trigger, new], [trigger], MEDIUM)
        assert result.details["position_size_change"] == pytest.approx(-50.0)
        assert result.detected

    def test_position_size_needs_history(self, make_trade):
        new = make_trade(entry=34, hold=None, quantity=30)
        assert not position_size_signal(new, [new], [], MEDIUM).detected

    def test_timing_within_window(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600)
        result = timing_signal([trigger], _at(35), MEDIUM)
        assert result.detected
        assert result.details["minutes_since_loss"] == 5.0
        assert result.confidence == pytest.approx(1 - 5 / 15)

    def test_timing_outside_window(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600)
        result = timing_signal([trigger], _at(60), MEDIUM)
        assert not result.detected
        assert result.confidence == 0.0

    def test_same_symbol_confidence_decays(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600, symbol="TSLA")
        new = make_trade(entry=100, hold=None, symbol="TSLA")
        assert same_symbol_signal(new, [trigger], _at(40)).confidence == 0.8
        assert same_symbol_signal(new, [trigger], _at(90)).confidence == 0.5
        other = make_trade(entry=100, hold=None, symbol="MSFT")
        assert not same_symbol_signal(other, [trigger], _at(40)).detected


class TestAggregation:
    @pytest.mark.parametrize(
        "confidence,count,expected",
        [
            (0.85, 1, Severity.HIGH),
            (0.3, 3, Severity.HIGH),
            (0.65, 1, Severity.MEDIUM),
            (0.3, 2, Severity.MEDIUM),
            (0.5, 1, Severity.LOW),
        ],
    )
    def test_classify_severity(self, confidence, count, expected):
        assert classify_severity(confidence, count) == expected

    def test_cooling_period_is_capped(self):
        assert recommended_cooling_period(Severity.LOW, 0.0) == 15
        assert recommended_cooling_period(Severity.MEDIUM, 0.5) == 45
        assert recommended_cooling_period(Severity.HIGH, 1.0) == 120

    def test_single_strong_signal_is_revenge(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600, symbol="TSLA")
        new = make_trade(entry=34, hold=None, symbol="MSFT")
        analysis = evaluate_revenge(new, [trigger, new], [trigger], MEDIUM, _at(30.5))
        # Timing alone with confidence above 0.7
        assert [s.label for s in analysis.detected] == ["immediate_trading"]
        assert analysis.is_revenge
        assert analysis.cooling_period_minutes > 0

    def test_no_signal_is_not_revenge(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600, symbol="TSLA")
        new = make_trade(entry=100, hold=None, symbol="MSFT")
        analysis = evaluate_revenge(new, [new], [trigger], MEDIUM, _at(100))
        assert not analysis.is_revenge
        assert analysis.cooling_period_minutes == 0


# ---------------------------------------------------------------------------
# Historical episodes
# ---------------------------------------------------------------------------

class TestEpisodes:
    def test_candidates_strictly_after_exit_and_within_window(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600)
        at_exit = make_trade(entry=30, hold=5, pnl=10)
        inside = make_trade(entry=31, hold=5, pnl=10)
        edge = make_trade(entry=150, hold=5, pnl=10)
        outside = make_trade(entry=151, hold=5, pnl=10)
        episodes = find_revenge_episodes(
            [trigger, at_exit, inside, edge, outside], MEDIUM, None,
        )
        assert len(episodes) == 1
        assert [c.id for c in episodes[0].candidates] == [inside.id, edge.id]
        assert episodes[0].time_window_minutes == 120

    def test_small_losses_are_not_triggers(self, make_trade):
        trades = [make_trade(entry=0, hold=30, pnl=-100), make_trade(entry=40, pnl=10)]
        assert find_revenge_episodes(trades, MEDIUM, None) == []

    def test_trigger_without_candidates_yields_nothing(self, make_trade):
        trades = [make_trade(entry=0, hold=30, pnl=-600)]
        assert find_revenge_episodes(trades, MEDIUM, None) == []

    def test_increase_is_absolute_maximum_and_capped(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600, quantity=1, price=10.0)
        big = make_trade(entry=40, pnl=10, quantity=10_000, price=10.0)
        small = make_trade(entry=50, pnl=10, quantity=0.5, price=10.0)
        (episode,) = find_revenge_episodes([trigger, big, small], MEDIUM, None)
        assert episode.max_increase_percent == 999.0
        assert episode.increases[1] == pytest.approx(-50.0)

    def test_smaller_reentry_stored_as_absolute_change(self, make_trade):
        trigger = make_trade(entry=0, hold=30, pnl=-600, quantity=100)
        smaller = make_trade(entry=40, pnl=10, quantity=10)
        (episode,) = find_revenge_episodes([trigger, smaller], MEDIUM, None)

        event = episode_to_event("user-1", episode)

        assert episode.peak_increase_percent == pytest.approx(-90.0)
        assert event.position_size_increase_percent == 90.0
        # Created on the $600 loss, not on the size change
        assert should_create_event(episode, DetectionConfig())

    def test_shrinking_size_does_not_pass_the_increase_gate(self, make_trade):
        detection = DetectionConfig()
        trigger = make_trade(entry=0, hold=30, pnl=-150, quantity=10)
        smaller = make_trade(entry=40, pnl=10, quantity=5)
        (episode,) = find_revenge_episodes([trigger, smaller], HIGH, 10_000.0)
        assert episode.max_increase_percent == pytest.approx(50.0)
        assert not should_create_event(episode, detection)

    def test_creation_gate(self, make_trade):
        detection = DetectionConfig()
        trigger = make_trade(entry=0, hold=30, pnl=-150, quantity=10)
        same_size = make_trade(entry=40, pnl=10, quantity=10)
        (episode,) = find_revenge_episodes([trigger, same_size], HIGH, 10_000.0)
        # No size increase and loss under $200
        assert not should_create_event(episode, detection)

        bigger = make_trade(entry=40, pnl=10, quantity=13)
        (episode,) = find_revenge_episodes([trigger, bigger], HIGH, 10_000.0)
        # 30% increase
        assert should_create_event(episode, detection)

        large = make_trade(entry=0, hold=30, pnl=-600, quantity=10)
        (episode,) = find_revenge_episodes([large, same_size], MEDIUM, None)
        assert should_create_event(episode, detection)


# ---------------------------------------------------------------------------
# Detector service
# ---------------------------------------------------------------------------

def _detector(trade_store, repo, gate, clock):
    return RevengeTradeDetector(trade_store=trade_store, repo=repo, gate=gate, clock=clock)


class TestRealtimeDetector:
    @pytest.fixture
    def clock(self):
        return SimClock(start=_at(35))

    @pytest.fixture
    def scenario(self, make_trade, trade_store):
        trigger = make_trade(entry=0, hold=30, pnl=-600, quantity=10)
        new = make_trade(entry=34, hold=None, quantity=30)
        trade_store.extend([trigger, new])
        return trigger, new

    @pytest.mark.asyncio
    async def test_detects_and_persists(self, scenario, trade_store, repo, gate, clock):
        trigger, new = scenario
        detector = _detector(trade_store, repo, gate, clock)

        analysis = await detector.analyze_new_trade("user-1", new)

        assert analysis.is_revenge
        assert analysis.severity == Severity.HIGH
        assert set(analysis.pattern_labels) == {
            "size_increase", "immediate_trading", "same_symbol_revenge",
        }
        assert analysis.cooling_period_minutes == 120
        assert analysis.trigger_trade_ids == [trigger.id]

        patterns = await repo.list_patterns("user-1")
        assert len(patterns) == 1
        assert patterns[0].pattern_type == PatternType.SAME_SYMBOL_REVENGE

        (event,) = await repo.list_revenge_events("user-1")
        assert event.id == analysis.event_id
        assert event.trigger_trade_id == trigger.id
        assert event.revenge_trades == [new.id]
        assert event.time_window_minutes == 4
        assert event.trigger_loss_amount == 600.0

        alerts = await repo.list_alerts("user-1", active_at=clock.now())
        assert len(alerts) == 4
        assert any(a.alert_type == AlertType.BLOCKING for a in alerts)
        assert all(a.expires_at == clock.now() + timedelta(hours=24) for a in alerts)

    @pytest.mark.asyncio
    async def test_alerts_expire_after_a_day(self, scenario, trade_store, repo, gate, clock):
        _, new = scenario
        await _detector(trade_store, repo, gate, clock).analyze_new_trade("user-1", new)
        clock.advance(minutes=24 * 60)
        assert await repo.list_alerts("user-1", active_at=clock.now()) == []

    @pytest.mark.asyncio
    async def test_no_recent_loss_returns_none(self, make_trade, trade_store, repo, gate, clock):
        new = make_trade(entry=34, hold=None)
        trade_store.add(new)
        result = await _detector(trade_store, repo, gate, clock).analyze_new_trade("user-1", new)
        assert result is None
        assert repo.counts("user-1")["alerts"] == 0

    @pytest.mark.asyncio
    async def test_disabled_in_settings(self, scenario, trade_store, repo, gate, clock):
        _, new = scenario
        await repo.save_settings(
            BehavioralSettings(user_id="user-1", revenge_trading_enabled=False)
        )
        result = await _detector(trade_store, repo, gate, clock).analyze_new_trade("user-1", new)
        assert result is None

    @pytest.mark.asyncio
    async def test_requires_entitlement(self, scenario, trade_store, repo, clock):
        _, new = scenario
        gate = StaticEntitlementGate(default_features=[])
        with pytest.raises(EntitlementDenied):
            await _detector(trade_store, repo, gate, clock).analyze_new_trade("user-1", new)


class TestHistoricalDetector:
    @pytest.fixture
    def history(self, make_trade, trade_store):
        trades = [
            make_trade(entry=-300, pnl=10, quantity=10),
            make_trade(entry=-240, pnl=10, quantity=10),
            make_trade(entry=0, hold=30, pnl=-600, quantity=10, trade_id="trigger"),
            make_trade(entry=40, pnl=-100, quantity=30, trade_id="same"),
            make_trade(entry=60, pnl=50, quantity=10, symbol="MSFT", trade_id="other"),
            make_trade(entry=200, pnl=20, quantity=10, trade_id="late"),
        ]
        trade_store.extend(trades)
        return trades

    @pytest.mark.asyncio
    async def test_rebuilds_events(self, history, trade_store, repo, gate, sim_clock):
        detector = _detector(trade_store, repo, gate, sim_clock)
        summary = await detector.analyze_history("user-1")

        assert summary["trades_analyzed"] == 6
        assert summary["revenge_events_created"] == 1

        (event,) = await repo.list_revenge_events("user-1")
        assert event.trigger_trade_id == "trigger"
        assert event.revenge_trades == ["same", "other"]
        assert event.position_size_increase_percent == 200.0
        assert event.time_window_minutes == 30
        assert event.total_additional_loss == 50.0
        assert event.created_at == _at(40)
        assert event.trigger_timestamp == _at(30)
        assert event.pattern_broken is False

        patterns = {p.context_data["revenge_trade_id"]: p for p in await repo.list_patterns("user-1")}
        assert patterns["same"].pattern_type == PatternType.SAME_SYMBOL_REVENGE
        assert patterns["other"].pattern_type == PatternType.EMOTIONAL_REACTIVE

    @pytest.mark.asyncio
    async def test_rerun_replaces_previous_rows(self, history, trade_store, repo, gate, sim_clock):
        detector = _detector(trade_store, repo, gate, sim_clock)
        await detector.analyze_history("user-1")
        first = await repo.list_revenge_events("user-1")
        await detector.analyze_history("user-1")
        second = await repo.list_revenge_events("user-1")
        assert [e.id for e in first] == [e.id for e in second]
        assert repo.counts("user-1")["revenge_events"] == 1
        assert repo.counts("user-1")["patterns"] == 2
