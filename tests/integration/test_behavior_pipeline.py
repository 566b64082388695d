"""Integration test: every detector wired through build_engine.

One trade history contains an escalating win streak, the loss that ends
it, a revenge trade right after that loss and enough winners and losers
for a loss aversion read.  The engine runs all batch analyses, serves
the reports and then clears the derived rows again.
"""

from datetime import datetime, timedelta, timezone

import pytest

from behavioral_analytics.core.clock import SimClock
from behavioral_analytics.core.config import Settings
from behavioral_analytics.core.entitlements import StaticEntitlementGate
from behavioral_analytics.core.enums import PatternType, Severity, StreakOutcome
from behavioral_analytics.core.models import Trade
from behavioral_analytics.market_data.base import StaticMarketDataProvider
from behavioral_analytics.services.engine import build_engine
from behavioral_analytics.storage.memory import MemoryBehaviorRepository, MemoryTradeStore

T0 = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)

# (id, entry minute, hold minutes, pnl, quantity)
HISTORY = [
    ("b0", 0, 30, 20.0, 10),
    ("b1", 300, 120, -20.0, 10),
    ("b2", 600, 30, 20.0, 10),
    ("b3", 900, 120, -20.0, 10),
    ("b4", 1200, 120, -20.0, 10),
    ("w0", 1500, 30, 30.0, 10),
    ("w1", 1800, 30, 30.0, 12),
    ("w2", 2100, 30, 30.0, 14),
    ("w3", 2400, 30, 30.0, 25),
    ("trigger", 2700, 120, -600.0, 10),
    ("chase", 2830, 120, -100.0, 30),
    ("f", 3200, 30, 20.0, 10),
]


def _trade(trade_id, entry, hold, pnl, qty, *, user_id="user-1"):
    entry_time = T0 + timedelta(minutes=entry)
    return Trade(
        id=trade_id,
        user_id=user_id,
        symbol="AAPL",
        side="long",
        entry_time=entry_time,
        exit_time=entry_time + timedelta(minutes=hold) if hold is not None else None,
        entry_price=100.0,
        exit_price=100.0 + pnl / qty if hold is not None else None,
        quantity=qty,
        pnl=pnl if hold is not None else None,
    )


@pytest.fixture
def clock():
    return SimClock(start=T0 + timedelta(minutes=3235))


@pytest.fixture
def stores():
    trade_store = MemoryTradeStore(_trade(*row) for row in HISTORY)
    return trade_store, MemoryBehaviorRepository()


@pytest.fixture
def engine(stores, clock, no_sleep):
    trade_store, repo = stores
    return build_engine(
        Settings(),
        trade_store=trade_store,
        repo=repo,
        gate=StaticEntitlementGate(),
        clock=clock,
        provider=StaticMarketDataProvider(),
        sleep=no_sleep,
    )


class TestBatchPipeline:
    @pytest.mark.asyncio
    async def test_full_reanalysis(self, engine, stores):
        _, repo = stores

        revenge = await engine.revenge.analyze_history("user-1")
        overconfidence = await engine.overconfidence.analyze_history("user-1")
        loss_aversion = await engine.loss_aversion.analyze("user-1")

        assert revenge["trades_analyzed"] == 12
        assert revenge["revenge_events_created"] == 1
        assert overconfidence["overconfidence_events_created"] == 1

        (event,) = await repo.list_overconfidence_events("user-1")
        assert event.streak_trades == ["w0", "w1", "w2", "w3"]
        assert event.position_size_increase_percent == 150.0
        assert event.outcome_after_streak == StreakOutcome.LOSS
        assert event.outcome_trade_id == "trigger"
        assert event.outcome_analysis["verdict"]["verdict"] == "bad_luck"

        assert loss_aversion["hold_time_ratio"] == pytest.approx(4.0)
        assert loss_aversion["winners"] == 7
        assert loss_aversion["losers"] == 5

        report = await engine.overconfidence.get_analysis("user-1")
        (rendered,) = report["events"]
        assert rendered["recommendations_fallback"] is True
        assert rendered["outcome_trade_details"]["id"] == "trigger"

        revenge_report = await engine.behavioral.revenge_analysis("user-1")
        (revenge_event,) = revenge_report["events"]
        assert revenge_event["trigger_trade"]["id"] == "trigger"
        assert revenge_event["revenge_trades"] == ["chase"]

        overview = await engine.behavioral.overview("user-1")
        assert {p["pattern_type"] for p in overview["patterns"]} == {
            PatternType.SAME_SYMBOL_REVENGE.value,
            PatternType.OVERCONFIDENCE_BIAS.value,
        }

    @pytest.mark.asyncio
    async def test_reports_are_cached_until_reanalysis(self, engine):
        await engine.overconfidence.analyze_history("user-1")
        await engine.overconfidence.get_analysis("user-1")
        await engine.loss_aversion.top_missed_trades("user-1")
        assert (await engine.cache.stats("user-1"))["active_entries"] == 2

        await engine.overconfidence.analyze_history("user-1")
        assert (await engine.cache.stats("user-1"))["total_entries"] == 0

    @pytest.mark.asyncio
    async def test_clear_history(self, engine, stores):
        _, repo = stores
        await engine.revenge.analyze_history("user-1")
        await engine.overconfidence.analyze_history("user-1")
        await engine.loss_aversion.analyze("user-1")

        removed = await engine.behavioral.clear_history("user-1")

        assert removed["revenge_events"] == 1
        assert removed["overconfidence_events"] == 1
        counts = repo.counts("user-1")
        assert counts["patterns"] == 0
        assert counts["revenge_events"] == 0
        assert counts["overconfidence_events"] == 0
        assert counts["loss_aversion_events"] == 1


class TestRealtimePipeline:
    @pytest.mark.asyncio
    async def test_revenge_alerts_reach_the_read_side(self, engine, stores):
        trade_store, _ = stores
        trade_store.add(_trade("u2-loss", 3200, 30, -600.0, 10, user_id="user-2"))
        new = _trade("u2-new", 3234, None, 0.0, 30, user_id="user-2")
        trade_store.add(new)

        analysis = await engine.revenge.analyze_new_trade("user-2", new)

        assert analysis.is_revenge
        assert analysis.severity == Severity.HIGH
        alerts = await engine.behavioral.active_alerts("user-2")
        assert len(alerts) == 4
        assert await engine.behavioral.active_alerts("user-1") == []

    @pytest.mark.asyncio
    async def test_win_streak_alert(self, engine, stores):
        trade_store, _ = stores
        sizes = [10, 12, 14, 25]
        alert = None
        for i, qty in enumerate(sizes):
            trade = _trade(f"rt{i}", 3000 + i * 40, 30, 30.0, qty, user_id="user-3")
            trade_store.add(trade)
            alert = await engine.overconfidence.detect_realtime("user-3", trade)
            if i < len(sizes) - 1:
                assert alert is None

        assert alert["severity"] == "high"
        assert alert["streak_length"] == 4
        assert len(await engine.behavioral.active_alerts("user-3")) == 1
