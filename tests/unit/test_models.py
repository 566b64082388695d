"""Domain model parsing: trade sides and timestamp normalisation."""

from datetime import datetime, timedelta, timezone

import pytest

from behavioral_analytics.analysis.loss_aversion import LossAversionAnalyzer
from behavioral_analytics.analysis.revenge import RevengeTradeDetector
from behavioral_analytics.core.clock import SimClock
from behavioral_analytics.core.enums import TradeSide
from behavioral_analytics.core.models import Trade

NAIVE_T0 = datetime(2024, 5, 1, 14, 0)


def _naive_trade(trade_id, entry_minutes, *, hold=30, pnl=50.0, quantity=10.0):
    entry = NAIVE_T0 + timedelta(minutes=entry_minutes)
    return Trade(
        id=trade_id,
        user_id="user-1",
        symbol="AAPL",
        side="buy",
        entry_time=entry,
        exit_time=entry + timedelta(minutes=hold) if hold is not None else None,
        entry_price=100.0,
        exit_price=100.0 + pnl / quantity if hold is not None else None,
        quantity=quantity,
        pnl=pnl if hold is not None else None,
    )


class TestTrade:
    def test_naive_timestamps_are_utc(self):
        trade = _naive_trade("t1", 0)
        assert trade.entry_time == datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)
        assert trade.exit_time.tzinfo is timezone.utc

    def test_aware_timestamps_kept(self):
        eastern = timezone(timedelta(hours=-4))
        trade = Trade(
            id="t1", user_id="user-1", symbol="AAPL", side="long",
            entry_time=datetime(2024, 5, 1, 10, 0, tzinfo=eastern),
            entry_price=100.0, quantity=1,
        )
        assert trade.entry_time.tzinfo is eastern
        assert trade.exit_time is None

    def test_iso_strings_from_files(self):
        trade = Trade.model_validate({
            "id": "t1", "user_id": "user-1", "symbol": "AAPL", "side": "short",
            "entry_time": "2024-05-01T14:00:00", "exit_time": "2024-05-01T14:30:00Z",
            "entry_price": 100.0, "exit_price": 99.0, "quantity": 1, "pnl": 1.0,
        })
        assert trade.side == TradeSide.SHORT
        assert trade.entry_time.tzinfo is timezone.utc
        assert trade.hold_time_minutes == 30


class TestNaiveTradesInAnalyses:
    @pytest.mark.asyncio
    async def test_top_missed_trades(self, trade_store, repo, gate, sim_clock):
        trade_store.extend(_naive_trade(f"w{i}", i * 60) for i in range(3))
        analyzer = LossAversionAnalyzer(
            trade_store=trade_store, repo=repo, gate=gate, clock=sim_clock,
        )

        result = await analyzer.top_missed_trades("user-1")

        assert result["total_analyzed"] == 3

    @pytest.mark.asyncio
    async def test_realtime_revenge_window(self, trade_store, repo, gate):
        trigger = _naive_trade("trigger", 0, pnl=-600.0)
        new = _naive_trade("new", 34, hold=None, quantity=30.0)
        trade_store.extend([trigger, new])
        clock = SimClock(start=datetime(2024, 5, 1, 14, 35, tzinfo=timezone.utc))
        detector = RevengeTradeDetector(
            trade_store=trade_store, repo=repo, gate=gate, clock=clock,
        )

        analysis = await detector.analyze_new_trade("user-1", new)

        assert analysis.is_revenge
        assert analysis.trigger_trade_ids == ["trigger"]
