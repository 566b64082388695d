"""Golden test: deterministic reanalysis.

Rebuilding a user's behavioral history from the same trades must yield
byte-identical rows: the same derived ids, the same timestamps and the
same floating point values.  Re-running an analysis replaces its rows
instead of piling up duplicates.
"""

import hashlib
import json
from datetime import datetime, timedelta, timezone

import pytest

from behavioral_analytics.core.clock import SimClock
from behavioral_analytics.core.config import Settings
from behavioral_analytics.core.entitlements import StaticEntitlementGate
from behavioral_analytics.core.models import Trade
from behavioral_analytics.market_data.base import Candles, StaticMarketDataProvider
from behavioral_analytics.services.engine import build_engine
from behavioral_analytics.storage.memory import MemoryBehaviorRepository, MemoryTradeStore

T0 = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)
NOW = T0 + timedelta(days=5)

# (id, symbol, entry minute, hold minutes, pnl, quantity)
ROWS = [
    ("a01", "AAPL", 0, 25, 15.0, 10),
    ("a02", "MSFT", 90, 140, -25.0, 10),
    ("a03", "AAPL", 300, 20, 12.0, 10),
    ("a04", "AAPL", 420, 180, -30.0, 10),
    ("a05", "MSFT", 700, 35, 18.0, 10),
    ("a06", "AAPL", 900, 30, 22.0, 12),
    ("a07", "AAPL", 1000, 25, 19.0, 15),
    ("a08", "MSFT", 1100, 40, 25.0, 18),
    ("a09", "AAPL", 1200, 200, -700.0, 10),
    ("a10", "AAPL", 1410, 60, -80.0, 25),
    ("a11", "AAPL", 1430, 90, -45.0, 20),
    ("a12", "MSFT", 1800, 30, 14.0, 10),
    ("a13", "AAPL", 2100, 160, -20.0, 10),
    ("a14", "MSFT", 2400, 20, 16.0, 10),
]


def _trades():
    trades = []
    for trade_id, symbol, entry, hold, pnl, qty in ROWS:
        entry_time = T0 + timedelta(minutes=entry)
        trades.append(Trade(
            id=trade_id,
            user_id="user-1",
            symbol=symbol,
            side="long",
            entry_time=entry_time,
            exit_time=entry_time + timedelta(minutes=hold),
            entry_price=100.0,
            exit_price=100.0 + pnl / qty,
            quantity=qty,
            pnl=pnl,
        ))
    return trades


def _candles(offset):
    """Minute bars over the whole history with a repeating saw-tooth."""
    start = int((T0 - timedelta(days=1)).timestamp())
    closes = [100.0 + offset + (i % 37) * 0.25 - (i % 11) * 0.4 for i in range(4 * 24 * 60)]
    return Candles(
        times=[start + i * 60 for i in range(len(closes))],
        open=closes, high=[c + 0.1 for c in closes], low=[c - 0.1 for c in closes],
        close=closes, volume=[1000.0] * len(closes),
    )


def _engine(trades):
    repo = MemoryBehaviorRepository()

    async def no_sleep(seconds):
        return None

    engine = build_engine(
        Settings(),
        trade_store=MemoryTradeStore(trades),
        repo=repo,
        gate=StaticEntitlementGate(),
        clock=SimClock(start=NOW),
        provider=StaticMarketDataProvider({"AAPL": _candles(0.0), "MSFT": _candles(1.5)}),
        sleep=no_sleep,
    )
    return engine, repo


async def _run(engine, repo):
    await engine.revenge.analyze_history("user-1")
    await engine.overconfidence.analyze_history("user-1")
    loss_aversion = await engine.loss_aversion.analyze("user-1")

    payload = {
        "revenge": [
            e.model_dump(mode="json") for e in await repo.list_revenge_events("user-1")
        ],
        "overconfidence": [
            e.model_dump(mode="json") for e in await repo.list_overconfidence_events("user-1")
        ],
        "patterns": sorted(
            (p.model_dump(mode="json") for p in await repo.list_patterns("user-1")),
            key=lambda p: p["id"],
        ),
        "hold_patterns": [
            p.model_dump(mode="json") for p in await repo.list_hold_patterns("user-1")
        ],
        "loss_aversion": {k: v for k, v in loss_aversion.items() if k != "event_id"},
        "top_missed": await engine.loss_aversion.top_missed_trades(
            "user-1", force_refresh=True,
        ),
    }
    return payload


def _digest(payload):
    blob = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.sha256(blob).hexdigest()


class TestDeterministicReanalysis:
    """Golden test: same trades -> same output hash."""

    @pytest.mark.asyncio
    async def test_fresh_engines_agree(self):
        first = await _run(*_engine(_trades()))
        second = await _run(*_engine(_trades()))

        assert first["revenge"], "history should produce a revenge event"
        assert first["overconfidence"], "history should produce an overconfidence event"
        assert _digest(first) == _digest(second)

    @pytest.mark.asyncio
    async def test_insertion_order_is_irrelevant(self):
        forward = await _run(*_engine(_trades()))
        backward = await _run(*_engine(list(reversed(_trades()))))
        assert _digest(forward) == _digest(backward)

    @pytest.mark.asyncio
    async def test_rerun_replaces_rows(self):
        engine, repo = _engine(_trades())
        first = await _run(engine, repo)
        counts = repo.counts("user-1")

        second = await _run(engine, repo)

        assert _digest(first["revenge"]) == _digest(second["revenge"])
        assert _digest(first["overconfidence"]) == _digest(second["overconfidence"])
        assert _digest(first["patterns"]) == _digest(second["patterns"])
        after = repo.counts("user-1")
        for table in ("revenge_events", "overconfidence_events", "patterns", "hold_patterns"):
            assert after[table] == counts[table]
        # Loss aversion runs are an append-only history
        assert after["loss_aversion_events"] == counts["loss_aversion_events"] + 1
