"""TradeFilter predicates, in memory and compiled to SQL."""

from datetime import datetime, timezone

from sqlalchemy import select

from behavioral_analytics.core.filters import PLACEHOLDER_SYMBOLS, DateField, TradeFilter
from behavioral_analytics.storage.postgres.models import TradeRecord


class TestTradeFilter:
    def test_with_trade_ids_keeps_other_bounds(self, make_trade):
        start = datetime(2024, 5, 1, 14, 30, tzinfo=timezone.utc)
        flt = TradeFilter(user_id="user-1", start=start).with_trade_ids(["a", "b"])

        assert flt.trade_ids == frozenset({"a", "b"})
        assert flt.start == start
        assert flt.matches(make_trade(trade_id="a", entry=30))
        assert not flt.matches(make_trade(trade_id="b", entry=0))
        assert not flt.matches(make_trade(trade_id="c", entry=30))

    def test_bounds_are_inclusive(self, make_trade):
        trade = make_trade(entry=0, hold=60)
        at_exit = datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)
        flt = TradeFilter(user_id="user-1", start=at_exit, end=at_exit, date_field=DateField.EXIT)
        assert flt.matches(trade)

    def test_open_and_placeholder_trades_skipped(self, make_trade):
        flt = TradeFilter(user_id="user-1", exclude_symbols=PLACEHOLDER_SYMBOLS)
        assert not flt.matches(make_trade(hold=None))
        assert not flt.matches(make_trade(symbol="DEMO"))
        assert flt.matches(make_trade())

    def test_sql_where_clause(self):
        flt = TradeFilter(user_id="user-1", winners_only=True).with_trade_ids(["b", "a"])
        sql = str(flt.apply(select(TradeRecord), TradeRecord))
        assert "trades.user_id = :user_id_1" in sql
        assert "trades.trade_id IN" in sql
        assert "trades.pnl >" in sql
