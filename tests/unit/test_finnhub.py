"""Finnhub client: payload parsing and failure mapping over httpx.MockTransport."""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from behavioral_analytics.analysis.counterfactual import CounterfactualPriceAnalyzer
from behavioral_analytics.analysis.trade_quality import TradeQualityAnalyzer
from behavioral_analytics.core.errors import ExternalDataUnavailable, RateLimited
from behavioral_analytics.market_data.finnhub import FinnhubClient


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _client(handler, *, max_retries: int = 1) -> FinnhubClient:
    return FinnhubClient(
        "test-key",
        max_retries=max_retries,
        base_backoff=0.0,
        transport=httpx.MockTransport(handler),
    )


def _disconnect(request: httpx.Request) -> httpx.Response:
    raise httpx.RemoteProtocolError(
        "Server disconnected without sending a response", request=request,
    )


def _maintenance_page(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="<html>maintenance</html>")


def _candles(request: httpx.Request) -> httpx.Response:
    assert request.url.params["token"] == "test-key"
    assert request.url.params["symbol"] == "AAPL"
    return httpx.Response(200, json={
        "s": "ok",
        "t": [1714572000, 1714572060],
        "o": [100, 101], "h": [101, 102], "l": [99, 100], "c": [100.5, 101.5],
        "v": [10, 12],
    })


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TestFinnhubClient:
    @pytest.mark.asyncio
    async def test_candles_parsed(self):
        async with _client(_candles) as client:
            candles = await client.get_candles("aapl", "1", 1714572000, 1714572060)
        assert candles.close == [100.5, 101.5]
        assert candles.times == [1714572000, 1714572060]

    @pytest.mark.asyncio
    async def test_no_data_status(self):
        def handler(request):
            return httpx.Response(200, json={"s": "no_data"})

        async with _client(handler) as client:
            with pytest.raises(ExternalDataUnavailable, match="no_data"):
                await client.get_candles("AAPL", "1", 0, 60)

    @pytest.mark.asyncio
    async def test_protocol_error_is_unavailable(self):
        async with _client(_disconnect) as client:
            with pytest.raises(ExternalDataUnavailable, match="network error"):
                await client.get_candles("AAPL", "1", 0, 60)

    @pytest.mark.asyncio
    async def test_protocol_error_retried_then_recovers(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return _disconnect(request)
            return _candles(request)

        async with _client(handler, max_retries=2) as client:
            candles = await client.get_candles("AAPL", "1", 0, 60)
        assert len(calls) == 2
        assert len(candles) == 2

    @pytest.mark.asyncio
    async def test_non_json_body_is_unavailable(self):
        async with _client(_maintenance_page) as client:
            with pytest.raises(ExternalDataUnavailable, match="malformed response body"):
                await client.get_company_news("AAPL", date(2024, 5, 1), date(2024, 5, 1))

    @pytest.mark.asyncio
    async def test_rate_limited_after_last_attempt(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "0"})

        async with _client(handler) as client:
            with pytest.raises(RateLimited):
                await client.get_candles("AAPL", "1", 0, 60)

    @pytest.mark.asyncio
    async def test_missing_key(self):
        async with FinnhubClient(transport=httpx.MockTransport(_candles)) as client:
            assert not client.is_configured
            with pytest.raises(ExternalDataUnavailable, match="API key"):
                await client.get_candles("AAPL", "1", 0, 60)


# ---------------------------------------------------------------------------
# Failures reach analyses as "unknown", never as exceptions
# ---------------------------------------------------------------------------

class TestFailuresAreNeutral:
    @pytest.mark.asyncio
    async def test_exit_analysis_without_data(self, make_trade):
        async with _client(_disconnect) as client:
            analysis = await CounterfactualPriceAnalyzer(client).analyze_exit(make_trade())
        assert not analysis.data_available

    @pytest.mark.asyncio
    async def test_entry_analysis_without_data(self, make_trade):
        async with _client(_maintenance_page) as client:
            analysis = await CounterfactualPriceAnalyzer(client).analyze_entry(make_trade())
        assert not analysis.data_available

    @pytest.mark.asyncio
    async def test_trade_quality_falls_back_on_bad_body(self, make_trade):
        async with _client(_maintenance_page) as client:
            quality = await TradeQualityAnalyzer(client).assess_trade(make_trade(), 1000.0)
        assert quality.analysis_mode == "position_fallback"

    @pytest.mark.asyncio
    async def test_trade_quality_falls_back_on_disconnect(self, make_trade):
        async with _client(_disconnect) as client:
            quality = await TradeQualityAnalyzer(client).assess_trade(make_trade(), 1000.0)
        assert quality.analysis_mode == "position_fallback"
