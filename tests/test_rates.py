from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from pnl_categorizer.cache import TTLCache
from pnl_categorizer.config import PipelineConfig
from pnl_categorizer.rates import ExchangeRateProvider
from tests.helpers.factories import RateSourceSpy, quotes, timeout


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_live_quotes_are_inverted_and_cached() -> None:
    spy = RateSourceSpy(quotes(USD=0.25, EUR=0.2))
    async with spy.client() as client:
        provider = ExchangeRateProvider(PipelineConfig(), client=client)

        first = await provider.get_rates(["USD", "EUR"])
        second = await provider.get_rates(["eur", "usd"])

    assert first.source == "live"
    assert first.rates == {"EUR": Decimal("5"), "PLN": Decimal("1"), "USD": Decimal("4")}
    assert second.source == "cache"
    assert second.rates == first.rates
    assert len(spy.requests) == 1
    assert spy.requests[0].url.path == "/v4/latest/PLN"


@pytest.mark.asyncio
async def test_timeout_returns_static_table_and_is_not_cached() -> None:
    spy = RateSourceSpy(timeout)
    async with spy.client() as client:
        provider = ExchangeRateProvider(PipelineConfig(), client=client)

        first = await provider.get_rates(["USD", "EUR"])
        second = await provider.get_rates(["USD", "EUR"])

    assert first.source == "fallback"
    assert first.rates == {"EUR": Decimal("4.5"), "PLN": Decimal("1"), "USD": Decimal("4.2")}
    assert second.source == "fallback"
    assert len(spy.requests) == 2


@pytest.mark.parametrize(
    "respond",
    [
        lambda request: httpx.Response(503, json={"error": "down"}),
        lambda request: httpx.Response(200, text="<html>not json</html>"),
        lambda request: httpx.Response(200, json={"result": "ok"}),
    ],
    ids=["status", "malformed_json", "missing_rates"],
)
@pytest.mark.asyncio
async def test_unusable_replies_fall_back(respond) -> None:
    spy = RateSourceSpy(respond)
    async with spy.client() as client:
        provider = ExchangeRateProvider(PipelineConfig(), client=client)
        result = await provider.get_rates(["GBP"])

    assert result.source == "fallback"
    assert result.rates == {"GBP": Decimal("5.3"), "PLN": Decimal("1")}


@pytest.mark.asyncio
async def test_invalid_or_missing_quotes_use_fallback_per_currency() -> None:
    # 1 / 0.0001 = 10000 is above the ceiling; zero cannot be inverted; JPY is absent.
    spy = RateSourceSpy(quotes(USD=0, GBP=0.0001, EUR=0.2))
    async with spy.client() as client:
        provider = ExchangeRateProvider(PipelineConfig(), client=client)
        result = await provider.get_rates(["USD", "GBP", "EUR", "JPY"])

    assert result.source == "live"
    assert result.rates["USD"] == Decimal("4.2")
    assert result.rates["GBP"] == Decimal("5.3")
    assert result.rates["EUR"] == Decimal("5")
    assert result.rates["JPY"] == Decimal("1")


@pytest.mark.asyncio
async def test_reporting_currency_only_needs_no_request() -> None:
    spy = RateSourceSpy(quotes())
    async with spy.client() as client:
        provider = ExchangeRateProvider(PipelineConfig(), client=client)
        result = await provider.get_rates(["PLN", "pln"])

    assert result.source == "identity"
    assert result.rate_for("PLN") == Decimal("1")
    assert spy.requests == []


@pytest.mark.asyncio
async def test_cache_entry_expires_after_ttl() -> None:
    clock = _Clock()
    cache = TTLCache(60, clock=clock, name="rates")
    spy = RateSourceSpy(quotes(USD=0.25))
    async with spy.client() as client:
        provider = ExchangeRateProvider(PipelineConfig(), cache=cache, client=client)

        await provider.get_rates(["USD"])
        clock.now = 59.0
        assert (await provider.get_rates(["USD"])).source == "cache"
        clock.now = 61.0
        assert (await provider.get_rates(["USD"])).source == "live"

    assert len(spy.requests) == 2


@pytest.mark.asyncio
async def test_custom_fallback_table_from_config() -> None:
    config = PipelineConfig(fallback_rates={"USD": Decimal("3.9")})
    spy = RateSourceSpy(timeout)
    async with spy.client() as client:
        result = await ExchangeRateProvider(config, client=client).get_rates(["USD", "CHF"])

    assert result.rates == {"CHF": Decimal("1"), "PLN": Decimal("1"), "USD": Decimal("3.9")}


def test_ttl_cache_invalidate_and_len() -> None:
    clock = _Clock()
    cache = TTLCache(10, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl_sec=1)

    assert len(cache) == 2
    clock.now = 5
    assert "b" not in cache
    assert cache.get("a") == 1
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    assert len(cache) == 0


def test_ttl_cache_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValueError):
        TTLCache(0)
