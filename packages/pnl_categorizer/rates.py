"""Exchange-rate provider with TTL caching and static fallback.

``ExchangeRateProvider.get_rates`` returns a :class:`~pnl_categorizer.models.RateSet`
holding reporting-currency units per 1 unit of each requested currency. One
HTTP request covers the whole currency set. Any failure of the rate source
(timeout, transport error, non-200, malformed body) is logged and answered
with the configured static table; nothing is raised to the caller.

The rate source quotes *foreign units per 1 reporting unit*
(``{"rates": {"USD": 0.238, ...}}`` relative to PLN), so each quote is
inverted before use.
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable, Mapping
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import Any

import httpx

from .cache import TTLCache
from .config import PipelineConfig
from .logging_setup import get_logger
from .models import RateSet

_logger = get_logger("pnl_categorizer.rates")

_RATE_QUANTUM = Decimal("0.000001")
_ONE = Decimal("1")


def _cache_key(currencies: Iterable[str], as_of: _dt.date | None) -> tuple[str, tuple[str, ...]]:
    day = as_of.isoformat() if as_of is not None else "latest"
    return (day, tuple(sorted(set(currencies))))


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class ExchangeRateProvider:
    """Fetch, validate and cache exchange rates relative to the reporting currency.

    Parameters
    ----------
    config:
        Supplies the reporting currency, endpoint, timeout, ceiling and the
        static fallback table.
    cache:
        Shared :class:`TTLCache`; a private one-hour cache is created when
        omitted.
    client:
        Optional ``httpx.AsyncClient``. When omitted a short-lived client is
        opened per fetch.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        cache: TTLCache | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or PipelineConfig()
        self._cache = (
            cache if cache is not None else TTLCache(self._config.rate_cache_ttl_sec, name="rates")
        )
        self._client = client

    @property
    def reporting_currency(self) -> str:
        return self._config.reporting_currency

    @property
    def cache(self) -> TTLCache:
        return self._cache

    async def get_rates(
        self, currencies: Iterable[str], as_of: _dt.date | None = None
    ) -> RateSet:
        requested = {c.strip().upper() for c in currencies if c and c.strip()}
        reporting = self.reporting_currency
        requested.add(reporting)

        if requested == {reporting}:
            return RateSet(rates={reporting: _ONE}, source="identity", as_of=as_of)

        key = _cache_key(requested, as_of)
        cached = self._cache.get(key)
        if cached is not None:
            _logger.debug("rates:cache_hit key=%r", key)
            return RateSet(rates=dict(cached), source="cache", as_of=as_of)

        if as_of is not None:
            _logger.info(
                "rates:historical_unsupported as_of=%s using=latest", as_of.isoformat()
            )

        try:
            quotes = await self._fetch_quotes()
        except _RateSourceError as exc:
            _logger.warning(
                "rates:fallback reason=%s currencies=%s",
                exc.reason,
                ",".join(sorted(requested)),
            )
            return RateSet(rates=self._fallback_for(requested), source="fallback", as_of=as_of)

        rates = self._rates_from_quotes(quotes, requested)
        self._cache.set(key, dict(rates))
        _logger.info(
            "rates:live currencies=%s", ",".join(f"{c}={r}" for c, r in sorted(rates.items()))
        )
        return RateSet(rates=rates, source="live", as_of=as_of)

    # ---- Internals ---------------------------------------------------------

    def _fallback_rate(self, currency: str) -> Decimal:
        if currency == self.reporting_currency:
            return _ONE
        return self._config.fallback_rates.get(currency, _ONE)

    def _fallback_for(self, currencies: Iterable[str]) -> dict[str, Decimal]:
        return {c: self._fallback_rate(c) for c in sorted(currencies)}

    def _rates_from_quotes(
        self, quotes: Mapping[str, Any], currencies: Iterable[str]
    ) -> dict[str, Decimal]:
        out: dict[str, Decimal] = {}
        for cur in sorted(currencies):
            if cur == self.reporting_currency:
                out[cur] = _ONE
                continue
            if cur not in quotes:
                _logger.warning("rates:missing currency=%s using=fallback", cur)
                out[cur] = self._fallback_rate(cur)
                continue
            rate = self._invert(quotes[cur])
            if rate is None or not self._is_valid(rate):
                _logger.warning(
                    "rates:invalid currency=%s quote=%r using=fallback", cur, quotes[cur]
                )
                out[cur] = self._fallback_rate(cur)
                continue
            out[cur] = rate
        return out

    @staticmethod
    def _invert(quote: Any) -> Decimal | None:
        q = _to_decimal(quote)
        if q is None or not q.is_finite() or q <= 0:
            return None
        try:
            return (_ONE / q).quantize(_RATE_QUANTUM)
        except (DivisionByZero, InvalidOperation):
            return None

    def _is_valid(self, rate: Decimal) -> bool:
        return Decimal(0) < rate < self._config.rate_ceiling

    async def _fetch_quotes(self) -> Mapping[str, Any]:
        url = f"{self._config.rates_url.rstrip('/')}/{self.reporting_currency}"
        try:
            if self._client is not None:
                resp = await self._client.get(url, timeout=self._config.rate_timeout_sec)
            else:
                async with httpx.AsyncClient(timeout=self._config.rate_timeout_sec) as client:
                    resp = await client.get(url)
        except httpx.TimeoutException as exc:
            raise _RateSourceError("timeout") from exc
        except httpx.HTTPError as exc:
            raise _RateSourceError(f"transport:{type(exc).__name__}") from exc

        if resp.status_code != 200:
            raise _RateSourceError(f"status:{resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise _RateSourceError("malformed_json") from exc
        if not isinstance(body, dict) or not isinstance(body.get("rates"), dict):
            raise _RateSourceError("missing_rates")
        return body["rates"]


class _RateSourceError(Exception):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


__all__ = ["ExchangeRateProvider"]
