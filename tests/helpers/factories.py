"""Small builders for pipeline records and rate sources used across tests."""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import Any

import httpx

from pnl_categorizer.models import RateSet, Transaction


def make_op(
    row_index: int,
    description: str,
    amount: str = "-10.00",
    currency: str = "PLN",
    **kw: Any,
) -> Transaction:
    value = Decimal(amount)
    kw.setdefault("operation_type", "income" if value >= 0 else "expense")
    return Transaction(
        row_index=row_index,
        date=kw.pop("date", dt.date(2024, 3, 1)),
        description=description,
        amount=value,
        currency=currency,
        **kw,
    )


class StaticRates:
    """Rate provider double returning a fixed table; records requested currencies."""

    def __init__(self, rates: dict[str, str], *, reporting: str = "PLN", source: str = "live") -> None:
        self._rates = {k: Decimal(v) for k, v in rates.items()}
        self._source = source
        self.reporting_currency = reporting
        self.requests: list[tuple[str, ...]] = []

    async def get_rates(self, currencies: Iterable[str], as_of: dt.date | None = None) -> RateSet:
        self.requests.append(tuple(currencies))
        return RateSet(rates=dict(self._rates), source=self._source, as_of=as_of)  # type: ignore[arg-type]


class RateSourceSpy:
    """``httpx.MockTransport`` handler that counts calls and delegates to ``respond``."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self._respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def quotes(**rates: float) -> Callable[[httpx.Request], httpx.Response]:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"base": "PLN", "rates": {"PLN": 1, **rates}})

    return _respond


def timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("rate source timed out", request=request)
