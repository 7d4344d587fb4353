"""Convert operation amounts to the reporting currency."""

from __future__ import annotations

import dataclasses
import datetime as _dt
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from .errors import CurrencyNormalizationError
from .logging_setup import get_logger
from .models import NormalizationResult, Transaction
from .rates import ExchangeRateProvider

_logger = get_logger("pnl_categorizer.currency")

_CENT = Decimal("0.01")


def convert_amount(amount: Decimal, rate: Decimal) -> Decimal:
    """Return ``abs(amount) * rate`` rounded half-up to cents."""

    return (abs(amount) * rate).quantize(_CENT, rounding=ROUND_HALF_UP)


class CurrencyNormalizer:
    """Fetch one rate set per batch and convert every operation with it."""

    def __init__(self, provider: ExchangeRateProvider) -> None:
        self._provider = provider

    @property
    def reporting_currency(self) -> str:
        return self._provider.reporting_currency

    async def normalize(
        self, operations: Sequence[Transaction], *, as_of: _dt.date | None = None
    ) -> NormalizationResult:
        currencies = tuple(sorted({op.currency for op in operations if op.currency}))
        if not currencies:
            raise CurrencyNormalizationError(
                "No currencies found in operations; nothing to normalize"
            )

        rate_set = await self._provider.get_rates(currencies, as_of=as_of)
        reporting = self.reporting_currency

        out: list[Transaction] = []
        for op in operations:
            rate = Decimal("1") if op.currency == reporting else rate_set.rate_for(op.currency)
            out.append(
                dataclasses.replace(
                    op,
                    converted_amount=convert_amount(op.amount, rate),
                    exchange_rate=rate,
                    is_converted=op.currency != reporting,
                )
            )

        _logger.info(
            "currency:normalized count=%d currencies=%s source=%s",
            len(out),
            ",".join(currencies),
            rate_set.source,
        )
        return NormalizationResult(operations=out, currencies=currencies, rates=rate_set)


__all__ = ["CurrencyNormalizer", "convert_amount"]
