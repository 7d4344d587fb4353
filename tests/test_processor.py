from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any

import pytest

from pnl_categorizer.cache import TTLCache
from pnl_categorizer.config import PipelineConfig
from pnl_categorizer.errors import InputError
from pnl_categorizer.models import CategoryLists, Period
from pnl_categorizer.processor import build_processor, to_period
from pnl_categorizer.store import InMemoryRecordStore
from tests.helpers.factories import RateSourceSpy, quotes, timeout
from tests.helpers.openai_stub import AsyncOpenAIStub, pipeline_reply

HEADERS = ["Date", "Description", "Amount", "Currency"]
PERIOD = Period(2024, 3)


def _row(date: str, description: str, amount: str, currency: str = "PLN") -> dict[str, Any]:
    return {"Date": date, "Description": description, "Amount": amount, "Currency": currency}


def _fixed_today() -> dt.date:
    return dt.date(2024, 3, 31)


@pytest.mark.asyncio
async def test_reporting_currency_batch_without_rules(
    store: InMemoryRecordStore, categories: CategoryLists
) -> None:
    rows = [
        _row("2024-03-01", "Czynsz biuro", "-2 500,00"),
        _row("2024-03-03", "Faktura 03/2024 klient", "12 000,00"),
        _row("2024-03-05", "Restauracja Zielona", "-84,20"),
    ]
    spy = RateSourceSpy(quotes())
    async with spy.client() as client:
        processor = build_processor(PipelineConfig(), store, http_client=client)
        result = await processor.process_csv(rows, categories, PERIOD, headers=HEADERS)

    assert spy.requests == []
    assert result.summary.rate_source == "identity"
    assert result.summary.total_processed == 3
    assert result.summary.rule_matched == 0
    assert all(op.category for op in result.operations)
    assert all(op.exchange_rate == Decimal("1") for op in result.operations)
    assert result.summary.total_converted == Decimal("14584.20")
    assert result.summary.categorization_method == "heuristic_with_rules"


@pytest.mark.asyncio
async def test_foreign_office_purchase_with_rate_source_timeout(
    store: InMemoryRecordStore, categories: CategoryLists
) -> None:
    rows = [
        _row("2024-03-02", "Office supplies purchase", "-50.75", "USD"),
        _row("2024-03-04", "Consulting invoice", "1000.00", "EUR"),
    ]
    spy = RateSourceSpy(timeout)
    async with spy.client() as client:
        processor = build_processor(PipelineConfig(), store, http_client=client)
        result = await processor.process_csv(rows, categories, PERIOD, headers=HEADERS)

    office, invoice = result.operations
    assert office.converted_amount == Decimal("213.15")
    assert office.category == "Office Supplies"
    assert invoice.converted_amount == Decimal("4500.00")
    assert result.summary.rate_source == "fallback"
    assert result.summary.exchange_rates == {
        "EUR": Decimal("4.5"),
        "PLN": Decimal("1"),
        "USD": Decimal("4.2"),
    }
    assert result.summary.currencies == ("EUR", "USD")


@pytest.mark.asyncio
async def test_every_operation_categorized_exactly_once(
    store: InMemoryRecordStore, categories: CategoryLists
) -> None:
    processor = build_processor(PipelineConfig(), store)
    await processor.rule_engine.create_rule("client abc corp", "cat-2")
    await processor.create_rule_from_correction("ZUS składka", "cat-9", "Other")
    rows = [
        _row("2024-03-01", "Payment from client ABC Corp", "5000"),
        _row("2024-03-02", "", "10"),
        _row("2024-03-03", "ZUS składka", "-1600"),
        _row("2024-03-04", "Bank fee", "n/a"),
        _row("", "", "", ""),
        _row("2024-03-05", "Uber ride", "-35"),
    ]

    result = await processor.process_csv(rows, categories, PERIOD, headers=HEADERS)

    assert [op.row_index for op in result.operations] == [0, 2, 5]
    assert [(op.category, op.categorization_method) for op in result.operations] == [
        ("Client Payments", "rule"),
        ("Other", "rule"),
        ("Transportation", "heuristic"),
    ]
    s = result.summary
    assert (s.total_processed, s.rule_matched, s.fallback_processed) == (3, 2, 1)
    assert s.dropped.as_dict() == {"empty_description": 1, "invalid_amount": 1, "empty_row": 1}


@pytest.mark.asyncio
async def test_ai_backend_end_to_end(store: InMemoryRecordStore, categories: CategoryLists) -> None:
    headers = ["Data", "Tytuł", "Kwota", "Waluta", "Saldo"]
    rows = [
        {"Data": "01.03.2024", "Tytuł": "Czynsz", "Kwota": "-2500,00", "Waluta": "PLN", "Saldo": "1"},
        {"Data": "02.03.2024", "Tytuł": "Paliwo Orlen", "Kwota": "-250,00", "Waluta": "PLN", "Saldo": "2"},
    ]
    reply = pipeline_reply(
        mapping={
            "date": "Data",
            "description": "Tytuł",
            "amount": "Kwota",
            "currency": "Waluta",
            "type": None,
            "bank": "mBank",
            "confidence": 0.93,
        },
        assignments=[{"operation": 1, "category": "Rent"}],
    )
    stub = AsyncOpenAIStub(reply)
    processor = build_processor(PipelineConfig(classifier_backend="ai"), store, openai_client=stub)  # type: ignore[arg-type]

    result = await processor.process_csv(rows, categories, PERIOD, headers=headers)

    assert result.mapping.source == "oracle"
    assert result.summary.bank == "mBank"
    assert result.summary.mapping_confidence == pytest.approx(0.93)
    assert result.summary.categorization_method == "ai_with_rules"
    assert [(op.category, op.categorization_method) for op in result.operations] == [
        ("Rent", "ai"),
        ("Office Supplies", "heuristic"),
    ]
    assert result.operations[0].date == dt.date(2024, 3, 1)
    assert len(stub.calls) == 2


def test_ai_backend_without_key_degrades_to_heuristic(store: InMemoryRecordStore) -> None:
    processor = build_processor(PipelineConfig(classifier_backend="ai"), store)
    assert processor.categorizer.method == "heuristic"


@pytest.mark.asyncio
async def test_unparseable_dates_default_to_processing_day(
    store: InMemoryRecordStore, categories: CategoryLists
) -> None:
    processor = build_processor(PipelineConfig(), store)
    processor._today = _fixed_today
    result = await processor.process_csv(
        [_row("someday", "Rent", "-100")], categories, PERIOD, headers=HEADERS
    )
    assert result.operations[0].date == dt.date(2024, 3, 31)


@pytest.mark.asyncio
async def test_no_valid_rows_is_an_input_error(
    store: InMemoryRecordStore, categories: CategoryLists
) -> None:
    processor = build_processor(PipelineConfig(), store)
    with pytest.raises(InputError) as excinfo:
        await processor.process_csv(
            [_row("2024-03-01", "", "1"), _row("2024-03-01", "x", "")], categories, PERIOD, headers=HEADERS
        )
    err = excinfo.value
    assert err.reason == "no_valid_rows"
    assert err.to_dict()["dropped"] == {"empty_description": 1, "invalid_amount": 1, "empty_row": 0}

    with pytest.raises(InputError) as excinfo:
        await processor.process_csv([], categories, PERIOD)
    assert excinfo.value.reason == "empty_csv"


@pytest.mark.parametrize(("year", "month"), [("2024", "13"), ("abc", 1), (1800, 5), (None, 3)])
def test_to_period_rejects_bad_input(year: Any, month: Any) -> None:
    with pytest.raises(InputError) as excinfo:
        to_period(year, month)
    assert excinfo.value.reason == "invalid_period"


def test_to_period_accepts_strings() -> None:
    assert to_period("2024", "3") == Period(2024, 3)
    assert str(Period(2024, 3)) == "2024-03"


@pytest.mark.asyncio
async def test_processors_share_injected_caches(
    store: InMemoryRecordStore, categories: CategoryLists
) -> None:
    rate_cache = TTLCache(3600, name="rates")
    rule_cache = TTLCache(3600, name="rules")
    rows = [_row("2024-03-01", "Stripe payout", "100", "USD")]
    spy = RateSourceSpy(quotes(USD=0.25))
    sources = []
    async with spy.client() as client:
        for _ in range(2):
            processor = build_processor(
                PipelineConfig(),
                store,
                rate_cache=rate_cache,
                rule_cache=rule_cache,
                http_client=client,
            )
            result = await processor.process_csv(rows, categories, PERIOD, headers=HEADERS)
            sources.append(result.summary.rate_source)

    assert processor.rule_engine.cache is rule_cache
    assert sources == ["live", "cache"]
    assert len(spy.requests) == 1
