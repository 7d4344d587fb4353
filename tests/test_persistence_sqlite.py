from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Iterator
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import select

from db.models.finance import PnlOperation
from pnl_categorizer.api import save_results
from pnl_categorizer.errors import (
    DuplicateRuleError,
    NotFoundError,
    PeriodConflictError,
    StoreError,
)
from pnl_categorizer.models import DEVELOPMENT_CATEGORIES, CategoryLists, Period
from pnl_categorizer.persistence import SqlRecordStore
from pnl_categorizer.rule_engine import RuleEngine
from tests.helpers.db import bootstrap_sqlite_db, seed_categories
from tests.helpers.factories import make_op

PERIOD = Period(2024, 3)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "pnl.db")


@pytest.fixture
def category_ids(db_url: str) -> dict[str, str]:
    return seed_categories(db_url, DEVELOPMENT_CATEGORIES)


@pytest.fixture
def sql_store(db_url: str, category_ids: dict[str, str]) -> Iterator[SqlRecordStore]:
    store = SqlRecordStore.from_url(db_url, create_schema=False)
    try:
        yield store
    finally:
        store.database.dispose()


# ---- Rules -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_rule_fills_category_name(
    sql_store: SqlRecordStore, category_ids: dict[str, str]
) -> None:
    rule = await sql_store.create_rule("  client abc corp ", category_ids["Client Payments"])

    assert rule.pattern == "client abc corp"
    assert rule.category_name == "Client Payments"
    assert (rule.usage_count, rule.priority, rule.is_active) == (0, 5, True)

    with pytest.raises(DuplicateRuleError):
        await sql_store.create_rule("client abc corp", category_ids["Client Payments"])
    with pytest.raises(NotFoundError):
        await sql_store.create_rule("something", "no-such-category")
    with pytest.raises(ValueError):
        await sql_store.create_rule("  ", category_ids["Rent"])


@pytest.mark.asyncio
async def test_usage_increments_are_not_lost(
    sql_store: SqlRecordStore, category_ids: dict[str, str]
) -> None:
    rule = await sql_store.create_rule("orlen", category_ids["Transportation"])

    assert await sql_store.increment_usage(rule.id) == 1
    assert await sql_store.increment_usage(rule.id) == 2
    await asyncio.gather(*(sql_store.increment_usage(rule.id) for _ in range(5)))

    (stored,) = await sql_store.get_all_rules()
    assert stored.usage_count == 7
    with pytest.raises(NotFoundError):
        await sql_store.increment_usage("rule-404")


@pytest.mark.asyncio
async def test_rules_are_ordered_by_usage(
    sql_store: SqlRecordStore, category_ids: dict[str, str]
) -> None:
    low = await sql_store.create_rule("zabka", category_ids["Food & Dining"])
    high = await sql_store.create_rule("google ads", category_ids["Marketing"])
    await sql_store.increment_usage(high.id)

    rules = await sql_store.get_all_rules()

    assert [r.id for r in rules] == [high.id, low.id]


@pytest.mark.asyncio
async def test_update_and_delete_rule(
    sql_store: SqlRecordStore, category_ids: dict[str, str]
) -> None:
    rule = await sql_store.create_rule("spotify", category_ids["Marketing"])

    updated = await sql_store.update_rule(
        rule.id, {"category_id": category_ids["Other"], "is_active": False, "usage_count": 50}
    )
    assert updated.category_id == category_ids["Other"]
    assert updated.category_name == "Other"
    assert updated.is_active is False
    assert updated.usage_count == 0

    await sql_store.delete_rule(rule.id)
    assert await sql_store.get_all_rules() == []
    with pytest.raises(NotFoundError):
        await sql_store.delete_rule(rule.id)
    with pytest.raises(NotFoundError):
        await sql_store.update_rule(rule.id, {"pattern": "x"})


@pytest.mark.asyncio
async def test_rule_engine_over_sql_store(
    sql_store: SqlRecordStore, category_ids: dict[str, str]
) -> None:
    engine = RuleEngine(sql_store)
    await engine.create_rule_from_correction("ZUS składka", category_ids["Other"], "Other")

    out = await engine.apply_rules([make_op(0, "ZUS składka"), make_op(1, "Bolt ride")])

    assert [op.category for op in out] == ["Other", None]
    assert out[0].category_id == category_ids["Other"]
    (rule,) = await sql_store.get_all_rules()
    assert rule.usage_count == 1


# ---- Categories --------------------------------------------------------------


@pytest.mark.asyncio
async def test_categories_keep_seed_order(sql_store: SqlRecordStore) -> None:
    lists = await sql_store.get_categories_for_prompt()
    assert lists == DEVELOPMENT_CATEGORIES

    created = await sql_store.create_category("Subscriptions", "expense")
    again = await sql_store.create_category("Subscriptions", "expense")
    assert created == again

    names = [c.name for c in await sql_store.list_categories()]
    assert names[-1] == "Subscriptions"
    assert len(names) == 10


@pytest.mark.asyncio
async def test_empty_database_has_no_categories(tmp_path: Path) -> None:
    store = SqlRecordStore.from_url(bootstrap_sqlite_db(tmp_path / "empty.db"))
    try:
        assert await store.get_categories_for_prompt() == CategoryLists()
        first = await store.create_category("Rent", "expense")
        assert (first.name, first.type) == ("Rent", "expense")
    finally:
        store.database.dispose()


# ---- Operations --------------------------------------------------------------


@pytest.mark.asyncio
async def test_insert_and_replace_period(
    sql_store: SqlRecordStore, category_ids: dict[str, str]
) -> None:
    ops = [
        dataclasses.replace(
            make_op(0, "Invoice 1", "1200.505", converted_amount=Decimal("1200.51")),
            category="Sales Revenue",
            category_id=category_ids["Sales Revenue"],
            categorization_method="heuristic",
            raw={"Opis": "Invoice 1", None: ["overflow"]},
        ),
        dataclasses.replace(
            make_op(1, "Rent", "-2500", converted_amount=Decimal("2500")),
            category="Rent",
            category_id=category_ids["Rent"],
            categorization_method="rule",
            rule_matched=True,
        ),
    ]

    assert await sql_store.exists_for_period(PERIOD) is False
    assert await sql_store.insert_batch(PERIOD, ops) == 2
    assert await sql_store.exists_for_period(PERIOD) is True
    assert await sql_store.count_for_period(PERIOD) == 2
    assert await sql_store.count_for_period(Period(2024, 4)) == 0

    with sql_store.database.session_scope() as s:
        rows = s.scalars(select(PnlOperation).order_by(PnlOperation.row_index)).all()
        assert rows[0].amount == Decimal("1200.51")
        assert rows[0].raw_record == {"Opis": "Invoice 1", "None": ["overflow"]}
        assert rows[1].rule_matched is True
        assert rows[1].category_name == "Rent"

    assert await sql_store.delete_for_period(PERIOD) == 2
    assert await sql_store.exists_for_period(PERIOD) is False


@pytest.mark.asyncio
async def test_save_results_end_to_end(sql_store: SqlRecordStore) -> None:
    ops = [
        dataclasses.replace(make_op(0, "Netflix", "-45"), category="Subscriptions"),
        dataclasses.replace(make_op(1, "Lunch", "-30"), category="Food & Dining"),
    ]

    saved = await save_results(sql_store, ops, PERIOD)
    assert saved.created_categories == ("Subscriptions",)
    assert saved.stored_count == 2

    with pytest.raises(PeriodConflictError):
        await save_results(sql_store, ops[:1], PERIOD)

    replaced = await save_results(sql_store, ops[:1], PERIOD, overwrite=True)
    assert (replaced.stored_count, replaced.deleted_count) == (1, 2)
    assert replaced.created_categories == ()
    assert await sql_store.count_for_period(PERIOD) == 1


@pytest.mark.asyncio
async def test_replace_period_rolls_back_as_a_unit(sql_store: SqlRecordStore) -> None:
    await sql_store.insert_batch(PERIOD, [make_op(0, "Old 1"), make_op(1, "Old 2")])

    broken = [make_op(0, "New"), dataclasses.replace(make_op(1, "x"), description=None)]
    with pytest.raises(StoreError):
        await sql_store.replace_period(PERIOD, broken)
    assert await sql_store.count_for_period(PERIOD) == 2

    assert await sql_store.replace_period(PERIOD, [make_op(0, "New")]) == (2, 1)
    assert await sql_store.count_for_period(PERIOD) == 1
