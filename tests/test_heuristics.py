from __future__ import annotations

from decimal import Decimal

import pytest

from pnl_categorizer.heuristics import (
    detect_bank_type,
    infer_operation_type,
    keyword_category,
    resolve_columns,
)
from pnl_categorizer.models import CategoryLists, ColumnMapping


# ---- Operation type ----------------------------------------------------------


@pytest.mark.parametrize(
    ("amount", "raw_type", "expected"),
    [
        ("-1", None, "expense"),
        ("0", None, "income"),
        ("250.00", None, "income"),
        ("-30", "Uznanie rachunku", "income"),
        ("30", "DEBIT CARD", "expense"),
        ("-30", "card payment", "expense"),
    ],
)
def test_infer_operation_type(amount: str, raw_type: str | None, expected: str) -> None:
    assert infer_operation_type(Decimal(amount), raw_type) == expected


# ---- Keyword categories ------------------------------------------------------


def test_office_supplies_by_category_name(categories: CategoryLists) -> None:
    assert keyword_category("Office supplies purchase", Decimal("-50.75"), categories) == "Office Supplies"


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        ("Uber ride to airport", "Transportation"),
        ("Restaurant Zielona", "Food & Dining"),
        ("Facebook ads campaign", "Marketing"),
    ],
)
def test_keyword_hints_resolve_to_existing_categories(
    categories: CategoryLists, description: str, expected: str
) -> None:
    assert keyword_category(description, Decimal("-20"), categories) == expected


def test_expense_mentioning_an_income_category_stays_an_expense(
    categories: CategoryLists,
) -> None:
    assert (
        keyword_category("Uber ride to client meeting", Decimal("-30"), categories)
        == "Transportation"
    )
    assert keyword_category("Client gift", Decimal("-30"), categories) == "Office Supplies"


def test_income_ignores_expense_hints(categories: CategoryLists) -> None:
    assert keyword_category("Uber refund", Decimal("30"), categories) == "Sales Revenue"


def test_hint_category_is_used_when_user_has_no_match() -> None:
    cats = CategoryLists.of(income=["Sales"], expense=["Rent"])
    assert keyword_category("TAXI 24/7", Decimal("-35"), cats) == "Transportation"


def test_defaults_by_operation_type(categories: CategoryLists) -> None:
    assert keyword_category("Invoice 12 payment", Decimal("1000"), categories) == "Sales Revenue"
    assert keyword_category("XYZ 123", Decimal("-5"), categories) == "Office Supplies"


def test_income_hint_words_pick_first_income_category() -> None:
    cats = CategoryLists.of(income=["Consulting", "Grants"], expense=["Rent"])
    assert keyword_category("Q3 revenue share", Decimal("-1"), cats) == "Consulting"


def test_no_categories_falls_back_to_other() -> None:
    assert keyword_category("random thing", Decimal("-5"), CategoryLists()) == "Other"
    assert keyword_category("random thing", Decimal("5"), CategoryLists()) == "Other"


# ---- Column synonyms ---------------------------------------------------------


def test_polish_headers_map_exactly() -> None:
    mapping = resolve_columns(["Data operacji", "Opis operacji", "Kwota", "Waluta"])
    assert mapping == ColumnMapping(
        date="Data operacji", description="Opis operacji", amount="Kwota", currency="Waluta"
    )


def test_german_headers_map_exactly() -> None:
    mapping = resolve_columns(["Buchungstag", "Verwendungszweck", "Betrag", "Währung"])
    assert mapping.as_dict() == {
        "date": "Buchungstag",
        "description": "Verwendungszweck",
        "amount": "Betrag",
        "currency": "Währung",
        "type": None,
    }


def test_revolut_export_prefers_original_amount_and_currency() -> None:
    headers = [
        "Date started (UTC)",
        "Date completed (UTC)",
        "Description",
        "Amount",
        "Payment currency",
        "Orig amount",
        "Orig currency",
    ]
    mapping = resolve_columns(headers)
    assert mapping.amount == "Orig amount"
    assert mapping.currency == "Orig currency"
    assert mapping.date == "Date completed (UTC)"
    assert mapping.description == "Description"
    assert detect_bank_type(headers) == "Revolut"


def test_substring_pass_and_unmapped_fields() -> None:
    mapping = resolve_columns(["Transaction Date (local)", "Payee description", "Amount (EUR)"])
    assert mapping.date == "Transaction Date (local)"
    assert mapping.description == "Payee description"
    assert mapping.amount == "Amount (EUR)"
    assert mapping.currency is None
    assert mapping.type is None


def test_fallback_mapping_is_deterministic() -> None:
    headers = ["Datum", "Beschreibung", "Betrag", "Typ", "IBAN"]
    assert resolve_columns(headers) == resolve_columns(list(headers))


@pytest.mark.parametrize(
    ("headers", "bank"),
    [
        (["Date", "Description", "Amount", "IBAN"], "European Bank"),
        (["Date", "Description", "Amount", "Routing Number"], "US Bank"),
        (["Date", "Description", "Amount", "Sort Code"], "UK Bank"),
        (["Date", "Description", "Amount"], "Unknown"),
    ],
)
def test_detect_bank_type(headers: list[str], bank: str) -> None:
    assert detect_bank_type(headers) == bank
