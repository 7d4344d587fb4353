"""Deterministic heuristics used when no oracle is available.

- ``infer_operation_type``: the single place where amount sign (or an explicit
  type cell) is turned into ``"income"``/``"expense"``.
- ``keyword_category``: keyword categorization against the caller's category
  lists, with a handful of built-in hints and a sign-based default.
- ``resolve_columns`` / ``detect_bank_type``: multilingual header synonym
  matching with bank signatures.

Everything here is pure and order-stable, so the same input always yields the
same output.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from decimal import Decimal

from .models import LOGICAL_FIELDS, CategoryLists, ColumnMapping, OperationType

# ---------------------------------------------------------------------------
# Operation type
# ---------------------------------------------------------------------------

_INCOME_TYPE_WORDS: tuple[str, ...] = (
    "income",
    "credit",
    "deposit",
    "przychód",
    "przychod",
    "wpływ",
    "wplyw",
    "uznanie",
    "eingang",
    "gutschrift",
    "ingreso",
    "abono",
    "доход",
    "зачисление",
)
_EXPENSE_TYPE_WORDS: tuple[str, ...] = (
    "expense",
    "debit",
    "withdrawal",
    "wydatek",
    "rozchód",
    "rozchod",
    "obciążenie",
    "obciazenie",
    "ausgabe",
    "lastschrift",
    "gasto",
    "cargo",
    "расход",
    "списание",
)


def infer_operation_type(amount: Decimal, raw_type: str | None = None) -> OperationType:
    """Guess income/expense for an operation.

    An explicit type cell wins when it contains a recognizable income or
    expense word; otherwise non-negative amounts are income and negative
    amounts are expenses.
    """

    if raw_type:
        text = raw_type.strip().lower()
        if any(w in text for w in _INCOME_TYPE_WORDS):
            return "income"
        if any(w in text for w in _EXPENSE_TYPE_WORDS):
            return "expense"
    return "income" if amount >= 0 else "expense"


# ---------------------------------------------------------------------------
# Keyword categorization
# ---------------------------------------------------------------------------

# (keywords, hint category name, word used to find a matching user category)
_EXPENSE_HINTS: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("food", "restaurant"), "Food & Dining", "food"),
    (("transport", "uber", "taxi"), "Transportation", "transport"),
    (("office", "supplies"), "Office Supplies", "office"),
    (("marketing", "ads", "advertising"), "Marketing & Advertising", "marketing"),
)
_INCOME_HINT_WORDS: tuple[str, ...] = ("income", "revenue")

_STOP_WORDS = frozenset({"other", "misc", "miscellaneous", "general", "and", "the", "for"})
_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)

DEFAULT_CATEGORY = "Other"


def _significant_words(name: str) -> list[str]:
    return [
        w for w in _WORD_RE.findall(name.lower()) if len(w) >= 4 and w not in _STOP_WORDS
    ]


def _match_category_names(desc: str, names: Sequence[str]) -> str | None:
    tokens = _WORD_RE.findall(desc)
    for name in names:
        words = _significant_words(name)
        if any(t.startswith(w) for w in words for t in tokens):
            return name
    return None


def _resolve_hint(hint: str, key_word: str, names: Sequence[str]) -> str:
    for name in names:
        if key_word in name.lower():
            return name
    return hint


def keyword_category(
    description: str,
    amount: Decimal,
    categories: CategoryLists,
    *,
    operation_type: OperationType | None = None,
) -> str:
    """Pick a category name for ``description`` without any external call.

    Order of checks:

    1. A category of the operation's own type whose significant words
       appear in the description.
    2. For expenses, built-in keyword hints (food, transport, office,
       marketing) resolved against the expense list.
    3. The words "income" or "revenue" pick the first income category.
    4. The first income category for income operations, else the first
       expense category, else ``"Other"``.

    An expense only lands in an income category through step 3.
    """

    desc = description.lower()
    op_type = operation_type or infer_operation_type(amount)

    same_type = categories.income if op_type == "income" else categories.expense
    hit = _match_category_names(desc, same_type)
    if hit is not None:
        return hit

    if op_type == "expense":
        for keywords, hint, key_word in _EXPENSE_HINTS:
            if any(k in desc for k in keywords):
                return _resolve_hint(hint, key_word, categories.expense)
    if categories.income and any(k in desc for k in _INCOME_HINT_WORDS):
        return categories.income[0]

    if op_type == "income":
        return categories.income[0] if categories.income else DEFAULT_CATEGORY
    return categories.expense[0] if categories.expense else DEFAULT_CATEGORY


# ---------------------------------------------------------------------------
# Column synonyms and bank signatures
# ---------------------------------------------------------------------------

COLUMN_SYNONYMS: dict[str, tuple[str, ...]] = {
    "date": (
        "date",
        "data",
        "datum",
        "fecha",
        "дата",
        "transaction date",
        "operation date",
        "booking date",
        "posting date",
        "data operacji",
        "data transakcji",
        "data księgowania",
        "buchungstag",
        "buchungsdatum",
        "fecha operación",
        "fecha operacion",
        "дата операции",
        "date completed (utc)",
        "date started (utc)",
    ),
    "description": (
        "description",
        "opis",
        "desc",
        "details",
        "memo",
        "narrative",
        "title",
        "tytuł",
        "tytul",
        "opis operacji",
        "szczegóły",
        "szczegoly",
        "beschreibung",
        "verwendungszweck",
        "buchungstext",
        "descripción",
        "descripcion",
        "concepto",
        "описание",
        "назначение платежа",
        "transaction description",
    ),
    "amount": (
        "amount",
        "kwota",
        "suma",
        "value",
        "wartość",
        "wartosc",
        "kwota transakcji",
        "betrag",
        "importe",
        "monto",
        "cantidad",
        "сумма",
        "transaction amount",
        "orig amount",
    ),
    "currency": (
        "currency",
        "waluta",
        "curr",
        "currency code",
        "kod waluty",
        "währung",
        "wahrung",
        "moneda",
        "divisa",
        "валюта",
        "orig currency",
    ),
    "type": (
        "type",
        "typ",
        "transaction type",
        "operation type",
        "typ operacji",
        "typ transakcji",
        "buchungsart",
        "tipo",
        "тип",
        "тип операции",
    ),
}

# Below this length a synonym is only used for exact header matches.
_MIN_SUBSTRING_SYNONYM = 4

_REVOLUT_AMOUNT = "orig amount"
_REVOLUT_CURRENCY = "orig currency"
_REVOLUT_DATES = ("date completed (utc)", "date started (utc)")


def normalize_header(header: str) -> str:
    text = header.strip().lower().replace("_", " ").replace("-", " ")
    return " ".join(text.split())


def _find_header(
    headers: Sequence[str], normalized: Sequence[str], target: str, used: set[str]
) -> str | None:
    for header, norm in zip(headers, normalized, strict=True):
        if norm == target and header not in used:
            return header
    return None


def resolve_columns(headers: Sequence[str]) -> ColumnMapping:
    """Map logical fields to headers by synonym, exact matches before substrings.

    A header is assigned to at most one field. When the headers carry the
    Revolut signature (``Orig amount`` + ``Orig currency``), the original-value
    columns are used for amount and currency instead of the converted ones,
    and the completion date is preferred.
    """

    headers = list(headers)
    normalized = [normalize_header(h) for h in headers]
    found: dict[str, str | None] = {f: None for f in LOGICAL_FIELDS}
    used: set[str] = set()

    norm_set = set(normalized)
    if _REVOLUT_AMOUNT in norm_set and _REVOLUT_CURRENCY in norm_set:
        found["amount"] = _find_header(headers, normalized, _REVOLUT_AMOUNT, used)
        found["currency"] = _find_header(headers, normalized, _REVOLUT_CURRENCY, used)
        used.update(h for h in (found["amount"], found["currency"]) if h)
        for target in _REVOLUT_DATES:
            hit = _find_header(headers, normalized, target, used)
            if hit is not None:
                found["date"] = hit
                used.add(hit)
                break

    # Pass 1: exact synonym matches
    for field in LOGICAL_FIELDS:
        if found[field] is not None:
            continue
        for synonym in COLUMN_SYNONYMS[field]:
            hit = _find_header(headers, normalized, synonym, used)
            if hit is not None:
                found[field] = hit
                used.add(hit)
                break

    # Pass 2: substring matches for whatever is still unmapped
    for field in LOGICAL_FIELDS:
        if found[field] is not None:
            continue
        for synonym in COLUMN_SYNONYMS[field]:
            if len(synonym) < _MIN_SUBSTRING_SYNONYM:
                continue
            hit = next(
                (
                    h
                    for h, norm in zip(headers, normalized, strict=True)
                    if synonym in norm and h not in used
                ),
                None,
            )
            if hit is not None:
                found[field] = hit
                used.add(hit)
                break

    return ColumnMapping(**found)


def has_revolut_signature(headers: Sequence[str]) -> bool:
    norm = {normalize_header(h) for h in headers}
    return _REVOLUT_AMOUNT in norm and _REVOLUT_CURRENCY in norm


def detect_bank_type(headers: Sequence[str]) -> str:
    """Label the export's origin from characteristic header names."""

    joined = " ".join(normalize_header(h) for h in headers)
    if _REVOLUT_AMOUNT in joined or _REVOLUT_CURRENCY in joined or "revolut" in joined:
        return "Revolut"
    if "iban" in joined or "bic" in joined:
        return "European Bank"
    if "routing" in joined or "account number" in joined:
        return "US Bank"
    if "sort code" in joined:
        return "UK Bank"
    return "Unknown"


__all__ = [
    "COLUMN_SYNONYMS",
    "DEFAULT_CATEGORY",
    "detect_bank_type",
    "has_revolut_signature",
    "infer_operation_type",
    "keyword_category",
    "normalize_header",
    "resolve_columns",
]
