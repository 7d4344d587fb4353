"""Turn raw CSV rows into :class:`~pnl_categorizer.models.Transaction` records.

A row becomes a transaction only when it has a non-empty description and an
amount that parses as a number. Other defects are patched locally: a missing
or unparseable date becomes ``today`` and a missing currency becomes the
reporting currency.
"""

from __future__ import annotations

import datetime as _dt
import re
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, TypeAlias

from ..heuristics import infer_operation_type
from ..logging_setup import get_logger
from ..models import ColumnMapping, Transaction

_logger = get_logger("pnl_categorizer.ingest.rows")

DropReason: TypeAlias = Literal["empty_row", "empty_description", "invalid_amount"]

_CURRENCY_MARKS_RE = re.compile(r"[$€£¥₽₴]|zł|zl\b|kr\b|chf|pln|usd|eur|gbp", re.IGNORECASE)
_THOUSANDS_MARKS = ("\u0020", "\u00a0", "\u202f", "'")
_CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")

_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%d.%m.%Y",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%d.%m.%y",
    "%d/%m/%y",
    "%m/%d/%y",
    "%Y%m%d",
)


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", str(value)).strip()
    return cleaned or None


def parse_amount(raw: Any) -> Decimal:
    """Parse a bank-formatted amount.

    Handles leading/trailing signs, accounting parentheses, currency symbols
    or codes, space/nbsp/apostrophe thousands separators, and both comma and
    dot decimal separators. Raises ``ValueError`` when nothing numeric
    remains.
    """

    if raw is None:
        raise ValueError("amount is required")
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, int | float) and not isinstance(raw, bool):
        return Decimal(str(raw))

    s = _CURRENCY_MARKS_RE.sub("", str(raw)).strip()
    for mark in _THOUSANDS_MARKS:
        s = s.replace(mark, "")
    if not s:
        raise ValueError("amount is empty")

    negative = False
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:]
            changed = True
        elif s.startswith("-") or s.startswith("−"):
            negative = True
            s = s[1:]
            changed = True
        if s.endswith("-") and len(s) > 1:
            negative = True
            s = s[:-1]
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1]
            changed = True
        if not changed:
            break

    s = _normalize_separators(s)
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def _normalize_separators(s: str) -> str:
    has_comma = "," in s
    has_dot = "." in s
    if has_comma and has_dot:
        # Whichever separator comes last is the decimal mark.
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if has_comma:
        return s.replace(",", "") if s.count(",") > 1 else s.replace(",", ".")
    if has_dot and s.count(".") > 1:
        return s.replace(".", "")
    return s


def parse_date(raw: Any, *, today: _dt.date) -> _dt.date:
    """Parse a date cell, returning ``today`` when it is missing or implausible."""

    if isinstance(raw, _dt.datetime):
        return raw.date()
    if isinstance(raw, _dt.date):
        return raw
    text = clean_text(raw)
    if text is None:
        return today

    parsed: _dt.date | None = None
    try:
        parsed = _dt.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        head = text.split(" ")[0].split("T")[0]
        for fmt in _DATE_FORMATS:
            try:
                parsed = _dt.datetime.strptime(head, fmt).date()
                break
            except ValueError:
                continue

    if parsed is None or parsed.year <= 1900:
        _logger.debug("rows:invalid_date value=%r using=%s", text, today.isoformat())
        return today
    return parsed


def normalize_currency(raw: Any, default: str) -> str:
    text = clean_text(raw)
    code = (text or default).upper()
    if text is not None and code != text:
        _logger.debug("rows:currency_normalized original=%r code=%s", text, code)
    if not _CURRENCY_CODE_RE.match(code):
        _logger.debug("rows:currency_unrecognized value=%r using=%s", code, default)
        return default
    return code


def _cell(row: Mapping[str, Any], column: str | None) -> Any:
    if column is None:
        return None
    value = row.get(column)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return value


def row_to_transaction(
    row: Mapping[str, Any],
    row_index: int,
    mapping: ColumnMapping,
    *,
    reporting_currency: str,
    today: _dt.date,
) -> Transaction | DropReason:
    """Build a transaction from ``row`` or return the reason it was dropped."""

    if not any(v is not None and str(v).strip() for v in row.values()):
        return "empty_row"

    description = clean_text(_cell(row, mapping.description))
    if description is None:
        return "empty_description"

    try:
        amount = parse_amount(_cell(row, mapping.amount))
    except ValueError:
        return "invalid_amount"

    raw_type = clean_text(_cell(row, mapping.type))
    return Transaction(
        row_index=row_index,
        date=parse_date(_cell(row, mapping.date), today=today),
        description=description,
        amount=amount,
        currency=normalize_currency(_cell(row, mapping.currency), reporting_currency),
        operation_type=infer_operation_type(amount, raw_type),
        raw=dict(row),
    )


__all__ = [
    "DropReason",
    "clean_text",
    "normalize_currency",
    "parse_amount",
    "parse_date",
    "row_to_transaction",
]
