"""Prompt construction and reply extraction for the AI-backed oracles.

This module builds:
- System instructions and user content for column-mapping inference
  (headers plus a few sample rows).
- System instructions and user content for categorizing pending operations
  against the income/expense category lists.
- ``extract_json_block``: locate the JSON array/object embedded in a free-text
  model reply.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Literal

from .models import CategoryLists, Transaction

MAPPING_SAMPLE_ROWS = 3


def extract_json_block(text: str, kind: Literal["array", "object"]) -> Any:
    """Parse the JSON embedded in ``text``.

    The substring from the first opening bracket to the last closing bracket
    of the requested ``kind`` is decoded. Raises ``ValueError`` when no such
    block exists, it does not decode, or it decodes to the wrong type.
    """

    open_ch, close_ch, expected = (
        ("[", "]", list) if kind == "array" else ("{", "}", dict)
    )
    start = text.find(open_ch)
    end = text.rfind(close_ch)
    if start == -1 or end == -1 or end < start:
        raise ValueError(f"No JSON {kind} found in reply")
    try:
        value = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON {kind} in reply: {exc.msg}") from exc
    if not isinstance(value, expected):
        raise ValueError(f"Reply JSON is not an {kind}")
    return value


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


def build_mapping_instructions() -> str:
    return (
        "You analyze the structure of bank-export CSV files and identify which columns "
        "hold the fields of a financial operation. Reply with JSON only."
    )


def build_mapping_content(
    headers: Sequence[str], sample_rows: Sequence[Mapping[str, Any]]
) -> str:
    """Describe headers and the first few rows and request a field-to-column map.

    Sample rows are rendered as ``header: value`` pairs joined by ``|`` so the
    model sees which value belongs to which column.
    """

    rows = [
        " | ".join(f"{h}: {'' if row.get(h) is None else row.get(h)}" for h in headers)
        for row in list(sample_rows)[:MAPPING_SAMPLE_ROWS]
    ]
    lines = [
        "Analyze this bank CSV export and map its columns.",
        "",
        f"HEADERS: {', '.join(headers)}",
        "",
        "SAMPLE ROWS:",
        *rows,
        "",
        "Identify the columns holding:",
        "1. the operation DATE (any format)",
        "2. the operation DESCRIPTION (title, counterparty, details)",
        "3. the ORIGINAL AMOUNT in the original currency, not a converted amount",
        "4. the ORIGINAL CURRENCY, if there is a separate column",
        "5. the operation TYPE (income/expense), if present",
        "",
        'IMPORTANT: when "Orig amount" and "Orig currency" columns exist, use them for '
        "amount and currency. Columns such as \"Amount\" with \"Payment currency\" hold "
        "converted values and must not be used.",
        "",
        "Return JSON in this shape, using exact header names or null:",
        json.dumps(
            {
                "date": "<date column>",
                "description": "<description column>",
                "amount": "<amount column>",
                "currency": "<currency column or null>",
                "type": "<type column or null>",
                "bank": "<bank name if recognizable>",
                "confidence": 0.95,
            },
            indent=2,
        ),
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


def build_categorization_instructions() -> str:
    return (
        "You are a finance expert for a small company. Assign each operation exactly one "
        "category from the provided income and expense lists. Never invent categories. "
        "Reply with a JSON array only."
    )


def build_categorization_content(
    operations: Sequence[Transaction], categories: CategoryLists, reporting_currency: str
) -> str:
    """List operations numbered from 1 alongside the allowed categories."""

    op_lines = []
    for n, op in enumerate(operations, start=1):
        value = op.converted_amount if op.converted_amount is not None else abs(op.amount)
        op_lines.append(
            f"{n}. {op.description} - {value} {reporting_currency} ({op.operation_type})"
        )

    lines = [
        "Categorize the following operations.",
        "",
        "OPERATIONS:",
        *op_lines,
        "",
        "INCOME CATEGORIES:",
        *(f"- {c}" for c in categories.income),
        "",
        "EXPENSE CATEGORIES:",
        *(f"- {c}" for c in categories.expense),
        "",
        "Return ONLY a JSON array such as:",
        '[{"operation": 1, "category": "Sales Revenue"}, {"operation": 2, "category": "Rent"}]',
        'where "operation" is the operation number above and "category" is the exact name '
        "of a category from the lists.",
    ]
    return "\n".join(lines)


__all__ = [
    "MAPPING_SAMPLE_ROWS",
    "build_categorization_content",
    "build_categorization_instructions",
    "build_mapping_content",
    "build_mapping_instructions",
    "extract_json_block",
]
