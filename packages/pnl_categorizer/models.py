"""Data models for ``pnl_categorizer``.

Pipeline records are frozen, slotted dataclasses. Each stage produces updated
copies via :func:`dataclasses.replace` rather than mutating shared state, so a
batch can be inspected at any step without aliasing surprises.

Replies from classification oracles are parsed into pydantic models (see the
``*Reply`` classes at the bottom) and validated against the caller's
allow-lists before they are trusted.
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

OperationType: TypeAlias = Literal["income", "expense"]
CategorizationMethod: TypeAlias = Literal["rule", "heuristic", "ai"]
RateSource: TypeAlias = Literal["live", "cache", "fallback", "identity"]
MappingSource: TypeAlias = Literal["oracle", "fallback"]
RawRow: TypeAlias = Mapping[str, Any]
"""One CSV row keyed by header name, values as read from the file."""

LOGICAL_FIELDS: tuple[str, ...] = ("date", "description", "amount", "currency", "type")


# ---------------------------------------------------------------------------
# Period
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, order=True)
class Period:
    """A calendar month that a batch of operations belongs to."""

    year: int
    month: int

    def __post_init__(self) -> None:
        for name in ("year", "month"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, int):
                raise ValueError(f"Period.{name} must be an integer")
        if not 1 <= self.month <= 12:
            raise ValueError("Period.month must be within 1..12")
        if self.year < 1900:
            raise ValueError("Period.year must be >= 1900")

    def __str__(self) -> str:
        return f"{self.year}-{self.month:02d}"


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single operation flowing through the pipeline.

    Attributes
    ----------
    row_index:
        Zero-based position of the source row in the CSV batch.
    date:
        Operation date. Defaults to the processing date when the cell is
        missing or unparseable.
    description:
        Non-empty free text; the primary key for rule matching.
    amount:
        Signed amount in the original ``currency``.
    currency:
        Upper-case 3-letter code.
    operation_type:
        ``"income"`` or ``"expense"``; a secondary signal only. The category
        assignment is authoritative.
    converted_amount, exchange_rate, is_converted:
        Filled by the currency normalizer. ``converted_amount`` is the
        non-negative amount in the reporting currency.
    category, category_id, categorization_method:
        Filled exactly once, by the rule engine or by a fallback categorizer.
    rule_matched, rule_pattern:
        Set by the rule engine. ``rule_matched`` implies ``category`` and
        ``category_id`` are present.
    raw:
        The original CSV row, kept for debugging and persistence.
    """

    row_index: int
    date: _dt.date
    description: str
    amount: Decimal
    currency: str
    operation_type: OperationType
    converted_amount: Decimal | None = None
    exchange_rate: Decimal | None = None
    is_converted: bool = False
    category: str | None = None
    category_id: str | None = None
    categorization_method: CategorizationMethod | None = None
    rule_matched: bool = False
    rule_pattern: str | None = None
    raw: RawRow = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.description.strip():
            raise ValueError("Transaction.description must be non-empty")
        if self.rule_matched and (self.category is None or self.category_id is None):
            raise ValueError("rule-matched transactions require category and category_id")
        if self.converted_amount is not None and self.converted_amount < 0:
            raise ValueError("Transaction.converted_amount must be non-negative")

    @property
    def is_categorized(self) -> bool:
        return self.category is not None


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    """Which CSV header holds each logical field; ``None`` means unmapped."""

    date: str | None = None
    description: str | None = None
    amount: str | None = None
    currency: str | None = None
    type: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in LOGICAL_FIELDS}

    @property
    def is_usable(self) -> bool:
        """Both ``description`` and ``amount`` are needed to build a row."""

        return self.description is not None and self.amount is not None

    def restricted_to(self, headers: list[str] | tuple[str, ...]) -> ColumnMapping:
        """Return a copy where columns absent from ``headers`` become ``None``."""

        allowed = set(headers)
        return ColumnMapping(
            **{
                name: (col if col in allowed else None)
                for name, col in self.as_dict().items()
            }
        )


@dataclass(frozen=True, slots=True)
class MappingResult:
    mapping: ColumnMapping
    bank: str
    confidence: float
    source: MappingSource
    success: bool


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class MatchKind(StrEnum):
    """How a rule pattern matched a description, strongest first."""

    EXACT = "exact"
    SUBSTRING = "substring"
    REGEX = "regex"
    MULTI_WORD = "multi_word"

    @property
    def rank(self) -> int:
        return _MATCH_RANK[self]


_MATCH_RANK: dict[MatchKind, int] = {
    MatchKind.EXACT: 0,
    MatchKind.SUBSTRING: 1,
    MatchKind.REGEX: 2,
    MatchKind.MULTI_WORD: 3,
}


@dataclass(frozen=True, slots=True)
class Rule:
    id: str
    pattern: str
    category_id: str
    category_name: str | None = None
    description: str | None = None
    priority: int = 0
    usage_count: int = 0
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class RuleStats:
    total_rules: int
    total_usage: int
    average_usage: float
    top_rules: tuple[Rule, ...]


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    name: str
    type: OperationType


@dataclass(frozen=True, slots=True)
class CategoryLists:
    """Category names grouped by type, as offered to classifiers."""

    income: tuple[str, ...] = ()
    expense: tuple[str, ...] = ()

    @classmethod
    def of(cls, *, income: list[str] | tuple[str, ...], expense: list[str] | tuple[str, ...]) -> CategoryLists:
        return cls(income=tuple(income), expense=tuple(expense))

    @property
    def all_names(self) -> tuple[str, ...]:
        return self.income + self.expense

    def is_empty(self) -> bool:
        return not self.income and not self.expense

    def type_of(self, name: str) -> OperationType | None:
        if name in self.income:
            return "income"
        if name in self.expense:
            return "expense"
        return None


DEVELOPMENT_CATEGORIES = CategoryLists(
    income=("Sales Revenue", "Client Payments", "Other Income"),
    expense=("Office Supplies", "Rent", "Food & Dining", "Transportation", "Marketing", "Other"),
)


# ---------------------------------------------------------------------------
# Rates and normalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RateSet:
    """Reporting-currency units per 1 unit of each source currency."""

    rates: Mapping[str, Decimal]
    source: RateSource
    as_of: _dt.date | None = None

    def rate_for(self, currency: str) -> Decimal:
        return self.rates.get(currency.upper(), Decimal("1"))


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    operations: list[Transaction]
    currencies: tuple[str, ...]
    rates: RateSet


# ---------------------------------------------------------------------------
# Processing outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DropStats:
    """Rows removed before entering the pipeline, counted by reason."""

    empty_description: int = 0
    invalid_amount: int = 0
    empty_row: int = 0

    @property
    def total(self) -> int:
        return self.empty_description + self.invalid_amount + self.empty_row

    def as_dict(self) -> dict[str, int]:
        return {
            "empty_description": self.empty_description,
            "invalid_amount": self.invalid_amount,
            "empty_row": self.empty_row,
        }


@dataclass(frozen=True, slots=True)
class ProcessingSummary:
    total_processed: int
    rule_matched: int
    fallback_processed: int
    dropped: DropStats
    currencies: tuple[str, ...]
    exchange_rates: Mapping[str, Decimal]
    rate_source: RateSource
    total_converted: Decimal
    reporting_currency: str
    categorization_method: str
    bank: str
    mapping_confidence: float
    mapping_source: MappingSource


@dataclass(frozen=True, slots=True)
class ProcessResult:
    operations: list[Transaction]
    summary: ProcessingSummary
    period: Period
    mapping: MappingResult


@dataclass(frozen=True, slots=True)
class SaveResult:
    period: Period
    stored_count: int
    deleted_count: int
    created_categories: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Oracle reply DTOs
# ---------------------------------------------------------------------------


class ColumnMappingReply(BaseModel):
    """Structured reply of a column-mapping oracle.

    Column names that are not in ``context["headers"]`` are coerced to
    ``None`` instead of failing the whole reply.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    date: str | None = None
    description: str | None = None
    amount: str | None = None
    currency: str | None = None
    type: str | None = None
    bank: str = "Unknown"
    confidence: float = 0.5

    @field_validator("date", "description", "amount", "currency", "type", mode="before")
    @classmethod
    def _column_in_headers(cls, v: Any, info: ValidationInfo) -> str | None:
        if v is None or not isinstance(v, str) or not v.strip():
            return None
        headers = (info.context or {}).get("headers")
        if headers is not None and v.strip() not in headers:
            return None
        return v.strip()

    @field_validator("bank", mode="before")
    @classmethod
    def _bank_default(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            return "Unknown"
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        try:
            fv = float(v)
        except (TypeError, ValueError):
            return 0.5
        return min(1.0, max(0.0, fv))

    def to_mapping(self) -> ColumnMapping:
        return ColumnMapping(
            date=self.date,
            description=self.description,
            amount=self.amount,
            currency=self.currency,
            type=self.type,
        )


class CategoryAssignmentReply(BaseModel):
    """One ``{"operation": n, "category": name}`` item of a categorization reply.

    ``operation`` is 1-based and must be within ``context["count"]``; the
    category must be one of ``context["allowed"]``.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    operation: int
    category: str

    @field_validator("operation")
    @classmethod
    def _operation_in_range(cls, v: int, info: ValidationInfo) -> int:
        count = (info.context or {}).get("count")
        if v < 1 or (count is not None and v > count):
            raise ValueError(f"operation index out of range: {v}")
        return v

    @field_validator("category")
    @classmethod
    def _category_allowed(cls, v: str, info: ValidationInfo) -> str:
        allowed = (info.context or {}).get("allowed")
        if not v:
            raise ValueError("category must be non-empty")
        if allowed is not None and v not in allowed:
            raise ValueError(f"category not in allowed list: {v!r}")
        return v


__all__ = [
    "CategorizationMethod",
    "Category",
    "CategoryAssignmentReply",
    "CategoryLists",
    "ColumnMapping",
    "ColumnMappingReply",
    "DEVELOPMENT_CATEGORIES",
    "DropStats",
    "LOGICAL_FIELDS",
    "MappingResult",
    "MappingSource",
    "MatchKind",
    "NormalizationResult",
    "OperationType",
    "Period",
    "ProcessResult",
    "ProcessingSummary",
    "RateSet",
    "RateSource",
    "RawRow",
    "Rule",
    "RuleStats",
    "SaveResult",
    "Transaction",
]
