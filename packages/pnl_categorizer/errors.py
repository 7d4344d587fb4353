"""Exception hierarchy for CSV processing and persistence.

Each pipeline error carries a machine-checkable ``reason`` code next to the
human-readable message so callers (CLI, HTTP layer) can branch on it without
parsing text. ``to_dict()`` renders the structured failure payload returned
to callers.

Only input, normalization and save-step failures surface as exceptions.
Rate-source and AI-oracle failures are recovered inside their components and
never reach the caller.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for caller-facing processing errors.

    Attributes
    ----------
    reason:
        Stable reason code (e.g. ``"no_valid_rows"``, ``"period_exists"``).
    message:
        Human-readable explanation.
    details:
        Extra context for logs and structured responses.
    """

    default_reason = "processing_failed"

    def __init__(
        self,
        message: str,
        *,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.reason = reason or self.default_reason
        self.details = dict(details or {})
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "reason": self.reason,
        }
        payload.update(self.details)
        return payload


class InputError(PipelineError):
    """Empty/unparseable CSV, bad period, rejected upload, no valid rows."""

    default_reason = "invalid_input"


class CurrencyNormalizationError(PipelineError):
    default_reason = "no_currencies"


class PersistenceError(PipelineError):
    """The final save step failed; reported distinctly from processing errors."""

    default_reason = "persistence_failed"


class PeriodConflictError(PersistenceError):
    """Data already exists for the target period and overwrite was not requested."""

    default_reason = "period_exists"

    def __init__(self, year: int, month: int) -> None:
        super().__init__(
            f"Operations already exist for {year}-{month:02d}. "
            "Delete existing data first or retry with overwrite.",
            details={"overwrite_available": True, "year": year, "month": month},
        )


# ---------------------------------------------------------------------------
# Record store errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """The record store could not complete an operation."""


class DuplicateRuleError(StoreError):
    def __init__(self, pattern: str, category_id: str) -> None:
        self.pattern = pattern
        self.category_id = category_id
        super().__init__(
            f"Rule with pattern {pattern!r} and category {category_id!r} already exists"
        )


class NotFoundError(StoreError):
    pass


# ---------------------------------------------------------------------------
# Oracle errors (never escape the mapper/categorizer)
# ---------------------------------------------------------------------------


class OracleError(Exception):
    """A classification oracle was unavailable or replied with unusable output."""


__all__ = [
    "PipelineError",
    "InputError",
    "CurrencyNormalizationError",
    "PersistenceError",
    "PeriodConflictError",
    "StoreError",
    "DuplicateRuleError",
    "NotFoundError",
    "OracleError",
]
