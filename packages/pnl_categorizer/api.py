"""Public entrypoints: analyze an uploaded CSV, save categorized results.

Both functions raise :class:`~pnl_categorizer.errors.PipelineError`
subclasses; callers render them with ``to_dict()``. Processing failures
(``InputError``, ``CurrencyNormalizationError``) and save failures
(``PersistenceError``, ``PeriodConflictError``) stay distinct so the caller
can offer an overwrite retry only where it makes sense.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from decimal import Decimal
from os import PathLike
from pathlib import Path
from typing import Any

from .errors import InputError, PeriodConflictError, PersistenceError, StoreError
from .ingest.csv_reader import read_csv_file
from .logging_setup import get_logger
from .models import (
    DEVELOPMENT_CATEGORIES,
    CategoryLists,
    Period,
    ProcessResult,
    SaveResult,
    Transaction,
)
from .processor import CSVProcessor, to_period
from .store import RecordStore

_logger = get_logger("pnl_categorizer.api")

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
_CSV_CONTENT_TYPES = frozenset({"text/csv", "application/csv"})


def validate_upload(
    path: Path,
    *,
    filename: str | None = None,
    content_type: str | None = None,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> None:
    """Reject missing, non-CSV or oversized uploads with an ``InputError``."""

    if not path.is_file():
        raise InputError("No CSV file uploaded", reason="missing_file")
    name = (filename or path.name).lower()
    if not name.endswith(".csv") and (content_type or "").lower() not in _CSV_CONTENT_TYPES:
        raise InputError("Only CSV files are allowed", reason="unsupported_file_type")
    size = path.stat().st_size
    if size > max_bytes:
        raise InputError(
            f"File is too large: {size} bytes (limit {max_bytes})",
            reason="file_too_large",
            details={"size": size, "limit": max_bytes},
        )


async def load_categories(store: RecordStore) -> CategoryLists:
    """Category lists from the store, or the development defaults when unavailable."""

    try:
        return await store.get_categories_for_prompt()
    except StoreError as exc:
        _logger.warning("analyze_csv:categories_fallback error=%s", exc)
        return DEVELOPMENT_CATEGORIES


async def analyze_csv_upload(
    file_path: str | PathLike[str],
    *,
    year: Any,
    month: Any,
    processor: CSVProcessor,
    store: RecordStore,
    filename: str | None = None,
    content_type: str | None = None,
    max_bytes: int | None = None,
) -> ProcessResult:
    """Process one uploaded CSV for a period.

    The upload at ``file_path`` is transient: it is deleted when this call
    returns, whether processing succeeded or not.
    """

    path = Path(file_path)
    try:
        validate_upload(
            path,
            filename=filename,
            content_type=content_type,
            max_bytes=max_bytes if max_bytes is not None else processor.config.max_upload_bytes,
        )
        period = to_period(year, month)
        _logger.info("analyze_csv:start file=%s period=%s", filename or path.name, period)

        batch = read_csv_file(path)
        categories = await load_categories(store)
        return await processor.process_csv(
            batch.rows, categories, period, headers=batch.headers
        )
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            _logger.warning("analyze_csv:cleanup_failed file=%s error=%s", path, exc)


async def save_results(
    store: RecordStore,
    operations: Sequence[Transaction],
    period: Period,
    *,
    overwrite: bool = False,
) -> SaveResult:
    """Persist categorized operations for ``period``.

    Existing data for the period is a conflict unless ``overwrite`` is set, in
    which case the old rows are replaced by the new batch in one store
    transaction; a failure leaves the old rows in place. Categories
    referenced by name but missing from the store are created with the type
    of the first operation that uses them.
    """

    if not operations:
        raise InputError("Operations list is required", reason="no_valid_rows")

    try:
        exists = await store.exists_for_period(period)
    except StoreError as exc:
        raise PersistenceError(f"Could not check existing data for {period}: {exc}") from exc
    if exists and not overwrite:
        raise PeriodConflictError(period.year, period.month)

    try:
        resolved, created = await _resolve_category_ids(store, operations)
        if exists:
            deleted, stored = await store.replace_period(period, resolved)
            _logger.info("save_results:overwrite period=%s deleted=%d", period, deleted)
        else:
            deleted = 0
            stored = await store.insert_batch(period, resolved)
    except StoreError as exc:
        raise PersistenceError(f"Database insertion failed: {exc}") from exc

    _logger.info(
        "save_results:done period=%s stored=%d created_categories=%d",
        period,
        stored,
        len(created),
    )
    return SaveResult(
        period=period,
        stored_count=stored,
        deleted_count=deleted,
        created_categories=tuple(created),
    )


async def _resolve_category_ids(
    store: RecordStore, operations: Sequence[Transaction]
) -> tuple[list[Transaction], list[str]]:
    ids_by_name = {c.name: c.id for c in await store.list_categories()}
    created: list[str] = []
    out: list[Transaction] = []
    for op in operations:
        name = op.category or "Other"
        if name not in ids_by_name:
            category = await store.create_category(name, op.operation_type)
            ids_by_name[name] = category.id
            created.append(name)
            _logger.info(
                "save_results:category_created name=%r type=%s", name, op.operation_type
            )
        out.append(
            dataclasses.replace(
                op, category=name, category_id=op.category_id or ids_by_name[name]
            )
        )
    return out, created


def result_to_dict(result: ProcessResult) -> dict[str, Any]:
    """Render a :class:`ProcessResult` as JSON-friendly primitives."""

    def _dec(v: Decimal | None) -> str | None:
        return None if v is None else str(v)

    s = result.summary
    return {
        "success": True,
        "year": result.period.year,
        "month": result.period.month,
        "operations": [
            {
                "row_index": op.row_index,
                "date": op.date.isoformat(),
                "description": op.description,
                "amount": _dec(op.amount),
                "currency": op.currency,
                "converted_amount": _dec(op.converted_amount),
                "exchange_rate": _dec(op.exchange_rate),
                "operation_type": op.operation_type,
                "category": op.category,
                "category_id": op.category_id,
                "categorization_method": op.categorization_method,
                "rule_matched": op.rule_matched,
            }
            for op in result.operations
        ],
        "summary": {
            "total_processed": s.total_processed,
            "rule_matched": s.rule_matched,
            "fallback_processed": s.fallback_processed,
            "dropped": s.dropped.as_dict(),
            "currencies": list(s.currencies),
            "exchange_rates": {k: str(v) for k, v in s.exchange_rates.items()},
            "rate_source": s.rate_source,
            "total_converted": str(s.total_converted),
            "reporting_currency": s.reporting_currency,
            "categorization_method": s.categorization_method,
            "bank": s.bank,
            "mapping_confidence": s.mapping_confidence,
            "mapping_source": s.mapping_source,
        },
    }


__all__ = [
    "DEFAULT_MAX_UPLOAD_BYTES",
    "analyze_csv_upload",
    "load_categories",
    "result_to_dict",
    "save_results",
    "validate_upload",
]
