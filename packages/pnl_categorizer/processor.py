"""The categorization cascade for one CSV batch.

``CSVProcessor.process_csv`` walks a batch through

    Parsed -> ColumnMapped -> CurrencyNormalized -> RulesApplied -> FullyCategorized

Rows without a description or a numeric amount are dropped and counted. Rule
matches are final; every other operation is handed to the configured
:class:`~pnl_categorizer.classifiers.base.Categorizer`. Every surviving
operation appears exactly once in the result with exactly one category.

``build_processor`` wires the default components from a
:class:`~pnl_categorizer.config.PipelineConfig` and a record store.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
import os
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal
from typing import Any

import httpx
from openai import AsyncOpenAI

from .cache import TTLCache
from .classifiers import (
    Categorizer,
    ColumnOracle,
    HeuristicCategorizer,
    HeuristicColumnOracle,
    OpenAICategorizer,
    OpenAIColumnOracle,
)
from .column_mapper import ColumnMapper
from .config import PipelineConfig
from .currency import CurrencyNormalizer
from .errors import InputError
from .heuristics import DEFAULT_CATEGORY
from .ingest.rows import row_to_transaction
from .logging_setup import get_logger
from .models import (
    CategoryLists,
    DropStats,
    Period,
    ProcessingSummary,
    ProcessResult,
    Rule,
    Transaction,
)
from .openai_client import ResponsesClient
from .rates import ExchangeRateProvider
from .rule_engine import RuleEngine
from .store import RecordStore

_logger = get_logger("pnl_categorizer.processor")


def to_period(year: Any, month: Any) -> Period:
    """Validate a ``(year, month)`` pair, raising ``InputError`` on bad input."""

    try:
        return Period(int(year), int(month))
    except (TypeError, ValueError) as exc:
        raise InputError(
            f"Invalid period: year={year!r} month={month!r}", reason="invalid_period"
        ) from exc


class CSVProcessor:
    """Run the parse/map/normalize/rules/fallback cascade over one batch.

    Parameters
    ----------
    mapper, normalizer, rule_engine, categorizer:
        Pipeline stages. The categorizer handles operations no rule matched.
    config:
        Supplies the reporting currency and mapping sample size.
    today:
        Date used for rows whose date cannot be parsed.
    """

    def __init__(
        self,
        *,
        mapper: ColumnMapper,
        normalizer: CurrencyNormalizer,
        rule_engine: RuleEngine,
        categorizer: Categorizer,
        config: PipelineConfig | None = None,
        today: Callable[[], _dt.date] = _dt.date.today,
    ) -> None:
        self.mapper = mapper
        self.normalizer = normalizer
        self.rule_engine = rule_engine
        self.categorizer = categorizer
        self.config = config or PipelineConfig()
        self._today = today
        self._heuristic = HeuristicCategorizer()

    async def process_csv(
        self,
        raw_rows: Sequence[Mapping[str, Any]],
        categories: CategoryLists,
        period: Period,
        *,
        headers: Sequence[str] | None = None,
    ) -> ProcessResult:
        if not raw_rows:
            raise InputError("CSV contains no rows", reason="empty_csv")
        headers = list(headers) if headers is not None else [
            h for h in raw_rows[0].keys() if isinstance(h, str)
        ]

        # ---- Parsed / ColumnMapped -------------------------------------------
        sample = list(raw_rows[: self.config.mapping_sample_size])
        mapping_result = await self.mapper.infer_mapping(sample, headers)
        mapping = mapping_result.mapping

        today = self._today()
        reporting = self.config.reporting_currency
        parsed: list[Transaction] = []
        drops: Counter[str] = Counter()
        for idx, row in enumerate(raw_rows):
            result = row_to_transaction(
                row, idx, mapping, reporting_currency=reporting, today=today
            )
            if isinstance(result, Transaction):
                parsed.append(result)
            else:
                drops[result] += 1
        dropped = DropStats(**drops)
        _logger.info(
            "process_csv:parsed period=%s rows=%d parsed=%d dropped=%s",
            period,
            len(raw_rows),
            len(parsed),
            dropped.as_dict(),
        )
        if not parsed:
            raise InputError(
                "No valid operations found in CSV data",
                reason="no_valid_rows",
                details={"dropped": dropped.as_dict(), "mapping": mapping.as_dict()},
            )

        # ---- CurrencyNormalized ----------------------------------------------
        normalized = await self.normalizer.normalize(parsed)

        # ---- RulesApplied ----------------------------------------------------
        after_rules = await self.rule_engine.apply_rules(normalized.operations)
        matched = [op for op in after_rules if op.rule_matched]
        pending = [op for op in after_rules if not op.rule_matched]

        # ---- FullyCategorized ------------------------------------------------
        categorized = await self._categorize_pending(pending, categories)
        operations = sorted(matched + categorized, key=lambda op: op.row_index)

        total = sum((op.converted_amount or Decimal("0") for op in operations), Decimal("0"))
        summary = ProcessingSummary(
            total_processed=len(operations),
            rule_matched=len(matched),
            fallback_processed=len(categorized),
            dropped=dropped,
            currencies=normalized.currencies,
            exchange_rates=dict(normalized.rates.rates),
            rate_source=normalized.rates.source,
            total_converted=total,
            reporting_currency=reporting,
            categorization_method=f"{self.categorizer.method}_with_rules",
            bank=mapping_result.bank,
            mapping_confidence=mapping_result.confidence,
            mapping_source=mapping_result.source,
        )
        _logger.info(
            "process_csv:done period=%s processed=%d rule_matched=%d fallback=%d total=%s %s",
            period,
            summary.total_processed,
            summary.rule_matched,
            summary.fallback_processed,
            total,
            reporting,
        )
        return ProcessResult(
            operations=operations, summary=summary, period=period, mapping=mapping_result
        )

    async def _categorize_pending(
        self, pending: list[Transaction], categories: CategoryLists
    ) -> list[Transaction]:
        if not pending:
            return []
        result = await self.categorizer.categorize(pending, categories)
        by_row = {op.row_index: op for op in result if op.category}
        out: list[Transaction] = []
        for op in pending:
            done = by_row.get(op.row_index)
            if done is None:
                done = self._heuristic.categorize_one(op, categories)
            if not done.category:
                done = dataclasses.replace(done, category=DEFAULT_CATEGORY)
            out.append(done)
        return out

    async def create_rule_from_correction(
        self, description: str, category_id: str, category_name: str
    ) -> Rule:
        return await self.rule_engine.create_rule_from_correction(
            description, category_id, category_name
        )


def build_processor(
    config: PipelineConfig,
    store: RecordStore,
    *,
    rate_cache: TTLCache | None = None,
    rule_cache: TTLCache | None = None,
    http_client: httpx.AsyncClient | None = None,
    openai_client: AsyncOpenAI | None = None,
) -> CSVProcessor:
    """Wire a :class:`CSVProcessor` from configuration.

    The ``ai`` backend needs either ``openai_client`` or ``OPENAI_API_KEY`` in
    the environment; without them it degrades to the heuristic backend with a
    warning.
    """

    backend = config.classifier_backend
    if backend == "ai" and openai_client is None and not os.getenv("OPENAI_API_KEY"):
        _logger.warning("build_processor:ai_unavailable reason=no_api_key using=heuristic")
        backend = "heuristic"

    oracle: ColumnOracle
    categorizer: Categorizer
    if backend == "ai":
        responses = ResponsesClient(
            model=config.openai_model,
            timeout_sec=config.openai_timeout_sec,
            max_attempts=config.openai_max_attempts,
            client=openai_client,
        )
        oracle = OpenAIColumnOracle(responses)
        categorizer = OpenAICategorizer(responses, reporting_currency=config.reporting_currency)
    else:
        oracle = HeuristicColumnOracle()
        categorizer = HeuristicCategorizer()

    provider = ExchangeRateProvider(config, cache=rate_cache, client=http_client)
    return CSVProcessor(
        mapper=ColumnMapper(oracle),
        normalizer=CurrencyNormalizer(provider),
        rule_engine=RuleEngine(store, cache=rule_cache, config=config),
        categorizer=categorizer,
        config=config,
    )


__all__ = ["CSVProcessor", "build_processor", "to_period"]
