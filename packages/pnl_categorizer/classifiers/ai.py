"""OpenAI-backed column oracle and categorizer.

Replies are free text with an embedded JSON object (column mapping) or array
(category assignments). Extraction or validation problems are treated exactly
like an unavailable oracle.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from .. import prompting
from ..errors import OracleError
from ..heuristics import detect_bank_type
from ..logging_setup import get_logger
from ..models import (
    CategorizationMethod,
    CategoryAssignmentReply,
    CategoryLists,
    ColumnMappingReply,
    Transaction,
)
from ..openai_client import ResponsesClient
from .heuristic import HeuristicCategorizer

_logger = get_logger("pnl_categorizer.classifiers.ai")


class OpenAIColumnOracle:
    name = "openai"

    def __init__(self, client: ResponsesClient) -> None:
        self._client = client

    async def infer(
        self, headers: Sequence[str], sample_rows: Sequence[Mapping[str, Any]]
    ) -> ColumnMappingReply:
        text = await self._client.complete(
            instructions=prompting.build_mapping_instructions(),
            content=prompting.build_mapping_content(headers, sample_rows),
            label="column_mapping",
        )
        try:
            obj = prompting.extract_json_block(text, "object")
            reply = ColumnMappingReply.model_validate(obj, context={"headers": list(headers)})
        except (ValueError, ValidationError) as exc:
            raise OracleError(f"unusable column-mapping reply: {exc}") from exc

        detected = detect_bank_type(headers)
        if detected != "Unknown":
            reply = reply.model_copy(update={"bank": detected})
        return reply


class OpenAICategorizer:
    """Categorize pending operations with one Responses call per batch.

    Operations the reply does not cover (missing, out-of-range or unknown
    category) are categorized by ``fallback`` individually; the rest of the
    batch keeps its AI assignment.
    """

    method: CategorizationMethod = "ai"

    def __init__(
        self,
        client: ResponsesClient,
        *,
        reporting_currency: str = "PLN",
        fallback: HeuristicCategorizer | None = None,
    ) -> None:
        self._client = client
        self._reporting_currency = reporting_currency
        self._fallback = fallback or HeuristicCategorizer()

    async def categorize(
        self, operations: Sequence[Transaction], categories: CategoryLists
    ) -> list[Transaction]:
        if not operations:
            return []
        if categories.is_empty():
            _logger.info("categorize_ai:skipped reason=no_categories count=%d", len(operations))
            return await self._fallback.categorize(operations, categories)

        try:
            assignments = await self._request(operations, categories)
        except OracleError as exc:
            _logger.warning(
                "categorize_ai:fallback scope=batch count=%d error=%s", len(operations), exc
            )
            assignments = {}

        out: list[Transaction] = []
        missing = 0
        for n, op in enumerate(operations, start=1):
            name = assignments.get(n)
            if name is None:
                missing += 1
                out.append(self._fallback.categorize_one(op, categories))
            else:
                out.append(dataclasses.replace(op, category=name, categorization_method=self.method))
        _logger.info(
            "categorize_ai:done count=%d ai=%d heuristic=%d",
            len(out),
            len(out) - missing,
            missing,
        )
        return out

    async def _request(
        self, operations: Sequence[Transaction], categories: CategoryLists
    ) -> dict[int, str]:
        text = await self._client.complete(
            instructions=prompting.build_categorization_instructions(),
            content=prompting.build_categorization_content(
                operations, categories, self._reporting_currency
            ),
            label="categorize_ai",
        )
        try:
            items = prompting.extract_json_block(text, "array")
        except ValueError as exc:
            raise OracleError(str(exc)) from exc

        ctx = {"count": len(operations), "allowed": set(categories.all_names)}
        assignments: dict[int, str] = {}
        rejected = 0
        for item in items:
            try:
                parsed = CategoryAssignmentReply.model_validate(item, context=ctx)
            except ValidationError:
                rejected += 1
                continue
            assignments.setdefault(parsed.operation, parsed.category)
        if rejected:
            _logger.warning("categorize_ai:rejected_items count=%d", rejected)
        return assignments


__all__ = ["OpenAICategorizer", "OpenAIColumnOracle"]
