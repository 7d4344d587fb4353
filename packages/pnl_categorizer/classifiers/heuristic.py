"""Rule-of-thumb backends that need no network access."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import Any

from ..errors import OracleError
from ..heuristics import detect_bank_type, has_revolut_signature, keyword_category, resolve_columns
from ..models import CategorizationMethod, CategoryLists, ColumnMappingReply, Transaction

_SIGNATURE_CONFIDENCE = 0.9
_SYNONYM_CONFIDENCE = 0.8


class HeuristicColumnOracle:
    """Synonym-based column oracle.

    Reports 0.9 confidence when a known bank signature is present, 0.8
    otherwise. Raises ``OracleError`` when neither a description nor an amount
    column can be found, which sends the mapper to its low-confidence path.
    """

    name = "heuristic"

    async def infer(
        self, headers: Sequence[str], sample_rows: Sequence[Mapping[str, Any]]
    ) -> ColumnMappingReply:
        mapping = resolve_columns(headers)
        if not mapping.is_usable:
            raise OracleError("no description/amount columns recognized")
        confidence = (
            _SIGNATURE_CONFIDENCE if has_revolut_signature(headers) else _SYNONYM_CONFIDENCE
        )
        return ColumnMappingReply.model_validate(
            {**mapping.as_dict(), "bank": detect_bank_type(headers), "confidence": confidence},
            context={"headers": list(headers)},
        )


class HeuristicCategorizer:
    """Keyword categorizer; see :func:`pnl_categorizer.heuristics.keyword_category`."""

    method: CategorizationMethod = "heuristic"

    def categorize_one(self, op: Transaction, categories: CategoryLists) -> Transaction:
        name = keyword_category(
            op.description, op.amount, categories, operation_type=op.operation_type
        )
        return dataclasses.replace(op, category=name, categorization_method=self.method)

    async def categorize(
        self, operations: Sequence[Transaction], categories: CategoryLists
    ) -> list[Transaction]:
        return [self.categorize_one(op, categories) for op in operations]


__all__ = ["HeuristicCategorizer", "HeuristicColumnOracle"]
