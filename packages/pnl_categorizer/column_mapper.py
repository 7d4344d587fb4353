"""Infer which CSV columns hold the logical operation fields.

The mapping is computed once per batch from a small sample of rows and then
applied to every row. A pluggable :class:`ColumnOracle` is consulted first;
when it is absent, fails, or replies with something unusable, the
multilingual synonym resolver in :mod:`pnl_categorizer.heuristics` produces a
low-confidence mapping instead.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .classifiers.base import ColumnOracle
from .errors import OracleError
from .heuristics import detect_bank_type, resolve_columns
from .logging_setup import get_logger
from .models import MappingResult

_logger = get_logger("pnl_categorizer.column_mapper")

FALLBACK_CONFIDENCE = 0.3


class ColumnMapper:
    def __init__(self, oracle: ColumnOracle | None = None) -> None:
        self._oracle = oracle

    async def infer_mapping(
        self, sample_rows: Sequence[Mapping[str, Any]], headers: Sequence[str]
    ) -> MappingResult:
        """Return the column mapping for a batch.

        Parameters
        ----------
        sample_rows:
            The first few parsed rows of the batch.
        headers:
            Header names in file order. Every mapped column is guaranteed to be
            one of these.
        """

        headers = list(headers)
        if self._oracle is not None:
            try:
                reply = await self._oracle.infer(headers, sample_rows)
            except OracleError as exc:
                _logger.warning(
                    "column_mapping:oracle_failed oracle=%s error=%s", self._oracle.name, exc
                )
            else:
                mapping = reply.to_mapping().restricted_to(headers)
                if mapping.is_usable:
                    _logger.info(
                        "column_mapping:oracle bank=%s confidence=%.2f mapping=%s",
                        reply.bank,
                        reply.confidence,
                        mapping.as_dict(),
                    )
                    return MappingResult(
                        mapping=mapping,
                        bank=reply.bank,
                        confidence=reply.confidence,
                        source="oracle",
                        success=True,
                    )
                _logger.warning(
                    "column_mapping:oracle_unusable oracle=%s mapping=%s",
                    self._oracle.name,
                    mapping.as_dict(),
                )
        return self.fallback_mapping(headers)

    @staticmethod
    def fallback_mapping(headers: Sequence[str]) -> MappingResult:
        mapping = resolve_columns(headers)
        bank = detect_bank_type(headers)
        _logger.info("column_mapping:fallback bank=%s mapping=%s", bank, mapping.as_dict())
        return MappingResult(
            mapping=mapping,
            bank=bank,
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            success=False,
        )


__all__ = ["ColumnMapper", "FALLBACK_CONFIDENCE"]
