"""Interfaces for the pluggable classification backends.

Two capabilities are pluggable, each with a heuristic and an AI-backed
implementation selected by configuration:

- ``ColumnOracle`` proposes a field-to-column assignment for a CSV batch.
- ``Categorizer`` assigns a category to operations the rule engine left
  pending.

The cascade only depends on these protocols, so it behaves identically no
matter which backend resolves a transaction.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from ..models import CategorizationMethod, CategoryLists, ColumnMappingReply, Transaction


class ColumnOracle(Protocol):
    name: str

    async def infer(
        self, headers: Sequence[str], sample_rows: Sequence[Mapping[str, Any]]
    ) -> ColumnMappingReply:
        """Return a validated reply or raise ``OracleError``."""
        ...


class Categorizer(Protocol):
    method: CategorizationMethod

    async def categorize(
        self, operations: Sequence[Transaction], categories: CategoryLists
    ) -> list[Transaction]:
        """Return every input operation, in order, with a category assigned.

        Implementations never raise for oracle trouble; they fall back per
        operation instead.
        """
        ...


__all__ = ["Categorizer", "ColumnOracle"]
