"""Record store boundary and an in-memory implementation.

The pipeline reads and writes rules, categories and operations only through
:class:`RecordStore`. ``SqlRecordStore`` (see :mod:`pnl_categorizer.persistence`)
backs it with SQLAlchemy; :class:`InMemoryRecordStore` is the reference
implementation used by tests and dry runs.

Rule usage is counted with a single ``increment_usage`` call that bumps and
returns the new value atomically, so concurrent batches never lose updates.
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from .errors import DuplicateRuleError, NotFoundError
from .models import Category, CategoryLists, OperationType, Period, Rule, Transaction

DEFAULT_RULE_PRIORITY = 5

RULE_PATCH_FIELDS: frozenset[str] = frozenset(
    {"pattern", "category_id", "category_name", "description", "priority", "is_active"}
)


def clean_rule_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only updatable rule fields; trims ``pattern``.

    Raises ``ValueError`` when nothing updatable remains.
    """

    clean = {k: v for k, v in patch.items() if k in RULE_PATCH_FIELDS}
    if "pattern" in clean:
        pattern = str(clean["pattern"]).strip()
        if not pattern:
            raise ValueError("pattern must be non-empty")
        clean["pattern"] = pattern
    if not clean:
        raise ValueError("No valid updates provided")
    return clean


class RecordStore(Protocol):
    """Storage operations the pipeline depends on."""

    # ---- Rules -------------------------------------------------------------

    async def get_all_rules(self) -> list[Rule]:
        """All rules, most used first."""
        ...

    async def create_rule(
        self,
        pattern: str,
        category_id: str,
        *,
        category_name: str | None = None,
        description: str | None = None,
        priority: int = DEFAULT_RULE_PRIORITY,
    ) -> Rule: ...

    async def increment_usage(self, rule_id: str) -> int:
        """Atomically add one to the rule's usage count and return the new value."""
        ...

    async def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> Rule: ...

    async def delete_rule(self, rule_id: str) -> None: ...

    # ---- Categories --------------------------------------------------------

    async def get_categories_for_prompt(self) -> CategoryLists: ...

    async def list_categories(self) -> list[Category]: ...

    async def create_category(self, name: str, type: OperationType) -> Category: ...

    # ---- Operations --------------------------------------------------------

    async def insert_batch(self, period: Period, operations: Sequence[Transaction]) -> int: ...

    async def exists_for_period(self, period: Period) -> bool: ...

    async def delete_for_period(self, period: Period) -> int: ...

    async def replace_period(
        self, period: Period, operations: Sequence[Transaction]
    ) -> tuple[int, int]:
        """Atomically swap the period's operations; returns ``(deleted, stored)``."""
        ...

    async def count_for_period(self, period: Period) -> int: ...


class InMemoryRecordStore:
    """Dictionary-backed :class:`RecordStore` guarded by an ``asyncio.Lock``."""

    def __init__(self, categories: Sequence[Category] = ()) -> None:
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._rules: dict[str, Rule] = {}
        self._rule_order: dict[str, int] = {}
        self._categories: dict[str, Category] = {c.id: c for c in categories}
        self._operations: dict[Period, list[Transaction]] = {}

    @classmethod
    def with_categories(cls, lists: CategoryLists) -> InMemoryRecordStore:
        cats = [Category(id=f"cat-{n}", name=name, type="income") for n, name in enumerate(lists.income, 1)]
        offset = len(cats)
        cats += [
            Category(id=f"cat-{offset + n}", name=name, type="expense")
            for n, name in enumerate(lists.expense, 1)
        ]
        return cls(cats)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # ---- Rules -------------------------------------------------------------

    async def get_all_rules(self) -> list[Rule]:
        async with self._lock:
            rules = list(self._rules.values())
        # usage desc, newest first among equals
        return sorted(rules, key=lambda r: (-r.usage_count, -self._rule_order[r.id]))

    async def create_rule(
        self,
        pattern: str,
        category_id: str,
        *,
        category_name: str | None = None,
        description: str | None = None,
        priority: int = DEFAULT_RULE_PRIORITY,
    ) -> Rule:
        pattern = pattern.strip()
        if not pattern or not category_id:
            raise ValueError("Pattern and category ID are required")
        async with self._lock:
            if any(r.pattern == pattern and r.category_id == category_id for r in self._rules.values()):
                raise DuplicateRuleError(pattern, category_id)
            if category_name is None and category_id in self._categories:
                category_name = self._categories[category_id].name
            rule = Rule(
                id=self._next_id("rule"),
                pattern=pattern,
                category_id=category_id,
                category_name=category_name,
                description=description,
                priority=priority,
            )
            self._rules[rule.id] = rule
            self._rule_order[rule.id] = len(self._rule_order)
            return rule

    async def increment_usage(self, rule_id: str) -> int:
        async with self._lock:
            rule = self._get_rule(rule_id)
            updated = dataclasses.replace(rule, usage_count=rule.usage_count + 1)
            self._rules[rule_id] = updated
            return updated.usage_count

    async def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> Rule:
        clean = clean_rule_patch(patch)
        async with self._lock:
            rule = self._get_rule(rule_id)
            updated = dataclasses.replace(rule, **clean)
            if "category_id" in clean and "category_name" not in clean:
                cat = self._categories.get(updated.category_id)
                updated = dataclasses.replace(updated, category_name=cat.name if cat else None)
            self._rules[rule_id] = updated
            return updated

    async def delete_rule(self, rule_id: str) -> None:
        async with self._lock:
            self._get_rule(rule_id)
            del self._rules[rule_id]

    def _get_rule(self, rule_id: str) -> Rule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise NotFoundError(f"Rule {rule_id!r} not found") from None

    # ---- Categories --------------------------------------------------------

    async def get_categories_for_prompt(self) -> CategoryLists:
        async with self._lock:
            cats = list(self._categories.values())
        return CategoryLists.of(
            income=[c.name for c in cats if c.type == "income"],
            expense=[c.name for c in cats if c.type == "expense"],
        )

    async def list_categories(self) -> list[Category]:
        async with self._lock:
            return list(self._categories.values())

    async def create_category(self, name: str, type: OperationType) -> Category:
        async with self._lock:
            for c in self._categories.values():
                if c.name == name and c.type == type:
                    return c
            cat_id = self._next_id("cat")
            while cat_id in self._categories:
                cat_id = self._next_id("cat")
            cat = Category(id=cat_id, name=name, type=type)
            self._categories[cat.id] = cat
            return cat

    # ---- Operations --------------------------------------------------------

    async def insert_batch(self, period: Period, operations: Sequence[Transaction]) -> int:
        async with self._lock:
            self._operations.setdefault(period, []).extend(operations)
            return len(operations)

    async def exists_for_period(self, period: Period) -> bool:
        async with self._lock:
            return bool(self._operations.get(period))

    async def delete_for_period(self, period: Period) -> int:
        async with self._lock:
            return len(self._operations.pop(period, []))

    async def replace_period(
        self, period: Period, operations: Sequence[Transaction]
    ) -> tuple[int, int]:
        async with self._lock:
            previous = self._operations.get(period, [])
            self._operations[period] = list(operations)
            return len(previous), len(operations)

    async def count_for_period(self, period: Period) -> int:
        async with self._lock:
            return len(self._operations.get(period, []))

    async def operations_for_period(self, period: Period) -> list[Transaction]:
        async with self._lock:
            return list(self._operations.get(period, []))


__all__ = [
    "DEFAULT_RULE_PRIORITY",
    "InMemoryRecordStore",
    "RULE_PATCH_FIELDS",
    "RecordStore",
    "clean_rule_patch",
]
