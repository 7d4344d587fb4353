# ruff: noqa: I001
"""SQL-backed :class:`~pnl_categorizer.store.RecordStore`.

Rules, categories and operations live in the shared database owned by
``libs/db`` (ORM models in ``db.models.finance``; engine/session holder in
``db.client``). SQLAlchemy sessions are blocking, so every store call runs in
a worker thread via :func:`asyncio.to_thread` and one call maps to one
transaction. ``SQLAlchemyError`` is re-raised as
:class:`~pnl_categorizer.errors.StoreError`.

Rule usage is incremented in SQL (``usage_count = usage_count + 1``) and read
back inside the same transaction, so concurrent increments are never lost.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, TypeVar

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import Database
from db.models.finance import PnlCategory, PnlOperation, PnlRule
from .errors import DuplicateRuleError, NotFoundError, StoreError
from .logging_setup import get_logger
from .models import Category, CategoryLists, OperationType, Period, Rule, Transaction
from .store import DEFAULT_RULE_PRIORITY, clean_rule_patch

_logger = get_logger("pnl_categorizer.persistence")

_T = TypeVar("_T")
_CENT = Decimal("0.01")


def _to_decimal_2(d: Decimal | None) -> Decimal | None:
    if d is None:
        return None
    return d.quantize(_CENT, rounding=ROUND_HALF_UP)


def _json_safe(raw: Mapping[Any, Any]) -> dict[str, Any]:
    # DictReader files overflow cells under the ``None`` key.
    return json.loads(json.dumps({str(k): v for k, v in raw.items()}, default=str))


def _rule_from_row(row: PnlRule) -> Rule:
    return Rule(
        id=row.id,
        pattern=row.pattern,
        category_id=row.category_id,
        category_name=row.category_name,
        description=row.description,
        priority=row.priority,
        usage_count=row.usage_count,
        is_active=row.is_active,
    )


def _category_from_row(row: PnlCategory) -> Category:
    return Category(id=row.id, name=row.name, type=row.type)  # type: ignore[arg-type]


class SqlRecordStore:
    """Record store over a :class:`db.client.Database`."""

    def __init__(self, database: Database) -> None:
        self._db = database

    @classmethod
    def from_url(cls, url: str | None = None, *, create_schema: bool = True) -> SqlRecordStore:
        database = Database(url)
        if create_schema:
            try:
                database.create_schema()
            except SQLAlchemyError as exc:
                database.dispose()
                raise StoreError(f"could not prepare schema: {exc}") from exc
        return cls(database)

    @property
    def database(self) -> Database:
        return self._db

    async def _run(self, fn: Callable[[Session], _T], *, op: str) -> _T:
        def _in_session() -> _T:
            with self._db.session_scope() as session:
                return fn(session)

        try:
            return await asyncio.to_thread(_in_session)
        except SQLAlchemyError as exc:
            _logger.error("store:failed op=%s error=%s", op, exc.__class__.__name__)
            raise StoreError(f"{op} failed: {exc}") from exc

    # ---- Rules -------------------------------------------------------------

    async def get_all_rules(self) -> list[Rule]:
        def _q(s: Session) -> list[Rule]:
            rows = s.scalars(
                select(PnlRule).order_by(
                    PnlRule.usage_count.desc(), PnlRule.created_at.desc(), PnlRule.pattern
                )
            ).all()
            return [_rule_from_row(r) for r in rows]

        return await self._run(_q, op="get_all_rules")

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

        def _q(s: Session) -> Rule:
            duplicate = s.scalar(
                select(exists().where(PnlRule.pattern == pattern, PnlRule.category_id == category_id))
            )
            if duplicate:
                raise DuplicateRuleError(pattern, category_id)
            category = s.get(PnlCategory, category_id)
            if category is None:
                raise NotFoundError(f"Category {category_id!r} not found")
            row = PnlRule(
                pattern=pattern,
                category_id=category_id,
                category_name=category_name or category.name,
                description=description,
                priority=priority,
                usage_count=0,
                is_active=True,
            )
            s.add(row)
            s.flush()
            return _rule_from_row(row)

        return await self._run(_q, op="create_rule")

    async def increment_usage(self, rule_id: str) -> int:
        def _q(s: Session) -> int:
            result = s.execute(
                update(PnlRule)
                .where(PnlRule.id == rule_id)
                .values(usage_count=PnlRule.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Rule {rule_id!r} not found")
            count = s.scalar(select(PnlRule.usage_count).where(PnlRule.id == rule_id))
            return int(count or 0)

        return await self._run(_q, op="increment_usage")

    async def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> Rule:
        clean = clean_rule_patch(patch)

        def _q(s: Session) -> Rule:
            row = s.get(PnlRule, rule_id)
            if row is None:
                raise NotFoundError(f"Rule {rule_id!r} not found")
            if "category_id" in clean and "category_name" not in clean:
                category = s.get(PnlCategory, clean["category_id"])
                if category is None:
                    raise NotFoundError(f"Category {clean['category_id']!r} not found")
                clean["category_name"] = category.name
            for key, value in clean.items():
                setattr(row, key, value)
            s.flush()
            return _rule_from_row(row)

        return await self._run(_q, op="update_rule")

    async def delete_rule(self, rule_id: str) -> None:
        def _q(s: Session) -> None:
            result = s.execute(delete(PnlRule).where(PnlRule.id == rule_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Rule {rule_id!r} not found")

        await self._run(_q, op="delete_rule")

    # ---- Categories --------------------------------------------------------

    def _ordered_categories(self, s: Session) -> list[PnlCategory]:
        return list(
            s.scalars(
                select(PnlCategory).order_by(
                    PnlCategory.sort_order.is_(None),
                    PnlCategory.sort_order,
                    PnlCategory.created_at,
                    PnlCategory.name,
                )
            ).all()
        )

    async def get_categories_for_prompt(self) -> CategoryLists:
        def _q(s: Session) -> CategoryLists:
            rows = self._ordered_categories(s)
            return CategoryLists.of(
                income=[r.name for r in rows if r.type == "income"],
                expense=[r.name for r in rows if r.type == "expense"],
            )

        return await self._run(_q, op="get_categories_for_prompt")

    async def list_categories(self) -> list[Category]:
        def _q(s: Session) -> list[Category]:
            return [_category_from_row(r) for r in self._ordered_categories(s)]

        return await self._run(_q, op="list_categories")

    async def create_category(self, name: str, type: OperationType) -> Category:
        def _q(s: Session) -> Category:
            existing = s.scalar(
                select(PnlCategory).where(PnlCategory.name == name, PnlCategory.type == type)
            )
            if existing is not None:
                return _category_from_row(existing)
            next_order = s.scalar(select(func.coalesce(func.max(PnlCategory.sort_order), -1)))
            row = PnlCategory(name=name, type=type, sort_order=int(next_order) + 1)
            s.add(row)
            s.flush()
            return _category_from_row(row)

        return await self._run(_q, op="create_category")

    # ---- Operations --------------------------------------------------------

    @staticmethod
    def _operation_rows(period: Period, operations: Sequence[Transaction]) -> list[PnlOperation]:
        return [
            PnlOperation(
                year=period.year,
                month=period.month,
                row_index=op.row_index,
                date=op.date,
                description=op.description,
                amount=_to_decimal_2(op.amount),
                currency_code=op.currency,
                converted_amount=_to_decimal_2(op.converted_amount),
                exchange_rate=op.exchange_rate,
                operation_type=op.operation_type,
                category_id=op.category_id,
                category_name=op.category,
                categorization_method=op.categorization_method,
                rule_matched=op.rule_matched,
                raw_record=_json_safe(op.raw),
            )
            for op in operations
        ]

    @staticmethod
    def _delete_period(s: Session, period: Period) -> int:
        result = s.execute(
            delete(PnlOperation).where(
                PnlOperation.year == period.year, PnlOperation.month == period.month
            )
        )
        return int(result.rowcount or 0)

    async def insert_batch(self, period: Period, operations: Sequence[Transaction]) -> int:
        def _q(s: Session) -> int:
            rows = self._operation_rows(period, operations)
            s.add_all(rows)
            s.flush()
            return len(rows)

        return await self._run(_q, op="insert_batch")

    async def replace_period(
        self, period: Period, operations: Sequence[Transaction]
    ) -> tuple[int, int]:
        """Delete the period and insert ``operations`` in one transaction."""

        def _q(s: Session) -> tuple[int, int]:
            deleted = self._delete_period(s, period)
            rows = self._operation_rows(period, operations)
            s.add_all(rows)
            s.flush()
            return deleted, len(rows)

        return await self._run(_q, op="replace_period")

    async def exists_for_period(self, period: Period) -> bool:
        def _q(s: Session) -> bool:
            return bool(
                s.scalar(
                    select(
                        exists().where(
                            PnlOperation.year == period.year, PnlOperation.month == period.month
                        )
                    )
                )
            )

        return await self._run(_q, op="exists_for_period")

    async def delete_for_period(self, period: Period) -> int:
        return await self._run(
            lambda s: self._delete_period(s, period), op="delete_for_period"
        )

    async def count_for_period(self, period: Period) -> int:
        def _q(s: Session) -> int:
            return int(
                s.scalar(
                    select(func.count())
                    .select_from(PnlOperation)
                    .where(PnlOperation.year == period.year, PnlOperation.month == period.month)
                )
                or 0
            )

        return await self._run(_q, op="count_for_period")


__all__ = ["SqlRecordStore"]
