from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    CHAR,
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid4().hex


# ---------------------------
# Reference: pnl_categories
# ---------------------------


class PnlCategory(Base):
    __tablename__ = "pnl_categories"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("name", "type", name="uq_pnl_categories_name_type"),
        CheckConstraint("type in ('income','expense')", name="ck_pnl_categories_type"),
    )


# ---------------------------
# Rules: pnl_rules
# ---------------------------


class PnlRule(Base):
    __tablename__ = "pnl_rules"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    pattern: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("pnl_categories.id", ondelete="CASCADE"), nullable=False
    )
    # Denormalized label so rule matches can name the category without a join.
    category_name: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("5"))
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=true())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("pattern", "category_id", name="uq_pnl_rules_pattern_category"),
        CheckConstraint("usage_count >= 0", name="ck_pnl_rules_usage_count"),
    )


# ---------------------------
# Core: pnl_operations
# ---------------------------


class PnlOperation(Base):
    __tablename__ = "pnl_operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency_code: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    converted_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    operation_type: Mapped[str] = mapped_column(String(16), nullable=False)
    category_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("pnl_categories.id", ondelete="SET NULL"), nullable=True
    )
    category_name: Mapped[str | None] = mapped_column(String, nullable=True)
    categorization_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    rule_matched: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    raw_record: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_pnl_operations_period", "year", "month"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_pnl_operations_month"),
        CheckConstraint(
            "operation_type in ('income','expense')", name="ck_pnl_operations_type"
        ),
        CheckConstraint(
            "categorization_method IS NULL OR categorization_method in ('rule','heuristic','ai')",
            name="ck_pnl_operations_method",
        ),
    )


__all__ = [
    "Base",
    "PnlCategory",
    "PnlOperation",
    "PnlRule",
]
