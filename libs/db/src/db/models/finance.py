from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------
# Reference: fa_accounts
# ---------------------------


class FaAccount(Base):
    __tablename__ = "fa_accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    currency_code: Mapped[str] = mapped_column(
        CHAR(3), nullable=False, server_default=text("'USD'")
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Reference: fa_categories
# ---------------------------


class FaCategory(Base):
    __tablename__ = "fa_categories"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    # display_name is unique per parent (case-insensitive) via an index created
    # by Alembic; exact-name lookups in the split validator rely on it.
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    # NULL for a category; set for a subcategory. Two-level depth is enforced
    # in the service layer rather than with recursive DB constraints.
    parent_code: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("fa_categories.code", deferrable=True, initially="DEFERRED"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.true())
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "parent_code IS NULL OR parent_code <> code",
            name="ck_fa_cat_no_self_parent",
        ),
    )


# ---------------------------
# Core: fa_transactions
# ---------------------------


class FaTransaction(Base):
    __tablename__ = "fa_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Aggregator transaction id for imported rows; "<parent>_split_<n>" for
    # split children. Never rewritten after insert.
    external_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("fa_accounts.id"), nullable=False, index=True
    )
    # Signed: negative = expense, positive = income.
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency_code: Mapped[str] = mapped_column(
        CHAR(3), nullable=False, server_default=text("'USD'")
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    datetime: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pending: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.false())
    merchant_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("fa_categories.code", deferrable=True, initially="DEFERRED"),
        nullable=True,
    )
    subcategory: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("fa_categories.code", deferrable=True, initially="DEFERRED"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    files: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    is_split: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.false())
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.false())
    parent_transaction_id: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("fa_transactions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    # For split children: the parent's external id. For posted rows: the
    # pending row they replaced.
    original_transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "parent_transaction_id IS NULL OR parent_transaction_id <> id",
            name="ck_fa_tx_no_self_parent",
        ),
    )


__all__ = [
    "Base",
    "FaAccount",
    "FaCategory",
    "FaTransaction",
]
