# ruff: noqa: I001
"""Ledger core tables: accounts, two-level categories, transactions with splits.

Revision ID: 0001_split_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_split_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "fa_accounts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("currency_code", sa.CHAR(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "fa_categories",
        sa.Column("code", sa.String(), primary_key=True),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column(
            "parent_code",
            sa.String(),
            sa.ForeignKey("fa_categories.code", deferrable=True, initially="DEFERRED"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "parent_code IS NULL OR parent_code <> code", name="ck_fa_cat_no_self_parent"
        ),
    )
    # Display names are unique per parent (case-insensitive); top-level rows
    # share the '' bucket.
    op.create_index(
        "uniq_fa_categories_parent_lower_name",
        "fa_categories",
        [sa.text("coalesce(parent_code, '')"), sa.text("lower(display_name)")],
        unique=True,
    )

    op.create_table(
        "fa_transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("external_id", sa.String(), nullable=False, unique=True),
        sa.Column("account_id", sa.String(), sa.ForeignKey("fa_accounts.id"), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency_code", sa.CHAR(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("merchant_name", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column(
            "category",
            sa.String(),
            sa.ForeignKey("fa_categories.code", deferrable=True, initially="DEFERRED"),
            nullable=True,
        ),
        sa.Column(
            "subcategory",
            sa.String(),
            sa.ForeignKey("fa_categories.code", deferrable=True, initially="DEFERRED"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("files", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("is_split", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_manual", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "parent_transaction_id",
            sa.String(),
            sa.ForeignKey("fa_transactions.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("original_transaction_id", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "parent_transaction_id IS NULL OR parent_transaction_id <> id",
            name="ck_fa_tx_no_self_parent",
        ),
    )
    op.create_index("ix_fa_transactions_account_id", "fa_transactions", ["account_id"])
    op.create_index("ix_fa_transactions_date", "fa_transactions", ["date"])
    op.create_index(
        "ix_fa_transactions_parent_transaction_id", "fa_transactions", ["parent_transaction_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_fa_transactions_parent_transaction_id", table_name="fa_transactions")
    op.drop_index("ix_fa_transactions_date", table_name="fa_transactions")
    op.drop_index("ix_fa_transactions_account_id", table_name="fa_transactions")
    op.drop_table("fa_transactions")
    op.drop_index("uniq_fa_categories_parent_lower_name", table_name="fa_categories")
    op.drop_table("fa_categories")
    op.drop_table("fa_accounts")
