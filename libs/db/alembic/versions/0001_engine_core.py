# ruff: noqa: I001
"""Household ledger, valuation and derived-record tables.

Revision ID: 0001_engine_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_engine_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_ID = sa.String(36)
_MONEY = sa.Numeric(18, 2)
_QUANTITY = sa.Numeric(24, 8)


def _ts(name: str, *, nullable: bool = False) -> sa.Column:
    kwargs = {} if nullable else {"server_default": sa.text("CURRENT_TIMESTAMP")}
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


def _household_fk() -> sa.Column:
    return sa.Column(
        "household_id",
        _ID,
        sa.ForeignKey("households.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "households",
        sa.Column("id", _ID, primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("primary_currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        _ts("created_at"),
    )
    op.create_table(
        "users",
        sa.Column("id", _ID, primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column(
            "household_id",
            _ID,
            sa.ForeignKey("households.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("created_at"),
    )

    # Valuation store
    op.create_table(
        "accounts",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("current_balance", _MONEY, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("include_in_net_worth", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint(
            "type in ('bank_account','stock','crypto','real_estate','debt',"
            "'superannuation','personal_asset','business_asset')",
            name="ck_accounts_type",
        ),
    )
    op.create_index("ix_accounts_household_id", "accounts", ["household_id"])

    for table, quantity in (("stocks", "shares"), ("crypto_assets", "holdings")):
        op.create_table(
            table,
            sa.Column("id", _ID, primary_key=True),
            sa.Column(
                "account_id",
                _ID,
                sa.ForeignKey("accounts.id", ondelete="CASCADE"),
                nullable=False,
                unique=True,
            ),
            sa.Column("symbol", sa.String(), nullable=False),
            sa.Column(quantity, _QUANTITY, nullable=False, server_default="0"),
            sa.Column("current_price", _QUANTITY, nullable=True),
            _ts("price_updated_at", nullable=True),
        )

    # Ledger
    op.create_table(
        "categories",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default="expense"),
    )
    op.create_table(
        "transactions",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column(
            "account_id", _ID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="cleared"),
        sa.Column("amount", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "category_id",
            _ID,
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("recurring_schedule_id", _ID, nullable=True),
        sa.CheckConstraint("type in ('income','expense','transfer')", name="ck_transactions_type"),
        sa.CheckConstraint(
            "status in ('pending','cleared','reconciled','void')",
            name="ck_transactions_status",
        ),
    )
    op.create_index("ix_transactions_household_date", "transactions", ["household_id", "date"])
    op.create_index("ix_transactions_category", "transactions", ["category_id"])

    op.create_table(
        "recurring_schedules",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column(
            "account_id", _ID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "transfer_account_id",
            _ID,
            sa.ForeignKey("accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "category_id",
            _ID,
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("type", sa.String(), nullable=False, server_default="expense"),
        sa.Column("amount", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("frequency", sa.String(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("month", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        _ts("end_date", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("next_occurrence", nullable=True),
        _ts("last_occurrence", nullable=True),
        sa.Column("occurrence_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("auto_create", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.CheckConstraint(
            "frequency in ('daily','weekly','biweekly','monthly','quarterly','yearly')",
            name="ck_recurring_frequency",
        ),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date", name="ck_recurring_end_after_start"
        ),
    )

    # Goals / budgets / insurance
    op.create_table(
        "goals",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("target_amount", _MONEY, nullable=False),
        sa.Column("current_amount", _MONEY, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
    )
    op.create_table(
        "budgets",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column(
            "category_id", _ID, sa.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("amount", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("period", sa.String(), nullable=False, server_default="monthly"),
        sa.Column("alert_threshold", sa.Numeric(5, 2), nullable=True),
        sa.Column("alert_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "insurance_policies",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("premium_amount", _MONEY, nullable=False, server_default="0"),
        _ts("renewal_date", nullable=True),
    )

    # Derived records
    op.create_table(
        "net_worth_snapshots",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("total_assets", _MONEY, nullable=False),
        sa.Column("total_liabilities", _MONEY, nullable=False),
        sa.Column("net_worth", _MONEY, nullable=False),
        sa.Column("breakdown", sa.JSON(), nullable=False),
        sa.Column("primary_currency", sa.String(3), nullable=False, server_default="USD"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("household_id", "snapshot_date", name="uq_net_worth_household_day"),
    )
    op.create_table(
        "monthly_analytics_rollups",
        sa.Column("id", _ID, primary_key=True),
        _household_fk(),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column(
            "category_id",
            _ID,
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("total_income", _MONEY, nullable=False, server_default="0"),
        sa.Column("total_expense", _MONEY, nullable=False, server_default="0"),
        sa.Column("total_transfers", _MONEY, nullable=False, server_default="0"),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_days_with_transactions", sa.Integer(), nullable=True),
        sa.Column("largest_transaction", _MONEY, nullable=True),
        sa.Column("average_transaction_size", _MONEY, nullable=True),
        _ts("created_at"),
    )
    op.create_index(
        "ix_rollups_household_month", "monthly_analytics_rollups", ["household_id", "month"]
    )

    op.create_table(
        "notifications",
        sa.Column("id", _ID, primary_key=True),
        sa.Column("user_id", _ID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False, server_default="normal"),
        sa.Column("link", sa.Text(), nullable=True),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", _ID, nullable=True),
        sa.Column("trigger_value", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("read_at", nullable=True),
        _ts("created_at"),
        sa.CheckConstraint(
            "type in ('bill_reminder','goal_milestone','budget_warning','insurance_renewal')",
            name="ck_notifications_type",
        ),
        sa.CheckConstraint(
            "priority in ('low','normal','high','urgent')", name="ck_notifications_priority"
        ),
    )
    op.create_index(
        "ix_notifications_resource",
        "notifications",
        ["resource_type", "resource_id", "created_at"],
    )
    once = sa.text("type IN ('goal_milestone', 'insurance_renewal')")
    op.create_index(
        "uq_notifications_once_per_trigger",
        "notifications",
        ["user_id", "resource_type", "resource_id", "trigger_value"],
        unique=True,
        postgresql_where=once,
        sqlite_where=once,
    )


def downgrade() -> None:
    op.drop_index("uq_notifications_once_per_trigger", table_name="notifications")
    op.drop_index("ix_notifications_resource", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_rollups_household_month", table_name="monthly_analytics_rollups")
    op.drop_table("monthly_analytics_rollups")
    op.drop_table("net_worth_snapshots")
    op.drop_table("insurance_policies")
    op.drop_table("budgets")
    op.drop_table("goals")
    op.drop_table("recurring_schedules")
    op.drop_index("ix_transactions_category", table_name="transactions")
    op.drop_index("ix_transactions_household_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("crypto_assets")
    op.drop_table("stocks")
    op.drop_index("ix_accounts_household_id", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")
    op.drop_table("households")
