from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
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
    text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UtcDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC timestamps on every backend.

    Postgres keeps ``timestamptz`` values as-is. SQLite has no timezone
    support, so values are normalized to UTC and stored naive, then re-tagged
    with ``UTC`` on the way out. Naive inputs are taken to already be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


_MONEY = Numeric(18, 2)
_QUANTITY = Numeric(24, 8)


# ---------------------------
# Ownership: households / users
# ---------------------------


class Household(Base):
    __tablename__ = "households"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    primary_currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD", server_default=text("'USD'")
    )
    timezone: Mapped[str] = mapped_column(
        String, nullable=False, default="UTC", server_default=text("'UTC'")
    )
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Users without a household are not notified by household jobs.
    household_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)


# ---------------------------
# Valuation store: accounts + priced holdings
# ---------------------------


ACCOUNT_TYPES: tuple[str, ...] = (
    "bank_account",
    "stock",
    "crypto",
    "real_estate",
    "debt",
    "superannuation",
    "personal_asset",
    "business_asset",
)


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    # Last-known stored value; the snapshot fallback when a market price is unusable.
    current_balance: Mapped[Decimal] = mapped_column(_MONEY, nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    include_in_net_worth: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "type in ('bank_account','stock','crypto','real_estate','debt',"
            "'superannuation','personal_asset','business_asset')",
            name="ck_accounts_type",
        ),
    )


class StockHolding(Base):
    __tablename__ = "stocks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    shares: Mapped[Decimal] = mapped_column(_QUANTITY, nullable=False, default=Decimal("0"))
    # Cached by the external price refresher; never fetched by the engine.
    current_price: Mapped[Decimal | None] = mapped_column(_QUANTITY, nullable=True)
    price_updated_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


class CryptoHolding(Base):
    __tablename__ = "crypto_assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    holdings: Mapped[Decimal] = mapped_column(_QUANTITY, nullable=False, default=Decimal("0"))
    current_price: Mapped[Decimal | None] = mapped_column(_QUANTITY, nullable=True)
    price_updated_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


# ---------------------------
# Ledger: categories / transactions / recurring schedules
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default="expense")


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="cleared", server_default=text("'cleared'")
    )
    # Always positive; ``type`` carries the direction.
    amount: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    date: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    recurring_schedule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        CheckConstraint("type in ('income','expense','transfer')", name="ck_transactions_type"),
        CheckConstraint(
            "status in ('pending','cleared','reconciled','void')",
            name="ck_transactions_status",
        ),
        Index("ix_transactions_household_date", "household_id", "date"),
        Index("ix_transactions_category", "category_id"),
    )


class RecurringSchedule(Base):
    __tablename__ = "recurring_schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    transfer_account_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String, nullable=False, default="expense")
    amount: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Embedded recurrence rule
    frequency: Mapped[str] = mapped_column(String, nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Maintained by household_engine.recurrence only.
    next_occurrence: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    last_occurrence: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "frequency in ('daily','weekly','biweekly','monthly','quarterly','yearly')",
            name="ck_recurring_frequency",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date", name="ck_recurring_end_after_start"
        ),
    )


# ---------------------------
# Goals / budgets / insurance
# ---------------------------


class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    target_amount: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(_MONEY, nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")


class Budget(Base):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    period: Mapped[str] = mapped_column(String, nullable=False, default="monthly")
    # Percent of ``amount``; NULL falls back to 80.
    alert_threshold: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    alert_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class InsurancePolicy(Base):
    __tablename__ = "insurance_policies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    premium_amount: Mapped[Decimal] = mapped_column(_MONEY, nullable=False, default=Decimal("0"))
    renewal_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


# ---------------------------
# Derived records written by the engine
# ---------------------------


class NetWorthSnapshot(Base):
    __tablename__ = "net_worth_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    # UTC calendar day; (household_id, snapshot_date) is the natural key.
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_assets: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    total_liabilities: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    net_worth: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    # account type tag -> decimal string
    breakdown: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False)
    primary_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("household_id", "snapshot_date", name="uq_net_worth_household_day"),
    )


class MonthlyRollup(Base):
    __tablename__ = "monthly_analytics_rollups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    # NULL marks the household-wide total row.
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="CASCADE"), nullable=True
    )
    total_income: Mapped[Decimal] = mapped_column(_MONEY, nullable=False, default=Decimal("0"))
    total_expense: Mapped[Decimal] = mapped_column(_MONEY, nullable=False, default=Decimal("0"))
    total_transfers: Mapped[Decimal] = mapped_column(_MONEY, nullable=False, default=Decimal("0"))
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Total row only
    unique_days_with_transactions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    largest_transaction: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    average_transaction_size: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_rollups_household_month", "household_id", "month"),)


NOTIFICATION_TYPES: tuple[str, ...] = (
    "bill_reminder",
    "goal_milestone",
    "budget_warning",
    "insurance_renewal",
)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    priority: Mapped[str] = mapped_column(String, nullable=False, default="normal")
    link: Mapped[str | None] = mapped_column(Text, nullable=True)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    # String form of the value that fired (milestone, level, renewal boundary).
    trigger_value: Mapped[str | None] = mapped_column(String, nullable=True)
    # ``metadata`` is reserved on declarative classes; keep the column name.
    payload: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "type in ('bill_reminder','goal_milestone','budget_warning','insurance_renewal')",
            name="ck_notifications_type",
        ),
        CheckConstraint(
            "priority in ('low','normal','high','urgent')", name="ck_notifications_priority"
        ),
        Index(
            "ix_notifications_resource",
            "resource_type",
            "resource_id",
            "created_at",
        ),
        # Backstop for the unbounded dedup families; windowed families rely
        # on the pre-insert query only.
        Index(
            "uq_notifications_once_per_trigger",
            "user_id",
            "resource_type",
            "resource_id",
            "trigger_value",
            unique=True,
            sqlite_where=text("type IN ('goal_milestone', 'insurance_renewal')"),
            postgresql_where=text("type IN ('goal_milestone', 'insurance_renewal')"),
        ),
    )


__all__ = [
    "ACCOUNT_TYPES",
    "NOTIFICATION_TYPES",
    "Account",
    "Base",
    "Budget",
    "Category",
    "CryptoHolding",
    "Goal",
    "Household",
    "InsurancePolicy",
    "MonthlyRollup",
    "NetWorthSnapshot",
    "Notification",
    "RecurringSchedule",
    "StockHolding",
    "Transaction",
    "User",
    "UtcDateTime",
]
