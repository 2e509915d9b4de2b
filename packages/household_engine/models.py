"""Domain values and report models for ``household_engine``.

Plain values produced by the builders are frozen dataclasses. Shapes that are
serialized (notification metadata, the run report) are pydantic models so the
JSON form is validated in both directions.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class JobType(StrEnum):
    SNAPSHOT = "snapshot"
    ROLLUP = "rollup"
    MILESTONES = "milestones"


class NotificationFamily(StrEnum):
    """Rule families of the milestone evaluator; values are notification types."""

    BILL_REMINDER = "bill_reminder"
    GOAL_MILESTONE = "goal_milestone"
    BUDGET_ALERT = "budget_warning"
    INSURANCE_RENEWAL = "insurance_renewal"


# ---------------------------------------------------------------------------
# Recurrence rule
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    """When a recurring schedule fires.

    Attributes
    ----------
    frequency:
        One of :class:`Frequency`.
    start:
        First possible occurrence. Until it is reached, it *is* the next
        occurrence.
    day_of_week:
        0-6 with 0 = Sunday; ``weekly`` only (defaults to Sunday).
    day_of_month:
        1-31; ``monthly``/``quarterly``/``yearly`` (defaults to 1). Days past
        the end of the target month clamp to its last day.
    month_of_year:
        1-12; ``yearly`` only (defaults to January).
    end:
        Optional last instant at which the rule may fire.
    active:
        Inactive rules never produce a schedule occurrence.
    """

    frequency: Frequency
    start: datetime
    day_of_week: int | None = None
    day_of_month: int | None = None
    month_of_year: int | None = None
    end: datetime | None = None
    active: bool = True

    def __post_init__(self) -> None:
        # Accept plain strings from storage rows.
        object.__setattr__(self, "frequency", Frequency(self.frequency))

        bounds = {
            "day_of_week": (self.day_of_week, 0, 6),
            "day_of_month": (self.day_of_month, 1, 31),
            "month_of_year": (self.month_of_year, 1, 12),
        }
        for name, (val, lo, hi) in bounds.items():
            if val is None:
                continue
            if isinstance(val, bool) or not isinstance(val, int) or not lo <= val <= hi:
                raise ValueError(f"RecurrenceRule.{name} must be an integer in {lo}..{hi}")

        if self.end is not None and self.end < self.start:
            raise ValueError("RecurrenceRule.end must not be before start")


# ---------------------------------------------------------------------------
# Builder results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SnapshotResult:
    """Values written for one (household, day) net-worth snapshot."""

    snapshot_id: str
    household_id: str
    snapshot_date: date
    total_assets: Decimal
    total_liabilities: Decimal
    net_worth: Decimal
    breakdown: Mapping[str, Decimal]
    currency: str
    updated: bool
    # Priced accounts valued at their stored balance instead of market price.
    degraded_accounts: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RollupRow:
    """One aggregate row; ``category_id is None`` marks the household total."""

    month: str
    category_id: str | None
    total_income: Decimal
    total_expense: Decimal
    total_transfers: Decimal
    transaction_count: int
    unique_days_with_transactions: int | None = None
    largest_transaction: Decimal | None = None
    average_transaction_size: Decimal | None = None

    @property
    def is_total(self) -> bool:
        return self.category_id is None


@dataclass(frozen=True, slots=True)
class UnitFailure:
    family: str
    resource_id: str
    message: str


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Notification rows emitted per family for one household."""

    counts: Mapping[str, int]
    schedules_refreshed: int = 0
    failures: tuple[UnitFailure, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


# ---------------------------------------------------------------------------
# Notification metadata (tagged union on ``kind``)
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)


class BillReminderPayload(_Payload):
    kind: Literal["bill_reminder"] = "bill_reminder"
    schedule_id: str
    due_at: datetime
    days_until: int
    amount: Decimal
    currency: str = "USD"

    @property
    def trigger_value(self) -> str:
        return self.due_at.date().isoformat()


class GoalMilestonePayload(_Payload):
    kind: Literal["goal_milestone"] = "goal_milestone"
    milestone: Literal[25, 50, 75, 100]
    current_amount: Decimal
    target_amount: Decimal

    @property
    def trigger_value(self) -> str:
        return str(self.milestone)


class BudgetAlertPayload(_Payload):
    kind: Literal["budget_warning"] = "budget_warning"
    level: Literal["warning", "critical"]
    percent_spent: Decimal
    spent: Decimal
    budgeted: Decimal
    remaining: Decimal
    month: str

    @property
    def trigger_value(self) -> str:
        return self.level


class RenewalPayload(_Payload):
    kind: Literal["insurance_renewal"] = "insurance_renewal"
    warning_day: Literal[30, 7, 1]
    renewal_date: datetime
    provider: str
    premium: Decimal

    @property
    def trigger_value(self) -> str:
        # One reminder per boundary per renewal cycle.
        return f"{self.warning_day}d@{self.renewal_date.date().isoformat()}"


type NotificationPayload = Annotated[
    BillReminderPayload | GoalMilestonePayload | BudgetAlertPayload | RenewalPayload,
    Field(discriminator="kind"),
]

PAYLOAD_ADAPTER: TypeAdapter[NotificationPayload] = TypeAdapter(NotificationPayload)


# ---------------------------------------------------------------------------
# Run report
# ---------------------------------------------------------------------------


class SnapshotSummary(BaseModel):
    snapshot_id: str
    snapshot_date: date
    total_assets: Decimal
    total_liabilities: Decimal
    net_worth: Decimal
    currency: str
    updated: bool
    degraded_accounts: list[str] = Field(default_factory=list)


class RollupSummary(BaseModel):
    month: str
    rows_written: int
    total_income: Decimal
    total_expense: Decimal
    total_transfers: Decimal
    transaction_count: int


class NotificationSummary(BaseModel):
    generated: int
    by_type: dict[str, int]
    schedules_refreshed: int = 0
    unit_failures: list[str] = Field(default_factory=list)


class HouseholdReport(BaseModel):
    household_id: str
    snapshot: SnapshotSummary | None = None
    rollup: RollupSummary | None = None
    notifications: NotificationSummary | None = None
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class HouseholdError(BaseModel):
    household_id: str
    message: str


class RunReport(BaseModel):
    """Outcome of one job invocation.

    ``status`` separates a rejected invocation (nothing attempted) from a run
    where some households failed (``partial``).
    """

    status: Literal["ok", "partial", "rejected"]
    job_types: list[JobType] = Field(default_factory=list)
    month: str | None = None
    processed: int = 0
    failed: int = 0
    households: list[HouseholdReport] = Field(default_factory=list)
    errors: list[HouseholdError] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    rejection: str | None = None
    started_at: datetime
    finished_at: datetime


__all__ = [
    "BillReminderPayload",
    "BudgetAlertPayload",
    "EvaluationResult",
    "Frequency",
    "GoalMilestonePayload",
    "HouseholdError",
    "HouseholdReport",
    "JobType",
    "NotificationFamily",
    "NotificationPayload",
    "NotificationSummary",
    "PAYLOAD_ADAPTER",
    "RecurrenceRule",
    "RenewalPayload",
    "RollupRow",
    "RollupSummary",
    "RunReport",
    "SnapshotResult",
    "SnapshotSummary",
    "UnitFailure",
]
