# ruff: noqa: I001
"""Monthly category rollups.

For one (household, month) the builder streams the month's cleared
transactions once, accumulating a household total and per-category sums, and
then replaces the stored row set for that key in a single transaction. A
transaction re-categorized between runs therefore moves from the old category
row to the new one; the two never coexist.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.finance import Household, Transaction
from .errors import InvalidJobParameters, UnknownHousehold
from .logging_setup import get_logger
from .models import RollupRow
from .persistence import replace_rollups, to_money

logger = get_logger(__name__)

_STREAM_BATCH = 500
_ZERO = Decimal("0.00")


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def validate_period(year: int, month: int) -> None:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidJobParameters(f"month must be an integer in 1..12, got {month!r}")
    if isinstance(year, bool) or not isinstance(year, int) or not 1970 <= year <= 9998:
        raise InvalidJobParameters(f"year out of range: {year!r}")


def month_window(year: int, month: int) -> tuple[datetime, datetime]:
    """Return ``[first_of_month, first_of_next_month)`` in UTC."""

    validate_period(year, month)
    start = datetime(year, month, 1, tzinfo=UTC)
    if month == 12:
        return start, datetime(year + 1, 1, 1, tzinfo=UTC)
    return start, datetime(year, month + 1, 1, tzinfo=UTC)


def previous_month(now: datetime) -> tuple[int, int]:
    """Calendar month before ``now`` (UTC)."""

    now = now.astimezone(UTC) if now.tzinfo else now
    if now.month == 1:
        return now.year - 1, 12
    return now.year, now.month - 1


@dataclass(slots=True)
class _Bucket:
    income: Decimal = _ZERO
    expense: Decimal = _ZERO
    transfers: Decimal = _ZERO
    count: int = 0

    def add(self, kind: str, amount: Decimal) -> None:
        if kind == "income":
            self.income += amount
        elif kind == "expense":
            self.expense += amount
        elif kind == "transfer":
            self.transfers += amount
        self.count += 1


@dataclass(slots=True)
class _Totals(_Bucket):
    days: set[date] = field(default_factory=set)
    largest: Decimal = _ZERO
    sum_abs: Decimal = _ZERO

    def observe(self, kind: str, amount: Decimal, when: datetime) -> None:
        self.add(kind, amount)
        magnitude = abs(amount)
        self.days.add(when.astimezone(UTC).date())
        self.sum_abs += magnitude
        if magnitude > self.largest:
            self.largest = magnitude


def build_rollup(
    session: Session,
    household_id: str,
    year: int,
    month: int,
    *,
    now: datetime | None = None,
) -> list[RollupRow]:
    """Recompute and store the rollup rows of one household-month.

    Returns the rows written, household total first, then categories ordered
    by id. ``now`` stamps ``created_at`` on the new rows.

    Raises
    ------
    InvalidJobParameters
        If ``month`` is outside 1..12 (or ``year`` is implausible).
    UnknownHousehold
        If ``household_id`` does not exist.
    """

    start, end = month_window(year, month)
    if session.get(Household, household_id) is None:
        raise UnknownHousehold(household_id)
    key = month_key(year, month)

    totals = _Totals()
    by_category: dict[str, _Bucket] = defaultdict(_Bucket)

    stmt = (
        select(Transaction.type, Transaction.amount, Transaction.date, Transaction.category_id)
        .where(
            Transaction.household_id == household_id,
            Transaction.status == "cleared",
            Transaction.date >= start,
            Transaction.date < end,
        )
        .execution_options(yield_per=_STREAM_BATCH)
    )
    for kind, raw_amount, when, category_id in session.execute(stmt):
        amount = to_money(raw_amount)
        totals.observe(kind, amount, when)
        if category_id is not None:
            by_category[category_id].add(kind, amount)

    average = _ZERO
    if totals.count:
        average = (totals.sum_abs / totals.count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    rows = [
        RollupRow(
            month=key,
            category_id=None,
            total_income=totals.income,
            total_expense=totals.expense,
            total_transfers=totals.transfers,
            transaction_count=totals.count,
            unique_days_with_transactions=len(totals.days),
            largest_transaction=totals.largest if totals.count else None,
            average_transaction_size=average,
        )
    ]
    rows.extend(
        RollupRow(
            month=key,
            category_id=category_id,
            total_income=bucket.income,
            total_expense=bucket.expense,
            total_transfers=bucket.transfers,
            transaction_count=bucket.count,
        )
        for category_id, bucket in sorted(by_category.items())
    )

    replace_rollups(session, household_id=household_id, month=key, rows=rows, now=now)
    logger.info(
        "Rollup %s for household %s: %d transactions, %d category rows",
        key,
        household_id,
        totals.count,
        len(rows) - 1,
    )
    return rows


__all__ = [
    "build_rollup",
    "month_key",
    "month_window",
    "previous_month",
    "validate_period",
]
