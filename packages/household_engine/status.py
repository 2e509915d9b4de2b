# ruff: noqa: I001
"""Read-only summaries of what the jobs have produced.

Monetary values are returned as decimal strings so results can be dumped to
JSON as-is.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TypedDict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.finance import MonthlyRollup, NetWorthSnapshot, Notification
from .rollup import month_key

SNAPSHOT_LOOKBACK_DAYS = 30
NOTIFICATION_LOOKBACK = timedelta(hours=24)


class LatestSnapshotDict(TypedDict):
    snapshot_date: str
    total_assets: str
    total_liabilities: str
    net_worth: str
    currency: str


class SnapshotStatus(TypedDict):
    latest: LatestSnapshotDict | None
    snapshots_last_30_days: int
    has_recent_data: bool


class MonthTotalsDict(TypedDict):
    month: str
    total_income: str
    total_expense: str
    net_savings: str
    transaction_count: int


class RollupStatus(TypedDict):
    year: int
    months: list[MonthTotalsDict]
    missing_months: list[str]


class NotificationStats(TypedDict):
    last_24_hours: int
    by_type: dict[str, int]
    unread: int


def _utc(now: datetime) -> datetime:
    return now.astimezone(UTC) if now.tzinfo else now.replace(tzinfo=UTC)


def snapshot_status(session: Session, household_id: str, now: datetime) -> SnapshotStatus:
    """Latest snapshot and how many snapshots exist for the last 30 days."""

    today = _utc(now).date()
    latest = session.scalars(
        select(NetWorthSnapshot)
        .where(NetWorthSnapshot.household_id == household_id)
        .order_by(NetWorthSnapshot.snapshot_date.desc())
        .limit(1)
    ).first()
    recent = session.scalar(
        select(func.count(NetWorthSnapshot.id)).where(
            NetWorthSnapshot.household_id == household_id,
            NetWorthSnapshot.snapshot_date > today - timedelta(days=SNAPSHOT_LOOKBACK_DAYS),
            NetWorthSnapshot.snapshot_date <= today,
        )
    ) or 0

    latest_dict: LatestSnapshotDict | None = None
    if latest is not None:
        latest_dict = {
            "snapshot_date": latest.snapshot_date.isoformat(),
            "total_assets": f"{latest.total_assets:.2f}",
            "total_liabilities": f"{latest.total_liabilities:.2f}",
            "net_worth": f"{latest.net_worth:.2f}",
            "currency": latest.primary_currency,
        }
    return {
        "latest": latest_dict,
        "snapshots_last_30_days": int(recent),
        "has_recent_data": recent >= SNAPSHOT_LOOKBACK_DAYS,
    }


def rollup_status(session: Session, household_id: str, year: int) -> RollupStatus:
    """Household-total rollup rows of ``year`` plus the months never rolled up."""

    rows = session.scalars(
        select(MonthlyRollup)
        .where(
            MonthlyRollup.household_id == household_id,
            MonthlyRollup.category_id.is_(None),
            MonthlyRollup.month.like(f"{year:04d}-%"),
        )
        .order_by(MonthlyRollup.month)
    ).all()

    months: list[MonthTotalsDict] = [
        {
            "month": row.month,
            "total_income": f"{row.total_income:.2f}",
            "total_expense": f"{row.total_expense:.2f}",
            "net_savings": f"{row.total_income - row.total_expense:.2f}",
            "transaction_count": row.transaction_count,
        }
        for row in rows
    ]
    present = {row.month for row in rows}
    missing = [month_key(year, m) for m in range(1, 13) if month_key(year, m) not in present]
    return {"year": year, "months": months, "missing_months": missing}


def notification_stats(session: Session, user_id: str, now: datetime) -> NotificationStats:
    """A user's notifications of the last 24 h by type, and how many of those are unread."""

    since = _utc(now) - NOTIFICATION_LOOKBACK
    by_type = {
        kind: int(count)
        for kind, count in session.execute(
            select(Notification.type, func.count(Notification.id))
            .where(Notification.user_id == user_id, Notification.created_at >= since)
            .group_by(Notification.type)
            .order_by(Notification.type)
        )
    }
    unread = session.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.created_at >= since,
            Notification.is_read.is_(False),
        )
    ) or 0
    return {"last_24_hours": sum(by_type.values()), "by_type": by_type, "unread": int(unread)}


__all__ = [
    "NotificationStats",
    "RollupStatus",
    "SnapshotStatus",
    "notification_stats",
    "rollup_status",
    "snapshot_status",
]
