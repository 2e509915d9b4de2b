# ruff: noqa: I001
"""Storage boundary for the engine's derived records.

Builders compute values; the functions here own how those values reach the
shared database (``libs/db``):

- Upsert one net-worth snapshot per (household, UTC day).
- Replace the rollup row set of a (household, month) in one transaction.
- Dedup lookups and fan-out inserts for notifications.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.finance import Household, MonthlyRollup, NetWorthSnapshot, Notification, User
from .logging_setup import get_logger
from .models import NotificationPayload, RollupRow

logger = get_logger(__name__)

_CENT = Decimal("0.01")


def to_money(raw: Any) -> Decimal:
    """Coerce ``raw`` to a cent-quantized ``Decimal`` (``None`` -> 0)."""

    if raw is None:
        return Decimal("0.00")
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a monetary amount: {raw!r}") from exc
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _upsert_insert(session: Session):
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return pg_insert
    if name == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"snapshot upsert is not implemented for dialect {name!r}")


# ---------------------------------------------------------------------------
# Households
# ---------------------------------------------------------------------------


def target_household_ids(session: Session, household_id: str | None = None) -> list[str]:
    """Return the households a job run should visit, in a stable order.

    A specific ``household_id`` that does not exist yields an empty list; the
    runner turns that into a rejected invocation.
    """

    stmt = select(Household.id).order_by(Household.created_at, Household.id)
    if household_id is not None:
        stmt = stmt.where(Household.id == household_id)
    return list(session.scalars(stmt))


def household_member_ids(session: Session, household_id: str) -> list[str]:
    stmt = select(User.id).where(User.household_id == household_id).order_by(User.id)
    return list(session.scalars(stmt))


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def upsert_snapshot(
    session: Session,
    *,
    household_id: str,
    snapshot_date: date,
    total_assets: Decimal,
    total_liabilities: Decimal,
    net_worth: Decimal,
    breakdown: Mapping[str, Decimal],
    currency: str,
    now: datetime,
) -> tuple[str, bool]:
    """Insert or overwrite the snapshot for ``(household_id, snapshot_date)``.

    Returns
    -------
    (snapshot_id, updated)
        ``updated`` is True when an existing row was overwritten.
    """

    key = (
        NetWorthSnapshot.household_id == household_id,
        NetWorthSnapshot.snapshot_date == snapshot_date,
    )
    existing = session.scalar(select(NetWorthSnapshot.id).where(*key))

    values = {
        "total_assets": total_assets,
        "total_liabilities": total_liabilities,
        "net_worth": net_worth,
        "breakdown": {k: f"{v:.2f}" for k, v in sorted(breakdown.items())},
        "primary_currency": currency,
        "updated_at": now,
    }
    insert = _upsert_insert(session)
    stmt = insert(NetWorthSnapshot).values(
        household_id=household_id,
        snapshot_date=snapshot_date,
        created_at=now,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[NetWorthSnapshot.household_id, NetWorthSnapshot.snapshot_date],
        set_={name: stmt.excluded[name] for name in values},
    )
    session.execute(stmt)
    # Core upsert bypasses the identity map.
    session.expire_all()

    snapshot_id = session.scalar(select(NetWorthSnapshot.id).where(*key))
    if snapshot_id is None:
        raise RuntimeError(f"snapshot upsert for {household_id} on {snapshot_date} wrote no row")
    return snapshot_id, existing is not None


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------


def replace_rollups(
    session: Session,
    *,
    household_id: str,
    month: str,
    rows: Sequence[RollupRow],
    now: datetime | None = None,
) -> int:
    """Atomically replace every rollup row of ``(household_id, month)``.

    Delete and insert run inside one SAVEPOINT: readers of the committed data
    see either the previous row set or the new one.
    """

    with session.begin_nested():
        session.execute(
            delete(MonthlyRollup).where(
                MonthlyRollup.household_id == household_id,
                MonthlyRollup.month == month,
            )
        )
        session.add_all(
            MonthlyRollup(
                household_id=household_id,
                month=month,
                category_id=row.category_id,
                total_income=row.total_income,
                total_expense=row.total_expense,
                total_transfers=row.total_transfers,
                transaction_count=row.transaction_count,
                unique_days_with_transactions=row.unique_days_with_transactions,
                largest_transaction=row.largest_transaction,
                average_transaction_size=row.average_transaction_size,
                **({"created_at": now} if now is not None else {}),
            )
            for row in rows
        )
        session.flush()
    return len(rows)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def notification_exists(
    session: Session,
    *,
    user_ids: Iterable[str],
    type: str,
    resource_type: str,
    resource_id: str,
    trigger_value: str | None = None,
    since: datetime | None = None,
) -> bool:
    """True when any of ``user_ids`` already received a matching notification.

    ``trigger_value`` narrows the match to one milestone/level/boundary;
    ``since`` bounds the look-back window (``None`` = unbounded).
    """

    users = list(user_ids)
    if not users:
        return False
    stmt = select(Notification.id).where(
        Notification.user_id.in_(users),
        Notification.type == type,
        Notification.resource_type == resource_type,
        Notification.resource_id == resource_id,
    )
    if trigger_value is not None:
        stmt = stmt.where(Notification.trigger_value == trigger_value)
    if since is not None:
        stmt = stmt.where(Notification.created_at >= since)
    return session.scalar(stmt.limit(1)) is not None


def insert_notifications(
    session: Session,
    *,
    user_ids: Sequence[str],
    title: str,
    message: str,
    priority: str,
    link: str,
    resource_type: str,
    resource_id: str,
    payload: NotificationPayload,
    created_at: datetime,
) -> int:
    """Fan one notification out to every user; return rows inserted.

    A unique-index conflict (another run notified first) inserts nothing and
    returns 0.
    """

    if not user_ids:
        return 0
    body = payload.model_dump(mode="json")
    savepoint = session.begin_nested()
    try:
        session.add_all(
            Notification(
                user_id=uid,
                title=title,
                message=message,
                type=payload.kind,
                priority=priority,
                link=link,
                resource_type=resource_type,
                resource_id=resource_id,
                trigger_value=payload.trigger_value,
                payload=body,
                created_at=created_at,
            )
            for uid in user_ids
        )
        session.flush()
    except IntegrityError:
        savepoint.rollback()
        logger.info(
            "Notification %s for %s %s already recorded; skipping",
            payload.trigger_value,
            resource_type,
            resource_id,
        )
        return 0
    savepoint.commit()
    return len(user_ids)


__all__ = [
    "household_member_ids",
    "insert_notifications",
    "notification_exists",
    "replace_rollups",
    "target_household_ids",
    "to_money",
    "upsert_snapshot",
]
