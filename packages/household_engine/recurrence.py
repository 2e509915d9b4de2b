# ruff: noqa: I001
"""Next-occurrence calculation for recurring schedules.

``next_occurrence`` is pure: it never reads the clock and never touches the
database. ``refresh_schedules`` is the only code path that writes
``RecurringSchedule.next_occurrence``.

Calendar policy
---------------
- Weekdays use 0 = Sunday .. 6 = Saturday.
- A ``day_of_month`` past the end of the target month clamps to that month's
  last day (``monthly`` day 31 from March 15 lands on April 30, never May 1).
- ``daily``/``weekly``/``biweekly`` keep the reference time of day;
  ``monthly``/``quarterly``/``yearly`` land on midnight UTC.
"""

from __future__ import annotations

import calendar
from datetime import UTC, datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from db.models.finance import RecurringSchedule
from .logging_setup import get_logger
from .models import Frequency, RecurrenceRule, UnitFailure

logger = get_logger(__name__)

# Guards the occurrence walk for schedules that fell far behind.
_MAX_CATCH_UP = 10_000


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _clamped_midnight(year: int, month: int, day: int) -> datetime:
    last = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last), tzinfo=UTC)


def _sunday_based_weekday(value: datetime) -> int:
    # date.weekday() is Monday=0; shift so Sunday=0.
    return (value.weekday() + 1) % 7


def next_occurrence(rule: RecurrenceRule, reference: datetime) -> datetime:
    """Return the first occurrence of ``rule`` strictly after ``reference``.

    A rule that has not started yet returns ``rule.start`` unchanged.
    ``rule.end`` and ``rule.active`` are not consulted here; see
    :func:`schedule_next_occurrence`.
    """

    ref = _as_utc(reference)
    start = _as_utc(rule.start)
    if start > ref:
        return start

    freq = rule.frequency
    day = rule.day_of_month or 1

    if freq is Frequency.DAILY:
        return ref + timedelta(days=1)

    if freq is Frequency.WEEKLY:
        target = rule.day_of_week if rule.day_of_week is not None else 0
        ahead = (target - _sunday_based_weekday(ref)) % 7 or 7
        return ref + timedelta(days=ahead)

    if freq is Frequency.BIWEEKLY:
        return ref + timedelta(days=14)

    if freq is Frequency.MONTHLY:
        year, month = (ref.year + 1, 1) if ref.month == 12 else (ref.year, ref.month + 1)
        return _clamped_midnight(year, month, day)

    if freq is Frequency.QUARTERLY:
        quarter = (ref.month - 1) // 3
        if quarter == 3:
            return _clamped_midnight(ref.year + 1, 1, day)
        return _clamped_midnight(ref.year, (quarter + 1) * 3 + 1, day)

    if freq is Frequency.YEARLY:
        month = rule.month_of_year or 1
        candidate = _clamped_midnight(ref.year, month, day)
        if candidate.date() > ref.date():
            return candidate
        return _clamped_midnight(ref.year + 1, month, day)

    raise ValueError(f"Unsupported frequency: {freq!r}")


def schedule_next_occurrence(rule: RecurrenceRule, reference: datetime) -> datetime | None:
    """Like :func:`next_occurrence`, but ``None`` for inactive or ended rules."""

    if not rule.active:
        return None
    nxt = next_occurrence(rule, reference)
    if rule.end is not None and nxt > _as_utc(rule.end):
        return None
    return nxt


def schedule_rule(schedule: RecurringSchedule) -> RecurrenceRule:
    """Build the :class:`RecurrenceRule` embedded in a schedule row."""

    return RecurrenceRule(
        frequency=Frequency(schedule.frequency),
        start=schedule.start_date,
        day_of_week=schedule.day_of_week,
        day_of_month=schedule.day_of_month,
        month_of_year=schedule.month,
        end=schedule.end_date,
        active=schedule.is_active,
    )


def _advance(schedule: RecurringSchedule, rule: RecurrenceRule, now: datetime) -> bool:
    """Move one schedule forward past ``now``; return True when it changed."""

    previous = schedule.next_occurrence
    if previous is None:
        nxt = schedule_next_occurrence(rule, now)
        if nxt == previous:
            return False
        schedule.next_occurrence = nxt
        return True

    cursor: datetime | None = previous
    passed = 0
    last = schedule.last_occurrence
    while cursor is not None and cursor < now:
        last = cursor
        passed += 1
        if passed > _MAX_CATCH_UP:
            raise RuntimeError(f"schedule {schedule.id} is too far behind to catch up")
        cursor = schedule_next_occurrence(rule, cursor)

    if passed == 0:
        return False
    schedule.last_occurrence = last
    schedule.occurrence_count = (schedule.occurrence_count or 0) + passed
    schedule.next_occurrence = cursor
    return True


def refresh_schedules(
    session: Session, household_id: str, now: datetime
) -> tuple[int, list[UnitFailure]]:
    """Advance stale schedules of a household.

    Active schedules whose ``next_occurrence`` is missing or already before
    ``now`` have every passed occurrence counted, the last one recorded as
    ``last_occurrence``, and ``next_occurrence`` set to the first occurrence
    at or after ``now`` (``None`` once the schedule has ended).

    Each schedule is updated inside its own SAVEPOINT; a schedule that cannot
    be advanced (bad rule data) is logged and reported, not raised.

    Returns
    -------
    (updated, failures)
        Number of schedules changed, and the per-schedule failures.
    """

    now = _as_utc(now)
    stmt = (
        select(RecurringSchedule)
        .where(
            RecurringSchedule.household_id == household_id,
            RecurringSchedule.is_active.is_(True),
            or_(
                RecurringSchedule.next_occurrence.is_(None),
                RecurringSchedule.next_occurrence < now,
            ),
        )
        .order_by(RecurringSchedule.id)
    )
    schedules = list(session.scalars(stmt))

    updated = 0
    failures: list[UnitFailure] = []
    for schedule in schedules:
        sid = schedule.id
        savepoint = session.begin_nested()
        try:
            changed = _advance(schedule, schedule_rule(schedule), now)
            session.flush()
        except Exception as exc:
            savepoint.rollback()
            logger.exception("Failed to refresh schedule %s", sid)
            failures.append(UnitFailure("recurring_schedule", sid, str(exc)))
            continue
        savepoint.commit()
        if changed:
            updated += 1

    if updated:
        logger.info("Refreshed %d schedule(s) for household %s", updated, household_id)
    return updated, failures


__all__ = [
    "next_occurrence",
    "refresh_schedules",
    "schedule_next_occurrence",
    "schedule_rule",
]
