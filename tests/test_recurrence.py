from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from db.client import session_scope
from db.models.finance import RecurringSchedule

from household_engine.models import Frequency, RecurrenceRule
from household_engine.recurrence import (
    next_occurrence,
    refresh_schedules,
    schedule_next_occurrence,
    schedule_rule,
)
from tests.helpers.db import add_account, add_household, add_schedule, utc

# 2026-03-15 is a Sunday.
SUNDAY = utc(2026, 3, 15, 10, 30)


def _rule(frequency: Frequency, **kw) -> RecurrenceRule:
    kw.setdefault("start", utc(2025, 1, 1))
    return RecurrenceRule(frequency=frequency, **kw)


@pytest.mark.parametrize("frequency", list(Frequency))
@pytest.mark.parametrize(
    "reference", [utc(2020, 1, 1), utc(2026, 6, 30, 23, 59), utc(2029, 12, 31)]
)
def test_future_start_is_returned_unchanged(frequency: Frequency, reference: datetime) -> None:
    start = utc(2030, 5, 17, 8, 15)
    rule = RecurrenceRule(frequency=frequency, start=start, day_of_month=31, day_of_week=3)
    assert next_occurrence(rule, reference) == start


def test_daily_keeps_time_of_day() -> None:
    assert next_occurrence(_rule(Frequency.DAILY), SUNDAY) == utc(2026, 3, 16, 10, 30)


def test_biweekly_adds_fourteen_days() -> None:
    assert next_occurrence(_rule(Frequency.BIWEEKLY), SUNDAY) == utc(2026, 3, 29, 10, 30)


def test_weekly_on_matching_weekday_advances_a_full_week() -> None:
    rule = _rule(Frequency.WEEKLY, day_of_week=0)
    assert next_occurrence(rule, SUNDAY) == utc(2026, 3, 22, 10, 30)


def test_weekly_defaults_to_sunday() -> None:
    wednesday = utc(2026, 3, 18, 9)
    assert next_occurrence(_rule(Frequency.WEEKLY), wednesday) == utc(2026, 3, 22, 9)


@pytest.mark.parametrize("day_of_week", range(7))
def test_weekly_always_advances_between_one_and_seven_days(day_of_week: int) -> None:
    rule = _rule(Frequency.WEEKLY, day_of_week=day_of_week)
    for offset in range(14):
        reference = SUNDAY + timedelta(days=offset)
        nxt = next_occurrence(rule, reference)
        assert nxt != reference
        assert timedelta(days=1) <= nxt - reference <= timedelta(days=7)
        assert (nxt.weekday() + 1) % 7 == day_of_week


@pytest.mark.parametrize(
    ("reference", "expected"),
    [
        # Clamped to the last day of April (no rollover into May).
        (utc(2026, 3, 15), utc(2026, 4, 30)),
        (utc(2026, 1, 15), utc(2026, 2, 28)),
        (utc(2028, 1, 15), utc(2028, 2, 29)),
        (utc(2026, 4, 15), utc(2026, 5, 31)),
        (utc(2026, 12, 31, 18), utc(2027, 1, 31)),
    ],
)
def test_monthly_day_31_clamps_to_month_end(reference: datetime, expected: datetime) -> None:
    rule = _rule(Frequency.MONTHLY, day_of_month=31)
    assert next_occurrence(rule, reference) == expected


def test_monthly_defaults_to_first_and_lands_on_midnight() -> None:
    assert next_occurrence(_rule(Frequency.MONTHLY), SUNDAY) == utc(2026, 4, 1)


@pytest.mark.parametrize(
    ("reference", "expected"),
    [
        (utc(2026, 2, 10), utc(2026, 4, 15)),
        (utc(2026, 4, 15), utc(2026, 7, 15)),
        (utc(2026, 8, 1), utc(2026, 10, 15)),
        (utc(2026, 11, 3), utc(2027, 1, 15)),
    ],
)
def test_quarterly_moves_to_next_quarter_start(reference: datetime, expected: datetime) -> None:
    rule = _rule(Frequency.QUARTERLY, day_of_month=15)
    assert next_occurrence(rule, reference) == expected


def test_quarterly_clamps_short_months() -> None:
    rule = _rule(Frequency.QUARTERLY, day_of_month=31)
    assert next_occurrence(rule, utc(2026, 1, 20)) == utc(2026, 4, 30)


def test_yearly_uses_current_year_while_date_is_ahead() -> None:
    rule = _rule(Frequency.YEARLY, month_of_year=6, day_of_month=15)
    assert next_occurrence(rule, utc(2026, 3, 1)) == utc(2026, 6, 15)
    assert next_occurrence(rule, utc(2026, 6, 15, 12)) == utc(2027, 6, 15)
    assert next_occurrence(rule, utc(2026, 9, 1)) == utc(2027, 6, 15)


def test_yearly_leap_day_clamps_in_common_years() -> None:
    rule = _rule(Frequency.YEARLY, month_of_year=2, day_of_month=29)
    assert next_occurrence(rule, utc(2026, 1, 1)) == utc(2026, 2, 28)
    assert next_occurrence(rule, utc(2027, 3, 1)) == utc(2028, 2, 29)


def test_naive_reference_is_treated_as_utc() -> None:
    naive = datetime(2026, 3, 15, 10, 30)
    assert next_occurrence(_rule(Frequency.DAILY), naive) == utc(2026, 3, 16, 10, 30)


def test_schedule_next_occurrence_respects_end_and_active() -> None:
    rule = _rule(Frequency.MONTHLY, end=utc(2026, 4, 10))
    assert schedule_next_occurrence(rule, utc(2026, 3, 5)) == utc(2026, 4, 1)
    assert schedule_next_occurrence(rule, utc(2026, 4, 5)) is None

    inactive = _rule(Frequency.DAILY, active=False)
    assert schedule_next_occurrence(inactive, SUNDAY) is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"day_of_week": 7},
        {"day_of_month": 0},
        {"day_of_month": 32},
        {"month_of_year": 13},
        {"end": utc(2024, 12, 31)},
    ],
)
def test_rule_validation(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        _rule(Frequency.MONTHLY, **kwargs)


def test_rule_accepts_frequency_strings() -> None:
    assert _rule("weekly").frequency is Frequency.WEEKLY  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        _rule("fortnightly")  # type: ignore[arg-type]


# ---- Schedule refresh ---------------------------------------------------------


def test_refresh_counts_every_passed_occurrence(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        sid = add_schedule(
            s, acct, start=utc(2025, 12, 1), next_occurrence=utc(2026, 1, 1), day_of_month=1
        ).id

    with session_scope(database_url=db_url) as s:
        updated, failures = refresh_schedules(s, hh.id, utc(2026, 3, 10))
    assert (updated, failures) == (1, [])

    with session_scope(database_url=db_url) as s:
        row = s.get(RecurringSchedule, sid)
        assert row.occurrence_count == 3
        assert row.last_occurrence == utc(2026, 3, 1)
        assert row.next_occurrence == utc(2026, 4, 1)


def test_refresh_fills_missing_next_and_leaves_current_ones(db_url: str) -> None:
    now = utc(2026, 3, 10, 12)
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        fresh = add_schedule(s, acct, frequency="weekly", day_of_week=5, start=utc(2026, 1, 1)).id
        current = add_schedule(s, acct, start=utc(2026, 1, 1), next_occurrence=utc(2026, 4, 1)).id

    with session_scope(database_url=db_url) as s:
        updated, _ = refresh_schedules(s, hh.id, now)
        assert updated == 1
        assert s.get(RecurringSchedule, fresh).next_occurrence == utc(2026, 3, 13, 12)
        assert s.get(RecurringSchedule, fresh).occurrence_count == 0
        assert s.get(RecurringSchedule, current).next_occurrence == utc(2026, 4, 1)


def test_refresh_clears_next_once_schedule_ends(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        sid = add_schedule(
            s,
            acct,
            start=utc(2025, 12, 1),
            end=utc(2026, 2, 15),
            next_occurrence=utc(2026, 1, 1),
        ).id

    with session_scope(database_url=db_url) as s:
        refresh_schedules(s, hh.id, utc(2026, 3, 10))

    with session_scope(database_url=db_url) as s:
        row = s.get(RecurringSchedule, sid)
        assert row.next_occurrence is None
        assert row.last_occurrence == utc(2026, 2, 1)
        assert row.occurrence_count == 2


def test_refresh_isolates_a_broken_schedule(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        good = add_schedule(s, acct, start=utc(2026, 1, 1)).id
        bad = add_schedule(s, acct, start=utc(2026, 1, 1), day_of_month=40).id

    with session_scope(database_url=db_url) as s:
        updated, failures = refresh_schedules(s, hh.id, utc(2026, 3, 10))
    assert updated == 1
    assert [(f.family, f.resource_id) for f in failures] == [("recurring_schedule", bad)]

    with session_scope(database_url=db_url) as s:
        assert s.get(RecurringSchedule, good).next_occurrence == utc(2026, 4, 1)
        assert s.get(RecurringSchedule, bad).next_occurrence is None


def test_schedule_rule_reads_embedded_columns(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        row = add_schedule(
            s, acct, frequency="yearly", start=utc(2026, 1, 1), month=7, day_of_month=4
        )
        rule = schedule_rule(row)
    assert rule.frequency is Frequency.YEARLY
    assert (rule.month_of_year, rule.day_of_month) == (7, 4)
    assert rule.start.tzinfo is not None
    assert rule.start == datetime(2026, 1, 1, tzinfo=UTC)
