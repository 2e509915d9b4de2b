from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from db.client import session_scope
from db.models.finance import (
    Account,
    Category,
    Goal,
    InsurancePolicy,
    Notification,
    RecurringSchedule,
)
from sqlalchemy import select

import household_engine.milestones as milestones
from household_engine.milestones import evaluate_milestones
from household_engine.models import (
    PAYLOAD_ADAPTER,
    BudgetAlertPayload,
    GoalMilestonePayload,
    NotificationFamily,
    RenewalPayload,
)
from tests.helpers.db import (
    add_account,
    add_budget,
    add_category,
    add_goal,
    add_household,
    add_policy,
    add_schedule,
    add_transaction,
    utc,
)

NOW = utc(2026, 3, 10, 9)


def _notifications(db_url: str, type: str | None = None) -> list[Notification]:
    with session_scope(database_url=db_url) as s:
        stmt = select(Notification).order_by(Notification.created_at, Notification.id)
        if type is not None:
            stmt = stmt.where(Notification.type == type)
        return list(s.scalars(stmt))


def _evaluate(db_url: str, household_id: str, now=NOW, **kw):
    with session_scope(database_url=db_url) as s:
        return evaluate_milestones(s, household_id, now, **kw)


# ---- Goals -------------------------------------------------------------------


def test_goal_emits_highest_reached_milestone_once(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        goal_id = add_goal(s, hh, target="1000", current="820", name="Holiday").id
        household_id = hh.id

    first = _evaluate(db_url, household_id)
    assert first.counts["goal_milestone"] == 1

    [row] = _notifications(db_url, "goal_milestone")
    assert row.title == "Goal 75% reached: Holiday"
    assert row.priority == "normal"
    assert row.link == "/goals"
    assert (row.resource_type, row.resource_id, row.trigger_value) == ("goal", goal_id, "75")
    payload = PAYLOAD_ADAPTER.validate_python(row.payload)
    assert isinstance(payload, GoalMilestonePayload)
    assert payload.milestone == 75

    with session_scope(database_url=db_url) as s:
        s.get(Goal, goal_id).current_amount = Decimal("830")
    assert _evaluate(db_url, household_id, NOW + timedelta(days=1)).total == 0
    assert len(_notifications(db_url)) == 1


def test_goal_completion_is_high_priority(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        add_goal(s, hh, target="500", current="512.30", name="Laptop")
        household_id = hh.id

    _evaluate(db_url, household_id)

    [row] = _notifications(db_url, "goal_milestone")
    assert row.title == "Goal completed: Laptop"
    assert row.priority == "high"
    assert row.trigger_value == "100"


def test_goal_below_first_milestone_and_zero_target_emit_nothing(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        add_goal(s, hh, target="1000", current="249.99")
        add_goal(s, hh, target="0", current="10")
        household_id = hh.id

    assert _evaluate(db_url, household_id).total == 0


def test_each_member_receives_a_copy(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s, members=2)
        add_goal(s, hh, target="100", current="50")
        household_id = hh.id

    result = _evaluate(db_url, household_id)

    assert result.counts["goal_milestone"] == 2
    rows = _notifications(db_url)
    assert len({r.user_id for r in rows}) == 2
    assert {r.trigger_value for r in rows} == {"50"}


def test_household_without_members_emits_nothing(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s, members=0)
        add_goal(s, hh, target="100", current="100")
        household_id = hh.id

    result = _evaluate(db_url, household_id)
    assert result.total == 0
    assert result.failures == ()
    assert _notifications(db_url) == []


# ---- Budgets -----------------------------------------------------------------


def _budget_household(db_url: str, *, spent: str, amount: str = "500") -> tuple[str, str]:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        food = add_category(s, hh, "Food")
        budget = add_budget(s, hh, food, amount=amount)
        add_transaction(s, acct, type="expense", amount=spent, date=utc(2026, 3, 2), category=food)
        # Last month and future-dated spend are outside the window
        add_transaction(s, acct, type="expense", amount="300", date=utc(2026, 2, 27), category=food)
        add_transaction(s, acct, type="expense", amount="300", date=utc(2026, 3, 25), category=food)
        return hh.id, budget.id


def test_budget_warning_at_threshold(db_url: str) -> None:
    household_id, budget_id = _budget_household(db_url, spent="410")

    assert _evaluate(db_url, household_id).counts["budget_warning"] == 1

    [row] = _notifications(db_url, "budget_warning")
    assert row.title == "Budget warning"
    assert row.message == "You've used 82% of your $500.00 budget; $90.00 remaining"
    assert row.priority == "normal"
    payload = PAYLOAD_ADAPTER.validate_python(row.payload)
    assert isinstance(payload, BudgetAlertPayload)
    assert payload.level == "warning"
    assert payload.percent_spent == Decimal("82.00")
    assert payload.remaining == Decimal("90.00")
    assert payload.month == "2026-03"
    assert row.resource_id == budget_id


def test_budget_critical_when_exceeded(db_url: str) -> None:
    household_id, _ = _budget_household(db_url, spent="520")

    _evaluate(db_url, household_id)

    [row] = _notifications(db_url, "budget_warning")
    assert row.title == "Budget exceeded"
    assert row.priority == "high"
    assert row.trigger_value == "critical"
    assert row.payload["percent_spent"] == "104.00"


def test_budget_under_threshold_is_silent(db_url: str) -> None:
    household_id, _ = _budget_household(db_url, spent="399")
    assert _evaluate(db_url, household_id).total == 0


@pytest.mark.parametrize(
    ("spent", "expected"),
    [
        ("79995.00", None),
        ("80000.00", ("warning", "80.00")),
        ("99999.99", ("warning", "99.99")),
        ("100000.00", ("critical", "100.00")),
    ],
)
def test_budget_level_uses_exact_spend_at_boundaries(
    db_url: str, spent: str, expected: tuple[str, str] | None
) -> None:
    household_id, _ = _budget_household(db_url, spent=spent, amount="100000")

    _evaluate(db_url, household_id)

    rows = _notifications(db_url, "budget_warning")
    if expected is None:
        assert rows == []
    else:
        [row] = rows
        assert (row.trigger_value, row.payload["percent_spent"]) == expected


def test_budget_alert_repeats_only_after_dedup_window(db_url: str) -> None:
    household_id, _ = _budget_household(db_url, spent="410")

    assert _evaluate(db_url, household_id).total == 1
    assert _evaluate(db_url, household_id, NOW + timedelta(days=2)).total == 0
    assert _evaluate(db_url, household_id, NOW + timedelta(days=3, hours=1)).total == 1


def test_budget_escalation_is_not_suppressed_by_warning(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        food = add_category(s, hh, "Food")
        add_budget(s, hh, food, amount="500", threshold=None)
        add_transaction(s, acct, type="expense", amount="400", date=utc(2026, 3, 2), category=food)
        household_id, acct_id, food_id = hh.id, acct.id, food.id

    assert _evaluate(db_url, household_id).counts["budget_warning"] == 1

    with session_scope(database_url=db_url) as s:
        add_transaction(
            s,
            s.get(Account, acct_id),
            type="expense",
            amount="150",
            date=utc(2026, 3, 10, 8),
            category=s.get(Category, food_id),
        )
    assert _evaluate(db_url, household_id, NOW + timedelta(hours=1)).counts["budget_warning"] == 1

    levels = [r.trigger_value for r in _notifications(db_url, "budget_warning")]
    assert levels == ["warning", "critical"]


# ---- Bill reminders ------------------------------------------------------------


@pytest.mark.parametrize(
    ("due_in", "title", "priority", "days"),
    [
        (timedelta(hours=5), "Bill due tomorrow", "high", 1),
        (timedelta(days=2), "Bill due in 2 days", "normal", 2),
        (timedelta(days=3), "Bill due in 3 days", "normal", 3),
    ],
)
def test_bill_reminder_inside_lookahead(
    db_url: str, due_in: timedelta, title: str, priority: str, days: int
) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        sid = add_schedule(
            s, acct, frequency="daily", start=utc(2026, 1, 1), next_occurrence=NOW + due_in,
            amount="1850", description="Rent",
        ).id
        household_id = hh.id

    assert _evaluate(db_url, household_id).counts["bill_reminder"] == 1

    [row] = _notifications(db_url, "bill_reminder")
    assert row.title == title
    assert row.priority == priority
    assert row.link == "/cashflow"
    assert "$1,850.00" in row.message
    assert (row.resource_type, row.resource_id) == ("recurring_schedule", sid)
    assert row.payload["days_until"] == days


def test_bill_outside_lookahead_is_ignored(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        late = NOW + timedelta(days=3, hours=1)
        add_schedule(s, acct, start=utc(2026, 1, 1), next_occurrence=late)
        add_schedule(
            s, acct, start=utc(2026, 1, 1), next_occurrence=NOW + timedelta(days=1), is_active=False
        )
        household_id = hh.id

    assert _evaluate(db_url, household_id).counts["bill_reminder"] == 0


def test_bill_reminder_dedup_within_a_day(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        add_schedule(s, acct, start=utc(2026, 1, 1), next_occurrence=NOW + timedelta(days=3))
        household_id = hh.id

    assert _evaluate(db_url, household_id).total == 1
    assert _evaluate(db_url, household_id, NOW + timedelta(hours=23)).total == 0
    assert _evaluate(db_url, household_id, NOW + timedelta(hours=25)).total == 1


def test_stale_schedule_is_advanced_before_reminding(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        sid = add_schedule(
            s, acct, frequency="weekly", day_of_week=3, start=utc(2026, 1, 7),
            next_occurrence=utc(2026, 3, 4),
        ).id
        household_id = hh.id

    result = _evaluate(db_url, household_id)

    assert result.schedules_refreshed == 1
    # Occurrences keep the rule's time of day (midnight here)
    with session_scope(database_url=db_url) as s:
        assert s.get(RecurringSchedule, sid).next_occurrence == utc(2026, 3, 11)
    assert result.counts["bill_reminder"] == 1


# ---- Insurance renewals --------------------------------------------------------


@pytest.mark.parametrize(("days", "emitted"), [(30, 1), (29, 0), (7, 1), (1, 1), (31, 0)])
def test_renewal_fires_on_exact_warning_days(db_url: str, days: int, emitted: int) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        add_policy(s, hh, renewal=NOW + timedelta(days=days))
        household_id = hh.id

    assert _evaluate(db_url, household_id).counts["insurance_renewal"] == emitted


def test_renewal_reminder_content_and_dedup(db_url: str) -> None:
    renewal = NOW + timedelta(days=7)
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        policy_id = add_policy(s, hh, renewal=renewal, name="Car insurance").id
        household_id = hh.id

    assert _evaluate(db_url, household_id).total == 1
    assert _evaluate(db_url, household_id, NOW + timedelta(hours=6)).total == 0

    [row] = _notifications(db_url, "insurance_renewal")
    assert row.title == "Insurance renewal in 7 days"
    assert row.priority == "high"
    assert row.link == "/insurance"
    assert row.trigger_value == "7d@2026-03-17"
    payload = PAYLOAD_ADAPTER.validate_python(row.payload)
    assert isinstance(payload, RenewalPayload)
    assert payload.provider == "Acme Mutual"
    assert row.resource_id == policy_id


def test_renewal_next_cycle_warns_again(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        policy_id = add_policy(s, hh, renewal=NOW + timedelta(days=30)).id
        household_id = hh.id

    assert _evaluate(db_url, household_id).total == 1

    next_year = NOW + timedelta(days=365)
    with session_scope(database_url=db_url) as s:
        s.get(InsurancePolicy, policy_id).renewal_date = next_year + timedelta(days=30)
    assert _evaluate(db_url, household_id, next_year).total == 1

    triggers = sorted(r.trigger_value for r in _notifications(db_url, "insurance_renewal"))
    assert triggers == ["30d@2026-04-09", "30d@2027-04-09"]


# ---- Orchestration ---------------------------------------------------------------


def test_family_subset_runs_only_requested_rules(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        acct = add_account(s, hh)
        add_goal(s, hh, target="100", current="100")
        add_policy(s, hh, renewal=NOW + timedelta(days=7))
        add_schedule(s, acct, start=utc(2026, 1, 1), next_occurrence=utc(2026, 3, 1))
        household_id = hh.id

    result = _evaluate(db_url, household_id, families=["goal_milestone"])

    assert dict(result.counts) == {"goal_milestone": 1}
    assert result.schedules_refreshed == 0
    assert {r.type for r in _notifications(db_url)} == {"goal_milestone"}


def test_failing_unit_does_not_block_the_rest(db_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
    with session_scope(database_url=db_url) as s:
        hh = add_household(s)
        bad = add_goal(s, hh, target="100", current="30", name="Broken")
        good = add_goal(s, hh, target="100", current="60", name="Fine")
        add_policy(s, hh, renewal=NOW + timedelta(days=1))
        household_id, bad_id, good_id = hh.id, bad.id, good.id

    real_insert = milestones.insert_notifications

    def flaky_insert(session, **kwargs):
        if kwargs["resource_id"] == bad_id:
            raise RuntimeError("disk on fire")
        return real_insert(session, **kwargs)

    monkeypatch.setattr(milestones, "insert_notifications", flaky_insert)

    result = _evaluate(db_url, household_id)

    assert [(f.family, f.resource_id, f.message) for f in result.failures] == [
        (NotificationFamily.GOAL_MILESTONE.value, bad_id, "disk on fire")
    ]
    assert result.counts["goal_milestone"] == 1
    assert result.counts["insurance_renewal"] == 1
    goal_rows = _notifications(db_url, "goal_milestone")
    assert [r.resource_id for r in goal_rows] == [good_id]
