# ruff: noqa: I001
"""Milestone and threshold notifications.

Four rule families run for a household, each one independently:

- bill reminders for schedules due within three days (24 h dedup),
- goal progress milestones at 25/50/75/100 % (each milestone once per goal),
- budget alerts at the warning threshold and at 100 % (3-day dedup per level),
- insurance renewal reminders 30, 7 and 1 day ahead (once per renewal cycle).

Every unit (one schedule, goal, budget or policy) is evaluated inside its own
SAVEPOINT. A failing unit is logged and recorded without affecting the
others. Each emitted notification is fanned out to all household members.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from decimal import ROUND_DOWN, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.finance import Budget, Goal, InsurancePolicy, RecurringSchedule, Transaction
from .logging_setup import get_logger
from .models import (
    BillReminderPayload,
    BudgetAlertPayload,
    EvaluationResult,
    GoalMilestonePayload,
    NotificationFamily,
    RenewalPayload,
    UnitFailure,
)
from .persistence import household_member_ids, insert_notifications, notification_exists, to_money
from .recurrence import refresh_schedules
from .rollup import month_key

logger = get_logger(__name__)

ALL_FAMILIES: tuple[NotificationFamily, ...] = tuple(NotificationFamily)

BILL_LOOKAHEAD = timedelta(days=3)
BILL_DEDUP_WINDOW = timedelta(hours=24)
GOAL_MILESTONES: tuple[int, ...] = (25, 50, 75, 100)
BUDGET_DEDUP_WINDOW = timedelta(days=3)
DEFAULT_ALERT_THRESHOLD = Decimal("80")
RENEWAL_WARNING_DAYS: tuple[int, ...] = (30, 7, 1)

_DAY_SECONDS = 86400


def _days_until(target: datetime, now: datetime) -> int:
    return math.ceil((target - now).total_seconds() / _DAY_SECONDS)


def _money(amount: Decimal, currency: str) -> str:
    if currency == "USD":
        return f"${amount:,.2f}"
    return f"{amount:,.2f} {currency}"


class _Run:
    """Per-household evaluation state shared by the family rules."""

    def __init__(self, session: Session, household_id: str, now: datetime, members: list[str]):
        self.session = session
        self.household_id = household_id
        self.now = now
        self.members = members
        self.counts: dict[str, int] = {f.value: 0 for f in ALL_FAMILIES}
        self.failures: list[UnitFailure] = []

    @contextmanager
    def unit(self, family: NotificationFamily, resource_id: str) -> Iterator[None]:
        savepoint = self.session.begin_nested()
        try:
            yield
        except Exception as exc:
            savepoint.rollback()
            logger.exception("%s evaluation failed for %s", family.value, resource_id)
            self.failures.append(UnitFailure(family.value, resource_id, str(exc)))
        else:
            savepoint.commit()

    def emit(self, family: NotificationFamily, **kwargs) -> None:
        inserted = insert_notifications(
            self.session, user_ids=self.members, created_at=self.now, **kwargs
        )
        self.counts[family.value] += inserted


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------


def _bill_reminders(run: _Run) -> None:
    family = NotificationFamily.BILL_REMINDER
    due = run.session.scalars(
        select(RecurringSchedule)
        .where(
            RecurringSchedule.household_id == run.household_id,
            RecurringSchedule.is_active.is_(True),
            RecurringSchedule.next_occurrence.is_not(None),
            RecurringSchedule.next_occurrence >= run.now,
            RecurringSchedule.next_occurrence <= run.now + BILL_LOOKAHEAD,
        )
        .order_by(RecurringSchedule.next_occurrence, RecurringSchedule.id)
    ).all()

    for schedule in due:
        with run.unit(family, schedule.id):
            if notification_exists(
                run.session,
                user_ids=run.members,
                type=family.value,
                resource_type="recurring_schedule",
                resource_id=schedule.id,
                since=run.now - BILL_DEDUP_WINDOW,
            ):
                continue
            days = _days_until(schedule.next_occurrence, run.now)
            when = "today" if days <= 0 else "tomorrow" if days == 1 else f"in {days} days"
            label = schedule.description or schedule.merchant or "Recurring payment"
            amount = to_money(schedule.amount)
            run.emit(
                family,
                title=f"Bill due {when}",
                message=f"{label} ({_money(amount, schedule.currency)}) is due {when}",
                priority="high" if days <= 1 else "normal",
                link="/cashflow",
                resource_type="recurring_schedule",
                resource_id=schedule.id,
                payload=BillReminderPayload(
                    schedule_id=schedule.id,
                    due_at=schedule.next_occurrence,
                    days_until=max(days, 0),
                    amount=amount,
                    currency=schedule.currency,
                ),
            )


def _reached_milestone(progress: Decimal) -> int | None:
    reached = [m for m in GOAL_MILESTONES if progress >= m]
    return reached[-1] if reached else None


def _goal_milestones(run: _Run) -> None:
    family = NotificationFamily.GOAL_MILESTONE
    goals = run.session.scalars(
        select(Goal)
        .where(
            Goal.household_id == run.household_id,
            Goal.status == "active",
            Goal.target_amount > 0,
        )
        .order_by(Goal.id)
    ).all()

    for goal in goals:
        with run.unit(family, goal.id):
            current = to_money(goal.current_amount)
            target = to_money(goal.target_amount)
            milestone = _reached_milestone(current / target * 100)
            if milestone is None:
                continue
            payload = GoalMilestonePayload(
                milestone=milestone, current_amount=current, target_amount=target
            )
            if notification_exists(
                run.session,
                user_ids=run.members,
                type=family.value,
                resource_type="goal",
                resource_id=goal.id,
                trigger_value=payload.trigger_value,
            ):
                continue
            if milestone == 100:
                title = f"Goal completed: {goal.name}"
                message = f"You reached your {_money(target, goal.currency)} goal \"{goal.name}\""
            else:
                title = f"Goal {milestone}% reached: {goal.name}"
                message = (
                    f"You've saved {_money(current, goal.currency)} of "
                    f"{_money(target, goal.currency)} for \"{goal.name}\""
                )
            run.emit(
                family,
                title=title,
                message=message,
                priority="high" if milestone == 100 else "normal",
                link="/goals",
                resource_type="goal",
                resource_id=goal.id,
                payload=payload,
            )


def _month_spend(run: _Run, category_id: str) -> Decimal:
    month_start = run.now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    spent = run.session.scalar(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.household_id == run.household_id,
            Transaction.category_id == category_id,
            Transaction.type == "expense",
            Transaction.status == "cleared",
            Transaction.date >= month_start,
            Transaction.date <= run.now,
        )
    )
    return to_money(spent)


def _budget_alerts(run: _Run) -> None:
    family = NotificationFamily.BUDGET_ALERT
    budgets = run.session.scalars(
        select(Budget)
        .where(
            Budget.household_id == run.household_id,
            Budget.is_active.is_(True),
            Budget.alert_enabled.is_(True),
            Budget.amount > 0,
        )
        .order_by(Budget.id)
    ).all()
    month = month_key(run.now.year, run.now.month)

    for budget in budgets:
        with run.unit(family, budget.id):
            budgeted = to_money(budget.amount)
            spent = _month_spend(run, budget.category_id)
            threshold = (
                Decimal(budget.alert_threshold)
                if budget.alert_threshold is not None
                else DEFAULT_ALERT_THRESHOLD
            )
            # Levels compare exact amounts; the percentage is rounded for display only.
            if spent >= budgeted:
                level = "critical"
            elif spent * 100 >= threshold * budgeted:
                level = "warning"
            else:
                continue

            percent = (spent / budgeted * 100).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
            payload = BudgetAlertPayload(
                level=level,
                percent_spent=percent,
                spent=spent,
                budgeted=budgeted,
                remaining=budgeted - spent,
                month=month,
            )
            if notification_exists(
                run.session,
                user_ids=run.members,
                type=family.value,
                resource_type="budget",
                resource_id=budget.id,
                trigger_value=payload.trigger_value,
                since=run.now - BUDGET_DEDUP_WINDOW,
            ):
                continue
            shown = f"{percent.normalize():f}"
            if level == "critical":
                title = "Budget exceeded"
                budget_text = _money(budgeted, budget.currency)
                message = f"You've spent {shown}% of your {budget_text} budget"
            else:
                title = "Budget warning"
                message = (
                    f"You've used {shown}% of your {_money(budgeted, budget.currency)} budget; "
                    f"{_money(budgeted - spent, budget.currency)} remaining"
                )
            run.emit(
                family,
                title=title,
                message=message,
                priority="high" if level == "critical" else "normal",
                link="/budgets",
                resource_type="budget",
                resource_id=budget.id,
                payload=payload,
            )


def _insurance_renewals(run: _Run) -> None:
    family = NotificationFamily.INSURANCE_RENEWAL
    policies = run.session.scalars(
        select(InsurancePolicy)
        .where(
            InsurancePolicy.household_id == run.household_id,
            InsurancePolicy.status == "active",
            InsurancePolicy.renewal_date.is_not(None),
            InsurancePolicy.renewal_date > run.now,
        )
        .order_by(InsurancePolicy.id)
    ).all()

    for policy in policies:
        with run.unit(family, policy.id):
            days = _days_until(policy.renewal_date, run.now)
            if days not in RENEWAL_WARNING_DAYS:
                continue
            payload = RenewalPayload(
                warning_day=days,
                renewal_date=policy.renewal_date,
                provider=policy.provider,
                premium=to_money(policy.premium_amount),
            )
            if notification_exists(
                run.session,
                user_ids=run.members,
                type=family.value,
                resource_type="insurance_policy",
                resource_id=policy.id,
                trigger_value=payload.trigger_value,
            ):
                continue
            when = "tomorrow" if days == 1 else f"in {days} days"
            run.emit(
                family,
                title=f"Insurance renewal {when}",
                message=(
                    f"{policy.name} with {policy.provider} renews {when} "
                    f"({policy.renewal_date.date().isoformat()})"
                ),
                priority="high" if days <= 7 else "normal",
                link="/insurance",
                resource_type="insurance_policy",
                resource_id=policy.id,
                payload=payload,
            )


_RULES = {
    NotificationFamily.BILL_REMINDER: _bill_reminders,
    NotificationFamily.GOAL_MILESTONE: _goal_milestones,
    NotificationFamily.BUDGET_ALERT: _budget_alerts,
    NotificationFamily.INSURANCE_RENEWAL: _insurance_renewals,
}


def evaluate_milestones(
    session: Session,
    household_id: str,
    now: datetime,
    *,
    families: Iterable[NotificationFamily | str] | None = None,
) -> EvaluationResult:
    """Run the requested notification families for one household.

    Stale recurring schedules are advanced first so bill reminders see
    current due dates. A household without members has its schedules
    refreshed but emits nothing.

    Parameters
    ----------
    session:
        Active SQLAlchemy session; the caller owns commit/rollback.
    household_id:
        Household to evaluate.
    now:
        Reference instant for windows, due dates and dedup look-backs.
    families:
        Subset of :class:`NotificationFamily` (values accepted); all by default.
    """

    now = now.astimezone(UTC) if now.tzinfo else now.replace(tzinfo=UTC)
    selected = (
        ALL_FAMILIES
        if families is None
        else tuple(dict.fromkeys(NotificationFamily(f) for f in families))
    )

    refreshed = 0
    failures: list[UnitFailure] = []
    if NotificationFamily.BILL_REMINDER in selected:
        refreshed, failures = refresh_schedules(session, household_id, now)

    members = household_member_ids(session, household_id)
    run = _Run(session, household_id, now, members)
    run.failures.extend(failures)
    if not members:
        logger.info("Household %s has no members; skipping notifications", household_id)
    else:
        for family in selected:
            _RULES[family](run)

    result = EvaluationResult(
        counts={f.value: run.counts[f.value] for f in selected},
        schedules_refreshed=refreshed,
        failures=tuple(run.failures),
    )
    logger.info(
        "Milestones for household %s: %d notification(s), %d failure(s)",
        household_id,
        result.total,
        len(result.failures),
    )
    return result


__all__ = [
    "ALL_FAMILIES",
    "BILL_LOOKAHEAD",
    "GOAL_MILESTONES",
    "RENEWAL_WARNING_DAYS",
    "evaluate_milestones",
]
