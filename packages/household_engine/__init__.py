"""Public interface for the ``household_engine`` package.

Re-exports the job entry points, builders and domain types. There is no
runtime logic here, only symbol re-exports.
"""

from .auth import Caller, JobCredential, authorize
from .errors import (
    EngineError,
    InvalidJobParameters,
    Unauthorized,
    UnknownHousehold,
    ValuationUnavailable,
)
from .milestones import evaluate_milestones
from .models import (
    BillReminderPayload,
    BudgetAlertPayload,
    EvaluationResult,
    Frequency,
    GoalMilestonePayload,
    JobType,
    NotificationFamily,
    NotificationPayload,
    RecurrenceRule,
    RenewalPayload,
    RollupRow,
    RunReport,
    SnapshotResult,
)
from .recurrence import next_occurrence, refresh_schedules, schedule_next_occurrence, schedule_rule
from .rollup import build_rollup
from .runner import run_jobs
from .snapshot import build_snapshot
from .status import notification_stats, rollup_status, snapshot_status

__all__ = [
    # Jobs
    "build_rollup",
    "build_snapshot",
    "evaluate_milestones",
    "run_jobs",
    # Recurrence
    "next_occurrence",
    "refresh_schedules",
    "schedule_next_occurrence",
    "schedule_rule",
    # Status
    "notification_stats",
    "rollup_status",
    "snapshot_status",
    # Auth
    "Caller",
    "JobCredential",
    "authorize",
    # Errors
    "EngineError",
    "InvalidJobParameters",
    "Unauthorized",
    "UnknownHousehold",
    "ValuationUnavailable",
    # Models / types
    "BillReminderPayload",
    "BudgetAlertPayload",
    "EvaluationResult",
    "Frequency",
    "GoalMilestonePayload",
    "JobType",
    "NotificationFamily",
    "NotificationPayload",
    "RecurrenceRule",
    "RenewalPayload",
    "RollupRow",
    "RunReport",
    "SnapshotResult",
]
