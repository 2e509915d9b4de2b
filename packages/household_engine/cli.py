# ruff: noqa: I001
"""CLI for the ``household_engine`` package.

The external scheduler invokes ``household-engine run ...``. Command handlers
(``cmd_run``, ``cmd_next_occurrence``, ``cmd_status``) return process exit
codes and are usable without Typer; the Typer commands only parse options and
exit with the handler's code. ``.env`` is loaded from the working directory
before any command runs.
"""

from __future__ import annotations

import json
import sys
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_REJECTED = 2
EXIT_ERROR = 3


class StatusKind(StrEnum):
    SNAPSHOT = "snapshot"
    ROLLUP = "rollup"
    NOTIFICATIONS = "notifications"


def _parse_instant(raw: str | None, *, name: str) -> datetime:
    """Parse an ISO-8601 instant; naive values are UTC. ``None`` means now."""

    if raw is None:
        return datetime.now(UTC)
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"{name} must be an ISO-8601 date or datetime, got {raw!r}") from None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---- Command handlers --------------------------------------------------------


def cmd_run(
    job_types: list[str],
    *,
    household_id: str | None = None,
    year: int | None = None,
    month: int | None = None,
    secret: str | None = None,
    user_id: str | None = None,
    database_url: str | None = None,
    concurrency: int | None = None,
    now: str | None = None,
) -> int:
    """Run jobs and print the JSON report to stdout.

    Returns ``0`` when every household succeeded, ``1`` when some failed,
    ``2`` when the invocation was rejected and ``3`` when the run could not
    start at all (for example an unreachable database).
    """

    from .auth import JobCredential
    from .runner import run_jobs

    try:
        reference = _parse_instant(now, name="--now")
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_REJECTED

    credential = None
    if secret is not None or user_id is not None:
        credential = JobCredential(secret=secret, user_id=user_id)

    try:
        report = run_jobs(
            job_types,
            now=reference,
            household_id=household_id,
            year=year,
            month=month,
            credential=credential,
            database_url=database_url,
            concurrency=concurrency,
        )
    except Exception as e:
        print(f"Error: job run failed: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(report.model_dump_json(indent=2))
    if report.status == "rejected":
        print(f"Error: {report.rejection}", file=sys.stderr)
        return EXIT_REJECTED
    return EXIT_OK if report.status == "ok" else EXIT_PARTIAL


def cmd_next_occurrence(
    frequency: str,
    *,
    start: str,
    reference: str | None = None,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    month_of_year: int | None = None,
    end: str | None = None,
) -> int:
    """Print the next occurrence of a rule (or ``none`` once it has ended)."""

    from .models import Frequency, RecurrenceRule
    from .recurrence import schedule_next_occurrence

    try:
        rule = RecurrenceRule(
            frequency=Frequency(frequency),
            start=_parse_instant(start, name="--start"),
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            end=_parse_instant(end, name="--end") if end is not None else None,
        )
        ref = _parse_instant(reference, name="--reference")
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_REJECTED

    nxt = schedule_next_occurrence(rule, ref)
    print(nxt.isoformat() if nxt is not None else "none")
    return EXIT_OK


def cmd_status(
    kind: StatusKind,
    *,
    household_id: str | None = None,
    user_id: str | None = None,
    year: int | None = None,
    database_url: str | None = None,
    now: str | None = None,
) -> int:
    """Print a JSON status summary for snapshots, rollups or notifications."""

    from db.client import session_scope
    from .status import notification_stats, rollup_status, snapshot_status

    try:
        reference = _parse_instant(now, name="--now")
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_REJECTED

    if kind is StatusKind.NOTIFICATIONS and not user_id:
        print("Error: --user-id is required for notification status", file=sys.stderr)
        return EXIT_REJECTED
    if kind is not StatusKind.NOTIFICATIONS and not household_id:
        print(f"Error: --household-id is required for {kind.value} status", file=sys.stderr)
        return EXIT_REJECTED

    try:
        with session_scope(database_url=database_url) as session:
            if kind is StatusKind.SNAPSHOT:
                result = snapshot_status(session, household_id, reference)
            elif kind is StatusKind.ROLLUP:
                result = rollup_status(session, household_id, year or reference.year)
            else:
                result = notification_stats(session, user_id, reference)
    except Exception as e:
        print(f"Error: status query failed: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(json.dumps(result, indent=2))
    return EXIT_OK


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Household recurrence & aggregation jobs: net-worth snapshots, monthly "
        "rollups and milestone notifications. Loads .env before running."
    ),
)

# Module-level option objects keep calls out of parameter defaults (ruff B008).
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
NOW_OPTION: OptionInfo = typer.Option(
    None, "--now", help="Reference instant (ISO-8601, UTC when naive). Defaults to now."
)


@app.command("run")
def run_cmd(
    job_type: Annotated[
        list[str],
        typer.Option(
            "--job-type", help="snapshot, rollup, milestones or all (repeatable)."
        ),
    ],
    *,
    household_id: str | None = typer.Option(None, help="Only this household."),
    year: int | None = typer.Option(None, help="Rollup year (requires --month)."),
    month: int | None = typer.Option(None, help="Rollup month 1-12 (default: last month)."),
    secret: str | None = typer.Option(
        None, envvar="HE_JOB_SECRET", help="Scheduler secret (matches JOBS_API_SECRET)."
    ),
    user_id: str | None = typer.Option(None, help="Run as this user (own household only)."),
    database_url: str | None = DATABASE_URL_OPTION,
    concurrency: int | None = typer.Option(
        None, min=1, help="Households processed at once (default: HE_JOB_CONCURRENCY or 1)."
    ),
    now: str | None = NOW_OPTION,
) -> None:
    """Run jobs and print the JSON run report."""

    code = cmd_run(
        job_type,
        household_id=household_id,
        year=year,
        month=month,
        secret=secret,
        user_id=user_id,
        database_url=database_url,
        concurrency=concurrency,
        now=now,
    )
    raise typer.Exit(code)


@app.command("next-occurrence")
def next_occurrence_cmd(
    frequency: Annotated[
        str, typer.Option(help="daily, weekly, biweekly, monthly, quarterly or yearly.")
    ],
    start: Annotated[str, typer.Option(help="Rule start (ISO-8601).")],
    *,
    reference: str | None = typer.Option(None, help="Reference instant (default: now)."),
    day_of_week: int | None = typer.Option(None, help="0-6, 0 = Sunday (weekly)."),
    day_of_month: int | None = typer.Option(None, help="1-31 (monthly/quarterly/yearly)."),
    month_of_year: int | None = typer.Option(None, help="1-12 (yearly)."),
    end: str | None = typer.Option(None, help="Optional rule end (ISO-8601)."),
) -> None:
    """Print the next occurrence of a recurrence rule."""

    raise typer.Exit(
        cmd_next_occurrence(
            frequency,
            start=start,
            reference=reference,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            end=end,
        )
    )


@app.command("status")
def status_cmd(
    kind: Annotated[StatusKind, typer.Argument(help="snapshot, rollup or notifications.")],
    *,
    household_id: str | None = typer.Option(None, help="Household (snapshot/rollup)."),
    user_id: str | None = typer.Option(None, help="User (notifications)."),
    year: int | None = typer.Option(None, help="Rollup year (default: current year)."),
    database_url: str | None = DATABASE_URL_OPTION,
    now: str | None = NOW_OPTION,
) -> None:
    """Print a JSON summary of stored job output."""

    raise typer.Exit(
        cmd_status(
            kind,
            household_id=household_id,
            user_id=user_id,
            year=year,
            database_url=database_url,
            now=now,
        )
    )


@app.callback()
def _root() -> None:
    """Load ``.env`` (existing variables win) and configure package logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
