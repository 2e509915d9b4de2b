# ruff: noqa: I001
"""Job runner: fan the requested jobs out over target households.

Invocation problems (unknown job type, bad month, unknown household, rejected
credential) are detected up front and produce a ``rejected`` report without
touching any household. After that, each household gets its own session and
commits independently; within a household every job runs under a SAVEPOINT
so one failing job leaves the household's other jobs intact.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from db.client import session_scope
from .auth import Caller, JobCredential, authorize
from .errors import InvalidJobParameters, Unauthorized, UnknownHousehold
from .logging_setup import get_logger
from .milestones import evaluate_milestones
from .models import (
    HouseholdError,
    HouseholdReport,
    JobType,
    NotificationSummary,
    RollupSummary,
    RunReport,
    SnapshotSummary,
)
from .persistence import target_household_ids
from .pmap import default_concurrency, p_map, p_map_skip
from .rollup import build_rollup, month_key, previous_month, validate_period
from .snapshot import build_snapshot

logger = get_logger(__name__)

ALL_JOBS: tuple[JobType, ...] = tuple(JobType)


@dataclass(frozen=True, slots=True)
class _JobContext:
    now: datetime
    year: int
    month: int
    price_max_age: timedelta | None


def parse_job_types(values: str | Iterable[str]) -> tuple[JobType, ...]:
    """Normalize job names; ``all`` expands to every job. Order is preserved."""

    if isinstance(values, str):
        values = [values]
    jobs: list[JobType] = []
    for raw in values:
        name = str(raw).strip().lower()
        if name == "all":
            jobs.extend(ALL_JOBS)
            continue
        try:
            jobs.append(JobType(name))
        except ValueError:
            raise InvalidJobParameters(
                f"Unknown job type {raw!r}; expected snapshot, rollup, milestones or all"
            ) from None
    if not jobs:
        raise InvalidJobParameters("No job type given")
    return tuple(dict.fromkeys(jobs))


def resolve_period(now: datetime, year: int | None, month: int | None) -> tuple[int, int]:
    """Rollup period: explicit ``year``/``month`` or the month before ``now``."""

    if month is None:
        if year is not None:
            raise InvalidJobParameters("year requires month")
        return previous_month(now)
    resolved_year = now.year if year is None else year
    validate_period(resolved_year, month)
    return resolved_year, month


def price_max_age_from_env() -> timedelta | None:
    raw = os.getenv("HE_PRICE_MAX_AGE_HOURS")
    if not raw:
        return None
    try:
        hours = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric HE_PRICE_MAX_AGE_HOURS=%r", raw)
        return None
    return timedelta(hours=hours) if hours > 0 else None


# ---------------------------------------------------------------------------
# Per-household jobs
# ---------------------------------------------------------------------------


def _snapshot_job(session: Session, household_id: str, ctx: _JobContext) -> SnapshotSummary:
    result = build_snapshot(session, household_id, ctx.now, price_max_age=ctx.price_max_age)
    return SnapshotSummary(
        snapshot_id=result.snapshot_id,
        snapshot_date=result.snapshot_date,
        total_assets=result.total_assets,
        total_liabilities=result.total_liabilities,
        net_worth=result.net_worth,
        currency=result.currency,
        updated=result.updated,
        degraded_accounts=list(result.degraded_accounts),
    )


def _rollup_job(session: Session, household_id: str, ctx: _JobContext) -> RollupSummary:
    rows = build_rollup(session, household_id, ctx.year, ctx.month, now=ctx.now)
    total = rows[0]
    return RollupSummary(
        month=total.month,
        rows_written=len(rows),
        total_income=total.total_income,
        total_expense=total.total_expense,
        total_transfers=total.total_transfers,
        transaction_count=total.transaction_count,
    )


def _milestones_job(session: Session, household_id: str, ctx: _JobContext) -> NotificationSummary:
    result = evaluate_milestones(session, household_id, ctx.now)
    return NotificationSummary(
        generated=result.total,
        by_type=dict(result.counts),
        schedules_refreshed=result.schedules_refreshed,
        unit_failures=[f"{f.family} {f.resource_id}: {f.message}" for f in result.failures],
    )


_JOBS: dict[JobType, Callable[[Session, str, _JobContext], object]] = {
    JobType.SNAPSHOT: _snapshot_job,
    JobType.ROLLUP: _rollup_job,
    JobType.MILESTONES: _milestones_job,
}


def _run_household(
    household_id: str,
    jobs: tuple[JobType, ...],
    ctx: _JobContext,
    database_url: str | None,
) -> HouseholdReport:
    results: dict[JobType, object] = {}
    errors: list[str] = []
    try:
        with session_scope(database_url=database_url) as session:
            for job in jobs:
                try:
                    with session.begin_nested():
                        results[job] = _JOBS[job](session, household_id, ctx)
                except Exception as exc:
                    logger.exception("%s job failed for household %s", job.value, household_id)
                    errors.append(f"{job.value}: {exc}")
    except Exception as exc:
        logger.exception("Could not commit household %s", household_id)
        return HouseholdReport(household_id=household_id, errors=[*errors, f"commit: {exc}"])

    return HouseholdReport(
        household_id=household_id,
        snapshot=results.get(JobType.SNAPSHOT),
        rollup=results.get(JobType.ROLLUP),
        notifications=results.get(JobType.MILESTONES),
        errors=errors,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _resolve_targets(
    session: Session, household_id: str | None, caller: Caller
) -> list[str]:
    if not caller.is_scheduler:
        if household_id is not None and household_id != caller.household_id:
            raise Unauthorized("Users may only run jobs for their own household")
        household_id = caller.household_id
    targets = target_household_ids(session, household_id)
    if household_id is not None and not targets:
        raise UnknownHousehold(household_id)
    return targets


def run_jobs(
    job_types: str | Iterable[str],
    *,
    now: datetime,
    household_id: str | None = None,
    year: int | None = None,
    month: int | None = None,
    credential: JobCredential | None = None,
    database_url: str | None = None,
    concurrency: int | None = None,
    expected_secret: str | None = None,
    price_max_age: timedelta | None = None,
    should_stop: Callable[[], bool] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> RunReport:
    """Run ``job_types`` for one household or all of them.

    Parameters
    ----------
    job_types:
        ``snapshot``, ``rollup``, ``milestones`` or ``all`` (one name or many).
    now:
        Reference instant for every job: snapshot day, default rollup month,
        notification windows. The engine never substitutes the wall clock.
    household_id:
        Restrict the run to one household. Users are always narrowed to their
        own household.
    year, month:
        Rollup period; defaults to the calendar month before ``now``.
    credential:
        Scheduler secret or user id (see :mod:`household_engine.auth`).
    database_url:
        Overrides ``DATABASE_URL``.
    concurrency:
        Households processed at once; defaults to ``HE_JOB_CONCURRENCY`` (1).
    expected_secret:
        Overrides ``JOBS_API_SECRET`` for the credential check.
    price_max_age:
        Staleness bound for cached prices; defaults to
        ``HE_PRICE_MAX_AGE_HOURS`` when set.
    should_stop:
        Polled before each household starts; once it returns True the
        remaining households are skipped (the running ones finish).
    clock:
        Source of the report's ``started_at``/``finished_at`` timestamps.
    """

    clock = clock or (lambda: datetime.now(UTC))
    started = clock()
    now = now.astimezone(UTC) if now.tzinfo else now.replace(tzinfo=UTC)
    jobs: tuple[JobType, ...] = ()

    try:
        jobs = parse_job_types(job_types)
        year, month = resolve_period(now, year, month)
        with session_scope(database_url=database_url) as session:
            caller = authorize(session, credential, expected_secret=expected_secret)
            targets = _resolve_targets(session, household_id, caller)
        workers = default_concurrency() if concurrency is None else concurrency
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise InvalidJobParameters(f"concurrency must be a positive integer, got {workers!r}")
    except (InvalidJobParameters, Unauthorized) as exc:
        logger.warning("Job run rejected: %s", exc)
        finished = clock()
        return RunReport(
            status="rejected",
            job_types=list(jobs),
            rejection=str(exc),
            started_at=started,
            finished_at=finished,
        )

    ctx = _JobContext(
        now=now,
        year=year,
        month=month,
        price_max_age=price_max_age if price_max_age is not None else price_max_age_from_env(),
    )
    logger.info(
        "Running %s for %d household(s) as %s (concurrency %d)",
        ",".join(j.value for j in jobs),
        len(targets),
        caller.kind,
        workers,
    )

    def _mapper(hid: str) -> HouseholdReport | object:
        if should_stop is not None and should_stop():
            return p_map_skip
        return _run_household(hid, jobs, ctx, database_url)

    reports: list[HouseholdReport] = p_map(
        targets, _mapper, concurrency=min(workers, max(len(targets), 1))
    )
    done = {r.household_id for r in reports}
    skipped = [hid for hid in targets if hid not in done]
    errors = [
        HouseholdError(household_id=r.household_id, message=message)
        for r in reports
        for message in r.errors
    ]
    failed = sum(1 for r in reports if not r.ok)

    report = RunReport(
        status="ok" if failed == 0 else "partial",
        job_types=list(jobs),
        month=month_key(year, month) if JobType.ROLLUP in jobs else None,
        processed=len(reports) - failed,
        failed=failed,
        households=reports,
        errors=errors,
        skipped=skipped,
        started_at=started,
        finished_at=clock(),
    )
    logger.info(
        "Job run finished: %d processed, %d failed, %d skipped",
        report.processed,
        report.failed,
        len(skipped),
    )
    return report


__all__ = [
    "ALL_JOBS",
    "parse_job_types",
    "price_max_age_from_env",
    "resolve_period",
    "run_jobs",
]
