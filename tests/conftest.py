"""Pytest configuration for test isolation.

Every test gets its own file-backed SQLite database, a clean set of engine
environment variables, and disposes cached engines afterwards so no
connection outlives its database file.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from db.client import dispose_engines, session_scope
from sqlalchemy.orm import Session

from tests.helpers.db import bootstrap_sqlite_db

_ENGINE_ENV = (
    "DATABASE_URL",
    "JOBS_API_SECRET",
    "HE_JOB_SECRET",
    "HE_JOB_CONCURRENCY",
    "HE_PRICE_MAX_AGE_HOURS",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Hide any developer ``.env``/shell settings from the engine under test."""

    for name in _ENGINE_ENV:
        monkeypatch.delenv(name, raising=False)
    yield
    dispose_engines()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "engine.sqlite3")


@pytest.fixture
def session(db_url: str) -> Iterator[Session]:
    """A committed-on-exit session for seeding and for calling builders."""

    with session_scope(database_url=db_url) as s:
        yield s
