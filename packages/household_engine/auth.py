# ruff: noqa: I001
"""Job credentials: trusted scheduler secret or a human user id."""

from __future__ import annotations

import hmac
import os
from dataclasses import dataclass
from typing import Literal

from sqlalchemy.orm import Session

from db.models.finance import User
from .errors import Unauthorized


@dataclass(frozen=True, slots=True)
class JobCredential:
    """What the caller presented. Exactly one field is expected to be set."""

    secret: str | None = None
    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class Caller:
    kind: Literal["scheduler", "user"]
    user_id: str | None = None
    household_id: str | None = None

    @property
    def is_scheduler(self) -> bool:
        return self.kind == "scheduler"


def authorize(
    session: Session,
    credential: JobCredential | None,
    *,
    expected_secret: str | None = None,
) -> Caller:
    """Resolve ``credential`` to a :class:`Caller` or raise ``Unauthorized``.

    The scheduler secret is compared in constant time against
    ``expected_secret`` (default: ``JOBS_API_SECRET``). With no configured
    secret, secret-based calls are always rejected.
    """

    if credential is None:
        raise Unauthorized()

    if credential.secret is not None:
        expected = expected_secret if expected_secret is not None else os.getenv("JOBS_API_SECRET")
        if expected and hmac.compare_digest(credential.secret.encode(), expected.encode()):
            return Caller(kind="scheduler")
        raise Unauthorized("Invalid job secret")

    if credential.user_id:
        user = session.get(User, credential.user_id)
        if user is None:
            raise Unauthorized("Unknown user")
        if user.household_id is None:
            raise Unauthorized("User does not belong to a household")
        return Caller(kind="user", user_id=user.id, household_id=user.household_id)

    raise Unauthorized()


__all__ = ["Caller", "JobCredential", "authorize"]
