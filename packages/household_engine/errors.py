"""Exception types raised by ``household_engine``.

Input problems (bad job parameters, unknown households, rejected credentials)
are raised before any work starts. Per-unit failures are ordinary exceptions
caught by the runner/evaluator and recorded in their reports.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base exception for engine errors."""


class InvalidJobParameters(EngineError):
    """Malformed job parameters (unknown job type, invalid month, ...)."""


class UnknownHousehold(InvalidJobParameters):
    """The targeted household does not exist."""

    def __init__(self, household_id: str):
        self.household_id = household_id
        super().__init__(f"Household not found: {household_id}")


class Unauthorized(EngineError):
    """The job credential was missing or rejected."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ValuationUnavailable(EngineError):
    """A priced account has no usable market valuation."""

    def __init__(self, account_id: str, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"No market valuation for account {account_id}: {reason}")


__all__ = [
    "EngineError",
    "InvalidJobParameters",
    "Unauthorized",
    "UnknownHousehold",
    "ValuationUnavailable",
]
