"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the household finance models read and written by
``household_engine``.
"""

from .finance import (
    Account,
    Base,
    Budget,
    Category,
    CryptoHolding,
    Goal,
    Household,
    InsurancePolicy,
    MonthlyRollup,
    NetWorthSnapshot,
    Notification,
    RecurringSchedule,
    StockHolding,
    Transaction,
    User,
)

__all__ = [
    "Account",
    "Base",
    "Budget",
    "Category",
    "CryptoHolding",
    "Goal",
    "Household",
    "InsurancePolicy",
    "MonthlyRollup",
    "NetWorthSnapshot",
    "Notification",
    "RecurringSchedule",
    "StockHolding",
    "Transaction",
    "User",
]
