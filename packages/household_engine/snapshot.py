# ruff: noqa: I001
"""Net-worth snapshot builder.

One snapshot per (household, UTC calendar day). Stock and crypto accounts are
valued from their cached holding prices; when a price is unusable the account
falls back to its stored balance and is reported as degraded, so one bad
quote never blocks the household's snapshot.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.finance import Account, CryptoHolding, Household, StockHolding
from .errors import UnknownHousehold, ValuationUnavailable
from .logging_setup import get_logger
from .models import SnapshotResult
from .persistence import to_money, upsert_snapshot

logger = get_logger(__name__)

_PRICED_TYPES = ("stock", "crypto")
_LIABILITY_TYPE = "debt"

# (quantity, unit price, price timestamp)
type _Quote = tuple[Decimal, Decimal | None, datetime | None]


def _load_quotes(session: Session, household_id: str) -> dict[str, _Quote]:
    quotes: dict[str, _Quote] = {}
    stock_rows = session.execute(
        select(StockHolding.account_id, StockHolding.shares, StockHolding.current_price,
               StockHolding.price_updated_at)
        .join(Account, Account.id == StockHolding.account_id)
        .where(Account.household_id == household_id)
    )
    for account_id, qty, price, at in stock_rows:
        quotes[account_id] = (qty, price, at)
    crypto_rows = session.execute(
        select(CryptoHolding.account_id, CryptoHolding.holdings, CryptoHolding.current_price,
               CryptoHolding.price_updated_at)
        .join(Account, Account.id == CryptoHolding.account_id)
        .where(Account.household_id == household_id)
    )
    for account_id, qty, price, at in crypto_rows:
        quotes[account_id] = (qty, price, at)
    return quotes


def _market_value(
    account: Account,
    quote: _Quote | None,
    as_of: datetime,
    price_max_age: timedelta | None,
) -> Decimal:
    if quote is None:
        raise ValuationUnavailable(account.id, "no holding record")
    quantity, price, priced_at = quote
    if price is None or price <= 0:
        raise ValuationUnavailable(account.id, "no cached price")
    if price_max_age is not None and (priced_at is None or priced_at < as_of - price_max_age):
        raise ValuationUnavailable(account.id, f"price older than {price_max_age}")
    return to_money(Decimal(quantity) * Decimal(price))


def build_snapshot(
    session: Session,
    household_id: str,
    as_of: datetime,
    *,
    price_max_age: timedelta | None = None,
) -> SnapshotResult:
    """Value every included account and upsert the day's snapshot.

    Parameters
    ----------
    session:
        Active SQLAlchemy session; the caller owns commit/rollback.
    household_id:
        Household to value.
    as_of:
        Reference instant. Its UTC calendar day is the snapshot key.
    price_max_age:
        When set, cached prices older than ``as_of - price_max_age`` are
        treated as unavailable.

    Raises
    ------
    UnknownHousehold
        If ``household_id`` does not exist.
    """

    household = session.get(Household, household_id)
    if household is None:
        raise UnknownHousehold(household_id)

    as_of = as_of.astimezone(UTC) if as_of.tzinfo else as_of.replace(tzinfo=UTC)
    accounts = session.scalars(
        select(Account)
        .where(
            Account.household_id == household_id,
            Account.is_active.is_(True),
            Account.include_in_net_worth.is_(True),
        )
        .order_by(Account.id)
    ).all()
    quotes = _load_quotes(session, household_id)
    currency = household.primary_currency or "USD"

    breakdown: dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))
    assets = Decimal("0.00")
    liabilities = Decimal("0.00")
    degraded: list[str] = []

    for account in accounts:
        if account.type in _PRICED_TYPES:
            try:
                value = _market_value(account, quotes.get(account.id), as_of, price_max_age)
            except ValuationUnavailable as exc:
                logger.warning("%s; using stored balance", exc)
                degraded.append(account.id)
                value = to_money(account.current_balance)
        else:
            value = to_money(account.current_balance)

        breakdown[account.type] += value
        if account.type == _LIABILITY_TYPE or value < 0:
            liabilities += abs(value)
        else:
            assets += value

    net_worth = assets - liabilities
    snapshot_id, updated = upsert_snapshot(
        session,
        household_id=household_id,
        snapshot_date=as_of.date(),
        total_assets=assets,
        total_liabilities=liabilities,
        net_worth=net_worth,
        breakdown=breakdown,
        currency=currency,
        now=as_of,
    )
    logger.info(
        "Snapshot %s for household %s on %s: net worth %s (%d accounts, %d degraded)",
        "updated" if updated else "created",
        household_id,
        as_of.date().isoformat(),
        net_worth,
        len(accounts),
        len(degraded),
    )
    return SnapshotResult(
        snapshot_id=snapshot_id,
        household_id=household_id,
        snapshot_date=as_of.date(),
        total_assets=assets,
        total_liabilities=liabilities,
        net_worth=net_worth,
        breakdown=dict(breakdown),
        currency=currency,
        updated=updated,
        degraded_accounts=tuple(degraded),
    )


__all__ = ["build_snapshot"]
