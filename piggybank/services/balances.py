"""Balance store for wallets and savings accounts.

Balances only change through :func:`apply_delta`, which is a single
conditional ``UPDATE`` keyed on the pool id.  The database evaluates the
non-negativity and ceiling guards against the current row version, so
concurrent callers on the same pool are serialized by the row lock instead
of by read-then-write logic in Python.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from piggybank.core.config import settings
from piggybank.models import PoolType, SavingsAccount, Wallet
from piggybank.services.errors import InsufficientFunds, InvalidAmount
from piggybank.services.wallet import MAX_BALANCE

Pool = Wallet | SavingsAccount
_PoolT = TypeVar("_PoolT", Wallet, SavingsAccount)


def pool_type_of(pool: Pool) -> PoolType:
    return PoolType.WALLET if isinstance(pool, Wallet) else PoolType.SAVINGS


# populate_existing: balances held in the identity map may predate another
# session's commit.
def get_wallet(db: Session, *, group_id: str, child_id: str) -> Wallet | None:
    return db.scalar(
        select(Wallet)
        .where(
            Wallet.group_id == group_id,
            Wallet.user_id == child_id,
        )
        .execution_options(populate_existing=True),
    )


def get_savings_account(db: Session, *, group_id: str, child_id: str) -> SavingsAccount | None:
    return db.scalar(
        select(SavingsAccount)
        .where(
            SavingsAccount.group_id == group_id,
            SavingsAccount.user_id == child_id,
        )
        .execution_options(populate_existing=True),
    )


def _insert_or_reload(db: Session, pool: _PoolT, reload: Callable[[], _PoolT | None]) -> _PoolT:
    try:
        with db.begin_nested():
            db.add(pool)
    except IntegrityError:
        # Another request created the row first.
        existing = reload()
        if existing is None:
            raise
        return existing
    return pool


def get_or_create_wallet(db: Session, *, group_id: str, child_id: str) -> Wallet:
    wallet = get_wallet(db, group_id=group_id, child_id=child_id)
    if wallet is not None:
        return wallet
    return _insert_or_reload(
        db,
        Wallet(group_id=group_id, user_id=child_id, balance=0),
        lambda: get_wallet(db, group_id=group_id, child_id=child_id),
    )


def get_or_create_savings_account(db: Session, *, group_id: str, child_id: str) -> SavingsAccount:
    account = get_savings_account(db, group_id=group_id, child_id=child_id)
    if account is not None:
        return account
    return _insert_or_reload(
        db,
        SavingsAccount(
            group_id=group_id,
            user_id=child_id,
            name=settings.default_savings_name,
            currency=settings.default_currency,
            balance=0,
        ),
        lambda: get_savings_account(db, group_id=group_id, child_id=child_id),
    )


def apply_delta(db: Session, pool: Pool, signed_amount: int) -> int:
    model = type(pool)
    statement = (
        update(model)
        .where(
            model.id == pool.id,
            model.balance + signed_amount >= 0,
            model.balance + signed_amount <= MAX_BALANCE,
        )
        .values(
            balance=model.balance + signed_amount,
            updated_at=datetime.now(UTC),
        )
        .returning(model.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = db.execute(statement).scalar_one_or_none()
    if new_balance is None and signed_amount > 0:
        raise InvalidAmount(
            "Balance limit exceeded",
            details={"pool": pool_type_of(pool).value, "limit": MAX_BALANCE},
        )
    if new_balance is None:
        raise InsufficientFunds(
            details={"pool": pool_type_of(pool).value, "requested": -signed_amount},
        )
    set_committed_value(pool, "balance", new_balance)
    return new_balance
