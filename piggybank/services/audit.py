"""Append-only transaction log for wallet and savings balances.

Records are inserted by the ledger operations in the same unit of work as
the balance change they describe and are never updated or deleted.  The
signed sum of a pool's records always equals that pool's balance.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from piggybank.models import PoolType, TransactionRecord, TransactionType
from piggybank.services.balances import Pool, pool_type_of
from piggybank.services.wallet import signed_amount

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50


@dataclass(slots=True)
class Reconciliation:
    pool: PoolType
    pool_id: str
    balance: int
    ledger_sum: int

    @property
    def ok(self) -> bool:
        return self.balance == self.ledger_sum


def append(
    db: Session,
    *,
    pool: Pool,
    tx_type: TransactionType,
    amount: int,
    actor_id: str,
    memo: str | None = None,
    open_request_id: str | None = None,
) -> TransactionRecord:
    pool_type = pool_type_of(pool)
    record = TransactionRecord(
        group_id=pool.group_id,
        pool=pool_type,
        pool_id=pool.id,
        user_id=pool.user_id,
        actor_id=actor_id,
        amount=signed_amount(tx_type, pool_type, amount),
        type=tx_type,
        memo=memo,
        open_request_id=open_request_id,
    )
    db.add(record)
    return record


def sum_for(db: Session, pool: Pool) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(TransactionRecord.amount), 0)).where(
            TransactionRecord.pool == pool_type_of(pool),
            TransactionRecord.pool_id == pool.id,
        ),
    )
    return int(total or 0)


def reconcile(db: Session, pool: Pool) -> Reconciliation:
    db.refresh(pool, ["balance"])
    return Reconciliation(
        pool=pool_type_of(pool),
        pool_id=pool.id,
        balance=pool.balance,
        ledger_sum=sum_for(db, pool),
    )


def list_transactions(
    db: Session,
    *,
    group_id: str,
    child_id: str,
    pool: PoolType | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[TransactionRecord]:
    safe_limit = min(max(limit, 1), MAX_PAGE_SIZE)
    safe_offset = max(offset, 0)
    query = select(TransactionRecord).where(
        TransactionRecord.group_id == group_id,
        TransactionRecord.user_id == child_id,
    )
    if pool is not None:
        query = query.where(TransactionRecord.pool == pool)
    return list(
        db.scalars(
            query.order_by(TransactionRecord.created_at.desc(), TransactionRecord.id.desc())
            .limit(safe_limit)
            .offset(safe_offset),
        ).all(),
    )
