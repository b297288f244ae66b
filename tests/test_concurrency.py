from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from piggybank.models import OpenRequestStatus, TransactionRecord, TransactionType, Wallet
from piggybank.services import audit, ledger
from piggybank.services.balances import get_wallet
from piggybank.services.errors import InsufficientFunds, InvalidState, LedgerError
from piggybank.services.open_requests import approve_open_request, create_open_request
from tests.factories import Family


def _run_concurrently(
    session_factory: sessionmaker[Session],
    calls: list[Callable[[Session], Any]],
) -> list[Any]:
    barrier = threading.Barrier(len(calls))

    def _worker(call: Callable[[Session], Any]) -> Any:
        with session_factory() as session:
            barrier.wait()
            try:
                return call(session)
            except LedgerError as exc:
                return exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_worker, calls))


def test_concurrent_spends_never_overdraw(
    db: Session,
    family: Family,
    fund: Callable[..., None],
    session_factory: sessionmaker[Session],
) -> None:
    fund(wallet=1000)
    db.close()

    def spend(session: Session) -> Any:
        return ledger.record_spend(
            session,
            actor_id=family.child_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=300,
        )

    results = _run_concurrently(session_factory, [spend] * 8)

    succeeded = [item for item in results if isinstance(item, ledger.WalletResult)]
    failed = [item for item in results if isinstance(item, InsufficientFunds)]
    assert len(succeeded) == 3
    assert len(failed) == 5
    assert sorted(item.new_wallet_balance for item in succeeded) == [100, 400, 700]

    with session_factory() as session:
        wallet = get_wallet(session, group_id=family.group_id, child_id=family.child_id)
        assert wallet is not None
        assert wallet.balance == 100
        assert audit.reconcile(session, wallet).ok
        spends = session.scalar(
            select(func.count(TransactionRecord.id)).where(TransactionRecord.type == TransactionType.SPEND),
        )
        assert spends == 3


def test_concurrent_approvals_apply_once(
    db: Session,
    family: Family,
    fund: Callable[..., None],
    session_factory: sessionmaker[Session],
) -> None:
    fund(savings=5000)
    request = create_open_request(
        db,
        actor_id=family.child_id,
        group_id=family.group_id,
        child_id=family.child_id,
        amount=2000,
        destination="wallet",
    )
    db.close()

    def approve_as(approver_id: str) -> Callable[[Session], Any]:
        return lambda session: approve_open_request(session, request_id=request.id, approver_id=approver_id)

    results = _run_concurrently(
        session_factory,
        [approve_as(family.parent_id), approve_as(family.co_parent_id)] * 2,
    )

    approved = [item for item in results if not isinstance(item, LedgerError)]
    assert len(approved) == 1
    assert all(isinstance(item, InvalidState) for item in results if isinstance(item, LedgerError))
    assert approved[0].request.status == OpenRequestStatus.APPROVED
    assert approved[0].new_savings_balance == 3000

    with session_factory() as session:
        linked = session.scalar(
            select(func.count(TransactionRecord.id)).where(TransactionRecord.open_request_id == request.id),
        )
        assert linked == 2


def test_concurrent_first_credits_share_one_wallet(
    db: Session,
    family: Family,
    session_factory: sessionmaker[Session],
) -> None:
    db.close()

    def allowance(session: Session) -> Any:
        return ledger.grant_allowance(
            session,
            actor_id=family.parent_id,
            group_id=family.group_id,
            child_id=family.sibling_id,
            amount=100,
        )

    results = _run_concurrently(session_factory, [allowance] * 5)

    assert all(isinstance(item, ledger.WalletResult) for item in results)
    with session_factory() as session:
        assert session.scalar(select(func.count(Wallet.id)).where(Wallet.user_id == family.sibling_id)) == 1
        wallet = get_wallet(session, group_id=family.group_id, child_id=family.sibling_id)
        assert wallet is not None
        assert wallet.balance == 500
