from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from piggybank.models import (
    MembershipRole,
    OpenRequest,
    PoolType,
    SavingsAccount,
    TransactionType,
    Wallet,
)
from piggybank.services import audit
from piggybank.services.authorization import GroupAuthorizer
from piggybank.services.balances import (
    apply_delta,
    get_or_create_savings_account,
    get_or_create_wallet,
    get_savings_account,
)
from piggybank.services.events import EventService
from piggybank.services.open_requests import SUMMARY_PENDING_LIMIT, list_pending_requests
from piggybank.services.unit_of_work import IdempotencyToken, run_ledger_unit
from piggybank.services.wallet import clean_text, parse_amount, signed_amount, spend_memo

logger = logging.getLogger("piggybank.ledger")

_ResultT = TypeVar("_ResultT")


@dataclass(slots=True)
class WalletResult:
    new_wallet_balance: int


@dataclass(slots=True)
class SavingsResult:
    new_savings_balance: int


@dataclass(slots=True)
class SaveResult:
    new_wallet_balance: int
    new_savings_balance: int


@dataclass(slots=True)
class Summary:
    wallet: Wallet
    savings_account: SavingsAccount | None
    role: MembershipRole
    is_owner: bool
    pending_requests: list[OpenRequest]


def _run_mutation(
    db: Session,
    *,
    operation: str,
    work: Callable[[], _ResultT],
    result_cls: type[_ResultT],
    actor_id: str,
    group_id: str,
    idempotency_key: str | None,
) -> _ResultT:
    token = None
    if idempotency_key:
        token = IdempotencyToken(key=idempotency_key, actor_id=actor_id, group_id=group_id)
    return run_ledger_unit(
        db,
        operation=operation,
        work=work,
        idempotency=token,
        encode=asdict,
        decode=lambda payload: result_cls(**payload),
    )


def grant_allowance(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    child_id: str,
    amount: Any,
    memo: Any = None,
    idempotency_key: str | None = None,
    authorizer: GroupAuthorizer | None = None,
) -> WalletResult:
    value = parse_amount(amount)
    note = clean_text(memo)
    authz = authorizer or GroupAuthorizer(db)

    def work() -> WalletResult:
        authz.require_admin(actor_id, group_id)
        authz.require_child_in_group(group_id, child_id)
        wallet = get_or_create_wallet(db, group_id=group_id, child_id=child_id)
        balance = apply_delta(db, wallet, signed_amount(TransactionType.ALLOWANCE, PoolType.WALLET, value))
        record = audit.append(
            db,
            pool=wallet,
            tx_type=TransactionType.ALLOWANCE,
            amount=value,
            actor_id=actor_id,
            memo=note,
        )
        db.flush()
        EventService(db).emit(
            type="piggy.allowance.granted",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=child_id,
            payload={"transaction_id": record.id, "amount": value},
        )
        return WalletResult(new_wallet_balance=balance)

    result = _run_mutation(
        db,
        operation="grant_allowance",
        work=work,
        result_cls=WalletResult,
        actor_id=actor_id,
        group_id=group_id,
        idempotency_key=idempotency_key,
    )
    logger.info(
        "ledger.allowance.granted",
        extra={
            "group_id": group_id,
            "child_id": child_id,
            "amount": value,
            "transaction_type": TransactionType.ALLOWANCE.value,
        },
    )
    return result


def deposit_to_savings(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    child_id: str,
    amount: Any,
    memo: Any = None,
    idempotency_key: str | None = None,
    authorizer: GroupAuthorizer | None = None,
) -> SavingsResult:
    value = parse_amount(amount)
    note = clean_text(memo)
    authz = authorizer or GroupAuthorizer(db)

    def work() -> SavingsResult:
        authz.require_admin(actor_id, group_id)
        authz.require_child_in_group(group_id, child_id)
        savings = get_or_create_savings_account(db, group_id=group_id, child_id=child_id)
        balance = apply_delta(
            db,
            savings,
            signed_amount(TransactionType.PARENT_DEPOSIT, PoolType.SAVINGS, value),
        )
        record = audit.append(
            db,
            pool=savings,
            tx_type=TransactionType.PARENT_DEPOSIT,
            amount=value,
            actor_id=actor_id,
            memo=note,
        )
        db.flush()
        EventService(db).emit(
            type="piggy.savings.deposited",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=child_id,
            payload={"transaction_id": record.id, "amount": value},
        )
        return SavingsResult(new_savings_balance=balance)

    result = _run_mutation(
        db,
        operation="deposit_to_savings",
        work=work,
        result_cls=SavingsResult,
        actor_id=actor_id,
        group_id=group_id,
        idempotency_key=idempotency_key,
    )
    logger.info(
        "ledger.savings.deposited",
        extra={
            "group_id": group_id,
            "child_id": child_id,
            "amount": value,
            "transaction_type": TransactionType.PARENT_DEPOSIT.value,
        },
    )
    return result


def record_spend(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    child_id: str,
    amount: Any,
    category: Any = None,
    memo: Any = None,
    idempotency_key: str | None = None,
    authorizer: GroupAuthorizer | None = None,
) -> WalletResult:
    value = parse_amount(amount)
    note = spend_memo(category, memo)
    authz = authorizer or GroupAuthorizer(db)

    def work() -> WalletResult:
        authz.require_self(actor_id, group_id, child_id)
        wallet = get_or_create_wallet(db, group_id=group_id, child_id=child_id)
        balance = apply_delta(db, wallet, signed_amount(TransactionType.SPEND, PoolType.WALLET, value))
        record = audit.append(
            db,
            pool=wallet,
            tx_type=TransactionType.SPEND,
            amount=value,
            actor_id=actor_id,
            memo=note,
        )
        db.flush()
        EventService(db).emit(
            type="piggy.wallet.spent",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=child_id,
            payload={"transaction_id": record.id, "amount": value},
        )
        return WalletResult(new_wallet_balance=balance)

    result = _run_mutation(
        db,
        operation="record_spend",
        work=work,
        result_cls=WalletResult,
        actor_id=actor_id,
        group_id=group_id,
        idempotency_key=idempotency_key,
    )
    logger.info(
        "ledger.wallet.spent",
        extra={
            "group_id": group_id,
            "child_id": child_id,
            "amount": value,
            "transaction_type": TransactionType.SPEND.value,
        },
    )
    return result


def save_to_savings(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    child_id: str,
    amount: Any,
    memo: Any = None,
    idempotency_key: str | None = None,
    authorizer: GroupAuthorizer | None = None,
) -> SaveResult:
    """Move money from the child's wallet into their savings account."""
    value = parse_amount(amount)
    note = clean_text(memo)
    authz = authorizer or GroupAuthorizer(db)

    def work() -> SaveResult:
        authz.require_self(actor_id, group_id, child_id)
        wallet = get_or_create_wallet(db, group_id=group_id, child_id=child_id)
        savings = get_or_create_savings_account(db, group_id=group_id, child_id=child_id)
        # Debit first so an overdraft fails before savings is touched.
        wallet_balance = apply_delta(
            db,
            wallet,
            signed_amount(TransactionType.CHILD_SAVE, PoolType.WALLET, value),
        )
        savings_balance = apply_delta(
            db,
            savings,
            signed_amount(TransactionType.CHILD_SAVE, PoolType.SAVINGS, value),
        )
        for pool in (wallet, savings):
            audit.append(
                db,
                pool=pool,
                tx_type=TransactionType.CHILD_SAVE,
                amount=value,
                actor_id=actor_id,
                memo=note,
            )
        db.flush()
        EventService(db).emit(
            type="piggy.savings.saved",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=child_id,
            payload={"amount": value},
        )
        return SaveResult(new_wallet_balance=wallet_balance, new_savings_balance=savings_balance)

    result = _run_mutation(
        db,
        operation="save_to_savings",
        work=work,
        result_cls=SaveResult,
        actor_id=actor_id,
        group_id=group_id,
        idempotency_key=idempotency_key,
    )
    logger.info(
        "ledger.savings.saved",
        extra={
            "group_id": group_id,
            "child_id": child_id,
            "amount": value,
            "transaction_type": TransactionType.CHILD_SAVE.value,
        },
    )
    return result


def get_summary(
    db: Session,
    *,
    viewer_id: str,
    group_id: str,
    child_id: str | None = None,
    authorizer: GroupAuthorizer | None = None,
) -> Summary:
    authz = authorizer or GroupAuthorizer(db)
    target_id = child_id or viewer_id

    def work() -> Summary:
        access = authz.require_admin_or_self(viewer_id, group_id, target_id)
        if target_id != viewer_id:
            authz.require_child_in_group(group_id, target_id)
        wallet = get_or_create_wallet(db, group_id=group_id, child_id=target_id)
        # The savings account is opened by a deposit, a save or an admin.
        savings = get_savings_account(db, group_id=group_id, child_id=target_id)
        pending = list_pending_requests(
            db,
            group_id=group_id,
            child_id=None if access.is_admin else target_id,
            limit=SUMMARY_PENDING_LIMIT,
        )
        return Summary(
            wallet=wallet,
            savings_account=savings,
            role=access.role,
            is_owner=access.is_owner,
            pending_requests=pending,
        )

    return run_ledger_unit(db, operation="get_summary", work=work)
