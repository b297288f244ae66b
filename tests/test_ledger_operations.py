from __future__ import annotations

from collections.abc import Callable

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from piggybank.models import (
    AuditLog,
    EventLog,
    MembershipRole,
    PoolType,
    SavingsAccount,
    TransactionRecord,
    TransactionType,
    Wallet,
)
from piggybank.services import audit, ledger
from piggybank.services.balances import apply_delta, get_or_create_wallet, get_savings_account, get_wallet
from piggybank.services.errors import InsufficientFunds, InvalidAmount, NotAuthorized, NotFound
from piggybank.services.wallet import MAX_BALANCE
from tests.factories import Family


def _records(db: Session, child_id: str) -> list[TransactionRecord]:
    return list(
        db.scalars(
            select(TransactionRecord)
            .where(TransactionRecord.user_id == child_id)
            .order_by(TransactionRecord.created_at.asc()),
        ).all(),
    )


def test_allowance_credits_wallet_and_appends_record(db: Session, family: Family) -> None:
    result = ledger.grant_allowance(
        db,
        actor_id=family.parent_id,
        group_id=family.group_id,
        child_id=family.child_id,
        amount=5000,
        memo="weekly",
    )

    assert result.new_wallet_balance == 5000
    records = _records(db, family.child_id)
    assert len(records) == 1
    assert records[0].type == TransactionType.ALLOWANCE
    assert records[0].pool == PoolType.WALLET
    assert records[0].amount == 5000
    assert records[0].actor_id == family.parent_id
    assert records[0].memo == "weekly"


def test_spend_debits_wallet_and_rejects_overdraft(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=5000)

    result = ledger.record_spend(
        db,
        actor_id=family.child_id,
        group_id=family.group_id,
        child_id=family.child_id,
        amount=3000,
        category="snacks",
        memo="ice cream",
    )
    assert result.new_wallet_balance == 2000

    with pytest.raises(InsufficientFunds):
        ledger.record_spend(
            db,
            actor_id=family.child_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=5000,
        )

    wallet = get_wallet(db, group_id=family.group_id, child_id=family.child_id)
    assert wallet is not None
    assert wallet.balance == 2000
    records = _records(db, family.child_id)
    assert [record.amount for record in records] == [5000, -3000]
    assert records[1].memo == "snacks | ice cream"


def test_save_moves_money_between_pools(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=700)

    result = ledger.save_to_savings(
        db,
        actor_id=family.child_id,
        group_id=family.group_id,
        child_id=family.child_id,
        amount=500,
    )

    assert result.new_wallet_balance == 200
    assert result.new_savings_balance == 500
    saves = [record for record in _records(db, family.child_id) if record.type == TransactionType.CHILD_SAVE]
    assert sorted((record.pool, record.amount) for record in saves) == [
        (PoolType.SAVINGS, 500),
        (PoolType.WALLET, -500),
    ]


def test_failed_save_leaves_both_pools_untouched(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=100, savings=50)

    with pytest.raises(InsufficientFunds):
        ledger.save_to_savings(
            db,
            actor_id=family.child_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=101,
        )

    wallet = get_wallet(db, group_id=family.group_id, child_id=family.child_id)
    savings = get_savings_account(db, group_id=family.group_id, child_id=family.child_id)
    assert wallet is not None and wallet.balance == 100
    assert savings is not None and savings.balance == 50
    assert len(_records(db, family.child_id)) == 2


def test_parent_deposit_credits_savings(db: Session, family: Family) -> None:
    result = ledger.deposit_to_savings(
        db,
        actor_id=family.co_parent_id,
        group_id=family.group_id,
        child_id=family.child_id,
        amount="10000",
    )

    assert result.new_savings_balance == 10000
    records = _records(db, family.child_id)
    assert [(record.type, record.pool, record.amount) for record in records] == [
        (TransactionType.PARENT_DEPOSIT, PoolType.SAVINGS, 10000),
    ]


def test_balances_reconcile_with_transaction_log(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=9000, savings=1000)
    ledger.record_spend(
        db, actor_id=family.child_id, group_id=family.group_id, child_id=family.child_id, amount=1500
    )
    ledger.save_to_savings(
        db, actor_id=family.child_id, group_id=family.group_id, child_id=family.child_id, amount=2500
    )
    with pytest.raises(InsufficientFunds):
        ledger.record_spend(
            db, actor_id=family.child_id, group_id=family.group_id, child_id=family.child_id, amount=99999
        )

    wallet = get_wallet(db, group_id=family.group_id, child_id=family.child_id)
    savings = get_savings_account(db, group_id=family.group_id, child_id=family.child_id)
    assert wallet is not None and savings is not None

    wallet_check = audit.reconcile(db, wallet)
    savings_check = audit.reconcile(db, savings)
    assert wallet_check.ok and wallet_check.balance == 5000
    assert savings_check.ok and savings_check.balance == 3500


@pytest.mark.parametrize("amount", [0, -100, "abc", True, None, 0.4, 10**20])
def test_invalid_amounts_are_rejected_without_side_effects(db: Session, family: Family, amount: object) -> None:
    with pytest.raises(InvalidAmount):
        ledger.grant_allowance(
            db,
            actor_id=family.parent_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=amount,
        )

    assert db.scalar(select(func.count(Wallet.id))) == 0
    assert db.scalar(select(func.count(TransactionRecord.id))) == 0


def test_fractional_amount_is_floored(db: Session, family: Family) -> None:
    result = ledger.grant_allowance(
        db,
        actor_id=family.parent_id,
        group_id=family.group_id,
        child_id=family.child_id,
        amount=1234.99,
    )
    assert result.new_wallet_balance == 1234


def test_admin_operations_require_admin_role(db: Session, family: Family) -> None:
    with pytest.raises(NotAuthorized):
        ledger.grant_allowance(
            db,
            actor_id=family.child_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=100,
        )
    with pytest.raises(NotAuthorized):
        ledger.deposit_to_savings(
            db,
            actor_id=family.outsider_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=100,
        )
    assert db.scalar(select(func.count(TransactionRecord.id))) == 0


def test_admin_cannot_fund_non_member(db: Session, family: Family) -> None:
    with pytest.raises(NotFound):
        ledger.grant_allowance(
            db,
            actor_id=family.parent_id,
            group_id=family.group_id,
            child_id=family.outsider_id,
            amount=100,
        )


def test_child_operations_require_self(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=1000)

    with pytest.raises(NotAuthorized):
        ledger.record_spend(
            db,
            actor_id=family.parent_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=100,
        )
    with pytest.raises(NotAuthorized):
        ledger.save_to_savings(
            db,
            actor_id=family.sibling_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=100,
        )
    with pytest.raises(NotAuthorized):
        ledger.record_spend(
            db,
            actor_id=family.outsider_id,
            group_id=family.group_id,
            child_id=family.outsider_id,
            amount=100,
        )

    wallet = get_wallet(db, group_id=family.group_id, child_id=family.child_id)
    assert wallet is not None and wallet.balance == 1000


def test_mutations_emit_activity_events(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=1000)
    ledger.record_spend(
        db, actor_id=family.child_id, group_id=family.group_id, child_id=family.child_id, amount=10
    )

    event_types = list(db.scalars(select(EventLog.type).order_by(EventLog.id.asc())).all())
    assert event_types == ["piggy.allowance.granted", "piggy.wallet.spent"]

    audit_entries = list(db.scalars(select(AuditLog)).all())
    assert [entry.action for entry in audit_entries] == ["wallet.credit"]
    assert audit_entries[0].actor_user_id == family.parent_id


def test_summary_creates_wallet_but_not_savings_account(db: Session, family: Family) -> None:
    summary = ledger.get_summary(db, viewer_id=family.child_id, group_id=family.group_id)

    assert summary.wallet.balance == 0
    assert summary.savings_account is None
    assert summary.role == MembershipRole.MEMBER
    assert summary.is_owner is False
    assert summary.pending_requests == []
    assert db.scalar(select(func.count(Wallet.id))) == 1
    assert db.scalar(select(func.count(SavingsAccount.id))) == 0


def test_summary_returns_existing_savings_account(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(savings=400)

    summary = ledger.get_summary(db, viewer_id=family.child_id, group_id=family.group_id)

    assert summary.savings_account is not None
    assert summary.savings_account.balance == 400
    assert summary.savings_account.name == "Piggy Bank"


def test_summary_for_another_child_requires_admin(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=250)

    summary = ledger.get_summary(
        db,
        viewer_id=family.parent_id,
        group_id=family.group_id,
        child_id=family.child_id,
    )
    assert summary.wallet.balance == 250
    assert summary.is_owner is True

    with pytest.raises(NotAuthorized):
        ledger.get_summary(
            db,
            viewer_id=family.sibling_id,
            group_id=family.group_id,
            child_id=family.child_id,
        )


def test_transaction_history_is_newest_first_and_paged(
    db: Session,
    family: Family,
    fund: Callable[..., None],
) -> None:
    fund(wallet=1000)
    for amount in (100, 200, 300):
        ledger.record_spend(
            db, actor_id=family.child_id, group_id=family.group_id, child_id=family.child_id, amount=amount
        )

    page = audit.list_transactions(db, group_id=family.group_id, child_id=family.child_id, limit=2)
    assert [record.amount for record in page] == [-300, -200]

    rest = audit.list_transactions(db, group_id=family.group_id, child_id=family.child_id, limit=2, offset=2)
    assert [record.amount for record in rest] == [-100, 1000]

    clamped = audit.list_transactions(db, group_id=family.group_id, child_id=family.child_id, limit=0)
    assert len(clamped) == 1

    savings_only = audit.list_transactions(
        db,
        group_id=family.group_id,
        child_id=family.child_id,
        pool=PoolType.SAVINGS,
    )
    assert savings_only == []


def test_credit_past_balance_ceiling_is_rolled_back(db: Session, family: Family) -> None:
    wallet = get_or_create_wallet(db, group_id=family.group_id, child_id=family.child_id)
    apply_delta(db, wallet, MAX_BALANCE - 100)
    db.commit()

    with pytest.raises(InvalidAmount):
        ledger.grant_allowance(
            db,
            actor_id=family.parent_id,
            group_id=family.group_id,
            child_id=family.child_id,
            amount=101,
        )

    stored = get_wallet(db, group_id=family.group_id, child_id=family.child_id)
    assert stored is not None
    assert stored.balance == MAX_BALANCE - 100
    assert db.scalar(select(func.count(TransactionRecord.id))) == 0
    assert db.scalar(select(func.count(EventLog.id))) == 0
