from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from piggybank.api.deps import Authorizer, CurrentGroup, CurrentUser, DBSession, IdempotencyKeyHeader
from piggybank.models import PoolType
from piggybank.schemas.open_requests import OpenRequestOut
from piggybank.schemas.piggy_bank import (
    AccountRequestOut,
    AllowanceRequest,
    GroupSavingsTotalOut,
    MemberOut,
    ParentDepositRequest,
    ReconciliationOut,
    ReconciliationResponse,
    SavingsAccountCreateRequest,
    SavingsAccountListResponse,
    SavingsAccountOut,
    SavingsAccountRenameRequest,
    SavingsBalanceResponse,
    SaveRequest,
    SaveResponse,
    SpendRequest,
    SummaryResponse,
    TransactionOut,
    WalletBalanceResponse,
    WalletOut,
)
from piggybank.services import audit, ledger, savings_accounts
from piggybank.services.balances import get_savings_account, get_wallet

router = APIRouter(prefix="/piggy-bank", tags=["piggy-bank"])


@router.post("/allowance", response_model=WalletBalanceResponse)
def piggy_bank_allowance(
    payload: AllowanceRequest,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    idempotency_key: IdempotencyKeyHeader,
) -> WalletBalanceResponse:
    result = ledger.grant_allowance(
        db,
        actor_id=user.id,
        group_id=group.id,
        child_id=payload.child_id,
        amount=payload.amount,
        memo=payload.memo,
        idempotency_key=idempotency_key,
        authorizer=authorizer,
    )
    return WalletBalanceResponse(new_wallet_balance=result.new_wallet_balance)


@router.post("/parent-deposit", response_model=SavingsBalanceResponse)
def piggy_bank_parent_deposit(
    payload: ParentDepositRequest,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    idempotency_key: IdempotencyKeyHeader,
) -> SavingsBalanceResponse:
    result = ledger.deposit_to_savings(
        db,
        actor_id=user.id,
        group_id=group.id,
        child_id=payload.child_id,
        amount=payload.amount,
        memo=payload.memo,
        idempotency_key=idempotency_key,
        authorizer=authorizer,
    )
    return SavingsBalanceResponse(new_savings_balance=result.new_savings_balance)


@router.post("/spend", response_model=WalletBalanceResponse)
def piggy_bank_spend(
    payload: SpendRequest,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    idempotency_key: IdempotencyKeyHeader,
) -> WalletBalanceResponse:
    result = ledger.record_spend(
        db,
        actor_id=user.id,
        group_id=group.id,
        child_id=user.id,
        amount=payload.amount,
        category=payload.category,
        memo=payload.memo,
        idempotency_key=idempotency_key,
        authorizer=authorizer,
    )
    return WalletBalanceResponse(new_wallet_balance=result.new_wallet_balance)


@router.post("/save", response_model=SaveResponse)
def piggy_bank_save(
    payload: SaveRequest,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    idempotency_key: IdempotencyKeyHeader,
) -> SaveResponse:
    result = ledger.save_to_savings(
        db,
        actor_id=user.id,
        group_id=group.id,
        child_id=user.id,
        amount=payload.amount,
        memo=payload.memo,
        idempotency_key=idempotency_key,
        authorizer=authorizer,
    )
    return SaveResponse(
        new_wallet_balance=result.new_wallet_balance,
        new_savings_balance=result.new_savings_balance,
    )


@router.get("/summary", response_model=SummaryResponse)
def piggy_bank_summary(
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    child_id: Annotated[str | None, Query()] = None,
) -> SummaryResponse:
    summary = ledger.get_summary(
        db,
        viewer_id=user.id,
        group_id=group.id,
        child_id=child_id,
        authorizer=authorizer,
    )
    return SummaryResponse(
        wallet=WalletOut.model_validate(summary.wallet),
        savings_account=(
            SavingsAccountOut.model_validate(summary.savings_account)
            if summary.savings_account is not None
            else None
        ),
        role=summary.role,
        is_owner=summary.is_owner,
        pending_requests=[OpenRequestOut.model_validate(item) for item in summary.pending_requests],
    )


@router.get("/transactions", response_model=list[TransactionOut])
def piggy_bank_transactions(
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    child_id: Annotated[str | None, Query()] = None,
    pool: Annotated[PoolType | None, Query()] = None,
    limit: Annotated[int, Query()] = audit.DEFAULT_PAGE_SIZE,
    offset: Annotated[int, Query()] = 0,
) -> list[TransactionOut]:
    target_id = child_id or user.id
    authorizer.require_admin_or_self(user.id, group.id, target_id)

    records = audit.list_transactions(
        db,
        group_id=group.id,
        child_id=target_id,
        pool=pool,
        limit=limit,
        offset=offset,
    )
    return [TransactionOut.model_validate(record) for record in records]


@router.get("/members", response_model=list[MemberOut])
def piggy_bank_members(
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> list[MemberOut]:
    authorizer.require_admin(user.id, group.id)
    return [MemberOut.model_validate(member) for member in authorizer.list_members(group.id)]


@router.get("/reconciliation", response_model=ReconciliationResponse)
def piggy_bank_reconciliation(
    child_id: Annotated[str, Query()],
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> ReconciliationResponse:
    authorizer.require_admin(user.id, group.id)
    authorizer.require_child_in_group(group.id, child_id)

    pools = [
        pool
        for pool in (
            get_wallet(db, group_id=group.id, child_id=child_id),
            get_savings_account(db, group_id=group.id, child_id=child_id),
        )
        if pool is not None
    ]
    results = [audit.reconcile(db, pool) for pool in pools]
    return ReconciliationResponse(
        child_id=child_id,
        pools=[
            ReconciliationOut(
                pool=item.pool,
                pool_id=item.pool_id,
                balance=item.balance,
                ledger_sum=item.ledger_sum,
                ok=item.ok,
            )
            for item in results
        ],
    )


@router.get("/accounts", response_model=SavingsAccountListResponse)
def piggy_bank_accounts(
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> SavingsAccountListResponse:
    accounts = savings_accounts.list_savings_accounts(
        db,
        viewer_id=user.id,
        group_id=group.id,
        authorizer=authorizer,
    )
    total = savings_accounts.group_savings_total(db, group_id=group.id)
    return SavingsAccountListResponse(
        accounts=[SavingsAccountOut.model_validate(account) for account in accounts],
        group_total=GroupSavingsTotalOut(
            total_balance=total.total_balance,
            account_count=total.account_count,
            currency=total.currency,
        ),
    )


@router.post("/accounts", response_model=SavingsAccountOut, status_code=status.HTTP_201_CREATED)
def piggy_bank_create_account(
    payload: SavingsAccountCreateRequest,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> SavingsAccountOut:
    account = savings_accounts.create_savings_account(
        db,
        actor_id=user.id,
        group_id=group.id,
        child_id=payload.child_id,
        name=payload.name,
        authorizer=authorizer,
    )
    return SavingsAccountOut.model_validate(account)


@router.patch("/accounts/{child_id}", response_model=SavingsAccountOut)
def piggy_bank_rename_account(
    child_id: str,
    payload: SavingsAccountRenameRequest,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> SavingsAccountOut:
    account = savings_accounts.rename_savings_account(
        db,
        actor_id=user.id,
        group_id=group.id,
        child_id=child_id,
        name=payload.name,
        authorizer=authorizer,
    )
    return SavingsAccountOut.model_validate(account)


@router.get("/account-requests", response_model=list[AccountRequestOut])
def piggy_bank_account_requests(
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> list[AccountRequestOut]:
    requests = savings_accounts.list_account_requests(
        db,
        viewer_id=user.id,
        group_id=group.id,
        authorizer=authorizer,
    )
    return [AccountRequestOut.model_validate(item) for item in requests]


@router.post("/account-requests", response_model=AccountRequestOut, status_code=status.HTTP_201_CREATED)
def piggy_bank_request_account(
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> AccountRequestOut:
    request = savings_accounts.request_savings_account(
        db,
        actor_id=user.id,
        group_id=group.id,
        authorizer=authorizer,
    )
    return AccountRequestOut.model_validate(request)


@router.post("/account-requests/{request_id}/reject", response_model=AccountRequestOut)
def piggy_bank_reject_account_request(
    request_id: str,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> AccountRequestOut:
    request = savings_accounts.reject_account_request(
        db,
        actor_id=user.id,
        group_id=group.id,
        request_id=request_id,
        authorizer=authorizer,
    )
    return AccountRequestOut.model_validate(request)
