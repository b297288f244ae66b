from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from piggybank.models import AccountRequestStatus, MembershipRole, PoolType, TransactionType
from piggybank.schemas.open_requests import OpenRequestOut


# Amounts are validated by the ledger so that malformed values surface as
# INVALID_AMOUNT rather than a schema error.
class AllowanceRequest(BaseModel):
    child_id: str
    amount: Any = None
    memo: str | None = None


class ParentDepositRequest(BaseModel):
    child_id: str
    amount: Any = None
    memo: str | None = None


class SpendRequest(BaseModel):
    amount: Any = None
    category: str | None = None
    memo: str | None = None


class SaveRequest(BaseModel):
    amount: Any = None
    memo: str | None = None


class WalletBalanceResponse(BaseModel):
    new_wallet_balance: int


class SavingsBalanceResponse(BaseModel):
    new_savings_balance: int


class SaveResponse(BaseModel):
    new_wallet_balance: int
    new_savings_balance: int


class WalletOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    balance: int
    updated_at: datetime


class SavingsAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str | None
    name: str
    balance: int
    currency: str
    updated_at: datetime


class SummaryResponse(BaseModel):
    wallet: WalletOut
    savings_account: SavingsAccountOut | None = None
    role: MembershipRole
    is_owner: bool
    pending_requests: list[OpenRequestOut]


class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: str | None
    nickname: str | None
    role: MembershipRole


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    pool: PoolType
    pool_id: str
    user_id: str
    actor_id: str
    amount: int
    type: TransactionType
    memo: str | None
    open_request_id: str | None
    created_at: datetime


class ReconciliationOut(BaseModel):
    pool: PoolType
    pool_id: str
    balance: int
    ledger_sum: int
    ok: bool


class ReconciliationResponse(BaseModel):
    child_id: str
    pools: list[ReconciliationOut]


class GroupSavingsTotalOut(BaseModel):
    total_balance: int
    account_count: int
    currency: str


class SavingsAccountListResponse(BaseModel):
    accounts: list[SavingsAccountOut]
    group_total: GroupSavingsTotalOut


class SavingsAccountCreateRequest(BaseModel):
    child_id: str
    name: str | None = None


class SavingsAccountRenameRequest(BaseModel):
    name: str = Field(min_length=1)


class AccountRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    status: AccountRequestStatus
    created_at: datetime
    updated_at: datetime
