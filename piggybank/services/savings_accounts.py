from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from piggybank.core.config import settings
from piggybank.models import AccountRequest, AccountRequestStatus, SavingsAccount
from piggybank.services.authorization import GroupAuthorizer
from piggybank.services.balances import get_or_create_savings_account, get_savings_account
from piggybank.services.errors import InvalidRequest, InvalidState, NotAuthorized, NotFound
from piggybank.services.events import EventService
from piggybank.services.unit_of_work import run_ledger_unit
from piggybank.services.wallet import clean_text

logger = logging.getLogger("piggybank.savings_accounts")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 40


@dataclass(slots=True)
class GroupSavingsTotal:
    group_id: str
    total_balance: int
    account_count: int
    currency: str


def clean_account_name(raw: Any) -> str:
    name = clean_text(raw, max_length=NAME_MAX_LENGTH)
    if name is None or len(name) < NAME_MIN_LENGTH:
        raise InvalidRequest(f"Account name must be at least {NAME_MIN_LENGTH} characters")
    return name


def _get_account_request(db: Session, *, group_id: str, user_id: str) -> AccountRequest | None:
    return db.scalar(
        select(AccountRequest)
        .where(
            AccountRequest.group_id == group_id,
            AccountRequest.user_id == user_id,
        )
        .execution_options(populate_existing=True),
    )


def list_savings_accounts(
    db: Session,
    *,
    viewer_id: str,
    group_id: str,
    authorizer: GroupAuthorizer | None = None,
) -> list[SavingsAccount]:
    authz = authorizer or GroupAuthorizer(db)
    authz.require_admin(viewer_id, group_id)
    return list(
        db.scalars(
            select(SavingsAccount)
            .where(
                SavingsAccount.group_id == group_id,
                SavingsAccount.user_id.is_not(None),
            )
            .order_by(SavingsAccount.created_at.asc(), SavingsAccount.id.asc()),
        ).all(),
    )


def group_savings_total(db: Session, *, group_id: str) -> GroupSavingsTotal:
    """Group-level savings is reported as the sum of the children's accounts."""
    total, count = db.execute(
        select(
            func.coalesce(func.sum(SavingsAccount.balance), 0),
            func.count(SavingsAccount.id),
        ).where(
            SavingsAccount.group_id == group_id,
            SavingsAccount.user_id.is_not(None),
        ),
    ).one()
    return GroupSavingsTotal(
        group_id=group_id,
        total_balance=int(total or 0),
        account_count=int(count or 0),
        currency=settings.default_currency,
    )


def create_savings_account(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    child_id: str,
    name: Any = None,
    authorizer: GroupAuthorizer | None = None,
) -> SavingsAccount:
    authz = authorizer or GroupAuthorizer(db)
    account_name = clean_account_name(name) if name is not None else None

    def work() -> SavingsAccount:
        authz.require_admin(actor_id, group_id)
        authz.require_child_in_group(group_id, child_id)
        created = get_savings_account(db, group_id=group_id, child_id=child_id) is None
        account = get_or_create_savings_account(db, group_id=group_id, child_id=child_id)
        if created and account_name is not None:
            account.name = account_name

        pending = _get_account_request(db, group_id=group_id, user_id=child_id)
        if pending is not None and pending.status == AccountRequestStatus.PENDING:
            pending.status = AccountRequestStatus.APPROVED
            pending.updated_at = datetime.now(UTC)

        db.flush()
        if created:
            EventService(db).emit(
                type="piggy.account.created",
                group_id=group_id,
                actor_user_id=actor_id,
                child_id=child_id,
                payload={"account_id": account.id, "name": account.name},
            )
        return account

    account = run_ledger_unit(db, operation="create_savings_account", work=work)
    logger.info(
        "savings_account.created",
        extra={"group_id": group_id, "child_id": child_id},
    )
    return account


def rename_savings_account(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    child_id: str,
    name: Any,
    authorizer: GroupAuthorizer | None = None,
) -> SavingsAccount:
    authz = authorizer or GroupAuthorizer(db)
    account_name = clean_account_name(name)

    def work() -> SavingsAccount:
        authz.require_admin(actor_id, group_id)
        account = get_savings_account(db, group_id=group_id, child_id=child_id)
        if account is None:
            raise NotFound("Savings account not found")
        account.name = account_name
        account.updated_at = datetime.now(UTC)
        db.flush()
        EventService(db).emit(
            type="piggy.account.renamed",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=child_id,
            payload={"account_id": account.id, "name": account_name},
        )
        return account

    return run_ledger_unit(db, operation="rename_savings_account", work=work)


def request_savings_account(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    authorizer: GroupAuthorizer | None = None,
) -> AccountRequest:
    authz = authorizer or GroupAuthorizer(db)

    def work() -> AccountRequest:
        access = authz.require_member(actor_id, group_id)
        if access.is_admin:
            raise NotAuthorized("Admins open savings accounts directly")
        if get_savings_account(db, group_id=group_id, child_id=actor_id) is not None:
            raise InvalidState("Savings account already exists")

        existing = _get_account_request(db, group_id=group_id, user_id=actor_id)
        if existing is not None:
            if existing.status != AccountRequestStatus.PENDING:
                existing.status = AccountRequestStatus.PENDING
                existing.updated_at = datetime.now(UTC)
                db.flush()
            return existing

        request = AccountRequest(group_id=group_id, user_id=actor_id, status=AccountRequestStatus.PENDING)
        try:
            with db.begin_nested():
                db.add(request)
        except IntegrityError:
            # A duplicate submission won the insert; collapse onto it.
            winner = _get_account_request(db, group_id=group_id, user_id=actor_id)
            if winner is None:
                raise
            return winner
        EventService(db).emit(
            type="piggy.account_request.created",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=actor_id,
            payload={"account_request_id": request.id},
        )
        return request

    return run_ledger_unit(db, operation="request_savings_account", work=work)


def list_account_requests(
    db: Session,
    *,
    viewer_id: str,
    group_id: str,
    authorizer: GroupAuthorizer | None = None,
) -> list[AccountRequest]:
    authz = authorizer or GroupAuthorizer(db)
    authz.require_admin(viewer_id, group_id)
    return list(
        db.scalars(
            select(AccountRequest)
            .where(
                AccountRequest.group_id == group_id,
                AccountRequest.status == AccountRequestStatus.PENDING,
            )
            .order_by(AccountRequest.created_at.asc()),
        ).all(),
    )


def reject_account_request(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    request_id: str,
    authorizer: GroupAuthorizer | None = None,
) -> AccountRequest:
    authz = authorizer or GroupAuthorizer(db)

    def work() -> AccountRequest:
        authz.require_admin(actor_id, group_id)
        request = db.get(AccountRequest, request_id, populate_existing=True)
        if request is None or request.group_id != group_id:
            raise NotFound("Account request not found")
        if request.status != AccountRequestStatus.PENDING:
            raise InvalidState()
        request.status = AccountRequestStatus.REJECTED
        request.updated_at = datetime.now(UTC)
        db.flush()
        EventService(db).emit(
            type="piggy.account_request.rejected",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=request.user_id,
            payload={"account_request_id": request.id},
        )
        return request

    return run_ledger_unit(db, operation="reject_account_request", work=work)
