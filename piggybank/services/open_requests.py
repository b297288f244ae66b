"""Child-initiated withdrawals from savings.

A request is created ``pending`` and moves exactly once to ``approved``,
``rejected`` or ``cancelled``.  Only approval moves money, and it does so in
the same unit of work as the status change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from piggybank.models import (
    OpenRequest,
    OpenRequestDestination,
    OpenRequestStatus,
    PoolType,
    TransactionType,
)
from piggybank.services import audit
from piggybank.services.authorization import GroupAuthorizer
from piggybank.services.balances import (
    apply_delta,
    get_or_create_wallet,
    get_savings_account,
)
from piggybank.services.errors import (
    InsufficientFunds,
    InvalidRequest,
    InvalidState,
    NotAuthorized,
    NotFound,
)
from piggybank.services.events import EventService
from piggybank.services.unit_of_work import IdempotencyToken, run_ledger_unit
from piggybank.services.wallet import clean_text, parse_amount, signed_amount

logger = logging.getLogger("piggybank.open_requests")

LIST_LIMIT = 50
SUMMARY_PENDING_LIMIT = 20


@dataclass(slots=True)
class ApprovalResult:
    request: OpenRequest
    new_savings_balance: int
    new_wallet_balance: int | None = None


def parse_destination(raw: Any) -> OpenRequestDestination:
    if isinstance(raw, OpenRequestDestination):
        return raw
    try:
        return OpenRequestDestination(str(raw).strip().lower())
    except ValueError as exc:
        raise InvalidRequest("Destination must be 'wallet' or 'cash'") from exc


def parse_status(raw: Any) -> OpenRequestStatus:
    if isinstance(raw, OpenRequestStatus):
        return raw
    try:
        return OpenRequestStatus(str(raw).strip().lower())
    except ValueError as exc:
        raise InvalidRequest("Unknown request status") from exc


def _load_request(db: Session, request_id: str) -> OpenRequest:
    request = db.get(OpenRequest, request_id, populate_existing=True)
    if request is None:
        raise NotFound("Open request not found")
    return request


def _resolve(
    db: Session,
    request: OpenRequest,
    status: OpenRequestStatus,
    *,
    resolved_by_id: str,
    rejection_note: str | None = None,
) -> None:
    now = datetime.now(UTC)
    values: dict[str, Any] = {
        "status": status,
        "resolved_by_id": resolved_by_id,
        "resolved_at": now,
        "updated_at": now,
    }
    if rejection_note is not None:
        values["rejection_note"] = rejection_note
    # Compare-and-set on status: the losing transition matches zero rows.
    flipped = db.execute(
        update(OpenRequest)
        .where(
            OpenRequest.id == request.id,
            OpenRequest.status == OpenRequestStatus.PENDING,
        )
        .values(**values)
        .returning(OpenRequest.id)
        .execution_options(synchronize_session=False),
    ).scalar_one_or_none()
    if flipped is None:
        raise InvalidState()
    for key, value in values.items():
        set_committed_value(request, key, value)


def create_open_request(
    db: Session,
    *,
    actor_id: str,
    group_id: str,
    child_id: str,
    amount: Any,
    destination: Any,
    reason: Any = None,
    idempotency_key: str | None = None,
    authorizer: GroupAuthorizer | None = None,
) -> OpenRequest:
    value = parse_amount(amount)
    target = parse_destination(destination)
    note = clean_text(reason)
    authz = authorizer or GroupAuthorizer(db)

    def work() -> OpenRequest:
        authz.require_self(actor_id, group_id, child_id)
        savings = get_savings_account(db, group_id=group_id, child_id=child_id)
        available = savings.balance if savings is not None else 0
        if value > available:
            raise InsufficientFunds(details={"pool": PoolType.SAVINGS.value, "requested": value})

        request = OpenRequest(
            group_id=group_id,
            child_id=child_id,
            amount=value,
            reason=note,
            destination=target,
            status=OpenRequestStatus.PENDING,
        )
        db.add(request)
        db.flush()
        EventService(db).emit(
            type="piggy.open_request.created",
            group_id=group_id,
            actor_user_id=actor_id,
            child_id=child_id,
            payload={"request_id": request.id, "amount": value, "destination": target.value},
        )
        return request

    def decode(payload: dict[str, Any]) -> OpenRequest:
        return _load_request(db, payload["request_id"])

    token = None
    if idempotency_key:
        token = IdempotencyToken(key=idempotency_key, actor_id=actor_id, group_id=group_id)
    request = run_ledger_unit(
        db,
        operation="create_open_request",
        work=work,
        idempotency=token,
        encode=lambda created: {"request_id": created.id},
        decode=decode,
    )
    logger.info(
        "open_request.created",
        extra={"group_id": group_id, "child_id": child_id, "open_request_id": request.id, "amount": value},
    )
    return request


def approve_open_request(
    db: Session,
    *,
    request_id: str,
    approver_id: str,
    authorizer: GroupAuthorizer | None = None,
) -> ApprovalResult:
    authz = authorizer or GroupAuthorizer(db)

    def work() -> ApprovalResult:
        request = _load_request(db, request_id)
        authz.require_admin(approver_id, request.group_id)
        if authz.is_self(approver_id, request.child_id):
            raise NotAuthorized("You cannot approve your own request")
        if request.status != OpenRequestStatus.PENDING:
            raise InvalidState()

        _resolve(db, request, OpenRequestStatus.APPROVED, resolved_by_id=approver_id)

        savings = get_savings_account(db, group_id=request.group_id, child_id=request.child_id)
        if savings is None:
            raise InsufficientFunds(details={"pool": PoolType.SAVINGS.value, "requested": request.amount})
        tx_type = (
            TransactionType.WITHDRAW_TO_WALLET
            if request.destination == OpenRequestDestination.WALLET
            else TransactionType.WITHDRAW_CASH
        )
        new_savings = apply_delta(db, savings, signed_amount(tx_type, PoolType.SAVINGS, request.amount))
        audit.append(
            db,
            pool=savings,
            tx_type=tx_type,
            amount=request.amount,
            actor_id=approver_id,
            memo=request.reason,
            open_request_id=request.id,
        )

        new_wallet = None
        if request.destination == OpenRequestDestination.WALLET:
            wallet = get_or_create_wallet(db, group_id=request.group_id, child_id=request.child_id)
            new_wallet = apply_delta(db, wallet, signed_amount(tx_type, PoolType.WALLET, request.amount))
            audit.append(
                db,
                pool=wallet,
                tx_type=tx_type,
                amount=request.amount,
                actor_id=approver_id,
                memo=request.reason,
                open_request_id=request.id,
            )

        db.flush()
        EventService(db).emit(
            type="piggy.open_request.approved",
            group_id=request.group_id,
            actor_user_id=approver_id,
            child_id=request.child_id,
            payload={
                "request_id": request.id,
                "amount": request.amount,
                "destination": request.destination.value,
            },
        )
        return ApprovalResult(request=request, new_savings_balance=new_savings, new_wallet_balance=new_wallet)

    result = run_ledger_unit(db, operation="approve_open_request", work=work)
    logger.info(
        "open_request.approved",
        extra={
            "group_id": result.request.group_id,
            "child_id": result.request.child_id,
            "open_request_id": result.request.id,
            "amount": result.request.amount,
        },
    )
    return result


def reject_open_request(
    db: Session,
    *,
    request_id: str,
    approver_id: str,
    note: Any = None,
    authorizer: GroupAuthorizer | None = None,
) -> OpenRequest:
    authz = authorizer or GroupAuthorizer(db)
    rejection_note = clean_text(note)

    def work() -> OpenRequest:
        request = _load_request(db, request_id)
        authz.require_admin(approver_id, request.group_id)
        if request.status != OpenRequestStatus.PENDING:
            raise InvalidState()
        _resolve(
            db,
            request,
            OpenRequestStatus.REJECTED,
            resolved_by_id=approver_id,
            rejection_note=rejection_note,
        )
        EventService(db).emit(
            type="piggy.open_request.rejected",
            group_id=request.group_id,
            actor_user_id=approver_id,
            child_id=request.child_id,
            payload={"request_id": request.id, "note": rejection_note},
        )
        return request

    request = run_ledger_unit(db, operation="reject_open_request", work=work)
    logger.info(
        "open_request.rejected",
        extra={"group_id": request.group_id, "child_id": request.child_id, "open_request_id": request.id},
    )
    return request


def cancel_open_request(
    db: Session,
    *,
    request_id: str,
    child_id: str,
    authorizer: GroupAuthorizer | None = None,
) -> OpenRequest:
    authz = authorizer or GroupAuthorizer(db)

    def work() -> OpenRequest:
        request = _load_request(db, request_id)
        authz.require_self(child_id, request.group_id, request.child_id)
        if request.status != OpenRequestStatus.PENDING:
            raise InvalidState()
        _resolve(db, request, OpenRequestStatus.CANCELLED, resolved_by_id=child_id)
        EventService(db).emit(
            type="piggy.open_request.cancelled",
            group_id=request.group_id,
            actor_user_id=child_id,
            child_id=request.child_id,
            payload={"request_id": request.id},
        )
        return request

    request = run_ledger_unit(db, operation="cancel_open_request", work=work)
    logger.info(
        "open_request.cancelled",
        extra={"group_id": request.group_id, "child_id": request.child_id, "open_request_id": request.id},
    )
    return request


def list_pending_requests(
    db: Session,
    *,
    group_id: str,
    child_id: str | None = None,
    limit: int = SUMMARY_PENDING_LIMIT,
) -> list[OpenRequest]:
    query = select(OpenRequest).where(
        OpenRequest.group_id == group_id,
        OpenRequest.status == OpenRequestStatus.PENDING,
    )
    if child_id is not None:
        query = query.where(OpenRequest.child_id == child_id)
    return list(db.scalars(query.order_by(OpenRequest.created_at.desc()).limit(limit)).all())


def list_open_requests(
    db: Session,
    *,
    viewer_id: str,
    group_id: str,
    status: Any = None,
    limit: int = LIST_LIMIT,
    authorizer: GroupAuthorizer | None = None,
) -> list[OpenRequest]:
    authz = authorizer or GroupAuthorizer(db)
    access = authz.require_member(viewer_id, group_id)

    query = select(OpenRequest).where(OpenRequest.group_id == group_id)
    if not access.is_admin:
        query = query.where(OpenRequest.child_id == viewer_id)
    if status is not None:
        query = query.where(OpenRequest.status == parse_status(status))
    safe_limit = min(max(limit, 1), LIST_LIMIT)
    return list(
        db.scalars(
            query.order_by(OpenRequest.created_at.desc(), OpenRequest.id.desc()).limit(safe_limit),
        ).all(),
    )
