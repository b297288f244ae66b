from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from piggybank.api.deps import Authorizer, CurrentGroup, CurrentUser, DBSession, IdempotencyKeyHeader
from piggybank.models import OpenRequest, OpenRequestStatus
from piggybank.schemas.open_requests import (
    OpenRequestApprovalResponse,
    OpenRequestCreateRequest,
    OpenRequestOut,
    OpenRequestRejectRequest,
)
from piggybank.services import open_requests
from piggybank.services.errors import NotFound

router = APIRouter(prefix="/piggy-bank/open-requests", tags=["piggy-bank"])


def _ensure_in_group(db: DBSession, request_id: str, group_id: str) -> None:
    request = db.get(OpenRequest, request_id)
    if request is None or request.group_id != group_id:
        raise NotFound("Open request not found")


@router.post("", response_model=OpenRequestOut, status_code=status.HTTP_201_CREATED)
def open_request_create(
    payload: OpenRequestCreateRequest,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    idempotency_key: IdempotencyKeyHeader,
) -> OpenRequestOut:
    request = open_requests.create_open_request(
        db,
        actor_id=user.id,
        group_id=group.id,
        child_id=user.id,
        amount=payload.amount,
        destination=payload.destination,
        reason=payload.reason,
        idempotency_key=idempotency_key,
        authorizer=authorizer,
    )
    return OpenRequestOut.model_validate(request)


@router.get("", response_model=list[OpenRequestOut])
def open_request_list(
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    status_filter: Annotated[OpenRequestStatus | None, Query(alias="status")] = None,
) -> list[OpenRequestOut]:
    requests = open_requests.list_open_requests(
        db,
        viewer_id=user.id,
        group_id=group.id,
        status=status_filter,
        authorizer=authorizer,
    )
    return [OpenRequestOut.model_validate(item) for item in requests]


@router.post("/{request_id}/approve", response_model=OpenRequestApprovalResponse)
def open_request_approve(
    request_id: str,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> OpenRequestApprovalResponse:
    _ensure_in_group(db, request_id, group.id)
    result = open_requests.approve_open_request(
        db,
        request_id=request_id,
        approver_id=user.id,
        authorizer=authorizer,
    )
    return OpenRequestApprovalResponse(
        request=OpenRequestOut.model_validate(result.request),
        new_savings_balance=result.new_savings_balance,
        new_wallet_balance=result.new_wallet_balance,
    )


@router.post("/{request_id}/reject", response_model=OpenRequestOut)
def open_request_reject(
    request_id: str,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
    payload: OpenRequestRejectRequest | None = None,
) -> OpenRequestOut:
    _ensure_in_group(db, request_id, group.id)
    request = open_requests.reject_open_request(
        db,
        request_id=request_id,
        approver_id=user.id,
        note=payload.note if payload is not None else None,
        authorizer=authorizer,
    )
    return OpenRequestOut.model_validate(request)


@router.post("/{request_id}/cancel", response_model=OpenRequestOut)
def open_request_cancel(
    request_id: str,
    db: DBSession,
    authorizer: Authorizer,
    group: CurrentGroup,
    user: CurrentUser,
) -> OpenRequestOut:
    _ensure_in_group(db, request_id, group.id)
    request = open_requests.cancel_open_request(
        db,
        request_id=request_id,
        child_id=user.id,
        authorizer=authorizer,
    )
    return OpenRequestOut.model_validate(request)
