from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from piggybank.models import OpenRequestDestination, OpenRequestStatus


class OpenRequestCreateRequest(BaseModel):
    amount: Any = None
    destination: str = OpenRequestDestination.WALLET.value
    reason: str | None = None


class OpenRequestRejectRequest(BaseModel):
    note: str | None = None


class OpenRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    child_id: str
    amount: int
    reason: str | None
    destination: OpenRequestDestination
    status: OpenRequestStatus
    rejection_note: str | None
    resolved_by_id: str | None
    created_at: datetime
    resolved_at: datetime | None


class OpenRequestApprovalResponse(BaseModel):
    request: OpenRequestOut
    new_savings_balance: int
    new_wallet_balance: int | None = None
