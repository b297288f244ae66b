"""Failure kinds raised by the piggy-bank ledger.

Every ledger operation either completes as a whole or raises one of these.
The HTTP layer renders them through ``ledger_error_handler`` using the
``code`` attribute, so codes are part of the public contract.
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class LedgerError(Exception):
    code = "LEDGER_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Ledger operation failed"

    def __init__(self, message: str | None = None, *, details: Any | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be a positive whole number"


class InvalidRequest(LedgerError):
    code = "INVALID_REQUEST"
    default_message = "Invalid request"


class InsufficientFunds(LedgerError):
    code = "INSUFFICIENT_FUNDS"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Insufficient balance"


class InvalidState(LedgerError):
    code = "INVALID_STATE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Request has already been resolved"


class NotAuthorized(LedgerError):
    code = "NOT_AUTHORIZED"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized for this operation"


class NotFound(LedgerError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class StorageConflict(LedgerError):
    code = "STORAGE_CONFLICT"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Concurrent update conflict, please retry"
