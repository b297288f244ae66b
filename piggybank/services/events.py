from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from piggybank.models import AuditLog, EventLog

# Events that record an admin decision also land in the audit log.
_AUDITED_EVENTS: dict[str, tuple[str, str, str]] = {
    "piggy.allowance.granted": ("wallet.credit", "transaction", "transaction_id"),
    "piggy.savings.deposited": ("savings.credit", "transaction", "transaction_id"),
    "piggy.open_request.approved": ("open_request.approve", "open_request", "request_id"),
    "piggy.open_request.rejected": ("open_request.reject", "open_request", "request_id"),
    "piggy.account.created": ("savings_account.create", "savings_account", "account_id"),
    "piggy.account.renamed": ("savings_account.rename", "savings_account", "account_id"),
    "piggy.account_request.rejected": ("account_request.reject", "account_request", "account_request_id"),
}


class EventService:
    def __init__(self, db: Session):
        self.db = db

    def emit(
        self,
        type: str,
        group_id: str,
        actor_user_id: str | None = None,
        child_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> EventLog:
        event = EventLog(
            group_id=group_id,
            actor_user_id=actor_user_id,
            child_id=child_id,
            type=type,
            payload=payload or {},
        )
        self.db.add(event)
        self._emit_audit_from_event(event)
        return event

    def _emit_audit_from_event(self, event: EventLog) -> None:
        if event.actor_user_id is None:
            return
        mapping = _AUDITED_EVENTS.get(event.type)
        if mapping is None:
            return
        action, entity_type, id_field = mapping
        entity_id = event.payload.get(id_field)
        if not isinstance(entity_id, str) or not entity_id:
            return

        self.db.add(
            AuditLog(
                group_id=event.group_id,
                actor_user_id=event.actor_user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata_json=event.payload,
            ),
        )
