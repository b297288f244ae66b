"""Transaction boundary shared by every ledger operation.

``run_ledger_unit`` commits a balance change, its transaction records, any
request transition and the optional idempotency record together, or rolls
all of them back.  Only database-level conflicts are retried.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from piggybank.core.config import settings
from piggybank.models import IdempotencyKey
from piggybank.services.errors import InvalidState, LedgerError, StorageConflict

logger = logging.getLogger("piggybank.ledger")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class IdempotencyToken:
    key: str
    actor_id: str
    group_id: str


def _load_replay(db: Session, token: IdempotencyToken, operation: str) -> dict[str, Any] | None:
    stored = db.scalar(
        select(IdempotencyKey).where(
            IdempotencyKey.actor_id == token.actor_id,
            IdempotencyKey.key == token.key,
        ),
    )
    if stored is None:
        return None
    if stored.operation != operation or stored.group_id != token.group_id:
        raise InvalidState("Idempotency key was already used for a different operation")
    return dict(stored.response)


def run_ledger_unit(
    db: Session,
    *,
    operation: str,
    work: Callable[[], T],
    idempotency: IdempotencyToken | None = None,
    encode: Callable[[T], dict[str, Any]] | None = None,
    decode: Callable[[dict[str, Any]], T] | None = None,
) -> T:
    if idempotency is not None and (encode is None or decode is None):
        raise ValueError(f"{operation} does not support idempotency keys")

    attempts = max(settings.ledger_max_retries, 1)
    for attempt in range(1, attempts + 1):
        try:
            if idempotency is not None:
                replay = _load_replay(db, idempotency, operation)
                if replay is not None:
                    db.rollback()
                    logger.info(
                        "ledger.idempotent_replay",
                        extra={"operation": operation, "group_id": idempotency.group_id},
                    )
                    return decode(replay)

            result = work()
            if idempotency is not None:
                db.add(
                    IdempotencyKey(
                        group_id=idempotency.group_id,
                        actor_id=idempotency.actor_id,
                        key=idempotency.key,
                        operation=operation,
                        response=encode(result),
                    ),
                )
            db.commit()
            return result
        except LedgerError:
            db.rollback()
            raise
        except IntegrityError:
            db.rollback()
            if idempotency is None:
                raise
            # A concurrent duplicate committed first; hand back its response.
            replay = _load_replay(db, idempotency, operation)
            db.rollback()
            if replay is None:
                raise
            return decode(replay)
        except OperationalError as exc:
            db.rollback()
            logger.warning(
                "ledger.storage_conflict",
                extra={"operation": operation, "attempt": attempt},
            )
            if attempt >= attempts:
                raise StorageConflict() from exc
            time.sleep(settings.ledger_retry_backoff_ms * attempt / 1000)

    raise StorageConflict()
