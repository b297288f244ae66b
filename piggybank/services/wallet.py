from __future__ import annotations

import math
from typing import Any

from piggybank.models import PoolType, TransactionType
from piggybank.services.errors import InvalidAmount

MEMO_MAX_LENGTH = 200
# Per-operation ceiling; balances are capped separately in the balance store.
MAX_AMOUNT = 1_000_000_000_000
MAX_BALANCE = 1_000_000_000_000_000

# Sign of each record type per pool; a type absent for a pool never touches it.
_SIGNS: dict[tuple[TransactionType, PoolType], int] = {
    (TransactionType.ALLOWANCE, PoolType.WALLET): 1,
    (TransactionType.SPEND, PoolType.WALLET): -1,
    (TransactionType.CHILD_SAVE, PoolType.WALLET): -1,
    (TransactionType.CHILD_SAVE, PoolType.SAVINGS): 1,
    (TransactionType.PARENT_DEPOSIT, PoolType.SAVINGS): 1,
    (TransactionType.WITHDRAW_TO_WALLET, PoolType.SAVINGS): -1,
    (TransactionType.WITHDRAW_TO_WALLET, PoolType.WALLET): 1,
    (TransactionType.WITHDRAW_CASH, PoolType.SAVINGS): -1,
}


def parse_amount(raw: Any) -> int:
    if isinstance(raw, bool) or raw is None:
        raise InvalidAmount()
    value = raw
    if isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError as exc:
            raise InvalidAmount() from exc
    if not isinstance(value, (int, float)):
        raise InvalidAmount()
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount()
    amount = math.floor(value)
    if amount <= 0 or amount > MAX_AMOUNT:
        raise InvalidAmount()
    return int(amount)


def signed_amount(tx_type: TransactionType, pool: PoolType, amount: int) -> int:
    sign = _SIGNS.get((tx_type, pool))
    if sign is None:
        raise ValueError(f"{tx_type.value} does not affect the {pool.value} pool")
    return sign * amount


def clean_text(raw: Any, *, max_length: int = MEMO_MAX_LENGTH) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    return text[:max_length]


def spend_memo(category: Any, memo: Any) -> str | None:
    parts = [str(part).strip() for part in (category, memo) if part]
    return clean_text(" | ".join(part for part in parts if part))
