from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from piggybank.core.security import decode_token
from piggybank.models import Group, Membership
from scripts.seed_demo_family import seed_family


def test_seed_family_is_rerunnable(session_factory: sessionmaker[Session]) -> None:
    with session_factory() as db:
        first = seed_family(db)
        second = seed_family(db)

        assert first["group_id"] == second["group_id"]
        assert db.scalar(select(func.count(Group.id))) == 1
        assert db.scalar(select(func.count(Membership.id))) == 2
        assert decode_token(first["child_token"])["sub"] == first["child_id"]
