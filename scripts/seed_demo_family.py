from __future__ import annotations

import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from piggybank.core.security import create_access_token
from piggybank.db.session import SessionLocal
from piggybank.models import Group, Membership, MembershipRole, User

SEED_TAG = "seed_demo_family_v1"


def seed_family(db: Session) -> dict[str, str]:
    parent = db.scalar(select(User).where(User.email == "parent@piggybank.local"))
    if parent is None:
        parent = User(email="parent@piggybank.local", nickname="Parent")
        child = User(email="child@piggybank.local", nickname="Child")
        db.add_all([parent, child])
        db.flush()

        group = Group(name=f"Demo family ({SEED_TAG})", owner_id=parent.id)
        db.add(group)
        db.flush()
        db.add_all(
            [
                Membership(group_id=group.id, user_id=parent.id, role=MembershipRole.ADMIN),
                Membership(group_id=group.id, user_id=child.id, role=MembershipRole.MEMBER),
            ],
        )
        db.commit()
    else:
        child = db.scalar(select(User).where(User.email == "child@piggybank.local"))
        group = db.scalar(select(Group).where(Group.owner_id == parent.id))
        if child is None or group is None:
            raise RuntimeError("Demo family is partially seeded; reset the database")

    return {
        "group_id": group.id,
        "parent_id": parent.id,
        "child_id": child.id,
        "parent_token": create_access_token(user_id=parent.id),
        "child_token": create_access_token(user_id=child.id),
    }


def main() -> None:
    db = SessionLocal()
    try:
        print(json.dumps(seed_family(db), indent=2))
    finally:
        db.close()


if __name__ == "__main__":
    main()
