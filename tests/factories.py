from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from piggybank.models import Group, Membership, MembershipRole, User


@dataclass(frozen=True)
class Family:
    group_id: str
    parent_id: str
    co_parent_id: str
    child_id: str
    sibling_id: str
    outsider_id: str


def seed_family(db: Session) -> Family:
    parent = User(email="parent@example.com", nickname="Parent")
    co_parent = User(email="co-parent@example.com", nickname="Co-parent")
    child = User(email="child@example.com", nickname="Child")
    sibling = User(email="sibling@example.com", nickname="Sibling")
    outsider = User(email="outsider@example.com", nickname="Outsider")
    db.add_all([parent, co_parent, child, sibling, outsider])
    db.flush()

    group = Group(name="Kim family", owner_id=parent.id)
    db.add(group)
    db.flush()
    db.add_all(
        [
            Membership(group_id=group.id, user_id=parent.id, role=MembershipRole.ADMIN),
            Membership(group_id=group.id, user_id=co_parent.id, role=MembershipRole.ADMIN),
            Membership(group_id=group.id, user_id=child.id, role=MembershipRole.MEMBER),
            Membership(group_id=group.id, user_id=sibling.id, role=MembershipRole.MEMBER),
        ],
    )
    db.commit()
    return Family(
        group_id=group.id,
        parent_id=parent.id,
        co_parent_id=co_parent.id,
        child_id=child.id,
        sibling_id=sibling.id,
        outsider_id=outsider.id,
    )
