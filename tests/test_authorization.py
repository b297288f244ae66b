from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from piggybank.models import Group, Membership, MembershipRole
from piggybank.services.authorization import GroupAuthorizer
from piggybank.services.errors import NotAuthorized, NotFound
from tests.factories import Family


def test_roles_resolve_from_memberships(db: Session, family: Family) -> None:
    authorizer = GroupAuthorizer(db)

    assert authorizer.has_group_role(family.parent_id, family.group_id, MembershipRole.ADMIN)
    assert authorizer.has_group_role(family.co_parent_id, family.group_id, MembershipRole.ADMIN)
    assert not authorizer.has_group_role(family.child_id, family.group_id, MembershipRole.ADMIN)
    assert authorizer.has_group_role(family.child_id, family.group_id, MembershipRole.MEMBER)
    assert not authorizer.has_group_role(family.outsider_id, family.group_id, MembershipRole.MEMBER)


def test_owner_is_admin_without_membership(db: Session, family: Family) -> None:
    group = Group(name="Outsider family", owner_id=family.outsider_id)
    db.add(group)
    db.commit()

    access = GroupAuthorizer(db).require_admin(family.outsider_id, group.id)
    assert access.is_owner
    assert access.role == MembershipRole.ADMIN


def test_require_helpers_raise_ledger_errors(db: Session, family: Family) -> None:
    authorizer = GroupAuthorizer(db)

    with pytest.raises(NotAuthorized):
        authorizer.require_member(family.outsider_id, family.group_id)
    with pytest.raises(NotAuthorized):
        authorizer.require_admin(family.child_id, family.group_id)
    with pytest.raises(NotAuthorized):
        authorizer.require_self(family.child_id, family.group_id, family.sibling_id)
    with pytest.raises(NotFound):
        authorizer.require_child_in_group(family.group_id, family.outsider_id)
    with pytest.raises(NotFound):
        authorizer.access_for(family.child_id, "no-such-group")

    assert authorizer.require_self(family.child_id, family.group_id, family.child_id).role == MembershipRole.MEMBER
    assert GroupAuthorizer.is_self(family.child_id, family.child_id)


def test_require_admin_or_self(db: Session, family: Family) -> None:
    authorizer = GroupAuthorizer(db)

    assert authorizer.require_admin_or_self(family.parent_id, family.group_id, family.child_id).is_admin
    own = authorizer.require_admin_or_self(family.child_id, family.group_id, family.child_id)
    assert own.role == MembershipRole.MEMBER
    with pytest.raises(NotAuthorized):
        authorizer.require_admin_or_self(family.child_id, family.group_id, family.sibling_id)
    with pytest.raises(NotAuthorized):
        authorizer.require_admin_or_self(family.outsider_id, family.group_id, family.outsider_id)


def test_list_members_includes_profiles_and_roles(db: Session, family: Family) -> None:
    members = {member.user_id: member for member in GroupAuthorizer(db).list_members(family.group_id)}

    assert set(members) == {family.parent_id, family.co_parent_id, family.child_id, family.sibling_id}
    assert members[family.parent_id].role == MembershipRole.ADMIN
    assert members[family.co_parent_id].role == MembershipRole.ADMIN
    assert members[family.child_id].role == MembershipRole.MEMBER
    assert members[family.child_id].email == "child@example.com"
    assert members[family.sibling_id].nickname == "Sibling"


def test_list_members_counts_owner_as_admin(db: Session, family: Family) -> None:
    group = Group(name="Outsider family", owner_id=family.outsider_id)
    db.add(group)
    db.flush()
    db.add(Membership(group_id=group.id, user_id=family.child_id, role=MembershipRole.MEMBER))
    db.commit()

    members = GroupAuthorizer(db).list_members(group.id)

    assert [(member.user_id, member.role) for member in members] == [
        (family.child_id, MembershipRole.MEMBER),
        (family.outsider_id, MembershipRole.ADMIN),
    ]
    assert members[1].nickname == "Outsider"
    with pytest.raises(NotFound):
        GroupAuthorizer(db).list_members("no-such-group")
