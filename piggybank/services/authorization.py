from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from piggybank.models import Group, Membership, MembershipRole, User
from piggybank.services.errors import NotAuthorized, NotFound


@dataclass(slots=True)
class GroupAccess:
    role: MembershipRole
    is_owner: bool

    @property
    def is_admin(self) -> bool:
        return self.is_owner or self.role == MembershipRole.ADMIN


@dataclass(slots=True)
class GroupMember:
    user_id: str
    email: str | None
    nickname: str | None
    role: MembershipRole


class GroupAuthorizer:
    """Answers role and identity questions for the ledger.

    The group owner is treated as ADMIN even without a membership row.
    """

    def __init__(self, db: Session):
        self.db = db

    def access_for(self, user_id: str, group_id: str) -> GroupAccess | None:
        group = self.db.get(Group, group_id)
        if group is None:
            raise NotFound("Group not found")
        membership = self.db.scalar(
            select(Membership).where(
                Membership.group_id == group_id,
                Membership.user_id == user_id,
            ),
        )
        is_owner = group.owner_id == user_id
        if membership is None:
            return GroupAccess(role=MembershipRole.ADMIN, is_owner=True) if is_owner else None
        return GroupAccess(role=membership.role, is_owner=is_owner)

    def has_group_role(self, user_id: str, group_id: str, role: MembershipRole) -> bool:
        access = self.access_for(user_id, group_id)
        if access is None:
            return False
        if role == MembershipRole.ADMIN:
            return access.is_admin
        return True

    @staticmethod
    def is_self(user_id: str, target_user_id: str) -> bool:
        return user_id == target_user_id

    def require_member(self, user_id: str, group_id: str) -> GroupAccess:
        access = self.access_for(user_id, group_id)
        if access is None:
            raise NotAuthorized("Group membership required")
        return access

    def require_admin(self, user_id: str, group_id: str) -> GroupAccess:
        access = self.require_member(user_id, group_id)
        if not access.is_admin:
            raise NotAuthorized("Group admin role required")
        return access

    def require_self(self, user_id: str, group_id: str, target_user_id: str) -> GroupAccess:
        access = self.require_member(user_id, group_id)
        if not self.is_self(user_id, target_user_id):
            raise NotAuthorized("Only the account holder may perform this operation")
        return access

    def require_admin_or_self(self, user_id: str, group_id: str, target_user_id: str) -> GroupAccess:
        access = self.require_member(user_id, group_id)
        if not access.is_admin and not self.is_self(user_id, target_user_id):
            raise NotAuthorized("Members may only view their own piggy bank")
        return access

    def require_child_in_group(self, group_id: str, child_id: str) -> None:
        if self.access_for(child_id, group_id) is None:
            raise NotFound("Child is not a member of this group")

    def list_members(self, group_id: str) -> list[GroupMember]:
        """Members in join order; the owner is listed as ADMIN."""
        group = self.db.get(Group, group_id)
        if group is None:
            raise NotFound("Group not found")
        rows = self.db.execute(
            select(Membership.user_id, Membership.role, User.email, User.nickname)
            .join(User, User.id == Membership.user_id)
            .where(Membership.group_id == group_id)
            .order_by(Membership.created_at.asc(), Membership.id.asc()),
        ).all()
        members = [
            GroupMember(
                user_id=row.user_id,
                email=row.email,
                nickname=row.nickname,
                role=MembershipRole.ADMIN if row.user_id == group.owner_id else row.role,
            )
            for row in rows
        ]
        if all(member.user_id != group.owner_id for member in members):
            owner = self.db.get(User, group.owner_id)
            members.append(
                GroupMember(
                    user_id=group.owner_id,
                    email=owner.email if owner is not None else None,
                    nickname=owner.nickname if owner is not None else None,
                    role=MembershipRole.ADMIN,
                ),
            )
        return members
