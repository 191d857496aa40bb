from __future__ import annotations

from typing import Optional

from wishdraw.db import Group, GroupMember, MemberRole, repo
from wishdraw.services.errors import GroupNotFound, NotAuthorized, NotMember

MANAGER_ROLES = {MemberRole.OWNER, MemberRole.ADMIN}


def load_group(session, group_id: int) -> Group:
    group = repo.get_group_by_id(session, group_id)
    if not group:
        raise GroupNotFound()
    return group


def is_manager(group: Group, user_id: int, membership: Optional[GroupMember]) -> bool:
    if group.owner_id == user_id:
        return True
    return membership is not None and membership.role in MANAGER_ROLES


def require_manager(session, group: Group, user_id: int, action: str) -> None:
    membership = repo.get_active_membership(session, group.id, user_id)
    if not is_manager(group, user_id, membership):
        raise NotAuthorized(f"Only the owner or an admin can {action}.")


def require_member(session, group: Group, user_id: int) -> GroupMember:
    membership = repo.get_active_membership(session, group.id, user_id)
    if not membership:
        raise NotMember()
    return membership
