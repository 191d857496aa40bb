from __future__ import annotations

from typing import List

from loguru import logger

from wishdraw.db import ExclusionRule, repo
from wishdraw.services.access import load_group, require_manager
from wishdraw.services.errors import InvalidExclusion, NotMember


def list_exclusions(session, group_id: int) -> List[ExclusionRule]:
    return repo.list_exclusions(session, group_id)


def _require_active_members(session, group_id: int, *user_ids: int) -> None:
    for user_id in user_ids:
        if not repo.get_active_membership(session, group_id, user_id):
            raise NotMember(f"User {user_id} is not a member of this group.")


def add_exclusion(session, group_id: int, requester_id: int, user_a: int, user_b: int) -> ExclusionRule:
    group = load_group(session, group_id)
    require_manager(session, group, requester_id, "manage exclusions")
    if user_a == user_b:
        raise InvalidExclusion()
    _require_active_members(session, group.id, user_a, user_b)

    existing = repo.get_exclusion(session, group.id, user_a, user_b)
    if existing:
        return existing

    rule = repo.add_exclusion(session, group.id, user_a, user_b)
    logger.bind(group_id=group.id, requester_id=requester_id).info(
        "Exclusion added between {first} and {second}", first=rule.user_id_1, second=rule.user_id_2
    )
    return rule


def remove_exclusion(session, group_id: int, requester_id: int, user_a: int, user_b: int) -> bool:
    group = load_group(session, group_id)
    require_manager(session, group, requester_id, "manage exclusions")
    removed = repo.delete_exclusion(session, group.id, user_a, user_b) > 0
    if removed:
        logger.bind(group_id=group.id, requester_id=requester_id).info(
            "Exclusion removed between {first} and {second}", first=user_a, second=user_b
        )
    return removed
