from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError

from wishdraw.core.clock import utcnow
from wishdraw.db import ActivityType, DrawState, User, get_session, repo
from wishdraw.services.access import load_group, require_manager, require_member
from wishdraw.services.assignment import DEFAULT_MAX_ATTEMPTS, RandomSource, solve
from wishdraw.services.delivery import (
    DeliveryContext,
    DeliveryDispatcher,
    DeliveryReport,
    DeliveryRequest,
)
from wishdraw.services.errors import AlreadyDrawn, InsufficientParticipants, NoDrawToReset
from wishdraw.services.exclusion_graph import build_exclusion_graph, excluded_for

MIN_PARTICIPANTS = 3


@dataclass(frozen=True)
class DrawOutcome:
    group_id: int
    group_name: str
    assignments: Dict[int, int]
    deliveries: List[DeliveryRequest]

    @property
    def context(self) -> DeliveryContext:
        return DeliveryContext(group_id=self.group_id, group_name=self.group_name)


@dataclass(frozen=True)
class DrawResult:
    outcome: DrawOutcome
    delivery: DeliveryReport


@dataclass(frozen=True)
class AssignmentView:
    group_id: int
    giver_id: int
    receiver_id: int
    receiver_name: str
    viewed_at: datetime.datetime


def display_name(user: User) -> str:
    return user.display_name or "Someone"


def draw_state(session, group_id: int) -> DrawState:
    return load_group(session, group_id).draw_state


def draw(
    session,
    group_id: int,
    requester_id: int,
    rng: Optional[RandomSource] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    automated: bool = False,
) -> DrawOutcome:
    """NOT_DRAWN -> DRAWN inside the caller's transaction.

    Every check runs before the first write. Assignments, the state flip and
    the activity record are written together; if anything fails the caller's
    unit of work rolls all of it back.
    """
    group = load_group(session, group_id)
    require_manager(session, group, requester_id, "trigger the draw")
    if group.secret_santa_drawn:
        raise AlreadyDrawn()

    members = repo.list_active_members(session, group.id)
    if len(members) < MIN_PARTICIPANTS:
        raise InsufficientParticipants(
            f"Need at least {MIN_PARTICIPANTS} members to do a Secret Santa draw."
        )

    graph = build_exclusion_graph(repo.list_exclusions(session, group.id))
    assignments = solve(
        [member.id for member in members],
        graph,
        max_attempts=max_attempts,
        rng=rng,
    )

    # Compare-and-set: only one concurrent draw can move the flag.
    if not repo.mark_group_drawn(session, group):
        raise AlreadyDrawn()

    snapshots = {
        receiver_id: sorted(excluded_for(graph, receiver_id))
        for receiver_id in assignments.values()
    }
    try:
        repo.create_assignments(session, group.id, assignments, snapshots)
    except IntegrityError as exc:
        raise AlreadyDrawn() from exc

    details = {"assignment_count": len(assignments)}
    if automated:
        details.update(automated=True, scheduled_draw=True)
    repo.add_activity(session, group.id, requester_id, ActivityType.SECRET_SANTA_DRAWN, details)

    logger.bind(group_id=group.id, requester_id=requester_id, automated=automated).info(
        "Secret Santa drawn for {count} participants", count=len(assignments)
    )

    users = {member.id: member for member in members}
    deliveries = [
        DeliveryRequest(
            giver_id=giver_id,
            giver_email=users[giver_id].email,
            giver_locale=users[giver_id].locale,
            receiver_id=receiver_id,
            receiver_name=display_name(users[receiver_id]),
        )
        for giver_id, receiver_id in assignments.items()
    ]
    return DrawOutcome(
        group_id=group.id,
        group_name=group.name,
        assignments=assignments,
        deliveries=deliveries,
    )


def run_draw(
    group_id: int,
    requester_id: int,
    dispatcher: Optional[DeliveryDispatcher] = None,
    rng: Optional[RandomSource] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    automated: bool = False,
    session_factory: Callable = get_session,
) -> DrawResult:
    """Draw, commit, then notify the givers.

    Delivery only starts after the draw is committed and its failures are
    reported, never raised.
    """
    with session_factory() as session:
        outcome = draw(
            session,
            group_id,
            requester_id,
            rng=rng,
            max_attempts=max_attempts,
            automated=automated,
        )

    if dispatcher is None:
        dispatcher = DeliveryDispatcher(session_factory=session_factory)
    report = dispatcher.dispatch(outcome.deliveries, outcome.context)
    return DrawResult(outcome=outcome, delivery=report)


def reset(session, group_id: int, requester_id: int) -> int:
    """DRAWN -> NOT_DRAWN. Returns the number of assignments removed."""
    group = load_group(session, group_id)
    require_manager(session, group, requester_id, "reset the draw")
    if not group.secret_santa_drawn:
        raise NoDrawToReset()

    if not repo.mark_group_not_drawn(session, group):
        raise NoDrawToReset()

    removed = repo.clear_assignments(session, group.id)
    requester = repo.get_user(session, requester_id)
    repo.add_activity(
        session,
        group.id,
        requester_id,
        ActivityType.SECRET_SANTA_RESET,
        {
            "reset_by": display_name(requester) if requester else None,
            "removed_assignments": removed,
        },
    )
    logger.bind(group_id=group.id, requester_id=requester_id).info(
        "Secret Santa draw reset, {removed} assignments removed", removed=removed
    )
    return removed


def get_assignment(session, group_id: int, requester_id: int) -> Optional[AssignmentView]:
    """The requester's receiver, or None before the draw.

    The first read stamps ``viewed_at``; later reads return that same stamp.
    """
    group = load_group(session, group_id)
    require_member(session, group, requester_id)
    if group.draw_state is DrawState.NOT_DRAWN:
        return None

    assignment = repo.get_assignment_for_giver(session, group.id, requester_id)
    if not assignment:
        logger.bind(group_id=group.id, user_id=requester_id).warning(
            "Drawn group has no assignment for member"
        )
        return None

    if assignment.viewed_at is None:
        repo.mark_assignment_viewed(session, assignment, utcnow())

    return AssignmentView(
        group_id=group.id,
        giver_id=assignment.giver_id,
        receiver_id=assignment.receiver_id,
        receiver_name=display_name(assignment.receiver),
        viewed_at=assignment.viewed_at,
    )
