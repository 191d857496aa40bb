from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from wishdraw.core.clock import utcnow
from wishdraw.db import get_session, repo
from wishdraw.services import draw_flow
from wishdraw.services.assignment import DEFAULT_MAX_ATTEMPTS, RandomSource
from wishdraw.services.delivery import DeliveryDispatcher
from wishdraw.services.errors import DrawError


@dataclass
class SweepResult:
    checked: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0


def run_due_draws(
    now: Optional[datetime.datetime] = None,
    dispatcher: Optional[DeliveryDispatcher] = None,
    rng: Optional[RandomSource] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    session_factory: Callable = get_session,
) -> SweepResult:
    """Execute every Secret Santa whose draw date has passed, on behalf of its owner."""
    now = now or utcnow()
    if dispatcher is None:
        dispatcher = DeliveryDispatcher(session_factory=session_factory)

    with session_factory() as session:
        due = [
            (group.id, group.owner_id, repo.count_active_members(session, group.id))
            for group in repo.list_groups_due_for_draw(session, now)
        ]

    result = SweepResult(checked=len(due))
    for group_id, owner_id, member_count in due:
        log = logger.bind(group_id=group_id)
        if member_count < draw_flow.MIN_PARTICIPANTS:
            log.warning("Scheduled draw skipped: not enough members ({count})", count=member_count)
            result.skipped += 1
            continue

        try:
            draw_result = draw_flow.run_draw(
                group_id,
                owner_id,
                dispatcher=dispatcher,
                rng=rng,
                max_attempts=max_attempts,
                automated=True,
                session_factory=session_factory,
            )
        except DrawError as exc:
            log.error("Scheduled draw failed ({code}): {error}", code=exc.code, error=str(exc))
            result.failed += 1
            continue
        except Exception as exc:
            log.exception("Error executing scheduled draw: {error}", error=str(exc))
            result.failed += 1
            continue

        result.executed += 1
        log.info(
            "Scheduled draw executed, {count} assignments",
            count=len(draw_result.outcome.assignments),
        )

    logger.bind(**vars(result)).info("Scheduled draw sweep completed")
    return result
