from __future__ import annotations

import random
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, TypeVar

from loguru import logger

from wishdraw.services.errors import Infeasible
from wishdraw.services.exclusion_graph import ExclusionGraph, excluded_for

# Hard cap on sampling rounds. Exhausting it is reported as Infeasible, so it
# bounds correctness as well as latency.
DEFAULT_MAX_ATTEMPTS = 1000

T = TypeVar("T")


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int:
        ...


def fisher_yates(items: List[T], rng: RandomSource) -> None:
    """In-place unbiased shuffle."""
    for i in range(len(items) - 1, 0, -1):
        j = rng.randrange(i + 1)
        items[i], items[j] = items[j], items[i]


def is_valid_pairing(givers: Sequence[int], receivers: Sequence[int], graph: ExclusionGraph) -> bool:
    for giver, receiver in zip(givers, receivers):
        if giver == receiver:
            return False
        if receiver in excluded_for(graph, giver):
            return False
    return True


def _augment(start: int, allowed: Dict[int, List[int]], giver_for: Dict[int, int]) -> bool:
    """Find an augmenting path from ``start`` with an explicit stack.

    Each frame is (giver, remaining receivers, receiver the giver would hand
    over). On success every giver along the path moves one receiver down.
    """
    seen: Set[int] = set()
    stack = [(start, iter(allowed[start]), None)]
    while stack:
        giver, receivers, _ = stack[-1]
        for receiver in receivers:
            if receiver in seen:
                continue
            seen.add(receiver)
            current = giver_for.get(receiver)
            if current is None:
                giver_for[receiver] = giver
                for depth in range(len(stack) - 1, 0, -1):
                    giver_for[stack[depth][2]] = stack[depth - 1][0]
                return True
            stack.append((current, iter(allowed[current]), receiver))
            break
        else:
            stack.pop()
    return False


def has_valid_assignment(participant_ids: Iterable[int], graph: ExclusionGraph) -> bool:
    """Whether any derangement avoiding the exclusions exists.

    Perfect matching between givers and allowed receivers: a greedy pass
    first, then augmenting paths for whoever is left over.
    """
    participants = list(dict.fromkeys(participant_ids))
    allowed: Dict[int, List[int]] = {}
    for giver in participants:
        blocked = excluded_for(graph, giver)
        allowed[giver] = [
            receiver for receiver in participants if receiver != giver and receiver not in blocked
        ]

    giver_for: Dict[int, int] = {}
    unmatched = []
    for giver in participants:
        free = next((receiver for receiver in allowed[giver] if receiver not in giver_for), None)
        if free is None:
            unmatched.append(giver)
        else:
            giver_for[free] = giver

    return all(_augment(giver, allowed, giver_for) for giver in unmatched)


def solve(
    participant_ids: Iterable[int],
    graph: ExclusionGraph,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    rng: Optional[RandomSource] = None,
    feasibility_check: bool = True,
) -> Dict[int, int]:
    """Random giver -> receiver bijection with no self-pairs and no excluded pairs.

    Bounded rejection sampling: shuffle the receivers, keep the first pairing
    that validates, give up with ``Infeasible`` after ``max_attempts`` rounds.
    With ``feasibility_check`` an impossible exclusion set is reported without
    sampling at all.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1.")

    givers = list(dict.fromkeys(participant_ids))
    if rng is None:
        rng = random.SystemRandom()

    log = logger.bind(participants=len(givers), max_attempts=max_attempts)

    if feasibility_check and not has_valid_assignment(givers, graph):
        log.info("No valid assignment exists for the exclusion rules")
        raise Infeasible()

    for attempt in range(1, max_attempts + 1):
        receivers = list(givers)
        fisher_yates(receivers, rng)
        if is_valid_pairing(givers, receivers, graph):
            log.debug("Assignment found after {attempt} attempt(s)", attempt=attempt)
            return dict(zip(givers, receivers))

    log.warning("No valid assignment after {attempts} attempts", attempts=max_attempts)
    raise Infeasible()
