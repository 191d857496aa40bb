from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, Protocol, Set, Tuple, Union

ExclusionGraph = Dict[int, Set[int]]


class StoredRule(Protocol):
    user_id_1: int
    user_id_2: int


RuleLike = Union[Tuple[int, int], StoredRule]


def _rule_pair(rule: RuleLike) -> Tuple[int, int]:
    if isinstance(rule, tuple):
        return rule
    return rule.user_id_1, rule.user_id_2


def build_exclusion_graph(rules: Iterable[RuleLike]) -> ExclusionGraph:
    """Undirected adjacency over participant ids.

    Symmetric even when a rule was only stored in one direction. Ids are not
    checked against any participant list.
    """
    graph: Dict[int, Set[int]] = defaultdict(set)
    for rule in rules:
        first, second = _rule_pair(rule)
        graph[first].add(second)
        graph[second].add(first)
    return dict(graph)


def excluded_for(graph: ExclusionGraph, participant_id: int) -> Set[int]:
    return graph.get(participant_id, set())
