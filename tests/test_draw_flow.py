import datetime
import random

import pytest

from wishdraw.db import ActivityType, DrawState, get_session, repo
from wishdraw.services import draw_flow
from wishdraw.services.errors import (
    AlreadyDrawn,
    GroupNotFound,
    Infeasible,
    InsufficientParticipants,
    NoDrawToReset,
    NotAuthorized,
    NotMember,
)
from wishdraw.services.exclusion_graph import build_exclusion_graph


def group_snapshot(group_id):
    with get_session() as session:
        group = repo.get_group_by_id(session, group_id)
        return (
            group.draw_state,
            {a.giver_id: a.receiver_id for a in repo.list_assignments(session, group_id)},
            [activity.type for activity in repo.list_activities(session, group_id)],
        )


def assert_bijection(assignments, member_ids):
    assert set(assignments) == set(member_ids)
    assert sorted(assignments.values()) == sorted(member_ids)
    assert all(giver != receiver for giver, receiver in assignments.items())


def test_three_person_draw_and_reset(make_group):
    seeded = make_group(names=("Alice", "Bob", "Carol"))

    result = draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(3))

    state, assignments, activities = group_snapshot(seeded.id)
    assert state is DrawState.DRAWN
    assert len(assignments) == 3
    assert_bijection(assignments, seeded.member_ids)
    assert assignments == result.outcome.assignments
    assert activities == [ActivityType.SECRET_SANTA_DRAWN]

    with get_session() as session:
        removed = draw_flow.reset(session, seeded.id, seeded.owner_id)
    assert removed == 3

    state, assignments, activities = group_snapshot(seeded.id)
    assert state is DrawState.NOT_DRAWN
    assert assignments == {}
    assert activities == [ActivityType.SECRET_SANTA_DRAWN, ActivityType.SECRET_SANTA_RESET]


def test_draw_twice_is_rejected(make_group):
    seeded = make_group()
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))
    _, first, _ = group_snapshot(seeded.id)

    with pytest.raises(AlreadyDrawn):
        draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(2))

    state, second, activities = group_snapshot(seeded.id)
    assert state is DrawState.DRAWN
    assert second == first
    assert activities == [ActivityType.SECRET_SANTA_DRAWN]


def test_unknown_group(engine, outsider):
    with pytest.raises(GroupNotFound):
        with get_session() as session:
            draw_flow.draw(session, 9999, outsider)


def test_member_cannot_draw(make_group):
    seeded = make_group()
    with pytest.raises(NotAuthorized):
        draw_flow.run_draw(seeded.id, seeded.by_name["Bob"])

    state, assignments, activities = group_snapshot(seeded.id)
    assert state is DrawState.NOT_DRAWN
    assert assignments == {}
    assert activities == []


def test_admin_can_draw(make_group):
    seeded = make_group(admins=("Carol",))
    result = draw_flow.run_draw(seeded.id, seeded.by_name["Carol"], rng=random.Random(9))
    assert_bijection(result.outcome.assignments, seeded.member_ids)


def test_too_few_participants(make_group):
    seeded = make_group(names=("Alice", "Bob"))
    with pytest.raises(InsufficientParticipants):
        draw_flow.run_draw(seeded.id, seeded.owner_id)
    assert group_snapshot(seeded.id) == (DrawState.NOT_DRAWN, {}, [])


def test_members_who_left_are_not_drawn(make_group):
    seeded = make_group(names=("Alice", "Bob", "Carol", "Dave"))
    with get_session() as session:
        repo.remove_member(session, seeded.id, seeded.by_name["Dave"], datetime.datetime(2026, 1, 1))

    result = draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(4))
    assert seeded.by_name["Dave"] not in result.outcome.assignments
    assert len(result.outcome.assignments) == 3


def test_infeasible_draw_leaves_nothing_behind(make_group):
    seeded = make_group(exclusions=[("Alice", "Bob"), ("Alice", "Carol")])
    with pytest.raises(Infeasible):
        draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(5), max_attempts=50)
    assert group_snapshot(seeded.id) == (DrawState.NOT_DRAWN, {}, [])


def test_failure_after_state_flip_rolls_back(make_group, monkeypatch):
    seeded = make_group()

    def boom(*args, **kwargs):
        raise RuntimeError("activity log unavailable")

    monkeypatch.setattr(repo, "add_activity", boom)
    with pytest.raises(RuntimeError):
        draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(6))
    monkeypatch.undo()

    assert group_snapshot(seeded.id) == (DrawState.NOT_DRAWN, {}, [])


def test_concurrent_draw_loses_the_race(make_group, monkeypatch):
    seeded = make_group()
    original = repo.list_exclusions

    def list_and_race(session, group_id):
        # another request wins the draw while this one is still solving
        with get_session() as other:
            assert repo.mark_group_drawn(other, repo.get_group_by_id(other, group_id))
        return original(session, group_id)

    monkeypatch.setattr(repo, "list_exclusions", list_and_race)
    with pytest.raises(AlreadyDrawn):
        draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(7))

    state, assignments, activities = group_snapshot(seeded.id)
    assert state is DrawState.DRAWN
    assert assignments == {}
    assert activities == []


def test_reset_requires_manager(make_group):
    seeded = make_group()
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))
    with pytest.raises(NotAuthorized):
        with get_session() as session:
            draw_flow.reset(session, seeded.id, seeded.by_name["Bob"])
    assert group_snapshot(seeded.id)[0] is DrawState.DRAWN


def test_reset_without_draw(make_group):
    seeded = make_group()
    with pytest.raises(NoDrawToReset):
        with get_session() as session:
            draw_flow.reset(session, seeded.id, seeded.owner_id)


def test_second_reset_fails(make_group):
    seeded = make_group()
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))
    with get_session() as session:
        draw_flow.reset(session, seeded.id, seeded.owner_id)
    with pytest.raises(NoDrawToReset):
        with get_session() as session:
            draw_flow.reset(session, seeded.id, seeded.owner_id)

    _, _, activities = group_snapshot(seeded.id)
    assert activities.count(ActivityType.SECRET_SANTA_RESET) == 1


def test_redraw_after_reset(make_group):
    seeded = make_group(names=("Alice", "Bob", "Carol", "Dave"))
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))
    with get_session() as session:
        draw_flow.reset(session, seeded.id, seeded.owner_id)

    with get_session() as session:
        assert draw_flow.get_assignment(session, seeded.id, seeded.by_name["Bob"]) is None

    result = draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(2))
    assert_bijection(result.outcome.assignments, seeded.member_ids)
    _, assignments, _ = group_snapshot(seeded.id)
    assert assignments == result.outcome.assignments


def test_get_assignment_before_draw(make_group):
    seeded = make_group()
    with get_session() as session:
        assert draw_flow.get_assignment(session, seeded.id, seeded.by_name["Bob"]) is None


def test_get_assignment_requires_membership(make_group, outsider):
    seeded = make_group(names=("Alice", "Bob", "Carol", "Dave"))
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))

    with pytest.raises(NotMember):
        with get_session() as session:
            draw_flow.get_assignment(session, seeded.id, outsider)

    with get_session() as session:
        repo.remove_member(session, seeded.id, seeded.by_name["Dave"], datetime.datetime(2026, 1, 1))
    with pytest.raises(NotMember):
        with get_session() as session:
            draw_flow.get_assignment(session, seeded.id, seeded.by_name["Dave"])


def test_first_view_is_stamped_once(make_group, monkeypatch):
    seeded = make_group()
    result = draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))
    bob = seeded.by_name["Bob"]
    first_seen = datetime.datetime(2026, 12, 1, 9, 30)

    monkeypatch.setattr(draw_flow, "utcnow", lambda: first_seen)
    with get_session() as session:
        view = draw_flow.get_assignment(session, seeded.id, bob)
    assert view.receiver_id == result.outcome.assignments[bob]
    assert view.viewed_at == first_seen

    monkeypatch.setattr(draw_flow, "utcnow", lambda: first_seen + datetime.timedelta(days=1))
    with get_session() as session:
        again = draw_flow.get_assignment(session, seeded.id, bob)
    assert again.viewed_at == first_seen
    assert again.receiver_id == view.receiver_id


def test_assignment_view_uses_receiver_name(make_group):
    seeded = make_group()
    result = draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(8))
    names = {user_id: name for name, user_id in seeded.by_name.items()}

    with get_session() as session:
        view = draw_flow.get_assignment(session, seeded.id, seeded.owner_id)
    assert view.receiver_name == names[result.outcome.assignments[seeded.owner_id]]


def test_snapshot_stores_receiver_exclusions(make_group):
    seeded = make_group(names=("Alice", "Bob", "Carol", "Dave"), exclusions=[("Alice", "Bob")])
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(11))

    alice, bob = seeded.by_name["Alice"], seeded.by_name["Bob"]
    graph = build_exclusion_graph([(alice, bob)])
    with get_session() as session:
        rows = repo.list_assignments(session, seeded.id)
    assert len(rows) == 4
    for row in rows:
        assert row.excluded_user_ids == sorted(graph.get(row.receiver_id, set()))
        assert (row.giver_id, row.receiver_id) not in {(alice, bob), (bob, alice)}


def test_activity_details(make_group):
    seeded = make_group()
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))
    with get_session() as session:
        draw_flow.reset(session, seeded.id, seeded.owner_id)

    with get_session() as session:
        drawn, reset = repo.list_activities(session, seeded.id)
        assert drawn.user_id == seeded.owner_id
        assert drawn.details == {"assignment_count": 3}
        assert reset.details == {"reset_by": "Alice", "removed_assignments": 3}


def test_draw_clears_scheduled_date(make_group):
    seeded = make_group(draw_date=datetime.datetime(2026, 12, 20))
    draw_flow.run_draw(seeded.id, seeded.owner_id, rng=random.Random(1))
    with get_session() as session:
        assert repo.get_group_by_id(session, seeded.id).secret_santa_draw_date is None
