import itertools
from dataclasses import dataclass
from typing import Dict, List

import pytest

from wishdraw.db import MemberRole, SessionLocal, get_session, init_engine, repo


@dataclass(frozen=True)
class SeededGroup:
    id: int
    owner_id: int
    member_ids: List[int]
    by_name: Dict[str, int]


class ScriptedRandom:
    """Random source that replays fixed ``randrange`` results."""

    def __init__(self, values):
        self._values = list(values)
        self.calls = 0

    def randrange(self, stop: int) -> int:
        value = self._values[self.calls % len(self._values)]
        self.calls += 1
        assert 0 <= value < stop
        return value


@pytest.fixture
def scripted_random():
    return ScriptedRandom


@pytest.fixture
def engine(tmp_path):
    engine = init_engine(f"sqlite+pysqlite:///{tmp_path / 'wishdraw.db'}", create_schema=True)
    yield engine
    engine.dispose()
    SessionLocal.configure(bind=None)


@pytest.fixture
def make_group(engine):
    counter = itertools.count(1)

    def _make(
        names=("Alice", "Bob", "Carol"),
        name="Family",
        exclusions=(),
        admins=(),
        draw_date=None,
        with_email=True,
        locale="en",
    ) -> SeededGroup:
        with get_session() as session:
            users = []
            for member_name in names:
                email = f"{member_name.lower()}.{next(counter)}@example.com" if with_email else None
                users.append(repo.create_user(session, email, member_name, locale=locale))
            by_name = {user.display_name: user.id for user in users}

            group = repo.create_group(session, name, users[0].id, draw_date=draw_date)
            for user in users[1:]:
                role = MemberRole.ADMIN if user.display_name in admins else MemberRole.MEMBER
                repo.add_member(session, group.id, user.id, role)
            for first, second in exclusions:
                repo.add_exclusion(session, group.id, by_name[first], by_name[second])

            return SeededGroup(
                id=group.id,
                owner_id=users[0].id,
                member_ids=[user.id for user in users],
                by_name=by_name,
            )

    return _make


@pytest.fixture
def outsider(engine) -> int:
    with get_session() as session:
        return repo.create_user(session, "outsider@example.com", "Outsider").id
