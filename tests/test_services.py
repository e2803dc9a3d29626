"""
tests/test_services.py -- Unit tests for TeamService and TaskService.

Real UserStore / TeamStore on shared-memory SQLite; the de-duplicator runs on
the FakeClock so the suppression window is exact.
"""

from __future__ import annotations

import threading

import pytest

from access.guard import AuthorizationGuard
from access.membership import MembershipIndex
from access.visibility import TaskVisibilityPolicy
from auth.models import User
from auth.store import UserStore
from cache.dedup import CreationDeduplicator
from cache.store import InMemoryCreationStore
from core.errors import AccessDeniedError, AlreadyMemberError, NotFoundError, ValidationError
from teams.models import Participant, Role, Task, TaskStatus
from teams.service import TeamService
from teams.store import TeamStore
from teams.tasks import TaskService


@pytest.fixture
def env(user_store, team_store, clock):
    users = {}
    for handle in ("ada", "bob", "cy"):
        uid = user_store.create_user(User(email=f"{handle}@example.com", subject=f"idp|{handle}", display_name=handle))
        users[handle] = user_store.get_by_id(uid)
    membership = MembershipIndex(team_store)
    visibility = TaskVisibilityPolicy(membership)
    guard = AuthorizationGuard(team_store, membership, visibility)
    dedup = CreationDeduplicator(InMemoryCreationStore(), clock=clock)
    return {
        "users": users,
        "store": team_store,
        "teams": TeamService(team_store, user_store, membership, guard, dedup),
        "tasks": TaskService(team_store, guard, visibility),
        "clock": clock,
    }


class TestTeamService:
    def test_create_team_snapshot(self, env) -> None:
        ada = env["users"]["ada"]
        result = env["teams"].create_team(ada, "Red", "desc", [Participant(name="Wile", role="Coyote")])

        snap = result.snapshot
        assert not result.deduplicated
        assert snap.name == "Red"
        assert [(m.user_id, m.role, m.email) for m in snap.members] == [(ada.id, Role.ADMIN, "ada@example.com")]
        assert [(p.name, p.role) for p in snap.participants] == [("Wile", "Coyote")]

    def test_retry_returns_same_team_without_writing(self, env) -> None:
        ada = env["users"]["ada"]
        first = env["teams"].create_team(ada, "Red")
        env["clock"].advance(1)
        second = env["teams"].create_team(ada, "Red", "ignored on replay")

        assert second.deduplicated
        assert second.snapshot.id == first.snapshot.id
        assert env["store"].count_teams("Red") == 1

    def test_create_after_window_makes_second_team(self, env) -> None:
        ada = env["users"]["ada"]
        env["teams"].create_team(ada, "Red")
        env["clock"].advance(3)
        env["teams"].create_team(ada, "Red")

        assert env["store"].count_teams("Red") == 2

    def test_list_and_get_are_membership_scoped(self, env) -> None:
        ada, bob = env["users"]["ada"], env["users"]["bob"]
        red = env["teams"].create_team(ada, "Red").snapshot

        assert [t.name for t in env["teams"].list_teams(ada)] == ["Red"]
        assert env["teams"].list_teams(bob) == []
        with pytest.raises(AccessDeniedError):
            env["teams"].get_team(bob, red.id)
        with pytest.raises(NotFoundError):
            env["teams"].get_team(bob, 9999)

    def test_add_member_grants_access(self, env) -> None:
        ada, bob = env["users"]["ada"], env["users"]["bob"]
        red = env["teams"].create_team(ada, "Red").snapshot

        view = env["teams"].add_member(ada, red.id, bob.id)

        assert view.role is Role.MEMBER
        assert view.display_name == "bob"
        assert env["teams"].get_team(bob, red.id).id == red.id
        assert [m.user_id for m in env["teams"].list_members(bob, red.id)] == [ada.id, bob.id]

    def test_add_member_failures(self, env) -> None:
        ada, bob, cy = env["users"]["ada"], env["users"]["bob"], env["users"]["cy"]
        red = env["teams"].create_team(ada, "Red").snapshot
        env["teams"].add_member(ada, red.id, bob.id)

        with pytest.raises(AlreadyMemberError):
            env["teams"].add_member(ada, red.id, bob.id)
        with pytest.raises(ValidationError) as exc_info:
            env["teams"].add_member(ada, red.id, 9999)
        assert exc_info.value.code == "invalid_member"
        with pytest.raises(AccessDeniedError):
            env["teams"].add_member(cy, red.id, cy.id)

    def test_update_team(self, env) -> None:
        ada, bob = env["users"]["ada"], env["users"]["bob"]
        red = env["teams"].create_team(ada, "Red").snapshot

        updated = env["teams"].update_team(ada, red.id, description="new")

        assert updated.name == "Red"
        assert updated.description == "new"
        with pytest.raises(AccessDeniedError):
            env["teams"].update_team(bob, red.id, name="Hijacked")


class TestTaskService:
    @pytest.fixture
    def teams(self, env):
        ada, bob = env["users"]["ada"], env["users"]["bob"]
        red = env["teams"].create_team(ada, "Red").snapshot
        env["clock"].advance(10)
        blue = env["teams"].create_team(ada, "Blue").snapshot
        env["teams"].add_member(ada, red.id, bob.id)
        return red, blue

    def test_create_defaults_to_most_recent_team(self, env, teams) -> None:
        _red, blue = teams
        task = env["tasks"].create_task(env["users"]["ada"], "Write docs")

        assert task.team_id == blue.id
        assert task.creator_id == env["users"]["ada"].id
        assert task.status is TaskStatus.TODO

    def test_create_with_explicit_team_and_assignee(self, env, teams) -> None:
        red, _blue = teams
        ada, bob = env["users"]["ada"], env["users"]["bob"]

        task = env["tasks"].create_task(ada, "Review", team_id=red.id, assignee_id=bob.id, deadline="2026-12-01")

        assert task.team_id == red.id
        assert task.assignee_id == bob.id
        assert task.deadline == "2026-12-01"
        assert [t.id for t in env["tasks"].list_assigned_to(bob)] == [task.id]

    def test_create_rejects_assignee_outside_team(self, env, teams) -> None:
        _red, blue = teams
        with pytest.raises(ValidationError) as exc_info:
            env["tasks"].create_task(env["users"]["ada"], "x", team_id=blue.id, assignee_id=env["users"]["bob"].id)
        assert exc_info.value.code == "invalid_assignee"

    def test_create_in_foreign_team_is_denied(self, env, teams) -> None:
        _red, blue = teams
        with pytest.raises(AccessDeniedError):
            env["tasks"].create_task(env["users"]["bob"], "x", team_id=blue.id)

    def test_lists_are_filtered(self, env, teams) -> None:
        red, blue = teams
        ada, bob, cy = env["users"]["ada"], env["users"]["bob"], env["users"]["cy"]
        env["tasks"].create_task(ada, "red-todo", team_id=red.id)
        env["tasks"].create_task(ada, "blue-done", team_id=blue.id, status=TaskStatus.DONE)

        assert {t.title for t in env["tasks"].list_tasks(ada)} == {"red-todo", "blue-done"}
        assert {t.title for t in env["tasks"].list_tasks(bob)} == {"red-todo"}
        assert env["tasks"].list_tasks(cy) == []
        assert [t.title for t in env["tasks"].list_by_status(ada, TaskStatus.DONE)] == ["blue-done"]
        assert env["tasks"].list_by_status(bob, TaskStatus.DONE) == []

    def test_update_moves_team_and_revalidates_assignee(self, env, teams) -> None:
        red, blue = teams
        ada, bob = env["users"]["ada"], env["users"]["bob"]
        task = env["tasks"].create_task(ada, "move me", team_id=red.id, assignee_id=bob.id)

        with pytest.raises(ValidationError):
            env["tasks"].update_task(ada, task.id, {"team_id": blue.id})

        moved = env["tasks"].update_task(ada, task.id, {"team_id": blue.id, "assignee_id": None})
        assert moved.team_id == blue.id
        assert moved.assignee_id is None

    def test_partial_update_keeps_other_fields(self, env, teams) -> None:
        red, _blue = teams
        ada, bob = env["users"]["ada"], env["users"]["bob"]
        task = env["tasks"].create_task(ada, "t", description="keep", team_id=red.id)

        updated = env["tasks"].update_task(bob, task.id, {"status": TaskStatus.IN_PROGRESS})

        assert updated.status is TaskStatus.IN_PROGRESS
        assert updated.description == "keep"
        assert updated.team_id == red.id

    def test_legacy_task_is_attached_on_update(self, env, teams) -> None:
        _red, blue = teams
        ada = env["users"]["ada"]
        legacy_id = env["store"].create_task(Task(title="old", creator_id=ada.id))

        updated = env["tasks"].update_task(ada, legacy_id, {"title": "old, now owned"})

        assert updated.team_id == blue.id
        assert updated.title == "old, now owned"

    def test_delete(self, env, teams) -> None:
        red, _blue = teams
        ada, cy = env["users"]["ada"], env["users"]["cy"]
        task = env["tasks"].create_task(ada, "bye", team_id=red.id)

        with pytest.raises(AccessDeniedError):
            env["tasks"].delete_task(cy, task.id)
        env["tasks"].delete_task(ada, task.id)
        with pytest.raises(NotFoundError):
            env["tasks"].get_task(ada, task.id)


class TestIdempotentCreation:
    def test_one_second_retry_then_six_seconds_later(self, env) -> None:
        ada = env["users"]["ada"]
        first = env["teams"].create_team(ada, "Acme")
        env["clock"].advance(1)
        retry = env["teams"].create_team(ada, "Acme")
        env["clock"].advance(5)
        later = env["teams"].create_team(ada, "Acme")

        assert retry.snapshot.id == first.snapshot.id
        assert later.snapshot.id != first.snapshot.id
        assert env["store"].count_teams("Acme") == 2

    def test_concurrent_requests_write_one_row(self, tmp_path) -> None:
        users = UserStore(db_url=f"sqlite:///{tmp_path / 'users.db'}")
        store = TeamStore(db_url=f"sqlite:///{tmp_path / 'teams.db'}")
        ada = users.get_by_id(users.create_user(User(email="ada@example.com", subject="idp|ada")))
        membership = MembershipIndex(store)
        guard = AuthorizationGuard(store, membership, TaskVisibilityPolicy(membership))
        service = TeamService(store, users, membership, guard, CreationDeduplicator(InMemoryCreationStore()))
        barrier = threading.Barrier(8)
        ids: list[int] = []

        def worker() -> None:
            barrier.wait()
            ids.append(service.create_team(ada, "Acme").snapshot.id)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ids) == 8
        assert set(ids) == {ids[0]}
        assert store.count_teams("Acme") == 1
        users.close()
        store.close()
