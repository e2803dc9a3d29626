"""
teams/tasks.py -- Task use cases, each scoped to what the requester may see.

Reads go through TaskVisibilityPolicy; writes through AuthorizationGuard.
A task that does not exist and a task the requester cannot see are told
apart (404 vs 403) only by the guard, never here.

Team resolution on write:
  create  -- explicit team_id (membership required) or the requester's
             most recently created team. No team at all -> no_team_membership.
  update  -- team_id may move the task to another team the requester belongs
             to. A legacy teamless task is attached to the requester's default
             team on its first update; a task never becomes teamless again.

Assignees are checked against the resolved team whenever the assignee or the
team changes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from access.guard import AccessMode, AuthorizationGuard
from access.visibility import TaskVisibilityPolicy
from auth.models import User
from teams.models import Task, TaskStatus, Team
from teams.store import TeamStore

logger = logging.getLogger("pulse.tasks")

# Keys update_task() copies straight through once authorization passes.
_PLAIN_FIELDS = ("title", "description", "status", "sprint_id", "deadline")


class TaskService:
    def __init__(self, store: TeamStore, guard: AuthorizationGuard, visibility: TaskVisibilityPolicy) -> None:
        self.store = store
        self.guard = guard
        self.visibility = visibility

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_tasks(self, user: User) -> list[Task]:
        return self.visibility.filter_visible(user, self.store.list_tasks())

    def list_by_status(self, user: User, status: TaskStatus) -> list[Task]:
        return self.visibility.filter_visible(user, self.store.list_tasks(status=status))

    def list_assigned_to(self, user: User) -> list[Task]:
        return self.visibility.filter_visible(user, self.store.list_tasks(assignee_id=user.id))

    def get_task(self, user: User, task_id: int) -> Task:
        return self.guard.require_task(user, task_id, AccessMode.READ)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_task(
        self,
        user: User,
        title: str,
        description: Optional[str] = None,
        status: TaskStatus = TaskStatus.TODO,
        assignee_id: Optional[int] = None,
        team_id: Optional[int] = None,
        sprint_id: Optional[int] = None,
        deadline: Optional[str] = None,
    ) -> Task:
        team = self.guard.resolve_task_team(user, team_id)
        if assignee_id is not None:
            self.guard.check_assignee(team, assignee_id)
        task_id = self.store.create_task(
            Task(
                title=title,
                description=description,
                status=status,
                assignee_id=assignee_id,
                creator_id=user.id,
                team_id=team.id,
                sprint_id=sprint_id,
                deadline=deadline,
            )
        )
        logger.info("User %d created task %d in team %d", user.id, task_id, team.id)
        return self.store.get_task(task_id)

    def update_task(self, user: User, task_id: int, changes: dict[str, Any]) -> Task:
        """Apply a partial update. Keys absent from `changes` are left alone.

        A team_id of None means "keep the current team".
        """
        task = self.guard.require_task(user, task_id, AccessMode.WRITE)
        team, team_changed = self._target_team(user, task, changes.get("team_id"))

        fields = {k: changes[k] for k in _PLAIN_FIELDS if k in changes}
        if team_changed:
            fields["team_id"] = team.id

        assignee_id = changes.get("assignee_id", task.assignee_id)
        if "assignee_id" in changes:
            fields["assignee_id"] = assignee_id
        if assignee_id is not None and ("assignee_id" in changes or team_changed):
            self.guard.check_assignee(team, assignee_id)

        self.store.update_task(task.id, **fields)
        return self.store.get_task(task.id)

    def delete_task(self, user: User, task_id: int) -> None:
        task = self.guard.require_task(user, task_id, AccessMode.WRITE)
        self.store.delete_task(task.id)
        logger.info("User %d deleted task %d", user.id, task.id)

    def _target_team(self, user: User, task: Task, requested_team_id: Optional[int]) -> tuple[Team, bool]:
        if requested_team_id is not None and requested_team_id != task.team_id:
            return self.guard.require_team(user, requested_team_id, AccessMode.WRITE), True
        if task.team_id is not None:
            return self.store.get_team(task.team_id), False
        return self.guard.resolve_task_team(user), True
