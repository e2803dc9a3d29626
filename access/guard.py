"""
access/guard.py -- Per-resource authorization decisions for teams and tasks.

Every decision takes the requesting User as an explicit argument; nothing is
read from request-global state, so each check is a pure function of its
inputs plus the store.

Decision order (the same for every resource):
  1. Resource does not exist      -> NOT_FOUND
  2. Requester is not entitled    -> DENIED
  3. Otherwise                    -> AUTHORIZED

Existence is checked first: team and task ids are not secret, membership is.
Denials never say who *is* a member.

Two forms of each check:
  authorize_*()  -- returns a Decision; no exceptions. For callers that only
                    need the outcome.
  require_*()    -- returns the loaded resource or raises NotFoundError /
                    AccessDeniedError. Used by the services on the write path.

Rules:
  Team read / update / member list / member add -- any-role membership.
  Team creation                                 -- any authenticated identity
                                                   (no check here).
  Task read / update / delete                   -- TaskVisibilityPolicy: member
                                                   of the task's team; for a
                                                   teamless task, its creator or
                                                   assignee.
  Task team resolution                          -- explicit team requires
                                                   membership; otherwise the
                                                   requester's default team.
  Assignee                                      -- must be a member of the
                                                   task's team. Failure is a
                                                   ValidationError: the requester
                                                   may act, the target is invalid.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from access.membership import MembershipIndex
from access.visibility import TaskVisibilityPolicy
from auth.models import User
from core.errors import AccessDeniedError, NotFoundError, ValidationError
from teams.models import Task, Team
from teams.store import TeamStore

logger = logging.getLogger("pulse.access")


class AccessMode(str, Enum):
    READ = "read"
    WRITE = "write"


class Decision(str, Enum):
    AUTHORIZED = "authorized"
    DENIED = "denied"
    NOT_FOUND = "not_found"


class AuthorizationGuard:
    def __init__(self, store: TeamStore, membership: MembershipIndex, visibility: TaskVisibilityPolicy) -> None:
        self.store = store
        self.membership = membership
        self.visibility = visibility

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def _decide_team(self, user: User, team_id: int) -> tuple[Decision, Optional[Team]]:
        team = self.store.get_team(team_id)
        if team is None:
            return Decision.NOT_FOUND, None
        if not self.membership.is_member(team.id, user.id):
            return Decision.DENIED, team
        return Decision.AUTHORIZED, team

    def authorize_team_access(self, user: User, team_id: int, mode: AccessMode = AccessMode.READ) -> Decision:
        decision, _team = self._decide_team(user, team_id)
        return decision

    def require_team(self, user: User, team_id: int, mode: AccessMode = AccessMode.READ) -> Team:
        decision, team = self._decide_team(user, team_id)
        if decision is Decision.NOT_FOUND:
            raise NotFoundError("team", team_id)
        if decision is Decision.DENIED:
            logger.info("Denied %s on team %d to user %d", mode.value, team_id, user.id)
            raise AccessDeniedError("team")
        return team

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _decide_task(self, user: User, task_id: int) -> tuple[Decision, Optional[Task]]:
        task = self.store.get_task(task_id)
        if task is None:
            return Decision.NOT_FOUND, None
        if not self.visibility.visible(task, user):
            return Decision.DENIED, task
        return Decision.AUTHORIZED, task

    def authorize_task_access(self, user: User, task_id: int, mode: AccessMode = AccessMode.READ) -> Decision:
        decision, _task = self._decide_task(user, task_id)
        return decision

    def require_task(self, user: User, task_id: int, mode: AccessMode = AccessMode.READ) -> Task:
        decision, task = self._decide_task(user, task_id)
        if decision is Decision.NOT_FOUND:
            raise NotFoundError("task", task_id)
        if decision is Decision.DENIED:
            logger.info("Denied %s on task %d to user %d", mode.value, task_id, user.id)
            raise AccessDeniedError("task")
        return task

    def resolve_task_team(self, user: User, explicit_team_id: Optional[int] = None) -> Team:
        """The one team a task being written by `user` belongs to.

        An explicit team must exist and the user must be a member of it.
        Without one, the user's most recently created team is used; a user
        with no team gets NoTeamMembershipError.
        """
        if explicit_team_id is not None:
            return self.require_team(user, explicit_team_id, AccessMode.WRITE)
        return self.visibility.default_team(user)

    def check_assignee(self, team: Team, assignee_id: int) -> None:
        """Reject assignees outside the task's team.

        Unknown user ids fail the same way as non-members so the response
        reveals nothing about which accounts exist.
        """
        if not self.membership.is_member(team.id, assignee_id):
            raise ValidationError("invalid_assignee", "Assignee must be a member of the task's team.")
