"""
access/visibility.py -- Which tasks an identity may see.

Rules:
  task with a team     -> visible to members of that team (any role)
  task without a team  -> visible to its creator and its assignee only

A teamless task is private scratch work, so it is narrower than team scope:
sharing a team with the creator does not make it visible.

Default team:
  A task created without an explicit team lands in the creator's most
  recently created team. Someone with no team at all gets
  NoTeamMembershipError -- never a silently teamless task.
"""

from __future__ import annotations

from auth.models import User
from access.membership import MembershipIndex
from core.errors import NoTeamMembershipError
from teams.models import Task, Team


class TaskVisibilityPolicy:
    def __init__(self, membership: MembershipIndex) -> None:
        self.membership = membership

    def visible(self, task: Task, user: User) -> bool:
        if task.team_id is not None:
            return self.membership.is_member(task.team_id, user.id)
        return user.id in (task.creator_id, task.assignee_id)

    def filter_visible(self, user: User, tasks: list[Task]) -> list[Task]:
        """Bulk form of visible(); loads the user's team ids once."""
        team_ids = self.membership.team_ids_of(user.id)
        return [
            t
            for t in tasks
            if (t.team_id in team_ids if t.team_id is not None else user.id in (t.creator_id, t.assignee_id))
        ]

    def default_team(self, user: User) -> Team:
        team = self.membership.most_recent_team(user.id)
        if team is None:
            raise NoTeamMembershipError()
        return team
