"""
access/membership.py -- Team membership lookups backing every access decision.

MembershipIndex is read-only: memberships are created by team creation and by
TeamService.add_member(), never here. No cache sits in front of the store,
so a newly granted membership takes effect on the very next request.
"""

from __future__ import annotations

from typing import Optional

from teams.models import Team
from teams.store import TeamStore


class MembershipIndex:
    def __init__(self, store: TeamStore) -> None:
        self.store = store

    def is_member(self, team_id: int, user_id: int) -> bool:
        return self.store.is_member(team_id, user_id)

    def teams_of(self, user_id: int) -> list[Team]:
        """Teams the user belongs to, most recently created first."""
        return self.store.teams_of_user(user_id)

    def team_ids_of(self, user_id: int) -> set[int]:
        return {t.id for t in self.teams_of(user_id)}

    def most_recent_team(self, user_id: int) -> Optional[Team]:
        """The user's newest team, or None when they belong to no team."""
        teams = self.teams_of(user_id)
        return teams[0] if teams else None
