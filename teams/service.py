"""
teams/service.py -- Team use cases: create, read, update, members.

Every method takes the requesting User explicitly. Authorization is delegated
to AuthorizationGuard, so this module only orchestrates store calls and builds
TeamSnapshots.

Creation goes through CreationDeduplicator: a retried "create team" request
from the same user for the same name within the suppression window gets the
first request's snapshot back and writes nothing.

Layer rule: no imports from api/. FastAPI types never appear here.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from access.guard import AccessMode, AuthorizationGuard
from access.membership import MembershipIndex
from auth.models import User
from auth.store import UserStore
from cache.dedup import CreationDeduplicator, CreationResult
from core.errors import AlreadyMemberError, ValidationError
from teams.models import MemberView, Membership, Participant, Role, Team, TeamSnapshot
from teams.store import TeamStore

logger = logging.getLogger("pulse.teams")


class TeamService:
    def __init__(
        self,
        store: TeamStore,
        users: UserStore,
        membership: MembershipIndex,
        guard: AuthorizationGuard,
        deduplicator: CreationDeduplicator,
    ) -> None:
        self.store = store
        self.users = users
        self.membership = membership
        self.guard = guard
        self.deduplicator = deduplicator

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_teams(self, user: User) -> list[TeamSnapshot]:
        """Teams the user belongs to, newest first."""
        return [self._snapshot(t) for t in self.membership.teams_of(user.id)]

    def get_team(self, user: User, team_id: int) -> TeamSnapshot:
        team = self.guard.require_team(user, team_id, AccessMode.READ)
        return self._snapshot(team)

    def list_members(self, user: User, team_id: int) -> list[MemberView]:
        team = self.guard.require_team(user, team_id, AccessMode.READ)
        return self._member_views(team.id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_team(
        self,
        user: User,
        name: str,
        description: Optional[str] = None,
        participants: Optional[list[Participant]] = None,
    ) -> CreationResult:
        """Create a team with `user` as its ADMIN, or replay a just-finished one.

        Any authenticated identity may create a team. The returned
        CreationResult says whether the snapshot is a replay.
        """
        roster = list(participants or [])

        def create() -> TeamSnapshot:
            team_id = self.store.create_team(Team(name=name, description=description), user.id, roster)
            logger.info("User %d created team %d (%r)", user.id, team_id, name)
            return self._snapshot(self.store.get_team(team_id))

        return self.deduplicator.run((user.id, name), create)

    def update_team(
        self,
        user: User,
        team_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TeamSnapshot:
        self.guard.require_team(user, team_id, AccessMode.WRITE)
        fields = {}
        if name is not None:
            fields["name"] = name
        if description is not None:
            fields["description"] = description
        self.store.update_team(team_id, **fields)
        return self._snapshot(self.store.get_team(team_id))

    def add_member(self, user: User, team_id: int, member_user_id: int, role: Role = Role.MEMBER) -> MemberView:
        """Add an existing account to the team.

        Raises ValidationError("invalid_member") for an unknown user id and
        AlreadyMemberError when the membership exists.
        """
        team = self.guard.require_team(user, team_id, AccessMode.WRITE)
        member = self.users.get_by_id(member_user_id)
        if member is None:
            raise ValidationError("invalid_member", "No such user.")
        try:
            membership_id = self.store.add_member(Membership(team_id=team.id, user_id=member.id, role=role))
        except IntegrityError as exc:
            raise AlreadyMemberError() from exc
        logger.info("User %d added user %d to team %d as %s", user.id, member.id, team.id, role.value)
        return MemberView(
            membership_id=membership_id,
            user_id=member.id,
            role=role,
            display_name=member.display_name,
            email=member.email,
        )

    # ------------------------------------------------------------------
    # Snapshot assembly
    # ------------------------------------------------------------------

    def _member_views(self, team_id: int) -> list[MemberView]:
        memberships = self.store.list_members(team_id)
        accounts = self.users.get_by_ids([m.user_id for m in memberships])
        views = []
        for m in memberships:
            account = accounts.get(m.user_id)
            views.append(
                MemberView(
                    membership_id=m.id,
                    user_id=m.user_id,
                    role=m.role,
                    display_name=account.display_name if account else None,
                    email=account.email if account else None,
                )
            )
        return views

    def _snapshot(self, team: Team) -> TeamSnapshot:
        return TeamSnapshot(
            id=team.id,
            name=team.name,
            description=team.description,
            created_at=team.created_at,
            members=self._member_views(team.id),
            participants=self.store.list_participants(team.id),
        )
