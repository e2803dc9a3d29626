"""
teams/models.py -- Domain dataclasses for teams, memberships and tasks.

These are pure data containers with zero logic. Authorization lives in
access/, persistence in teams/store.py, orchestration in teams/service.py and
teams/tasks.py.

Membership vs Participant:
  A Membership links a real User account to a Team and is the only thing that
  grants access. A Participant is a free-text roster line (name + role) for
  people without accounts; it carries no authorization weight at all.

id fields are None before the record is written to the database. Timestamps
are ISO 8601 strings set by the store.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional


class Role(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"


@dataclass
class Team:
    name: str
    description: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class Membership:
    team_id: int
    user_id: int
    role: Role = Role.MEMBER
    id: Optional[int] = None


@dataclass
class Participant:
    name: str
    role: str
    team_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Task:
    """A unit of work.

    team_id is None only for legacy rows; such a task is private to its
    creator and assignee. deadline is an ISO date (YYYY-MM-DD).
    """

    title: str
    status: TaskStatus = TaskStatus.TODO
    description: Optional[str] = None
    assignee_id: Optional[int] = None
    creator_id: Optional[int] = None
    team_id: Optional[int] = None
    sprint_id: Optional[int] = None
    deadline: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class MemberView:
    """A membership joined with the member's account details."""

    membership_id: int
    user_id: int
    role: Role
    display_name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class TeamSnapshot:
    """A team's full representation at one instant.

    Returned by team creation and cached by the de-duplicator, which replays
    it verbatim to retried requests -- it is not refreshed from storage.
    """

    id: int
    name: str
    description: Optional[str]
    created_at: str
    members: list[MemberView] = field(default_factory=list)
    participants: list[Participant] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TeamSnapshot":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description"),
            created_at=data.get("created_at", ""),
            members=[
                MemberView(
                    membership_id=m["membership_id"],
                    user_id=m["user_id"],
                    role=Role(m["role"]),
                    display_name=m.get("display_name"),
                    email=m.get("email"),
                )
                for m in data.get("members", [])
            ],
            participants=[Participant(**p) for p in data.get("participants", [])],
        )
