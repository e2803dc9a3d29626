"""
API request and response models for the Pulse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in teams/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two with the from_* factory methods below.

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from teams.models import MemberView, Participant, Role, Task, TaskStatus, TeamSnapshot

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for every non-2xx response: {"error": {...}}."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    display_name: Optional[str]
    subject: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "MeResponse":
        return cls(user_id=user.id, email=user.email, display_name=user.display_name, subject=user.subject)


class RevokeResponse(BaseModel):
    """Tokens issued before revoked_before (epoch seconds) are rejected."""

    revoked_before: int


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class ParticipantIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    role: str = Field(min_length=1, max_length=255)

    def to_domain(self) -> Participant:
        return Participant(name=self.name, role=self.role)


class ParticipantOut(BaseModel):
    id: Optional[int]
    name: str
    role: str


class TeamCreate(BaseModel):
    """Request body for POST /api/v1/teams."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=4000)
    participants: list[ParticipantIn] = Field(default_factory=list, max_length=100)


class TeamPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=4000)


class MemberAdd(BaseModel):
    user_id: int
    role: Role = Role.MEMBER


class MemberResponse(BaseModel):
    membership_id: int
    user_id: int
    role: Role
    display_name: Optional[str]
    email: Optional[str]

    @classmethod
    def from_view(cls, view: MemberView) -> "MemberResponse":
        return cls(
            membership_id=view.membership_id,
            user_id=view.user_id,
            role=view.role,
            display_name=view.display_name,
            email=view.email,
        )


class TeamResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    created_at: str
    members: list[MemberResponse]
    participants: list[ParticipantOut]

    @classmethod
    def from_snapshot(cls, snapshot: TeamSnapshot) -> "TeamResponse":
        """Factory Method: the domain -> transport mapping lives with the model."""
        return cls(
            id=snapshot.id,
            name=snapshot.name,
            description=snapshot.description,
            created_at=snapshot.created_at,
            members=[MemberResponse.from_view(m) for m in snapshot.members],
            participants=[ParticipantOut(id=p.id, name=p.name, role=p.role) for p in snapshot.participants],
        )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    """Request body for POST /api/v1/tasks.

    team_id is optional; without it the task lands in the requester's most
    recently created team.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=4000)
    status: TaskStatus = TaskStatus.TODO
    assignee_id: Optional[int] = None
    team_id: Optional[int] = None
    sprint_id: Optional[int] = None
    deadline: Optional[date] = None


class TaskUpdate(BaseModel):
    """Request body for PUT /api/v1/tasks/{id}. Omitted fields are unchanged.

    assignee_id may be set to null to unassign. title and status may not.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=4000)
    status: Optional[TaskStatus] = None
    assignee_id: Optional[int] = None
    team_id: Optional[int] = None
    sprint_id: Optional[int] = None
    deadline: Optional[date] = None

    @field_validator("title", "status")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value

    def changes(self) -> dict:
        """Fields the client actually sent, with dates as ISO strings."""
        data = self.model_dump(exclude_unset=True)
        if isinstance(data.get("deadline"), date):
            data["deadline"] = data["deadline"].isoformat()
        return data


class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    assignee_id: Optional[int]
    creator_id: Optional[int]
    team_id: Optional[int]
    sprint_id: Optional[int]
    deadline: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            assignee_id=task.assignee_id,
            creator_id=task.creator_id,
            team_id=task.team_id,
            sprint_id=task.sprint_id,
            deadline=task.deadline,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
