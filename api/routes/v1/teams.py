"""
api/routes/v1/teams.py -- Team routes for the Pulse REST API.

Routes:
  GET   /teams                      -- teams the caller belongs to
  POST  /teams                      -- create a team (caller becomes ADMIN)
  GET   /teams/{team_id}            -- team detail (members only)
  PATCH /teams/{team_id}            -- rename / re-describe (members only)
  GET   /teams/{team_id}/members    -- member list (members only)
  POST  /teams/{team_id}/members    -- add an existing account (members only)

Retried creation:
  POST /teams is de-duplicated per (caller, name). The first request answers
  201; an identical request within the suppression window answers 200 with
  the very same body and creates nothing.

Handlers are plain def: the stores are synchronous, so FastAPI runs them in
its thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, team_create_limit
from api.models import MemberAdd, MemberResponse, TeamCreate, TeamPatch, TeamResponse
from auth.dependencies import get_current_user
from auth.models import User
from teams.service import TeamService

router = APIRouter()


def _service(request: Request) -> TeamService:
    return request.app.state.team_service


@router.get("/teams", response_model=list[TeamResponse])
def list_teams(request: Request, current_user: User = Depends(get_current_user)) -> list[TeamResponse]:
    return [TeamResponse.from_snapshot(s) for s in _service(request).list_teams(current_user)]


@limiter.limit(team_create_limit)
@router.post("/teams", response_model=TeamResponse, status_code=201)
def create_team(
    request: Request,
    response: Response,
    body: TeamCreate,
    current_user: User = Depends(get_current_user),
) -> TeamResponse:
    """Create a team. A duplicate of a just-finished request answers 200."""
    result = _service(request).create_team(
        current_user,
        name=body.name,
        description=body.description,
        participants=[p.to_domain() for p in body.participants],
    )
    if result.deduplicated:
        response.status_code = 200
    return TeamResponse.from_snapshot(result.snapshot)


@router.get("/teams/{team_id}", response_model=TeamResponse)
def get_team(request: Request, team_id: int, current_user: User = Depends(get_current_user)) -> TeamResponse:
    return TeamResponse.from_snapshot(_service(request).get_team(current_user, team_id))


@router.patch("/teams/{team_id}", response_model=TeamResponse)
def update_team(
    request: Request,
    team_id: int,
    body: TeamPatch,
    current_user: User = Depends(get_current_user),
) -> TeamResponse:
    snapshot = _service(request).update_team(current_user, team_id, name=body.name, description=body.description)
    return TeamResponse.from_snapshot(snapshot)


@router.get("/teams/{team_id}/members", response_model=list[MemberResponse])
def list_members(request: Request, team_id: int, current_user: User = Depends(get_current_user)) -> list[MemberResponse]:
    return [MemberResponse.from_view(v) for v in _service(request).list_members(current_user, team_id)]


@router.post("/teams/{team_id}/members", response_model=MemberResponse, status_code=201)
def add_member(
    request: Request,
    team_id: int,
    body: MemberAdd,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    view = _service(request).add_member(current_user, team_id, body.user_id, body.role)
    return MemberResponse.from_view(view)
