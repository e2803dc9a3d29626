"""
api/routes/v1/tasks.py -- Task routes for the Pulse REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /tasks                    -- every task the caller can see
  POST   /tasks                    -- create (team_id optional)
  GET    /tasks/status/{status}    -- visible tasks in one status
  GET    /tasks/assigned-to-me     -- visible tasks assigned to the caller
  GET    /tasks/{task_id}          -- detail
  PUT    /tasks/{task_id}          -- partial update
  DELETE /tasks/{task_id}          -- delete

List routes silently omit tasks the caller cannot see. Single-task routes
answer 404 for a missing id and 403 for a task outside the caller's teams.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import TaskCreate, TaskResponse, TaskUpdate
from auth.dependencies import get_current_user
from auth.models import User
from teams.models import TaskStatus
from teams.tasks import TaskService

router = APIRouter()


def _service(request: Request) -> TaskService:
    return request.app.state.task_service


@router.get("/tasks", response_model=list[TaskResponse])
def list_tasks(request: Request, current_user: User = Depends(get_current_user)) -> list[TaskResponse]:
    return [TaskResponse.from_task(t) for t in _service(request).list_tasks(current_user)]


@router.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(request: Request, body: TaskCreate, current_user: User = Depends(get_current_user)) -> TaskResponse:
    task = _service(request).create_task(
        current_user,
        title=body.title,
        description=body.description,
        status=body.status,
        assignee_id=body.assignee_id,
        team_id=body.team_id,
        sprint_id=body.sprint_id,
        deadline=body.deadline.isoformat() if body.deadline else None,
    )
    return TaskResponse.from_task(task)


@router.get("/tasks/status/{status}", response_model=list[TaskResponse])
def list_by_status(
    request: Request,
    status: TaskStatus,
    current_user: User = Depends(get_current_user),
) -> list[TaskResponse]:
    return [TaskResponse.from_task(t) for t in _service(request).list_by_status(current_user, status)]


@router.get("/tasks/assigned-to-me", response_model=list[TaskResponse])
def assigned_to_me(request: Request, current_user: User = Depends(get_current_user)) -> list[TaskResponse]:
    return [TaskResponse.from_task(t) for t in _service(request).list_assigned_to(current_user)]


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(request: Request, task_id: int, current_user: User = Depends(get_current_user)) -> TaskResponse:
    return TaskResponse.from_task(_service(request).get_task(current_user, task_id))


@router.put("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: int,
    body: TaskUpdate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    return TaskResponse.from_task(_service(request).update_task(current_user, task_id, body.changes()))


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(request: Request, task_id: int, current_user: User = Depends(get_current_user)) -> Response:
    _service(request).delete_task(current_user, task_id)
    return Response(status_code=204)
