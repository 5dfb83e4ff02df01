from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import TaskKind, TaskStatus
from app.schemas import (
    TaskActivityRead,
    TaskCreateRequest,
    TaskFeedbackRequest,
    TaskRead,
    TaskStatusUpdateRequest,
    TaskTimeLogRead,
    TaskTimeLogRequest,
    TaskUpdateRequest,
)
from app.security import Actor, require_actor
from app.services.tasks import (
    change_task_status,
    create_task,
    delete_task,
    get_task,
    list_activity,
    list_tasks,
    log_time,
    submit_task_feedback,
    update_task,
)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskRead])
def get_my_tasks(
    kind: TaskKind | None = None,
    status_filter: TaskStatus | None = None,
    important_only: bool = False,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[TaskRead]:
    return list_tasks(
        db,
        employee_id=actor.employee_id,
        kind=kind,
        status=status_filter,
        important_only=important_only,
    )


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def post_task(
    payload: TaskCreateRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TaskRead:
    return create_task(db, actor=actor, payload=payload)


@router.get("/{task_id}", response_model=TaskRead)
def get_task_detail(
    task_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TaskRead:
    return get_task(db, task_id=task_id, actor=actor)


@router.patch("/{task_id}", response_model=TaskRead)
def patch_task(
    task_id: int,
    payload: TaskUpdateRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TaskRead:
    return update_task(db, actor=actor, task_id=task_id, payload=payload)


@router.patch("/{task_id}/status", response_model=TaskRead)
def patch_task_status(
    task_id: int,
    payload: TaskStatusUpdateRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TaskRead:
    return change_task_status(db, actor=actor, task_id=task_id, status=payload.status)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_task(
    task_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> Response:
    delete_task(db, actor=actor, task_id=task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{task_id}/time-logs", response_model=TaskTimeLogRead, status_code=status.HTTP_201_CREATED)
def post_time_log(
    task_id: int,
    payload: TaskTimeLogRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TaskTimeLogRead:
    return log_time(
        db,
        actor=actor,
        task_id=task_id,
        hours=payload.hours,
        logged_on=payload.logged_on,
        description=payload.description,
    )


@router.post("/{task_id}/feedback", response_model=TaskRead)
def post_feedback(
    task_id: int,
    payload: TaskFeedbackRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TaskRead:
    return submit_task_feedback(
        db,
        actor=actor,
        task_id=task_id,
        feedback=payload.feedback,
        rating=payload.rating,
    )


@router.get("/{task_id}/activity", response_model=list[TaskActivityRead])
def get_task_activity(
    task_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[TaskActivityRead]:
    task = get_task(db, task_id=task_id, actor=actor)
    return list_activity(db, task=task)
