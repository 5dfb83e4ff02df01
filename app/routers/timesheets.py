from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.models import TimesheetStatus
from app.schemas import (
    TimesheetApprovalRead,
    TimesheetChatCreateRequest,
    TimesheetChatRead,
    TimesheetDecisionRequest,
    TimesheetDraftRequest,
    TimesheetHistoryRead,
    TimesheetRead,
    TimesheetReopenRequest,
    TimesheetSummaryRead,
    TimesheetWorkflowStatusRead,
)
from app.security import APPROVER_ROLES, Actor, require_actor, require_roles
from app.services.timesheets import (
    approve_timesheet,
    delete_chat_message,
    delete_draft,
    get_timesheet,
    list_chat,
    list_history,
    list_pending_approvals,
    list_timesheets,
    post_chat_message,
    reject_timesheet,
    reopen_timesheet,
    save_draft,
    submit_timesheet,
    workflow_status,
)

router = APIRouter(prefix="/api/timesheets", tags=["timesheets"])


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.put("/draft", response_model=TimesheetRead)
def put_draft(
    payload: TimesheetDraftRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TimesheetRead:
    return save_draft(db, actor=actor, payload=payload)


@router.get("", response_model=list[TimesheetSummaryRead])
def get_my_timesheets(
    status_filter: TimesheetStatus | None = None,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[TimesheetSummaryRead]:
    return list_timesheets(db, employee_id=actor.employee_id, status=status_filter)


@router.get("/pending-approvals", response_model=list[TimesheetApprovalRead])
def get_pending_approvals(
    actor: Actor = Depends(require_roles(*APPROVER_ROLES)),
    db: Session = Depends(get_db),
) -> list[TimesheetApprovalRead]:
    return list_pending_approvals(db, actor=actor)


@router.get("/{timesheet_id}", response_model=TimesheetRead)
def get_timesheet_detail(
    timesheet_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TimesheetRead:
    return get_timesheet(db, actor=actor, timesheet_id=timesheet_id)


@router.delete("/{timesheet_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_timesheet_draft(
    timesheet_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> Response:
    delete_draft(db, actor=actor, timesheet_id=timesheet_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{timesheet_id}/submit", response_model=TimesheetRead)
def submit(
    timesheet_id: int,
    request: Request,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TimesheetRead:
    timesheet = submit_timesheet(db, actor=actor, timesheet_id=timesheet_id)
    log_audit(
        db,
        actor=actor,
        action="TIMESHEET_SUBMITTED",
        success=True,
        entity_type="timesheet",
        entity_id=timesheet.id,
        details={"cycle": timesheet.submission_count},
        request_id=_request_id(request),
    )
    return timesheet


@router.post("/{timesheet_id}/approve", response_model=TimesheetRead)
def approve(
    timesheet_id: int,
    payload: TimesheetDecisionRequest,
    request: Request,
    actor: Actor = Depends(require_roles(*APPROVER_ROLES)),
    db: Session = Depends(get_db),
) -> TimesheetRead:
    timesheet = approve_timesheet(
        db,
        actor=actor,
        timesheet_id=timesheet_id,
        stage=payload.stage,
        comment=payload.comment,
    )
    log_audit(
        db,
        actor=actor,
        action="TIMESHEET_APPROVED",
        success=True,
        entity_type="timesheet",
        entity_id=timesheet.id,
        details={"overall_status": timesheet.overall_status.value},
        request_id=_request_id(request),
    )
    return timesheet


@router.post("/{timesheet_id}/reject", response_model=TimesheetRead)
def reject(
    timesheet_id: int,
    payload: TimesheetDecisionRequest,
    request: Request,
    actor: Actor = Depends(require_roles(*APPROVER_ROLES)),
    db: Session = Depends(get_db),
) -> TimesheetRead:
    timesheet = reject_timesheet(
        db,
        actor=actor,
        timesheet_id=timesheet_id,
        stage=payload.stage,
        comment=payload.comment,
    )
    log_audit(
        db,
        actor=actor,
        action="TIMESHEET_REJECTED",
        success=True,
        entity_type="timesheet",
        entity_id=timesheet.id,
        details={"comment": payload.comment},
        request_id=_request_id(request),
    )
    return timesheet


@router.post("/{timesheet_id}/reopen", response_model=TimesheetRead)
def reopen(
    timesheet_id: int,
    payload: TimesheetReopenRequest,
    request: Request,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TimesheetRead:
    timesheet = reopen_timesheet(db, actor=actor, timesheet_id=timesheet_id, comment=payload.comment)
    log_audit(
        db,
        actor=actor,
        action="TIMESHEET_REOPENED",
        success=True,
        entity_type="timesheet",
        entity_id=timesheet.id,
        details={"comment": payload.comment},
        request_id=_request_id(request),
    )
    return timesheet


@router.get("/{timesheet_id}/status", response_model=TimesheetWorkflowStatusRead)
def get_workflow_status(
    timesheet_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TimesheetWorkflowStatusRead:
    timesheet = get_timesheet(db, actor=actor, timesheet_id=timesheet_id)
    return TimesheetWorkflowStatusRead.model_validate(workflow_status(timesheet))


@router.get("/{timesheet_id}/history", response_model=list[TimesheetHistoryRead])
def get_history(
    timesheet_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[TimesheetHistoryRead]:
    return list_history(db, actor=actor, timesheet_id=timesheet_id)


@router.get("/{timesheet_id}/chat", response_model=list[TimesheetChatRead])
def get_chat(
    timesheet_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[TimesheetChatRead]:
    return list_chat(db, actor=actor, timesheet_id=timesheet_id)


@router.post("/{timesheet_id}/chat", response_model=TimesheetChatRead, status_code=status.HTTP_201_CREATED)
def create_chat_message(
    timesheet_id: int,
    payload: TimesheetChatCreateRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TimesheetChatRead:
    return post_chat_message(
        db,
        actor=actor,
        timesheet_id=timesheet_id,
        message=payload.message,
        parent_id=payload.parent_id,
    )


@router.delete("/{timesheet_id}/chat/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_chat_message(
    timesheet_id: int,
    message_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> Response:
    delete_chat_message(db, actor=actor, timesheet_id=timesheet_id, message_id=message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
