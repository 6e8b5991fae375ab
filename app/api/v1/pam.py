"""Weekly plan, sync and task lifecycle API endpoints."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import Permission
from app.crud.pam import week_plan as week_plan_crud
from app.database import get_db
from app.dependencies import require_permission
from app.models.user import User
from app.schemas.pam import (
    CurrentWeekResponse,
    EvidenceCreate,
    EvidencePresignRequest,
    EvidencePresignResponse,
    EvidenceResponse,
    PamTaskCreate,
    PamTaskResponse,
    PamTaskUpdate,
    RejectEvidenceRequest,
    TaskDeletedResponse,
    WeekBoardResponse,
    WeekPlanResponse,
)
from app.schemas.sync import (
    ImportDocumentRequest,
    ImportedPeriod,
    RowErrorResponse,
    SyncEventRequest,
    SyncRequest,
    SyncResultResponse,
    SyncStateResponse,
)
from app.services.pam_metrics_service import pam_metrics_service
from app.services.pam_sync_service import (
    DatabaseSyncStateStore,
    Manual,
    OnExternalEvent,
    SyncResult,
    pam_sync_service,
)
from app.services.storage_service import storage_service
from app.services.task_lifecycle_service import task_lifecycle_service, to_response
from app.utils.weeks import current_iso_week, shift_week, week_label

router = APIRouter()


def _sync_response(result: SyncResult) -> SyncResultResponse:
    return SyncResultResponse(
        status=result.status.value,
        success=result.success,
        tasks_created=result.tasks_created,
        errors=result.errors,
        row_errors=[
            RowErrorResponse(row=error.row, code=error.code.value, message=error.message)
            for error in result.row_errors
        ],
        imported_week_year=result.imported_week_year,
        imported_week_number=result.imported_week_number,
        imported_periods=[
            ImportedPeriod(
                week_year=period.week_year,
                week_number=period.week_number,
                tasks_created=period.tasks_created,
            )
            for period in result.imported_periods
        ],
    )


@router.post("/sync", response_model=SyncResultResponse)
async def sync_sheet(
    payload: SyncRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_SYNC)),
):
    """Sync the organization's task sheet; force bypasses throttle and fingerprint."""
    week = (payload.week_year, payload.week_number) if payload.week_year is not None else None
    result = await pam_sync_service.sync_period(
        db,
        current_user.organization,
        importer_id=current_user.id,
        trigger=Manual(force=payload.force),
        week=week,
    )
    return _sync_response(result)


@router.post("/sync/events", response_model=SyncResultResponse)
async def sync_on_event(
    payload: SyncEventRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """Non-forced sync requested by a client event such as regaining focus."""
    result = await pam_sync_service.sync_period(
        db,
        current_user.organization,
        importer_id=current_user.id,
        trigger=OnExternalEvent(name=payload.event),
    )
    return _sync_response(result)


@router.get("/sync/state", response_model=SyncStateResponse)
async def get_sync_state(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """Get the last fingerprint and sync times of the organization."""
    state = await DatabaseSyncStateStore(db).get(str(current_user.organization_id))
    response = SyncStateResponse(in_progress=pam_sync_service.is_running(current_user.organization_id))
    if state is not None:
        response.last_fingerprint = state.last_fingerprint
        response.last_attempt_at = state.last_attempt_at
        response.last_success_at = state.last_success_at
    return response


@router.post("/import", response_model=SyncResultResponse)
async def import_document(
    payload: ImportDocumentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_IMPORT)),
):
    """Import an uploaded task sheet."""
    week = None
    if payload.week_year is not None and payload.week_number is not None:
        week = (payload.week_year, payload.week_number)
    result = await pam_sync_service.import_document(
        db,
        current_user.organization,
        payload.content,
        importer_id=current_user.id,
        source_label=payload.source_label,
        week=week,
    )
    return _sync_response(result)


@router.get("/week-plans", response_model=List[WeekPlanResponse])
async def list_week_plans(
    week_year: Optional[int] = Query(None, ge=2020, le=2100),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """List imported week plans, most recent first."""
    return await week_plan_crud.list_for_organization(
        db,
        organization_id=current_user.organization_id,
        week_year=week_year,
        skip=skip,
        limit=limit,
    )


@router.get("/weeks/current", response_model=CurrentWeekResponse)
async def get_current_week(
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """ISO week of today in the configured timezone, with the weeks either side."""
    week_year, week_number = current_iso_week()
    previous_year, previous_number = shift_week(week_year, week_number, -1)
    next_year, next_number = shift_week(week_year, week_number, 1)
    return CurrentWeekResponse(
        week_year=week_year,
        week_number=week_number,
        label=week_label(week_year, week_number),
        previous_week_year=previous_year,
        previous_week_number=previous_number,
        next_week_year=next_year,
        next_week_number=next_number,
    )


@router.get("/weeks/{week_year}/{week_number}/tasks", response_model=List[PamTaskResponse])
async def list_week_tasks(
    week_year: int = Path(..., ge=2020, le=2100),
    week_number: int = Path(..., ge=1, le=53),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """List every task of a week."""
    tasks = await task_lifecycle_service.list_week_tasks(db, current_user, week_year, week_number)
    return [to_response(task) for task in tasks]


@router.get("/weeks/{week_year}/{week_number}/my-tasks", response_model=List[PamTaskResponse])
async def list_my_tasks(
    week_year: int = Path(..., ge=2020, le=2100),
    week_number: int = Path(..., ge=1, le=53),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """List the caller's tasks of a week."""
    tasks = await task_lifecycle_service.list_my_tasks(db, current_user, week_year, week_number)
    return [to_response(task) for task in tasks]


@router.get("/weeks/{week_year}/{week_number}/board", response_model=WeekBoardResponse)
async def get_week_board(
    week_year: int = Path(..., ge=2020, le=2100),
    week_number: int = Path(..., ge=1, le=53),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """Completion and overdue counters for a week."""
    return await pam_metrics_service.week_board(db, current_user.organization_id, week_year, week_number)


@router.post("/tasks", response_model=PamTaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: PamTaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_TASK_MANAGE)),
):
    """Create a task manually."""
    change = await task_lifecycle_service.create_task(db, current_user, payload)
    response = to_response(change.task)
    response.sheet_sync_error = change.sheet_sync_error
    return response


@router.patch("/tasks/{task_id}", response_model=PamTaskResponse)
async def update_task(
    task_id: UUID,
    payload: PamTaskUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_TASK_MANAGE)),
):
    """Update a task that is not completed yet."""
    change = await task_lifecycle_service.update_task(db, current_user, task_id, payload)
    response = to_response(change.task)
    response.sheet_sync_error = change.sheet_sync_error
    return response


@router.delete("/tasks/{task_id}", response_model=TaskDeletedResponse)
async def delete_task(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_TASK_MANAGE)),
):
    """Delete a task that is not completed yet."""
    sheet_sync_error = await task_lifecycle_service.delete_task(db, current_user, task_id)
    return TaskDeletedResponse(id=task_id, sheet_sync_error=sheet_sync_error)


@router.post("/tasks/{task_id}/acknowledge", response_model=PamTaskResponse)
async def acknowledge_task(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_TASK_EXECUTE)),
):
    """Move a pending task to in progress."""
    task = await task_lifecycle_service.acknowledge(db, current_user, task_id)
    return to_response(task)


@router.post("/tasks/{task_id}/evidence/presign", response_model=EvidencePresignResponse)
async def presign_evidence_upload(
    task_id: UUID,
    payload: EvidencePresignRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_TASK_EXECUTE)),
):
    """Issue a presigned upload URL for an evidence file."""
    task = await task_lifecycle_service.get_actionable_task(db, current_user, task_id)
    key = storage_service.evidence_key(task.organization_id, task.id, payload.filename)
    upload_url = storage_service.generate_upload_url(key, payload.content_type)
    return EvidencePresignResponse(upload_url=upload_url, file_ref=key)


@router.post("/tasks/{task_id}/evidence", response_model=EvidenceResponse, status_code=status.HTTP_201_CREATED)
async def upload_evidence(
    task_id: UUID,
    payload: EvidenceCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_TASK_EXECUTE)),
):
    """Record an uploaded evidence file for a task."""
    return await task_lifecycle_service.upload_evidence(
        db,
        current_user,
        task_id,
        file_ref=payload.file_ref,
        note=payload.note,
    )


@router.get("/tasks/{task_id}/evidence", response_model=List[EvidenceResponse])
async def list_evidence(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_VIEW)),
):
    """List a task's evidence history with download links."""
    evidence = await task_lifecycle_service.list_evidence(db, current_user, task_id)
    responses = []
    for item in evidence:
        response = EvidenceResponse.model_validate(item)
        response.download_url = storage_service.generate_download_url(item.file_ref)
        responses.append(response)
    return responses


@router.post("/tasks/{task_id}/approve", response_model=PamTaskResponse)
async def approve_evidence(
    task_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_EVIDENCE_REVIEW)),
):
    """Approve the evidence and complete the task."""
    task = await task_lifecycle_service.approve(db, current_user, task_id)
    return to_response(task)


@router.post("/tasks/{task_id}/reject", response_model=PamTaskResponse)
async def reject_evidence(
    task_id: UUID,
    payload: Optional[RejectEvidenceRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PAM_EVIDENCE_REVIEW)),
):
    """Reject the evidence; the assignee is notified and must upload again."""
    comment = payload.comment if payload else None
    task = await task_lifecycle_service.reject(db, current_user, task_id, comment=comment)
    return to_response(task)
