"""Task status lifecycle, evidence approval workflow and manual task management."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SheetWriteError,
    ValidationError,
)
from app.core.security import Permission
from app.crud.pam import pam_task as pam_task_crud, task_evidence as evidence_crud, week_plan as week_plan_crud
from app.crud.user import user as user_crud
from app.integrations.google_sheet import GoogleSheetWriter
from app.models.pam import PamTask, PamTaskEvidence, TaskStatus, WeekPlan
from app.models.user import User
from app.schemas.pam import PamTaskCreate, PamTaskResponse, PamTaskUpdate
from app.services.notification_service import notification_service
from app.services.pam_row_validator import normalize_identity
from app.utils.permissions import has_permission
from app.utils.weeks import local_today

logger = logging.getLogger(__name__)

MANUAL_SOURCE_LABEL = "Manual"


def effective_status(task: PamTask, today: Optional[date] = None) -> TaskStatus:
    """Stored status, or OVERDUE for unfinished tasks whose date has passed."""
    if task.status != TaskStatus.DONE and task.date < (today or local_today()):
        return TaskStatus.OVERDUE
    return task.status


def is_overdue(task: PamTask, today: Optional[date] = None) -> bool:
    return effective_status(task, today) == TaskStatus.OVERDUE


def to_response(task: PamTask, today: Optional[date] = None) -> PamTaskResponse:
    response = PamTaskResponse.model_validate(task)
    response.effective_status = effective_status(task, today)
    response.is_overdue = response.effective_status == TaskStatus.OVERDUE
    return response


@dataclass
class ManualTaskChange:
    """A manually created or edited task and the outcome of mirroring it to the sheet."""

    task: PamTask
    sheet_sync_error: Optional[str] = None


class TaskLifecycleService:
    """State machine PENDING -> IN_PROGRESS -> DONE with an evidence approval gate."""

    def __init__(self, sheet_writer: Optional[GoogleSheetWriter] = None):
        self.sheet_writer = sheet_writer

    def _writer(self) -> Optional[GoogleSheetWriter]:
        return self.sheet_writer or GoogleSheetWriter.from_settings()

    async def _mirror(self, action: str, task_id: UUID, write) -> Optional[str]:
        """Run a sheet write after the database change; failures are reported, never raised."""
        try:
            await write
        except SheetWriteError as exc:
            logger.warning("Sheet %s for task %s failed: %s", action, task_id, exc)
            return str(exc)
        return None

    @staticmethod
    def can_manage(user: User) -> bool:
        return has_permission(user, Permission.PAM_TASK_MANAGE)

    @staticmethod
    def is_assignee(user: User, task: PamTask) -> bool:
        if task.assignee_id is not None:
            return task.assignee_id == user.id
        return bool(task.assignee_email) and task.assignee_email.lower() == user.email.lower()

    async def get_task(self, db: AsyncSession, user: User, task_id: UUID) -> PamTask:
        """Load a task of the user's organization; other tenants' tasks do not exist."""
        task = await pam_task_crud.get_for_organization(db, id=task_id, organization_id=user.organization_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def get_actionable_task(self, db: AsyncSession, user: User, task_id: UUID) -> PamTask:
        task = await self.get_task(db, user, task_id)
        if not (self.is_assignee(user, task) or self.can_manage(user)):
            raise ForbiddenError("Task is not assigned to you")
        return task

    async def list_week_tasks(self, db: AsyncSession, user: User, week_year: int, week_number: int) -> List[PamTask]:
        return await pam_task_crud.list_for_week(
            db,
            organization_id=user.organization_id,
            week_year=week_year,
            week_number=week_number,
        )

    async def list_my_tasks(self, db: AsyncSession, user: User, week_year: int, week_number: int) -> List[PamTask]:
        tasks = await self.list_week_tasks(db, user, week_year, week_number)
        return [task for task in tasks if self.is_assignee(user, task)]

    async def acknowledge(self, db: AsyncSession, user: User, task_id: UUID) -> PamTask:
        """PENDING -> IN_PROGRESS. Any other state is left untouched."""
        task = await self.get_actionable_task(db, user, task_id)
        if task.status != TaskStatus.PENDING:
            return task
        task.status = TaskStatus.IN_PROGRESS
        await db.commit()
        await db.refresh(task)
        logger.info("Task %s acknowledged by %s", task.id, user.id)
        return task

    async def upload_evidence(
        self,
        db: AsyncSession,
        user: User,
        task_id: UUID,
        *,
        file_ref: str,
        note: Optional[str] = None,
    ) -> PamTaskEvidence:
        """Record evidence; an upload on a PENDING task acknowledges it implicitly."""
        task = await self.get_actionable_task(db, user, task_id)
        if task.status == TaskStatus.DONE:
            raise InvalidTransitionError("Task is already completed")

        evidence = PamTaskEvidence(task_id=task.id, uploader_id=user.id, file_ref=file_ref, note=note)
        db.add(evidence)
        if task.status == TaskStatus.PENDING:
            task.status = TaskStatus.IN_PROGRESS
        task.has_evidence = True
        await db.commit()
        await db.refresh(evidence)
        logger.info("Evidence %s uploaded for task %s", evidence.id, task.id)
        return evidence

    async def list_evidence(self, db: AsyncSession, user: User, task_id: UUID) -> List[PamTaskEvidence]:
        task = await self.get_task(db, user, task_id)
        if not (
            self.is_assignee(user, task)
            or self.can_manage(user)
            or has_permission(user, Permission.PAM_EVIDENCE_REVIEW)
        ):
            raise ForbiddenError("Task is not assigned to you")
        return await evidence_crud.list_for_task(db, task_id=task.id)

    @staticmethod
    def _ensure_reviewable(task: PamTask) -> None:
        if task.status != TaskStatus.IN_PROGRESS or not task.has_evidence:
            raise InvalidTransitionError("Task must be in progress with evidence to be reviewed")

    async def approve(self, db: AsyncSession, user: User, task_id: UUID) -> PamTask:
        task = await self.get_task(db, user, task_id)
        self._ensure_reviewable(task)
        task.status = TaskStatus.DONE
        await db.commit()
        await db.refresh(task)
        logger.info("Task %s approved by %s", task.id, user.id)
        return task

    async def reject(self, db: AsyncSession, user: User, task_id: UUID, *, comment: Optional[str] = None) -> PamTask:
        """Send the task back for new evidence; it stays IN_PROGRESS."""
        task = await self.get_task(db, user, task_id)
        self._ensure_reviewable(task)
        task.has_evidence = False
        await notification_service.notify_evidence_rejected(db, task, comment=comment, commit=False)
        await db.commit()
        await db.refresh(task)
        logger.info("Evidence of task %s rejected by %s", task.id, user.id)
        return task

    async def _resolve_manual_assignee(self, db: AsyncSession, organization_id: UUID, email: str) -> User:
        normalized = normalize_identity(email, settings.PAM_ALLOWED_EMAIL_DOMAINS)
        if normalized is None:
            raise ValidationError(f"Invalid assignee email '{email}'")
        accounts = await user_crud.get_active_by_emails(db, organization_id=organization_id, emails=[normalized])
        if not accounts:
            raise ValidationError(f"No active user with email '{normalized}' in this organization")
        return accounts[0]

    async def _get_or_create_plan(
        self,
        db: AsyncSession,
        user: User,
        week_year: int,
        week_number: int,
    ) -> WeekPlan:
        plan = await week_plan_crud.get_by_period(
            db,
            organization_id=user.organization_id,
            week_year=week_year,
            week_number=week_number,
        )
        if plan is None:
            plan = WeekPlan(
                organization_id=user.organization_id,
                week_year=week_year,
                week_number=week_number,
                importer_id=user.id,
                source_label=MANUAL_SOURCE_LABEL,
            )
            db.add(plan)
            await db.flush()
        return plan

    async def create_task(self, db: AsyncSession, user: User, payload: PamTaskCreate) -> ManualTaskChange:
        assignee = await self._resolve_manual_assignee(db, user.organization_id, payload.assignee_email)
        plan = await self._get_or_create_plan(db, user, payload.week_year, payload.week_number)

        task = PamTask(
            week_plan_id=plan.id,
            organization_id=user.organization_id,
            week_year=payload.week_year,
            week_number=payload.week_number,
            date=payload.date,
            end_date=payload.end_date,
            assignee_id=assignee.id,
            assignee_name=payload.assignee_name or assignee.full_name or assignee.email.lower(),
            assignee_email=assignee.email.lower(),
            description=payload.description.strip(),
            location=payload.location,
            contractor=payload.contractor,
            risk_type=payload.risk_type,
            status=TaskStatus.PENDING,
            has_evidence=False,
        )
        db.add(task)
        await db.flush()
        await notification_service.notify_task_assigned(db, task, commit=False)
        await db.commit()
        await db.refresh(task)
        logger.info("Task %s created manually by %s", task.id, user.id)
        writer = self._writer()
        if writer is None:
            return ManualTaskChange(task)
        return ManualTaskChange(task, await self._mirror("create", task.id, writer.append_task(task)))

    async def update_task(
        self, db: AsyncSession, user: User, task_id: UUID, payload: PamTaskUpdate
    ) -> ManualTaskChange:
        task = await self.get_task(db, user, task_id)
        if task.status == TaskStatus.DONE:
            raise ConflictError("Completed tasks cannot be edited")

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("description") is None:
            changes.pop("description", None)
        email = changes.pop("assignee_email", None)
        if email is not None and email.strip().lower() != (task.assignee_email or ""):
            assignee = await self._resolve_manual_assignee(db, user.organization_id, email)
            task.assignee_id = assignee.id
            task.assignee_email = assignee.email.lower()
            task.assignee_name = changes.pop("assignee_name", None) or assignee.full_name or task.assignee_email

        new_date = changes.get("date", task.date)
        new_end = changes.get("end_date", task.end_date)
        if new_date is None:
            raise ValidationError("Task date cannot be cleared")
        if new_end is not None and new_end < new_date:
            raise ValidationError("end_date must not precede date")

        task = await pam_task_crud.update(db, db_obj=task, obj_in=changes)
        writer = self._writer()
        if writer is None:
            return ManualTaskChange(task)
        return ManualTaskChange(task, await self._mirror("update", task.id, writer.update_task(task)))

    async def delete_task(self, db: AsyncSession, user: User, task_id: UUID) -> Optional[str]:
        """Delete a task and its dependents; returns the sheet write error, if any."""
        task = await self.get_task(db, user, task_id)
        if task.status == TaskStatus.DONE:
            raise ConflictError("Completed tasks cannot be deleted")
        await pam_task_crud.remove_with_dependents(db, id=task.id)
        db.expunge(task)
        logger.info("Task %s deleted by %s", task_id, user.id)
        writer = self._writer()
        if writer is None:
            return None
        return await self._mirror("delete", task_id, writer.delete_task(task_id))


task_lifecycle_service = TaskLifecycleService()
