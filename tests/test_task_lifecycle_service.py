"""Tests for the task status lifecycle and evidence approval workflow."""
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from app.config import settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SheetWriteError,
    ValidationError,
)
from app.crud.pam import pam_task, task_evidence
from app.models.notification import Notification, NotificationType
from app.models.pam import PamTask, TaskStatus
from app.models.user import User
from app.schemas.pam import PamTaskCreate, PamTaskUpdate
from app.services.pam_row_validator import PamTaskImportRow
from app.services.period_reconciler import period_reconciler
from app.services.task_lifecycle_service import (
    TaskLifecycleService,
    effective_status,
    is_overdue,
    task_lifecycle_service,
)

TODAY = date(2025, 3, 12)


async def _import_tasks(db_session, organization, *emails):
    rows = [
        PamTaskImportRow(
            row=i + 2,
            week_year=2025,
            week_number=11,
            date=date(2099, 3, 10),
            assignee_email=email,
            description=f"Task for {email}",
        )
        for i, email in enumerate(emails)
    ]
    result = await period_reconciler.reconcile_period(
        db_session, organization_id=organization.id, week_year=2025, week_number=11, rows=rows
    )
    tasks = await pam_task.list_by_week_plan(db_session, week_plan_id=result.week_plan_id)
    return {task.assignee_email: task for task in tasks}


@pytest.fixture
def service():
    return task_lifecycle_service


@pytest.mark.asyncio
async def test_acknowledge_moves_pending_to_in_progress(db_session, organization, worker_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]

    updated = await service.acknowledge(db_session, worker_user, task.id)
    assert updated.status == TaskStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_acknowledge_is_a_noop_outside_pending(db_session, organization, worker_user, admin_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/1.jpg")
    await service.approve(db_session, admin_user, task.id)
    before = (await db_session.execute(select(Notification))).scalars().all()

    again = await service.acknowledge(db_session, worker_user, task.id)

    assert again.status == TaskStatus.DONE
    after = (await db_session.execute(select(Notification))).scalars().all()
    assert len(after) == len(before)


@pytest.mark.asyncio
async def test_evidence_upload_on_pending_task_acknowledges_it(db_session, organization, worker_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]

    evidence = await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/1.jpg", note="done")

    assert evidence.uploader_id == worker_user.id
    await db_session.refresh(task)
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.has_evidence is True


@pytest.mark.asyncio
async def test_evidence_history_is_kept(db_session, organization, worker_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/1.jpg")
    await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/2.jpg")

    history = await service.list_evidence(db_session, worker_user, task.id)
    assert sorted(e.file_ref for e in history) == ["e/1.jpg", "e/2.jpg"]


@pytest.mark.asyncio
async def test_approve_requires_evidence(db_session, organization, worker_user, admin_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    await service.acknowledge(db_session, worker_user, task.id)

    with pytest.raises(InvalidTransitionError):
        await service.approve(db_session, admin_user, task.id)


@pytest.mark.asyncio
async def test_approve_requires_in_progress(db_session, organization, admin_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]

    with pytest.raises(InvalidTransitionError):
        await service.approve(db_session, admin_user, task.id)


@pytest.mark.asyncio
async def test_approve_completes_task(db_session, organization, worker_user, supervisor_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/1.jpg")

    done = await service.approve(db_session, supervisor_user, task.id)

    assert done.status == TaskStatus.DONE
    with pytest.raises(InvalidTransitionError):
        await service.approve(db_session, supervisor_user, task.id)
    with pytest.raises(InvalidTransitionError):
        await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/late.jpg")


@pytest.mark.asyncio
async def test_reject_without_evidence_is_invalid(db_session, organization, worker_user, admin_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    await service.acknowledge(db_session, worker_user, task.id)

    with pytest.raises(InvalidTransitionError):
        await service.reject(db_session, admin_user, task.id, comment="no photo")


@pytest.mark.asyncio
async def test_reject_clears_evidence_and_notifies_assignee(db_session, organization, worker_user, admin_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/1.jpg")

    rejected = await service.reject(db_session, admin_user, task.id, comment="Photo is blurry")

    assert rejected.status == TaskStatus.IN_PROGRESS
    assert rejected.has_evidence is False
    result = await db_session.execute(
        select(Notification).where(Notification.type == NotificationType.EVIDENCE_REJECTED)
    )
    notification = result.scalar_one()
    assert notification.user_id == worker_user.id
    assert notification.task_id == task.id
    assert "Photo is blurry" in notification.message
    assert len(await task_evidence.list_for_task(db_session, task_id=task.id)) == 1


@pytest.mark.asyncio
async def test_reject_of_unresolved_assignee_sends_nothing(db_session, organization, admin_user, service):
    task = (await _import_tasks(db_session, organization, "ghost@example.com"))["ghost@example.com"]
    await service.upload_evidence(db_session, admin_user, task.id, file_ref="e/1.jpg")

    await service.reject(db_session, admin_user, task.id)

    result = await db_session.execute(
        select(Notification).where(Notification.type == NotificationType.EVIDENCE_REJECTED)
    )
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_worker_cannot_act_on_someone_elses_task(db_session, organization, worker_user, second_worker, service):
    tasks = await _import_tasks(db_session, organization, "worker@example.com", "wendy@example.com")

    with pytest.raises(ForbiddenError):
        await service.acknowledge(db_session, worker_user, tasks["wendy@example.com"].id)
    with pytest.raises(ForbiddenError):
        await service.upload_evidence(db_session, worker_user, tasks["wendy@example.com"].id, file_ref="x")


@pytest.mark.asyncio
async def test_unresolved_task_matches_worker_by_email(db_session, organization, roles, service):
    tasks = await _import_tasks(db_session, organization, "latecomer@example.com")

    latecomer = User(organization_id=organization.id, email="latecomer@example.com", full_name="Late", is_active=True)
    latecomer.roles = [roles["worker"]]
    db_session.add(latecomer)
    await db_session.commit()

    task = await service.acknowledge(db_session, latecomer, tasks["latecomer@example.com"].id)
    assert task.status == TaskStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_tasks_of_other_organizations_are_not_found(db_session, organization, outsider_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]

    with pytest.raises(NotFoundError):
        await service.acknowledge(db_session, outsider_user, task.id)
    with pytest.raises(NotFoundError):
        await service.approve(db_session, outsider_user, task.id)


@pytest.mark.asyncio
async def test_done_tasks_cannot_be_edited_or_deleted(db_session, organization, worker_user, admin_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    await service.upload_evidence(db_session, worker_user, task.id, file_ref="e/1.jpg")
    await service.approve(db_session, admin_user, task.id)

    with pytest.raises(ConflictError):
        await service.update_task(db_session, admin_user, task.id, PamTaskUpdate(description="changed"))
    with pytest.raises(ConflictError):
        await service.delete_task(db_session, admin_user, task.id)


@pytest.mark.asyncio
async def test_create_task_requires_known_assignee(db_session, organization, admin_user, service):
    payload = PamTaskCreate(
        week_year=2025,
        week_number=12,
        date=date(2025, 3, 17),
        description="Scaffold inspection",
        assignee_email="ghost@example.com",
    )
    with pytest.raises(ValidationError):
        await service.create_task(db_session, admin_user, payload)

    payload.assignee_email = "worker@gmail.com"
    with pytest.raises(ValidationError):
        await service.create_task(db_session, admin_user, payload)


@pytest.mark.asyncio
async def test_create_task_assigns_and_notifies(db_session, organization, admin_user, worker_user, service):
    payload = PamTaskCreate(
        week_year=2025,
        week_number=12,
        date=date(2025, 3, 17),
        description=" Scaffold inspection ",
        assignee_email="Worker@Example.com",
        location="Tower B",
    )
    task = (await service.create_task(db_session, admin_user, payload)).task

    assert task.assignee_id == worker_user.id
    assert task.assignee_name == "Walter Worker"
    assert task.assignee_email == "worker@example.com"
    assert task.description == "Scaffold inspection"
    assert task.status == TaskStatus.PENDING
    notification = (await db_session.execute(select(Notification))).scalar_one()
    assert notification.task_id == task.id


@pytest.mark.asyncio
async def test_update_task_reassigns_and_validates_dates(db_session, organization, admin_user, worker_user, second_worker, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]

    change = await service.update_task(
        db_session, admin_user, task.id, PamTaskUpdate(assignee_email="wendy@example.com", location="Dock 3")
    )
    updated = change.task
    assert change.sheet_sync_error is None
    assert updated.assignee_id == second_worker.id
    assert updated.assignee_name == "Wendy Worker"
    assert updated.location == "Dock 3"

    with pytest.raises(ValidationError):
        await service.update_task(
            db_session, admin_user, task.id, PamTaskUpdate(end_date=task.date - timedelta(days=1))
        )


@pytest.mark.asyncio
async def test_delete_task(db_session, organization, admin_user, service):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]

    await service.delete_task(db_session, admin_user, task.id)

    assert (await db_session.execute(select(PamTask))).scalars().all() == []
    with pytest.raises(NotFoundError):
        await service.get_task(db_session, admin_user, task.id)


def test_overdue_is_derived_from_date_and_status():
    late = PamTask(date=TODAY - timedelta(days=1), status=TaskStatus.IN_PROGRESS)
    due_today = PamTask(date=TODAY, status=TaskStatus.PENDING)
    finished = PamTask(date=TODAY - timedelta(days=5), status=TaskStatus.DONE)

    assert effective_status(late, TODAY) == TaskStatus.OVERDUE
    assert is_overdue(late, TODAY)
    assert effective_status(due_today, TODAY) == TaskStatus.PENDING
    assert effective_status(finished, TODAY) == TaskStatus.DONE
    assert late.status == TaskStatus.IN_PROGRESS


class RecordingSheetWriter:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def _write(self, action, task_id):
        self.calls.append((action, task_id))
        if self.error is not None:
            raise SheetWriteError(self.error)

    async def append_task(self, task):
        await self._write("create", task.id)

    async def update_task(self, task):
        await self._write("update", task.id)

    async def delete_task(self, task_id):
        await self._write("delete", task_id)


@pytest.mark.asyncio
async def test_manual_create_is_mirrored_to_the_sheet(db_session, organization, admin_user, worker_user):
    writer = RecordingSheetWriter()
    service = TaskLifecycleService(sheet_writer=writer)
    payload = PamTaskCreate(
        week_year=2025,
        week_number=12,
        date=date(2025, 3, 17),
        description="Scaffold inspection",
        assignee_email="worker@example.com",
    )

    change = await service.create_task(db_session, admin_user, payload)

    assert change.sheet_sync_error is None
    assert writer.calls == [("create", change.task.id)]


@pytest.mark.asyncio
async def test_sheet_failure_does_not_undo_a_manual_update(db_session, organization, admin_user, worker_user):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    writer = RecordingSheetWriter(error=f"Task {task.id} not found in sheet")
    service = TaskLifecycleService(sheet_writer=writer)

    change = await service.update_task(db_session, admin_user, task.id, PamTaskUpdate(location="Dock 9"))

    assert change.sheet_sync_error == f"Task {task.id} not found in sheet"
    assert writer.calls == [("update", task.id)]
    stored = await pam_task.get(db_session, task.id)
    assert stored.location == "Dock 9"


@pytest.mark.asyncio
async def test_sheet_failure_does_not_undo_a_manual_delete(db_session, organization, admin_user):
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]
    task_id = task.id
    service = TaskLifecycleService(sheet_writer=RecordingSheetWriter(error="Error deleting row in sheet: 500"))

    sheet_sync_error = await service.delete_task(db_session, admin_user, task_id)

    assert sheet_sync_error == "Error deleting row in sheet: 500"
    assert (await db_session.execute(select(PamTask))).scalars().all() == []


@pytest.mark.asyncio
async def test_manual_changes_skip_the_sheet_when_write_back_is_not_configured(db_session, organization, admin_user, monkeypatch):
    monkeypatch.setattr(settings, "PAM_SHEET_ID", None)
    task = (await _import_tasks(db_session, organization, "worker@example.com"))["worker@example.com"]

    change = await TaskLifecycleService().update_task(db_session, admin_user, task.id, PamTaskUpdate(contractor="Acme"))

    assert change.sheet_sync_error is None
    assert change.task.contractor == "Acme"
