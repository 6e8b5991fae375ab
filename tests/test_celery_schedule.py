"""Tests for the scheduled sync wiring."""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.crud.pam import pam_task as pam_task_crud
from app.integrations.google_sheet import StaticDocumentSource
from app.models.pam import PamTask
from app.services.pam_sync_service import PamSyncService
from app.tasks.celery_app import celery_app
from app.tasks.pam_sync import _sync_organizations, sync_all_organizations, sync_organization
from conftest import make_sheet


def test_beat_runs_the_scheduled_sync():
    entry = celery_app.conf.beat_schedule["pam-scheduled-sync"]

    assert entry["task"] == sync_all_organizations.name
    assert entry["schedule"] == float(settings.PAM_SCHEDULED_SYNC_INTERVAL_SECONDS)


def test_sync_tasks_are_registered():
    assert sync_all_organizations.name == "app.tasks.pam_sync.sync_all_organizations"
    assert sync_organization.name in celery_app.tasks


@pytest.mark.asyncio
async def test_scheduled_sync_covers_organizations_with_a_sheet(db_session, organization, other_organization, monkeypatch):
    organization.sheet_url = "https://docs.google.com/spreadsheets/d/abc/edit"
    await db_session.commit()
    document = make_sheet("10,2025,2025-03-03,worker@example.com,Check harnesses,Tower A,Height")
    monkeypatch.setattr(settings, "PAM_SHEET_CSV_URL", None)
    monkeypatch.setattr(PamSyncService, "_default_source", lambda self, org: StaticDocumentSource(document))

    results = await _sync_organizations()

    assert results == [
        {"organization_id": str(organization.id), "status": "IMPORTED", "tasks_created": 1, "errors": []}
    ]
    count = (await db_session.execute(select(func.count()).select_from(PamTask))).scalar_one()
    assert count == 1


async def _two_organizations_with_sheets(db_session, organization, other_organization, monkeypatch):
    organization.sheet_url = "https://docs.google.com/spreadsheets/d/abc/edit"
    other_organization.sheet_url = "https://docs.google.com/spreadsheets/d/xyz/edit"
    await db_session.commit()
    document = make_sheet("10,2025,2025-03-03,worker@example.com,Check harnesses,Tower A,Height")
    monkeypatch.setattr(settings, "PAM_SHEET_CSV_URL", None)
    monkeypatch.setattr(PamSyncService, "_default_source", lambda self, org: StaticDocumentSource(document))


@pytest.mark.asyncio
async def test_scheduled_sync_continues_after_a_database_failure(db_session, organization, other_organization, monkeypatch):
    await _two_organizations_with_sheets(db_session, organization, other_organization, monkeypatch)
    original = pam_task_crud.delete_by_week_plan
    calls = []

    async def flaky_delete(db, *, week_plan_id):
        calls.append(week_plan_id)
        if len(calls) == 1:
            raise OperationalError("DELETE FROM pam_tasks", {}, Exception("disk I/O error"))
        return await original(db, week_plan_id=week_plan_id)

    monkeypatch.setattr(pam_task_crud, "delete_by_week_plan", flaky_delete)

    results = await _sync_organizations()

    assert [entry["organization_id"] for entry in results] == [str(organization.id), str(other_organization.id)]
    assert [entry["status"] for entry in results] == ["FAILED", "IMPORTED"]
    assert "disk I/O error" in results[0]["errors"][0]
    assert results[1]["tasks_created"] == 1
    count = (
        await db_session.execute(
            select(func.count()).select_from(PamTask).where(PamTask.organization_id == other_organization.id)
        )
    ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_scheduled_sync_records_unexpected_database_errors(db_session, organization, other_organization, monkeypatch):
    await _two_organizations_with_sheets(db_session, organization, other_organization, monkeypatch)
    original = PamSyncService.sync_period

    async def failing_for_first(self, db, org, **kwargs):
        if org.id == organization.id:
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))
        return await original(self, db, org, **kwargs)

    monkeypatch.setattr(PamSyncService, "sync_period", failing_for_first)

    results = await _sync_organizations()

    assert results[0]["organization_id"] == str(organization.id)
    assert results[0]["status"] == "FAILED"
    assert results[0]["tasks_created"] == 0
    assert "connection reset" in results[0]["errors"][0]
    assert results[1] == {
        "organization_id": str(other_organization.id),
        "status": "IMPORTED",
        "tasks_created": 1,
        "errors": [],
    }


@pytest.mark.asyncio
async def test_single_organization_sync_skips_unknown_ids(db_session):
    assert await _sync_organizations("00000000-0000-0000-0000-000000000000") == []
