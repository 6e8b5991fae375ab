"""Tests for the sheet sync orchestration."""
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select

from app.core.exceptions import DocumentFetchError
from app.integrations.google_sheet import StaticDocumentSource
from app.models.pam import PamTask, WeekPlan
from app.models.sync_state import PamSyncState
from app.services.pam_sync_service import (
    InMemorySyncStateStore,
    Manual,
    OnExternalEvent,
    PamSyncService,
    Scheduled,
    SyncStatus,
    fingerprint,
)
from conftest import make_sheet

T0 = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)

ROW_A = "10,2025,2025-03-03,worker@example.com,Check harnesses,Tower A,Height"
ROW_B = "10,2025,2025-03-04,wendy@example.com,Inspect scaffolding,Tower B,Height"
ROW_C = "11,2025,2025-03-11,worker@example.com,Fire drill,Plant 1,Fire"
ROW_BAD = "abc,2025,2025-03-05,worker@example.com,Broken row,Tower A,Height"


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FailingSource:
    async def fetch(self):
        raise DocumentFetchError("Error fetching task sheet: 500 Internal Server Error")


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def service(clock):
    return PamSyncService(clock=clock, policy="partial", min_interval_seconds=300)


@pytest.fixture
def store():
    return InMemorySyncStateStore()


async def _count(db_session, model):
    return (await db_session.execute(select(func.count()).select_from(model))).scalar_one()


def _runs(status):
    return REGISTRY.get_sample_value("pam_sync_runs_total", {"status": status}) or 0.0


def test_fingerprint_matches_known_values():
    assert fingerprint("") == "0"
    assert fingerprint("a") == "2p"
    assert fingerprint("hello") == "1n1e4y"
    assert fingerprint("polygenelubricants") == "-zik0zk"


def test_fingerprint_changes_with_content():
    assert fingerprint(make_sheet(ROW_A)) != fingerprint(make_sheet(ROW_A, ROW_B))


@pytest.mark.asyncio
async def test_first_sync_imports_every_period(db_session, organization, worker_user, service, store):
    result = await service.sync_period(
        db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_A, ROW_B, ROW_C))
    )

    assert result.status == SyncStatus.IMPORTED
    assert result.success
    assert result.tasks_created == 3
    assert result.errors == []
    assert (result.imported_week_year, result.imported_week_number) == (2025, 10)
    assert [(p.week_number, p.tasks_created) for p in result.imported_periods] == [(10, 2), (11, 1)]
    assert await _count(db_session, WeekPlan) == 2

    state = await store.get(str(organization.id))
    assert state.last_fingerprint == fingerprint(make_sheet(ROW_A, ROW_B, ROW_C))
    assert state.last_attempt_at == T0
    assert state.last_success_at == T0


@pytest.mark.asyncio
async def test_sync_within_interval_is_throttled(db_session, organization, service, store, clock):
    await service.sync_period(db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_A)))
    clock.advance(60)

    result = await service.sync_period(
        db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_A, ROW_B))
    )

    assert result.status == SyncStatus.THROTTLED
    assert result.success
    assert await _count(db_session, PamTask) == 1


@pytest.mark.asyncio
async def test_unchanged_document_is_skipped(db_session, organization, service, store, clock):
    source = StaticDocumentSource(make_sheet(ROW_A))
    await service.sync_period(db_session, organization, state_store=store, source=source)
    clock.advance(301)

    result = await service.sync_period(db_session, organization, state_store=store, source=source)

    assert result.status == SyncStatus.UNCHANGED
    assert result.tasks_created == 0
    state = await store.get(str(organization.id))
    assert state.last_attempt_at == T0 + timedelta(seconds=301)
    assert state.last_success_at == T0


@pytest.mark.asyncio
async def test_changed_document_after_interval_is_imported(db_session, organization, service, store, clock):
    await service.sync_period(db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_A)))
    clock.advance(301)

    result = await service.sync_period(
        db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_A, ROW_B))
    )

    assert result.status == SyncStatus.IMPORTED
    assert result.tasks_created == 2
    assert await _count(db_session, PamTask) == 2


@pytest.mark.asyncio
async def test_forced_sync_bypasses_throttle_and_fingerprint(db_session, organization, service, store):
    source = StaticDocumentSource(make_sheet(ROW_A, ROW_B))
    first = await service.sync_period(db_session, organization, state_store=store, source=source, force=True)
    second = await service.sync_period(
        db_session, organization, state_store=store, source=source, trigger=Manual(force=True)
    )

    assert first.status == SyncStatus.IMPORTED
    assert second.status == SyncStatus.IMPORTED
    assert await _count(db_session, PamTask) == 2
    assert await _count(db_session, WeekPlan) == 1


@pytest.mark.asyncio
async def test_only_manual_triggers_can_force(db_session, organization, service, store, clock):
    source = StaticDocumentSource(make_sheet(ROW_A))
    await service.sync_period(db_session, organization, state_store=store, source=source)

    throttled = await service.sync_period(
        db_session, organization, state_store=store, source=source, trigger=Scheduled(interval_seconds=900), force=True
    )
    clock.advance(301)
    unchanged = await service.sync_period(
        db_session, organization, state_store=store, source=source, trigger=OnExternalEvent("focus"), force=True
    )

    assert throttled.status == SyncStatus.THROTTLED
    assert unchanged.status == SyncStatus.UNCHANGED


@pytest.mark.asyncio
async def test_concurrent_sync_for_same_organization_is_ignored(db_session, organization, service, store):
    nested = []

    class ReentrantSource:
        async def fetch(self):
            nested.append(
                await service.sync_period(
                    db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_B))
                )
            )
            return make_sheet(ROW_A)

    result = await service.sync_period(db_session, organization, state_store=store, source=ReentrantSource())

    assert nested[0].status == SyncStatus.IN_PROGRESS
    assert nested[0].success
    assert result.status == SyncStatus.IMPORTED
    assert not service.is_running(organization.id)


@pytest.mark.asyncio
async def test_partial_policy_imports_valid_rows_and_reports_errors(db_session, organization, service, store):
    result = await service.sync_period(
        db_session,
        organization,
        state_store=store,
        source=StaticDocumentSource(make_sheet(ROW_A, ROW_B, ROW_C, ROW_BAD)),
    )

    assert result.status == SyncStatus.IMPORTED
    assert result.tasks_created == 3
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Row 5:")
    assert result.row_errors[0].row == 5


@pytest.mark.asyncio
async def test_strict_policy_rejects_document_with_errors(db_session, organization, clock, store):
    service = PamSyncService(clock=clock, policy="strict", min_interval_seconds=300)

    result = await service.sync_period(
        db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_A, ROW_BAD))
    )

    assert result.status == SyncStatus.FAILED
    assert not result.success
    assert result.errors[0].startswith("Row 3:")
    assert await _count(db_session, WeekPlan) == 0
    state = await store.get(str(organization.id))
    assert state.last_fingerprint is None
    assert state.last_attempt_at == T0


@pytest.mark.asyncio
async def test_document_without_valid_rows_fails(db_session, organization, service, store):
    result = await service.sync_period(
        db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_BAD))
    )

    assert result.status == SyncStatus.FAILED
    assert result.errors[-1] == "No valid tasks to import"
    assert len(result.errors) == 2


@pytest.mark.asyncio
async def test_header_only_document_fails(db_session, organization, service, store):
    result = await service.sync_period(
        db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet())
    )

    assert result.status == SyncStatus.FAILED
    assert result.errors


@pytest.mark.asyncio
async def test_week_filter_keeps_one_period(db_session, organization, service, store):
    result = await service.sync_period(
        db_session,
        organization,
        state_store=store,
        source=StaticDocumentSource(make_sheet(ROW_A, ROW_B, ROW_C)),
        week=(2025, 11),
    )

    assert result.status == SyncStatus.IMPORTED
    assert result.tasks_created == 1
    assert (result.imported_week_year, result.imported_week_number) == (2025, 11)
    assert await _count(db_session, WeekPlan) == 1


@pytest.mark.asyncio
async def test_week_filter_without_rows_reports_no_match(db_session, organization, service, store):
    result = await service.sync_period(
        db_session,
        organization,
        state_store=store,
        source=StaticDocumentSource(make_sheet(ROW_A)),
        week=(2025, 20),
    )

    assert result.status == SyncStatus.NO_MATCHING_ROWS
    assert result.success
    assert await _count(db_session, WeekPlan) == 0


@pytest.mark.asyncio
async def test_fetch_failure_does_not_record_an_attempt(db_session, organization, service, store):
    result = await service.sync_period(db_session, organization, state_store=store, source=FailingSource())

    assert result.status == SyncStatus.FAILED
    assert "500" in result.errors[0]
    assert await store.get(str(organization.id)) is None


@pytest.mark.asyncio
async def test_missing_sheet_configuration_fails(db_session, organization, service, store, monkeypatch):
    monkeypatch.setattr("app.services.pam_sync_service.settings.PAM_SHEET_CSV_URL", None)

    result = await service.sync_period(db_session, organization, state_store=store)

    assert result.status == SyncStatus.FAILED
    assert result.errors == ["No task sheet configured"]


@pytest.mark.asyncio
async def test_import_document_is_always_forced(db_session, organization, admin_user, service):
    document = make_sheet(ROW_A, ROW_B)

    first = await service.import_document(db_session, organization, document, importer_id=admin_user.id)
    second = await service.import_document(db_session, organization, document, importer_id=admin_user.id)

    assert first.status == SyncStatus.IMPORTED
    assert second.status == SyncStatus.IMPORTED
    plan = (await db_session.execute(select(WeekPlan))).scalar_one()
    assert plan.source_label == "Manual upload"
    assert plan.importer_id == admin_user.id
    assert await _count(db_session, PamTask) == 2


@pytest.mark.asyncio
async def test_database_state_store_is_the_default(db_session, organization, service):
    document = make_sheet(ROW_A)

    result = await service.sync_period(db_session, organization, source=StaticDocumentSource(document))

    assert result.status == SyncStatus.IMPORTED
    row = await db_session.get(PamSyncState, organization.id)
    assert row.last_fingerprint == fingerprint(document)
    assert row.last_attempt_at is not None

    again = await service.sync_period(db_session, organization, source=StaticDocumentSource(document))
    assert again.status == SyncStatus.THROTTLED


@pytest.mark.asyncio
async def test_sync_outcomes_are_counted(db_session, organization, service, store):
    imported_before = _runs("IMPORTED")
    failed_before = _runs("FAILED")
    tasks_before = REGISTRY.get_sample_value("pam_tasks_imported_total") or 0.0

    await service.sync_period(
        db_session, organization, state_store=store, source=StaticDocumentSource(make_sheet(ROW_A, ROW_B))
    )
    await service.sync_period(db_session, organization, state_store=store, source=FailingSource(), force=True)

    assert _runs("IMPORTED") == imported_before + 1
    assert _runs("FAILED") == failed_before + 1
    assert REGISTRY.get_sample_value("pam_tasks_imported_total") == tasks_before + 2


ROW_A2 = "10,2025,2025-03-05,worker@example.com,Toolbox talk,Gate 1,General"
ROW_BAD_DATE = "10,2025,not-a-date,wendy@example.com,Lockout check,Tower B,Electrical"


@pytest.mark.asyncio
async def test_invalid_date_row_is_reported_and_the_rest_imported(db_session, organization, service, store):
    result = await service.sync_period(
        db_session,
        organization,
        state_store=store,
        source=StaticDocumentSource(make_sheet(ROW_A, ROW_B, ROW_A2, ROW_BAD_DATE)),
    )

    assert result.status == SyncStatus.IMPORTED
    assert result.success
    assert result.tasks_created == 3
    assert result.errors == ["Row 5: invalid date 'not-a-date'"]
    assert [(p.week_year, p.week_number, p.tasks_created) for p in result.imported_periods] == [(2025, 10, 3)]
    assert await _count(db_session, PamTask) == 3


async def _task_snapshot(db_session):
    tasks = (await db_session.execute(select(PamTask))).scalars().all()
    return sorted(
        (task.description, task.date, task.assignee_email, task.assignee_id, task.week_plan_id) for task in tasks
    )


@pytest.mark.asyncio
async def test_forced_reimport_reproduces_the_same_tasks(db_session, organization, worker_user, second_worker, service, store):
    source = StaticDocumentSource(make_sheet(ROW_A, ROW_B, ROW_A2))

    await service.sync_period(db_session, organization, state_store=store, source=source, force=True)
    first = await _task_snapshot(db_session)
    result = await service.sync_period(db_session, organization, state_store=store, source=source, force=True)
    second = await _task_snapshot(db_session)

    assert result.status == SyncStatus.IMPORTED
    assert result.tasks_created == 3
    assert len(first) == 3
    assert second == first
    assert {entry[3] for entry in first} == {worker_user.id, second_worker.id}
    assert await _count(db_session, WeekPlan) == 1
