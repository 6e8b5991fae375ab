"""Tests for week board metrics."""
import uuid
from datetime import date, datetime, timezone

import pytest

from app.models.pam import PamTask, TaskStatus
from app.services.pam_metrics_service import pam_metrics_service
from app.services.pam_row_validator import PamTaskImportRow
from app.services.period_reconciler import period_reconciler

TODAY = date(2025, 3, 6)
WALTER = uuid.uuid4()
PLAN = uuid.uuid4()
ORG = uuid.uuid4()
CREATED = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _task(day, status, name="Walter Worker", assignee_id=WALTER, location=None):
    return PamTask(
        id=uuid.uuid4(),
        date=date(2025, 3, day),
        status=status,
        assignee_id=assignee_id,
        assignee_name=name,
        assignee_email="worker@example.com",
        location=location,
        description="Task",
        week_year=2025,
        week_number=10,
        has_evidence=False,
        week_plan_id=PLAN,
        organization_id=ORG,
        created_at=CREATED,
        updated_at=CREATED,
    )


def test_empty_week_board():
    board = pam_metrics_service.build_board([], 2025, 10, TODAY)

    assert board.total_tasks == 0
    assert board.compliance_percentage == 0.0
    assert board.by_assignee == []
    assert board.label == "W10 · 2025"


def test_board_counts_effective_statuses():
    tasks = [
        _task(3, TaskStatus.DONE, location="Tower A"),
        _task(4, TaskStatus.IN_PROGRESS, location="Tower A"),
        _task(7, TaskStatus.PENDING, location="Tower B"),
        _task(7, TaskStatus.DONE, name="Ann Zed", assignee_id=None),
    ]

    board = pam_metrics_service.build_board(tasks, 2025, 10, TODAY)

    assert board.total_tasks == 4
    assert board.completed_tasks == 2
    assert board.overdue_tasks == 1
    assert board.pending_tasks == 1
    assert board.in_progress_tasks == 0
    assert board.compliance_percentage == 50.0
    assert [o.effective_status for o in board.overdue] == [TaskStatus.OVERDUE]
    assert board.overdue[0].is_overdue is True

    names = [a.assignee_name for a in board.by_assignee]
    assert names == ["Ann Zed", "Walter Worker"]
    walter = board.by_assignee[1]
    assert (walter.total, walter.done, walter.overdue, walter.pending) == (3, 1, 1, 1)
    assert walter.completion_rate == 33

    locations = {g.name: g for g in board.by_location}
    assert locations["Tower A"].total == 2
    assert locations["Tower A"].compliance == 50.0
    assert locations["Unspecified"].completed == 1


@pytest.mark.asyncio
async def test_week_board_reads_organization_tasks(db_session, organization, other_organization):
    rows = [
        PamTaskImportRow(
            row=2, week_year=2025, week_number=10, date=date(2025, 3, 10),
            assignee_email="worker@example.com", description="Harness check", location="Tower A",
        )
    ]
    for org in (organization, other_organization):
        await period_reconciler.reconcile_period(
            db_session, organization_id=org.id, week_year=2025, week_number=10, rows=rows
        )

    board = await pam_metrics_service.week_board(db_session, organization.id, 2025, 10, today=TODAY)

    assert board.total_tasks == 1
    assert board.pending_tasks == 1
    assert board.by_location[0].name == "Tower A"
