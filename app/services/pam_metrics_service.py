"""Board metrics for a week of tasks."""
from collections import OrderedDict
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.pam import pam_task as pam_task_crud
from app.models.pam import PamTask, TaskStatus
from app.schemas.pam import AssigneeSummary, GroupSummary, WeekBoardResponse
from app.services.task_lifecycle_service import effective_status, to_response
from app.utils.weeks import local_today, week_label

UNSPECIFIED_LOCATION = "Unspecified"


def _percentage(part: int, total: int) -> float:
    return round(part * 100.0 / total, 1) if total else 0.0


class PamMetricsService:
    """Completion, overdue and compliance counters grouped by assignee and location."""

    @staticmethod
    def build_board(
        tasks: Sequence[PamTask],
        week_year: int,
        week_number: int,
        today: Optional[date] = None,
    ) -> WeekBoardResponse:
        today = today or local_today()
        counts = {status: 0 for status in TaskStatus}
        assignees: "OrderedDict[Tuple[Optional[UUID], str], Dict[TaskStatus, int]]" = OrderedDict()
        locations: "OrderedDict[str, List[int]]" = OrderedDict()
        overdue: List[PamTask] = []

        for task in tasks:
            status = effective_status(task, today)
            counts[status] += 1
            if status == TaskStatus.OVERDUE:
                overdue.append(task)

            key = (task.assignee_id, task.assignee_name or task.assignee_email or "")
            per_assignee = assignees.setdefault(key, {s: 0 for s in TaskStatus})
            per_assignee[status] += 1

            location = locations.setdefault(task.location or UNSPECIFIED_LOCATION, [0, 0])
            location[0] += 1
            if status == TaskStatus.DONE:
                location[1] += 1

        total = len(tasks)
        by_assignee = []
        for (assignee_id, name), per in assignees.items():
            assignee_total = sum(per.values())
            by_assignee.append(
                AssigneeSummary(
                    assignee_id=assignee_id,
                    assignee_name=name,
                    total=assignee_total,
                    pending=per[TaskStatus.PENDING],
                    in_progress=per[TaskStatus.IN_PROGRESS],
                    done=per[TaskStatus.DONE],
                    overdue=per[TaskStatus.OVERDUE],
                    completion_rate=round(per[TaskStatus.DONE] * 100 / assignee_total) if assignee_total else 0,
                )
            )
        by_assignee.sort(key=lambda item: item.assignee_name.lower())

        by_location = [
            GroupSummary(name=name, total=loc_total, completed=done, compliance=_percentage(done, loc_total))
            for name, (loc_total, done) in locations.items()
        ]

        return WeekBoardResponse(
            week_year=week_year,
            week_number=week_number,
            label=week_label(week_year, week_number),
            total_tasks=total,
            pending_tasks=counts[TaskStatus.PENDING],
            in_progress_tasks=counts[TaskStatus.IN_PROGRESS],
            completed_tasks=counts[TaskStatus.DONE],
            overdue_tasks=counts[TaskStatus.OVERDUE],
            compliance_percentage=_percentage(counts[TaskStatus.DONE], total),
            by_assignee=by_assignee,
            by_location=by_location,
            overdue=[to_response(task, today) for task in overdue],
        )

    async def week_board(
        self,
        db: AsyncSession,
        organization_id: UUID,
        week_year: int,
        week_number: int,
        today: Optional[date] = None,
    ) -> WeekBoardResponse:
        tasks = await pam_task_crud.list_for_week(
            db,
            organization_id=organization_id,
            week_year=week_year,
            week_number=week_number,
        )
        return self.build_board(tasks, week_year, week_number, today)


pam_metrics_service = PamMetricsService()
