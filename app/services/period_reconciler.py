"""Replacement of a week plan's task set from validated sheet rows."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceFailure
from app.crud.pam import pam_task as pam_task_crud, week_plan as week_plan_crud
from app.models.pam import PamTask, TaskStatus, WeekPlan
from app.services.identity_resolver import IdentityResolution, identity_resolver
from app.services.notification_service import notification_service
from app.services.pam_row_validator import PamTaskImportRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciledPeriod:
    week_plan_id: UUID
    week_year: int
    week_number: int
    tasks_created: int
    tasks_replaced: int


def group_by_period(rows: Sequence[PamTaskImportRow]) -> Dict[Tuple[int, int], List[PamTaskImportRow]]:
    """Group rows by (year, week), keeping the order in which periods first appear."""
    groups: Dict[Tuple[int, int], List[PamTaskImportRow]] = {}
    for row in rows:
        groups.setdefault(row.period, []).append(row)
    return groups


class PeriodReconciler:
    """Delete-then-replace reconciliation: the last full import of a period wins."""

    async def _get_or_create_plan(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        week_year: int,
        week_number: int,
        importer_id: Optional[UUID],
        source_label: Optional[str],
    ) -> WeekPlan:
        plan = await week_plan_crud.get_by_period(
            db,
            organization_id=organization_id,
            week_year=week_year,
            week_number=week_number,
        )
        if plan is None:
            plan = WeekPlan(
                organization_id=organization_id,
                week_year=week_year,
                week_number=week_number,
            )
            db.add(plan)
        plan.importer_id = importer_id
        plan.source_label = source_label
        await db.flush()
        return plan

    async def _replace_period(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        week_year: int,
        week_number: int,
        rows: Sequence[PamTaskImportRow],
        resolution: IdentityResolution,
        importer_id: Optional[UUID],
        source_label: Optional[str],
    ) -> ReconciledPeriod:
        plan = await self._get_or_create_plan(
            db,
            organization_id=organization_id,
            week_year=week_year,
            week_number=week_number,
            importer_id=importer_id,
            source_label=source_label,
        )
        replaced = await pam_task_crud.delete_by_week_plan(db, week_plan_id=plan.id)

        tasks: List[PamTask] = []
        for row in rows:
            assignee_id, assignee_name = resolution.assignee_for(row.assignee_email)
            task = PamTask(
                week_plan_id=plan.id,
                organization_id=organization_id,
                week_year=week_year,
                week_number=week_number,
                date=row.date,
                end_date=row.end_date,
                assignee_id=assignee_id,
                assignee_name=assignee_name,
                assignee_email=row.assignee_email,
                description=row.description,
                location=row.location,
                contractor=row.contractor,
                risk_type=row.risk_type,
                status=TaskStatus.PENDING,
                has_evidence=False,
            )
            db.add(task)
            tasks.append(task)
        await db.flush()

        for task in tasks:
            await notification_service.notify_task_assigned(db, task, commit=False)

        logger.info(
            "Reconciled W%s/%s for organization %s: %s replaced, %s created",
            week_number,
            week_year,
            organization_id,
            replaced,
            len(tasks),
        )
        return ReconciledPeriod(
            week_plan_id=plan.id,
            week_year=week_year,
            week_number=week_number,
            tasks_created=len(tasks),
            tasks_replaced=replaced,
        )

    async def reconcile_period(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        week_year: int,
        week_number: int,
        rows: Sequence[PamTaskImportRow],
        importer_id: Optional[UUID] = None,
        source_label: Optional[str] = None,
        commit: bool = True,
    ) -> ReconciledPeriod:
        """Find-or-create the period's WeekPlan and replace its tasks with rows."""
        foreign = [row.row for row in rows if row.period != (week_year, week_number)]
        if foreign:
            raise ValueError(f"Rows {foreign} do not belong to week {week_number}/{week_year}")

        try:
            resolution = await identity_resolver.resolve(
                db,
                organization_id=organization_id,
                emails=[row.assignee_email for row in rows],
            )
            result = await self._replace_period(
                db,
                organization_id=organization_id,
                week_year=week_year,
                week_number=week_number,
                rows=rows,
                resolution=resolution,
                importer_id=importer_id,
                source_label=source_label,
            )
            if commit:
                await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to reconcile W%s/%s for organization %s", week_number, week_year, organization_id)
            raise PersistenceFailure(f"Could not save week {week_number}/{week_year}: {exc}") from exc
        return result

    async def reconcile_batch(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        rows: Sequence[PamTaskImportRow],
        importer_id: Optional[UUID] = None,
        source_label: Optional[str] = None,
    ) -> List[ReconciledPeriod]:
        """Reconcile every period present in rows inside a single transaction."""
        results: List[ReconciledPeriod] = []
        try:
            resolution = await identity_resolver.resolve(
                db,
                organization_id=organization_id,
                emails=[row.assignee_email for row in rows],
            )
            for (week_year, week_number), period_rows in group_by_period(rows).items():
                results.append(
                    await self._replace_period(
                        db,
                        organization_id=organization_id,
                        week_year=week_year,
                        week_number=week_number,
                        rows=period_rows,
                        resolution=resolution,
                        importer_id=importer_id,
                        source_label=source_label,
                    )
                )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to reconcile import batch for organization %s", organization_id)
            raise PersistenceFailure(f"Could not save imported tasks: {exc}") from exc
        return results


period_reconciler = PeriodReconciler()
