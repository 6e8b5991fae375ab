"""Week plan, task and evidence CRUD operations."""
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.base import CRUDBase
from app.models.notification import Notification
from app.models.pam import PamTask, PamTaskEvidence, WeekPlan
from app.schemas.pam import PamTaskCreate, PamTaskUpdate


class CRUDWeekPlan(CRUDBase[WeekPlan, dict, dict]):
    """CRUD operations for WeekPlan."""

    async def get_by_period(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        week_year: int,
        week_number: int,
    ) -> Optional[WeekPlan]:
        """Get the plan owning an (organization, year, week) period."""
        result = await db.execute(
            select(WeekPlan).where(
                WeekPlan.organization_id == organization_id,
                WeekPlan.week_year == week_year,
                WeekPlan.week_number == week_number,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_organization(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        week_year: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[WeekPlan]:
        """List plans, most recent period first."""
        query = select(WeekPlan).where(WeekPlan.organization_id == organization_id)
        if week_year is not None:
            query = query.where(WeekPlan.week_year == week_year)
        query = query.order_by(WeekPlan.week_year.desc(), WeekPlan.week_number.desc())
        result = await db.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all())


class CRUDPamTask(CRUDBase[PamTask, PamTaskCreate, PamTaskUpdate]):
    """CRUD operations for PamTask."""

    async def get_for_organization(
        self,
        db: AsyncSession,
        *,
        id: UUID,
        organization_id: UUID,
    ) -> Optional[PamTask]:
        """Get a task only if it belongs to the organization."""
        result = await db.execute(
            select(PamTask).where(PamTask.id == id, PamTask.organization_id == organization_id)
        )
        return result.scalar_one_or_none()

    async def list_for_week(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        week_year: int,
        week_number: int,
    ) -> List[PamTask]:
        """List a week's tasks ordered by assignee then date."""
        result = await db.execute(
            select(PamTask)
            .where(
                PamTask.organization_id == organization_id,
                PamTask.week_year == week_year,
                PamTask.week_number == week_number,
            )
            .order_by(PamTask.assignee_name, PamTask.date)
        )
        return list(result.scalars().all())

    async def list_by_week_plan(self, db: AsyncSession, *, week_plan_id: UUID) -> List[PamTask]:
        """List the tasks owned by a week plan."""
        result = await db.execute(
            select(PamTask).where(PamTask.week_plan_id == week_plan_id).order_by(PamTask.date)
        )
        return list(result.scalars().all())

    async def _detach_dependents(self, db: AsyncSession, owned) -> None:
        """Null notification links and drop evidence of the selected tasks."""
        await db.execute(
            update(Notification)
            .where(Notification.task_id.in_(owned))
            .values(task_id=None)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(PamTaskEvidence)
            .where(PamTaskEvidence.task_id.in_(owned))
            .execution_options(synchronize_session=False)
        )

    async def delete_by_week_plan(self, db: AsyncSession, *, week_plan_id: UUID) -> int:
        """Delete every task of a week plan without committing. Returns the row count."""
        await self._detach_dependents(
            db, select(PamTask.id).where(PamTask.week_plan_id == week_plan_id)
        )
        result = await db.execute(
            delete(PamTask)
            .where(PamTask.week_plan_id == week_plan_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def remove_with_dependents(self, db: AsyncSession, *, id: UUID) -> None:
        """Delete one task with its evidence, keeping its notifications unlinked."""
        await self._detach_dependents(db, select(PamTask.id).where(PamTask.id == id))
        await db.execute(
            delete(PamTask).where(PamTask.id == id).execution_options(synchronize_session=False)
        )
        await db.commit()


class CRUDTaskEvidence(CRUDBase[PamTaskEvidence, dict, dict]):
    """CRUD operations for PamTaskEvidence."""

    async def list_for_task(self, db: AsyncSession, *, task_id: UUID) -> List[PamTaskEvidence]:
        """List a task's evidence history, oldest first."""
        result = await db.execute(
            select(PamTaskEvidence)
            .where(PamTaskEvidence.task_id == task_id)
            .order_by(PamTaskEvidence.uploaded_at)
        )
        return list(result.scalars().all())


week_plan = CRUDWeekPlan(WeekPlan)
pam_task = CRUDPamTask(PamTask)
task_evidence = CRUDTaskEvidence(PamTaskEvidence)
