"""Celery tasks for the scheduled task sheet sync."""
import asyncio
import logging
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.crud.user import organization as organization_crud
from app.database import create_session_factory
from app.services.pam_sync_service import PamSyncService, Scheduled, SyncStatus, SyncTrigger
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _failed(organization_id: UUID, message: str) -> Dict:
    return {
        "organization_id": str(organization_id),
        "status": SyncStatus.FAILED.value,
        "tasks_created": 0,
        "errors": [message],
    }


async def _sync_one(
    session_factory: async_sessionmaker,
    service: PamSyncService,
    organization_id: UUID,
    trigger: SyncTrigger,
) -> Optional[Dict]:
    # A fresh session per organization: a rollback in one run must not expire another's objects.
    async with session_factory() as db:
        organization = await organization_crud.get(db, organization_id)
        if organization is None:
            logger.warning("Organization %s not found, skipping scheduled sync", organization_id)
            return None
        try:
            result = await service.sync_period(db, organization, trigger=trigger)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Scheduled sync for organization %s failed", organization_id)
            return _failed(organization_id, f"Database error during sync: {exc}")

    logger.info(
        "Scheduled sync for organization %s: %s (%s tasks)",
        organization_id,
        result.status.value,
        result.tasks_created,
    )
    return {
        "organization_id": str(organization_id),
        "status": result.status.value,
        "tasks_created": result.tasks_created,
        "errors": result.errors,
    }


async def _sync_organizations(organization_id: str = None) -> List[Dict]:
    # Each asyncio.run gets its own loop, so the engine and the orchestrator are local to it.
    engine, session_factory = create_session_factory()
    service = PamSyncService()
    trigger = Scheduled(interval_seconds=settings.PAM_SCHEDULED_SYNC_INTERVAL_SECONDS)
    results = []
    try:
        if organization_id:
            target_ids = [UUID(str(organization_id))]
        else:
            async with session_factory() as db:
                target_ids = await organization_crud.list_sync_target_ids(
                    db, require_sheet=not settings.PAM_SHEET_CSV_URL
                )

        for target_id in target_ids:
            outcome = await _sync_one(session_factory, service, target_id, trigger)
            if outcome is not None:
                results.append(outcome)
    finally:
        await engine.dispose()
    return results


@celery_app.task
def sync_all_organizations():
    """Run a non-forced sync for every organization with a task sheet (called by Celery Beat)."""
    return asyncio.run(_sync_organizations())


@celery_app.task
def sync_organization(organization_id: str):
    """Run a non-forced sync for one organization."""
    return asyncio.run(_sync_organizations(organization_id))
