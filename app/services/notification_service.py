"""Notification emission and read bookkeeping."""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.crud.notification import notification as notification_crud
from app.models.notification import Notification, NotificationType
from app.models.pam import PamTask
from app.models.user import User

logger = logging.getLogger(__name__)


class NotificationService:
    """Creates notification records; delivery is left to the UI polling them."""

    async def notify(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        user_id: UUID,
        type: NotificationType,
        title: str,
        message: str,
        task_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> Notification:
        notification = Notification(
            organization_id=organization_id,
            user_id=user_id,
            task_id=task_id,
            type=type,
            title=title,
            message=message,
            is_read=False,
        )
        db.add(notification)
        if commit:
            await db.commit()
            await db.refresh(notification)
        return notification

    async def notify_task_assigned(self, db: AsyncSession, task: PamTask, *, commit: bool = False) -> Optional[Notification]:
        """Tell the resolved assignee about a new task. Unresolved assignees get nothing."""
        if task.assignee_id is None:
            return None
        message = f"{task.description} ({task.date.isoformat()})"
        if task.location:
            message = f"{message} at {task.location}"
        return await self.notify(
            db,
            organization_id=task.organization_id,
            user_id=task.assignee_id,
            task_id=task.id,
            type=NotificationType.TASK_ASSIGNED,
            title=f"New task assigned for week {task.week_number}",
            message=message,
            commit=commit,
        )

    async def notify_evidence_rejected(
        self,
        db: AsyncSession,
        task: PamTask,
        *,
        comment: Optional[str] = None,
        commit: bool = False,
    ) -> Optional[Notification]:
        if task.assignee_id is None:
            return None
        message = f"Evidence for '{task.description}' was rejected."
        if comment:
            message = f"{message} Comment: {comment}"
        return await self.notify(
            db,
            organization_id=task.organization_id,
            user_id=task.assignee_id,
            task_id=task.id,
            type=NotificationType.EVIDENCE_REJECTED,
            title="Evidence rejected",
            message=message,
            commit=commit,
        )

    async def list_for_user(
        self,
        db: AsyncSession,
        user: User,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        return await notification_crud.list_for_user(db, user_id=user.id, unread_only=unread_only, limit=limit)

    async def unread_count(self, db: AsyncSession, user: User) -> int:
        return await notification_crud.count_unread(db, user_id=user.id)

    async def mark_read(self, db: AsyncSession, user: User, notification_id: UUID) -> Notification:
        """Flip one notification to read. Other users' notifications are reported as missing."""
        notification = await notification_crud.get(db, notification_id)
        if notification is None or notification.user_id != user.id:
            raise NotFoundError("Notification not found")
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
            await db.commit()
            await db.refresh(notification)
        return notification

    async def mark_all_read(self, db: AsyncSession, user: User) -> int:
        updated = await notification_crud.mark_all_read(db, user_id=user.id)
        logger.debug("Marked %s notifications read for user %s", updated, user.id)
        return updated


notification_service = NotificationService()
