"""Notification API endpoints."""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import Permission
from app.database import get_db
from app.dependencies import require_permission
from app.models.user import User
from app.schemas.notification import NotificationResponse, UnreadCountResponse
from app.services.notification_service import notification_service

router = APIRouter()


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.NOTIFICATION_VIEW)),
):
    """List the caller's notifications, newest first."""
    return await notification_service.list_for_user(db, current_user, unread_only=unread_only, limit=limit)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.NOTIFICATION_VIEW)),
):
    return UnreadCountResponse(count=await notification_service.unread_count(db, current_user))


@router.post("/read-all", response_model=UnreadCountResponse)
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.NOTIFICATION_VIEW)),
):
    """Mark every notification read; returns how many were flipped."""
    return UnreadCountResponse(count=await notification_service.mark_all_read(db, current_user))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.NOTIFICATION_VIEW)),
):
    return await notification_service.mark_read(db, current_user, notification_id)
