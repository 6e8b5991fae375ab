"""Notification schemas."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from app.models.notification import NotificationType


class NotificationResponse(BaseModel):
    """Notification response schema."""

    id: UUID
    organization_id: UUID
    user_id: UUID
    task_id: Optional[UUID] = None
    type: NotificationType
    title: str
    message: str
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    """Unread notification counter."""

    count: int
