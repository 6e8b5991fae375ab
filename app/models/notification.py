"""Notification models."""
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SQLEnum, Text, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from enum import Enum
from app.database import Base
from app.db.types import GUID, UTCDateTime


class NotificationType(str, Enum):
    """Notification types."""

    TASK_ASSIGNED = "TASK_ASSIGNED"
    EVIDENCE_REJECTED = "EVIDENCE_REJECTED"


class Notification(Base):
    """One-way signal to an account about a task lifecycle event."""

    __tablename__ = "pam_notifications"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    organization_id = Column(GUID(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(GUID(), ForeignKey("pam_tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    read_at = Column(UTCDateTime(), nullable=True)

    # Relationships
    user = relationship("User", back_populates="notifications")
