"""Weekly plan, task and evidence models."""
from enum import Enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base
from app.db.types import GUID


class TaskStatus(str, Enum):
    """Stored task status. OVERDUE is only ever derived, see effective_status."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    OVERDUE = "OVERDUE"


class WeekPlan(Base):
    """Container owning one import batch for an (organization, year, week) period."""

    __tablename__ = "pam_week_plans"
    __table_args__ = (
        UniqueConstraint("organization_id", "week_year", "week_number", name="uq_pam_week_plans_period"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    organization_id = Column(GUID(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    week_year = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=False)
    importer_id = Column(GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    source_label = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    tasks = relationship("PamTask", back_populates="week_plan", cascade="all, delete-orphan", passive_deletes=True)


class PamTask(Base):
    """One unit of planned safety work."""

    __tablename__ = "pam_tasks"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    week_plan_id = Column(GUID(), ForeignKey("pam_week_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(GUID(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    week_year = Column(Integer, nullable=False, index=True)
    week_number = Column(Integer, nullable=False, index=True)
    date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    assignee_id = Column(GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assignee_name = Column(String(255), nullable=True)
    assignee_email = Column(String(255), nullable=True, index=True)  # Raw reference from the sheet
    description = Column(Text, nullable=False)
    location = Column(String(255), nullable=True)
    contractor = Column(String(255), nullable=True)
    risk_type = Column(String(255), nullable=True)
    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True)
    has_evidence = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    week_plan = relationship("WeekPlan", back_populates="tasks")
    evidence = relationship(
        "PamTaskEvidence",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PamTaskEvidence.uploaded_at",
    )


class PamTaskEvidence(Base):
    """Immutable record of an uploaded completion proof."""

    __tablename__ = "pam_task_evidence"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    task_id = Column(GUID(), ForeignKey("pam_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    uploader_id = Column(GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    file_ref = Column(Text, nullable=False)
    note = Column(Text, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    task = relationship("PamTask", back_populates="evidence")
