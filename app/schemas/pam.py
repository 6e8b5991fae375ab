"""Weekly plan and task schemas."""
from datetime import date as DateType, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.pam import TaskStatus


class WeekPlanResponse(BaseModel):
    """Week plan response schema."""

    id: UUID
    organization_id: UUID
    week_year: int
    week_number: int
    importer_id: Optional[UUID] = None
    source_label: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PamTaskCreate(BaseModel):
    """Manual task creation schema."""

    week_year: int = Field(ge=2020, le=2100)
    week_number: int = Field(ge=1, le=53)
    date: DateType
    end_date: Optional[DateType] = None
    description: str = Field(min_length=1)
    assignee_email: str
    assignee_name: Optional[str] = None
    location: Optional[str] = None
    contractor: Optional[str] = None
    risk_type: Optional[str] = None

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date is not None and self.end_date < self.date:
            raise ValueError("end_date must not precede date")
        return self


class PamTaskUpdate(BaseModel):
    """Partial task update schema. Status changes go through lifecycle actions."""

    date: Optional[DateType] = None
    end_date: Optional[DateType] = None
    description: Optional[str] = Field(default=None, min_length=1)
    assignee_email: Optional[str] = None
    assignee_name: Optional[str] = None
    location: Optional[str] = None
    contractor: Optional[str] = None
    risk_type: Optional[str] = None


class PamTaskResponse(BaseModel):
    """Task response schema."""

    id: UUID
    week_plan_id: UUID
    organization_id: UUID
    week_year: int
    week_number: int
    date: DateType
    end_date: Optional[DateType] = None
    assignee_id: Optional[UUID] = None
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None
    description: str
    location: Optional[str] = None
    contractor: Optional[str] = None
    risk_type: Optional[str] = None
    status: TaskStatus
    effective_status: Optional[TaskStatus] = None
    is_overdue: bool = False
    has_evidence: bool
    created_at: datetime
    updated_at: datetime
    sheet_sync_error: Optional[str] = None

    class Config:
        from_attributes = True


class TaskDeletedResponse(BaseModel):
    """Result of a manual delete; sheet_sync_error is set when the sheet row could not be removed."""

    id: UUID
    sheet_sync_error: Optional[str] = None


class CurrentWeekResponse(BaseModel):
    """The ISO week containing today and its neighbours."""

    week_year: int
    week_number: int
    label: str
    previous_week_year: int
    previous_week_number: int
    next_week_year: int
    next_week_number: int


class EvidenceCreate(BaseModel):
    """Evidence upload schema; the file is stored beforehand via a presigned URL."""

    file_ref: str = Field(min_length=1)
    note: Optional[str] = None


class EvidenceResponse(BaseModel):
    """Evidence response schema."""

    id: UUID
    task_id: UUID
    uploader_id: Optional[UUID] = None
    file_ref: str
    note: Optional[str] = None
    uploaded_at: datetime
    download_url: Optional[str] = None

    class Config:
        from_attributes = True


class EvidencePresignRequest(BaseModel):
    """Presign URL request for an evidence file."""

    filename: str
    content_type: str


class EvidencePresignResponse(BaseModel):
    """Presign URL response."""

    upload_url: str
    file_ref: str
    expires_in: int = 3600


class RejectEvidenceRequest(BaseModel):
    """Admin rejection payload."""

    comment: Optional[str] = None


class AssigneeSummary(BaseModel):
    """Per-assignee board counters."""

    assignee_id: Optional[UUID] = None
    assignee_name: str
    total: int
    pending: int
    in_progress: int
    done: int
    overdue: int
    completion_rate: int


class GroupSummary(BaseModel):
    """Completion counters for a grouping key such as location."""

    name: str
    total: int
    completed: int
    compliance: float


class WeekBoardResponse(BaseModel):
    """Board metrics for one week."""

    week_year: int
    week_number: int
    label: str
    total_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    completed_tasks: int
    overdue_tasks: int
    compliance_percentage: float
    by_assignee: List[AssigneeSummary]
    by_location: List[GroupSummary]
    overdue: List[PamTaskResponse]
