"""Sheet sync schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class SyncRequest(BaseModel):
    """Manual sync request."""

    force: bool = False
    week_year: Optional[int] = Field(default=None, ge=2020, le=2100)
    week_number: Optional[int] = Field(default=None, ge=1, le=53)

    @model_validator(mode="after")
    def _week_pair(self):
        if (self.week_year is None) != (self.week_number is None):
            raise ValueError("week_year and week_number must be given together")
        return self


class SyncEventRequest(BaseModel):
    """External event (e.g. a client regaining focus) asking for a throttled sync."""

    event: str = Field(min_length=1, max_length=64)


class ImportDocumentRequest(BaseModel):
    """Directly uploaded task sheet."""

    content: str = Field(min_length=1)
    source_label: Optional[str] = None
    week_year: Optional[int] = Field(default=None, ge=2020, le=2100)
    week_number: Optional[int] = Field(default=None, ge=1, le=53)

    @model_validator(mode="after")
    def _week_pair(self):
        if (self.week_year is None) != (self.week_number is None):
            raise ValueError("week_year and week_number must be given together")
        return self


class RowErrorResponse(BaseModel):
    """Row-level validation error."""

    row: int
    code: str
    message: str


class ImportedPeriod(BaseModel):
    """Period reconciled by a sync."""

    week_year: int
    week_number: int
    tasks_created: int


class SyncResultResponse(BaseModel):
    """Outcome of a sync attempt."""

    status: str
    success: bool
    tasks_created: int
    errors: List[str]
    row_errors: List[RowErrorResponse] = []
    imported_week_year: Optional[int] = None
    imported_week_number: Optional[int] = None
    imported_periods: List[ImportedPeriod] = []


class SyncStateResponse(BaseModel):
    """Persisted sync bookkeeping for the caller's organization."""

    last_fingerprint: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    in_progress: bool = False
