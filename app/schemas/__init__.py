"""Schema modules."""
from app.schemas.pam import (
    WeekPlanResponse,
    PamTaskCreate,
    PamTaskUpdate,
    PamTaskResponse,
    EvidenceCreate,
    EvidenceResponse,
    EvidencePresignRequest,
    EvidencePresignResponse,
    RejectEvidenceRequest,
    WeekBoardResponse,
)
from app.schemas.notification import NotificationResponse, UnreadCountResponse
from app.schemas.sync import (
    SyncRequest,
    SyncEventRequest,
    ImportDocumentRequest,
    SyncResultResponse,
    SyncStateResponse,
)

__all__ = [
    "WeekPlanResponse",
    "PamTaskCreate",
    "PamTaskUpdate",
    "PamTaskResponse",
    "EvidenceCreate",
    "EvidenceResponse",
    "EvidencePresignRequest",
    "EvidencePresignResponse",
    "RejectEvidenceRequest",
    "WeekBoardResponse",
    "NotificationResponse",
    "UnreadCountResponse",
    "SyncRequest",
    "SyncEventRequest",
    "ImportDocumentRequest",
    "SyncResultResponse",
    "SyncStateResponse",
]
