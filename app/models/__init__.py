"""Model modules."""
from app.models.user import Organization, User, Role
from app.models.pam import WeekPlan, PamTask, PamTaskEvidence, TaskStatus
from app.models.notification import Notification, NotificationType
from app.models.sync_state import PamSyncState

__all__ = [
    "Organization",
    "User",
    "Role",
    "WeekPlan",
    "PamTask",
    "PamTaskEvidence",
    "TaskStatus",
    "Notification",
    "NotificationType",
    "PamSyncState",
]
