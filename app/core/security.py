"""Security constants and permissions."""
from enum import Enum


class Permission(str, Enum):
    """Permission constants for RBAC."""

    # Weekly plan
    PAM_VIEW = "pam.view"
    PAM_SYNC = "pam.sync"
    PAM_IMPORT = "pam.import"

    # Tasks
    PAM_TASK_MANAGE = "pam.task.manage"
    PAM_TASK_EXECUTE = "pam.task.execute"
    PAM_EVIDENCE_REVIEW = "pam.evidence.review"

    # Notifications
    NOTIFICATION_VIEW = "notification.view"


# Role definitions with permissions
ROLE_PERMISSIONS = {
    "admin": [
        Permission.PAM_VIEW,
        Permission.PAM_SYNC,
        Permission.PAM_IMPORT,
        Permission.PAM_TASK_MANAGE,
        Permission.PAM_TASK_EXECUTE,
        Permission.PAM_EVIDENCE_REVIEW,
        Permission.NOTIFICATION_VIEW,
    ],
    "supervisor": [
        Permission.PAM_VIEW,
        Permission.PAM_SYNC,
        Permission.PAM_EVIDENCE_REVIEW,
        Permission.NOTIFICATION_VIEW,
    ],
    "worker": [
        Permission.PAM_VIEW,
        Permission.PAM_TASK_EXECUTE,
        Permission.NOTIFICATION_VIEW,
    ],
}
