"""Domain entities exposed by the application."""

from .notification import NotificationEnvelope, NotificationKind
from .user_task import User, UserTask, UserTaskStatus, UserTaskType

__all__ = [
    "NotificationEnvelope",
    "NotificationKind",
    "User",
    "UserTask",
    "UserTaskStatus",
    "UserTaskType",
]
