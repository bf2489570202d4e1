"""Wire payload schemas shared by publishers, handlers and API clients."""

from .notification import EmailNotification, is_valid_email_address
from .user_task import UserRead, UserTaskRead

__all__ = [
    "EmailNotification",
    "UserRead",
    "UserTaskRead",
    "is_valid_email_address",
]
