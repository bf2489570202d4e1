"""Domain entities describing outstanding user tasks owned by the DeX API."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UserTaskStatus(str, Enum):
    OPEN = "Open"
    MAILED = "Mailed"
    CLOSED = "Closed"


class UserTaskType(str, Enum):
    GRADUATION_REMINDER = "GraduationReminder"


@dataclass
class User:
    """Subset of the user attributes needed to notify someone."""

    id: int
    email: str
    name: str | None = None


@dataclass
class UserTask:
    """One outstanding obligation for a user, e.g. a graduation check."""

    id: int
    user: User
    type: UserTaskType = UserTaskType.GRADUATION_REMINDER
    status: UserTaskStatus = UserTaskStatus.OPEN

    def is_open(self) -> bool:
        """Return ``True`` while the task still waits for a notification."""

        return self.status == UserTaskStatus.OPEN


__all__ = ["User", "UserTask", "UserTaskStatus", "UserTaskType"]
