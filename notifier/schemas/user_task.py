"""Pydantic models describing the user task payloads returned by the DeX API."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from notifier.domain.entities import User, UserTask, UserTaskStatus, UserTaskType


def _enum_member(enum_cls: type[Enum], value: Any) -> Any:
    """Accept enum values sent either as their name or their integer index."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        members = list(enum_cls)
        if 0 <= value < len(members):
            return members[value]
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if value.lower() in (member.value.lower(), member.name.lower()):
                return member
    return value


class UserRead(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    email: str
    name: str | None = None


class UserTaskRead(BaseModel):
    """Representation of a user task as serialized by the API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    user: UserRead
    type: UserTaskType = Field(
        default=UserTaskType.GRADUATION_REMINDER,
        validation_alias=AliasChoices("type", "Type"),
    )
    status: UserTaskStatus = Field(
        default=UserTaskStatus.OPEN,
        validation_alias=AliasChoices("status", "Status"),
    )

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        return _enum_member(UserTaskType, value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        return _enum_member(UserTaskStatus, value)

    def to_entity(self) -> UserTask:
        """Return the domain entity for this payload."""

        return UserTask(
            id=self.id,
            user=User(id=self.user.id, email=self.user.email, name=self.user.name),
            type=self.type,
            status=self.status,
        )


__all__ = ["UserRead", "UserTaskRead"]
