"""Lookup table mapping notification kinds to handler factories."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from notifier.domain.exceptions import UnknownKind

from .base import NotificationHandler

HandlerFactory = Callable[[], NotificationHandler]


def _normalize_kind(kind: str | Enum) -> str:
    value = kind.value if isinstance(kind, Enum) else kind
    return str(value).strip().upper()


class HandlerRegistry:
    """Resolve a fresh :class:`NotificationHandler` for a notification kind.

    Kinds are registered once at process start. The registry is only read
    afterwards, which makes it safe to share between dispatcher workers.
    """

    def __init__(self) -> None:
        self._factories: dict[str, HandlerFactory] = {}

    def register(
        self, kind: str | Enum, factory: HandlerFactory, *, replace: bool = False
    ) -> None:
        """Associate ``kind`` with ``factory``."""

        key = _normalize_kind(kind)
        if not key:
            raise ValueError("Notification kind must not be empty")
        if key in self._factories and not replace:
            raise ValueError(f"A handler is already registered for kind {key!r}")
        self._factories[key] = factory

    def resolve(self, kind: str | Enum) -> NotificationHandler:
        """Return a new handler for ``kind`` or raise :class:`UnknownKind`."""

        key = _normalize_kind(kind)
        factory = self._factories.get(key)
        if factory is None:
            raise UnknownKind(key)
        return factory()

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def __contains__(self, kind: object) -> bool:
        if not isinstance(kind, (str, Enum)):
            return False
        return _normalize_kind(kind) in self._factories

    def __len__(self) -> int:
        return len(self._factories)


__all__ = ["HandlerFactory", "HandlerRegistry"]
