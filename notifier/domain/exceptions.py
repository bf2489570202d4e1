"""Errors raised while producing and dispatching notifications."""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for every error raised by the notification pipeline."""


class MalformedPayload(NotificationError):
    """The payload does not match the shape expected for its kind."""


class ValidationFailure(NotificationError):
    """The payload is well formed but violates a business rule."""


class DeliveryFailure(NotificationError):
    """The delivery provider could not deliver the notification."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class UnknownKind(NotificationError, LookupError):
    """No handler is registered for the notification kind."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"No notification handler registered for kind {kind!r}")
        self.kind = kind


class UpstreamQueryFailure(NotificationError):
    """The external task API is unreachable or answered with an error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BrokerError(NotificationError):
    """The message broker rejected an operation or could not be reached."""


class ConfigurationError(RuntimeError):
    """Raised when the settings required by a process are missing."""


__all__ = [
    "BrokerError",
    "ConfigurationError",
    "DeliveryFailure",
    "MalformedPayload",
    "NotificationError",
    "UnknownKind",
    "UpstreamQueryFailure",
    "ValidationFailure",
]
