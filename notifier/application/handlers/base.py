"""Contract implemented by every notification handler."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class NotificationHandler(ABC):
    """Parse, validate and deliver the payload of one notification kind.

    Instances are stateful: :meth:`parse_payload` stores the typed payload
    that :meth:`validate_payload` and :meth:`execute_task` then work on. A
    handler processes a single message and is discarded afterwards, so the
    registry hands out a fresh instance for every delivery.
    """

    kind: str

    def __init__(self) -> None:
        self._payload: Any | None = None

    @property
    def payload(self) -> Any | None:
        """Return the parsed payload, or ``None`` before parsing."""

        return self._payload

    @abstractmethod
    def parse_payload(self, raw: str | bytes) -> None:
        """Deserialize ``raw``; raise ``MalformedPayload`` on shape mismatch."""

    @abstractmethod
    def validate_payload(self) -> bool:
        """Return ``True`` when the parsed payload satisfies the business rules."""

    @abstractmethod
    async def execute_task(self) -> None:
        """Deliver the notification; raise ``DeliveryFailure`` on transient faults."""

    def _require_payload(self) -> Any:
        if self._payload is None:
            raise RuntimeError(
                f"{type(self).__name__} used before parse_payload() succeeded"
            )
        return self._payload


__all__ = ["NotificationHandler"]
