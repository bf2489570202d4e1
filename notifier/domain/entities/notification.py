"""Domain entity representing a notification travelling through the broker."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from ..exceptions import MalformedPayload


class NotificationKind(str, Enum):
    """Routing discriminators shared by publishers and the handler registry."""

    EMAIL = "EMAIL"


def _new_envelope_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NotificationEnvelope:
    """Kind-tagged message unit exchanged between producers and dispatchers.

    ``payload`` is opaque here; only the handler registered for ``kind`` knows
    how to read it. ``kind`` is stored as a plain string so envelopes emitted by
    newer publishers can still be decoded and rejected by older dispatchers.
    """

    kind: str
    payload: str
    id: str = field(default_factory=_new_envelope_id)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if isinstance(self.kind, NotificationKind):
            object.__setattr__(self, "kind", self.kind.value)

    def to_bytes(self) -> bytes:
        """Return the JSON wire representation of the envelope."""

        document = {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }
        return json.dumps(document).encode("utf-8")

    @classmethod
    def from_bytes(cls, body: bytes | str) -> "NotificationEnvelope":
        """Decode an envelope previously produced by :meth:`to_bytes`."""

        try:
            document = json.loads(body)
        except (TypeError, ValueError) as exc:
            raise MalformedPayload(f"Envelope is not valid JSON: {exc}") from exc

        if not isinstance(document, dict):
            raise MalformedPayload("Envelope must be a JSON object")

        kind = document.get("kind")
        payload = document.get("payload")
        if not isinstance(kind, str) or not kind.strip():
            raise MalformedPayload("Envelope is missing its kind")
        if not isinstance(payload, str):
            raise MalformedPayload("Envelope payload must be a serialized string")

        envelope_id = document.get("id")
        created_raw = document.get("created_at")
        try:
            created_at = datetime.fromisoformat(created_raw) if created_raw else _utcnow()
        except (TypeError, ValueError) as exc:
            raise MalformedPayload(f"Envelope timestamp is invalid: {exc}") from exc

        return cls(
            kind=kind.strip(),
            payload=payload,
            id=str(envelope_id) if envelope_id else _new_envelope_id(),
            created_at=created_at,
        )


__all__ = ["NotificationEnvelope", "NotificationKind"]
