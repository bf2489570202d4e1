"""Helpers to publish notification envelopes to the message broker."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from notifier.application.ports import Broker
from notifier.domain.entities import NotificationEnvelope, NotificationKind

logger = logging.getLogger(__name__)


class NotificationPublisher:
    """Serialize notifications and hand them to the broker."""

    def __init__(self, broker: Broker, *, stream: str) -> None:
        self._broker = broker
        self._stream = stream

    async def publish(
        self, kind: NotificationKind | str, notification: BaseModel | str
    ) -> str:
        """Publish ``notification`` as a ``kind`` envelope and return the message id."""

        envelope = NotificationEnvelope(
            kind=kind, payload=serialize_notification(notification)
        )
        message_id = await self._broker.publish(self._stream, envelope.to_bytes())
        logger.debug(
            "Published %s notification %s as message %s",
            envelope.kind,
            envelope.id,
            message_id,
        )
        return message_id


def serialize_notification(notification: BaseModel | str) -> str:
    """Return the payload string carried by an envelope for ``notification``."""

    if isinstance(notification, str):
        return notification
    return notification.model_dump_json(by_alias=True, exclude_none=True)


__all__ = ["NotificationPublisher", "serialize_notification"]
