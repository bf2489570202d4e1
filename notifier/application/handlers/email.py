"""Handler delivering ``EMAIL`` notifications."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from notifier.application.ports import EmailDeliveryProvider
from notifier.config import DEFAULT_EMAIL_SUBJECT
from notifier.domain.entities import NotificationKind
from notifier.domain.exceptions import MalformedPayload
from notifier.schemas import EmailNotification

from .base import NotificationHandler

logger = logging.getLogger(__name__)


class EmailHandler(NotificationHandler):
    """Send an :class:`EmailNotification` through an email delivery provider."""

    kind = NotificationKind.EMAIL.value

    def __init__(
        self,
        provider: EmailDeliveryProvider,
        *,
        sender: str,
        subject: str = DEFAULT_EMAIL_SUBJECT,
    ) -> None:
        super().__init__()
        self._provider = provider
        self._sender = sender
        self._subject = subject

    @property
    def notification(self) -> EmailNotification | None:
        return self._payload

    def parse_payload(self, raw: str | bytes) -> None:
        try:
            self._payload = EmailNotification.model_validate_json(raw)
        except ValidationError as exc:
            self._payload = None
            raise MalformedPayload(
                f"Invalid email notification payload: {exc.error_count()} error(s)"
            ) from exc

    def validate_payload(self) -> bool:
        notification: EmailNotification = self._require_payload()
        errors = notification.validation_errors()
        if errors:
            logger.debug("Email notification rejected: %s", "; ".join(errors))
            return False
        return True

    async def execute_task(self) -> None:
        notification: EmailNotification = self._require_payload()
        recipient = (notification.recipient_email or "").strip()
        await self._provider.send_email(
            self._sender,
            recipient,
            self._subject,
            notification.text_content or "",
            notification.html_content,
        )
        logger.info("Email notification sent to %s", recipient)


__all__ = ["EmailHandler"]
