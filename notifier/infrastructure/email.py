"""Email delivery through the SendGrid REST API."""

from __future__ import annotations

import json
import logging
from typing import Any

from anyio import to_thread
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from notifier.domain.exceptions import DeliveryFailure

logger = logging.getLogger(__name__)

# SendGrid answers these with a temporary condition worth retrying.
_RETRYABLE_STATUS_CODES = frozenset({408, 429})


def _format_sendgrid_error(item: Any) -> str | None:
    if not isinstance(item, dict) or not item.get("message"):
        return None
    help_link = item.get("help")
    return f"{item['message']} (help: {help_link})" if help_link else str(item["message"])


def _extract_sendgrid_error_details(body: Any) -> str | None:
    """Return a human readable description for a SendGrid error payload."""

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(body, str):
        body = body.strip()
        if not body:
            return None
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            return body

    if isinstance(body, list):
        return "; ".join(str(item) for item in body)
    if not isinstance(body, dict):
        return None

    errors = body.get("errors")
    if isinstance(errors, list):
        messages = [text for text in map(_format_sendgrid_error, errors) if text]
        if messages:
            return "; ".join(messages)
    try:
        return json.dumps(body)
    except (TypeError, ValueError):
        return None


def _is_retryable(status_code: Any) -> bool:
    if not isinstance(status_code, int):
        return True
    return status_code >= 500 or status_code in _RETRYABLE_STATUS_CODES


def _describe_failure(prefix: str, status_code: Any, details: str | None) -> str:
    if status_code and details:
        return f"{prefix} with status {status_code}: {details}"
    if status_code:
        return f"{prefix} with status {status_code}"
    if details:
        return f"{prefix}: {details}"
    return prefix


def _response_header(response: Any, name: str) -> str | None:
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    try:
        value = headers.get(name)
    except AttributeError:
        return None
    return str(value) if value else None


class SendGridEmailProvider:
    """Deliver emails with the SendGrid SDK.

    The SDK is synchronous, so every request runs in a worker thread to keep
    the dispatcher's event loop responsive.
    """

    def __init__(self, api_key: str, *, client: SendGridAPIClient | None = None) -> None:
        if not api_key:
            raise ValueError("A SendGrid API key is required")
        self._client = client or SendGridAPIClient(api_key)

    async def send_email(
        self,
        sender: str,
        to: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        """Send one email and return the SendGrid message id when available."""

        message = Mail(
            from_email=sender,
            to_emails=to,
            subject=subject,
            plain_text_content=text,
            html_content=html,
        )
        return await to_thread.run_sync(self._send, message)

    def _send(self, message: Mail) -> str | None:
        try:
            response = self._client.send(message)
        except Exception as exc:  # noqa: BLE001
            status_code = getattr(exc, "status_code", None)
            details = _extract_sendgrid_error_details(getattr(exc, "body", None))
            description = _describe_failure(
                "SendGrid API request failed", status_code, details
            )
            logger.error(description)
            raise DeliveryFailure(description, retryable=_is_retryable(status_code)) from exc

        status_code = getattr(response, "status_code", None)
        if not isinstance(status_code, int) or not 200 <= status_code < 300:
            details = _extract_sendgrid_error_details(getattr(response, "body", None))
            description = _describe_failure(
                "SendGrid API responded", status_code, details
            )
            logger.error(description)
            raise DeliveryFailure(description, retryable=_is_retryable(status_code))

        return _response_header(response, "X-Message-Id")


__all__ = ["SendGridEmailProvider"]
