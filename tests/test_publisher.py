"""Tests for the notification publisher."""

from __future__ import annotations

import json

import pytest

from notifier.domain.entities import NotificationKind
from notifier.domain.exceptions import BrokerError
from notifier.infrastructure.notifications import NotificationPublisher, serialize_notification
from notifier.schemas import EmailNotification


@pytest.mark.asyncio
async def test_publish_wraps_notification_in_an_envelope(broker) -> None:
    publisher = NotificationPublisher(broker, stream="notifications")
    notification = EmailNotification(
        recipient_email="jane@example.com", text_content="Hi", html_content="<p>Hi</p>"
    )

    message_id = await publisher.publish(NotificationKind.EMAIL, notification)

    assert message_id == "1-0"
    [envelope] = broker.envelopes("notifications")
    assert envelope.kind == "EMAIL"
    assert json.loads(envelope.payload) == {
        "recipientEmail": "jane@example.com",
        "textContent": "Hi",
        "htmlContent": "<p>Hi</p>",
    }


@pytest.mark.asyncio
async def test_publish_accepts_preserialized_payloads_and_custom_kinds(broker) -> None:
    publisher = NotificationPublisher(broker, stream="notifications")

    await publisher.publish("SMS", '{"to": "+3100000000"}')

    [envelope] = broker.envelopes()
    assert envelope.kind == "SMS"
    assert envelope.payload == '{"to": "+3100000000"}'


@pytest.mark.asyncio
async def test_publish_propagates_broker_errors(broker) -> None:
    async def unavailable(*args, **kwargs):
        raise BrokerError("down")

    broker.publish = unavailable
    publisher = NotificationPublisher(broker, stream="notifications")

    with pytest.raises(BrokerError):
        await publisher.publish(NotificationKind.EMAIL, "{}")


def test_serialize_notification_omits_missing_fields() -> None:
    payload = serialize_notification(EmailNotification(recipient_email="jane@example.com"))

    assert json.loads(payload) == {"recipientEmail": "jane@example.com"}
