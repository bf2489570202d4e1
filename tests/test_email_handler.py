"""Tests for the ``EMAIL`` notification handler."""

from __future__ import annotations

import json

import pytest

from notifier.application.handlers import EmailHandler
from notifier.config import DEFAULT_EMAIL_SUBJECT
from notifier.domain.exceptions import DeliveryFailure, MalformedPayload, ValidationFailure
from notifier.schemas import EmailNotification, is_valid_email_address


def _handler(provider, **kwargs) -> EmailHandler:
    return EmailHandler(provider, sender="noreply@example.com", **kwargs)


def test_parse_accepts_camel_pascal_and_snake_case(email_provider) -> None:
    for payload in (
        {"recipientEmail": "jane@example.com", "textContent": "Hi"},
        {"RecipientEmail": "jane@example.com", "TextContent": "Hi"},
        {"recipient_email": "jane@example.com", "text_content": "Hi"},
    ):
        handler = _handler(email_provider)
        handler.parse_payload(json.dumps(payload))

        assert handler.notification == EmailNotification(
            recipient_email="jane@example.com", text_content="Hi"
        )


def test_parse_ignores_unknown_fields(email_provider) -> None:
    handler = _handler(email_provider)

    handler.parse_payload(json.dumps({"recipientEmail": "jane@example.com", "priority": 3}))

    assert handler.notification.recipient_email == "jane@example.com"


@pytest.mark.parametrize("raw", ["not json", "[]", '{"recipientEmail": 42}'])
def test_parse_rejects_wrong_shapes(email_provider, raw: str) -> None:
    handler = _handler(email_provider)

    with pytest.raises(MalformedPayload):
        handler.parse_payload(raw)

    assert handler.payload is None


@pytest.mark.parametrize(
    "payload",
    [
        {"textContent": "Hi"},
        {"recipientEmail": "   ", "textContent": "Hi"},
        {"recipientEmail": "not-an-address", "textContent": "Hi"},
        {"recipientEmail": "jane@example.com"},
        {"recipientEmail": "jane@example.com", "textContent": ""},
    ],
)
def test_validate_rejects_unactionable_payloads(email_provider, payload) -> None:
    handler = _handler(email_provider)
    handler.parse_payload(json.dumps(payload))

    assert handler.validate_payload() is False


def test_validate_accepts_complete_payload(email_provider) -> None:
    handler = _handler(email_provider)
    handler.parse_payload(
        json.dumps(
            {
                "recipientEmail": "jane@example.com",
                "textContent": "Hi",
                "htmlContent": "<p>Hi</p>",
            }
        )
    )

    assert handler.validate_payload() is True


def test_validate_before_parse_is_a_programming_error(email_provider) -> None:
    with pytest.raises(RuntimeError):
        _handler(email_provider).validate_payload()


@pytest.mark.asyncio
async def test_execute_sends_through_provider(email_provider) -> None:
    handler = _handler(email_provider)
    handler.parse_payload(
        json.dumps(
            {
                "recipientEmail": " jane@example.com ",
                "textContent": "Hi",
                "htmlContent": "<p>Hi</p>",
            }
        )
    )

    await handler.execute_task()

    assert len(email_provider.sent) == 1
    sent = email_provider.sent[0]
    assert sent.sender == "noreply@example.com"
    assert sent.to == "jane@example.com"
    assert sent.subject == DEFAULT_EMAIL_SUBJECT
    assert sent.text == "Hi"
    assert sent.html == "<p>Hi</p>"


@pytest.mark.asyncio
async def test_execute_uses_configured_subject_and_propagates_failures(
    make_email_provider,
) -> None:
    provider = make_email_provider(failures=1)
    handler = _handler(provider, subject="Graduation")
    handler.parse_payload(json.dumps({"recipientEmail": "jane@example.com", "textContent": "Hi"}))

    with pytest.raises(DeliveryFailure):
        await handler.execute_task()

    assert provider.sent[0].subject == "Graduation"
    assert provider.sent[0].html is None


def test_is_valid_email_address() -> None:
    assert is_valid_email_address("jane.doe@example.com")
    assert not is_valid_email_address("jane.doe")
    assert not is_valid_email_address("")


def test_model_serializes_with_camel_case_aliases() -> None:
    notification = EmailNotification(recipient_email="jane@example.com", text_content="Hi")

    dumped = json.loads(notification.model_dump_json(by_alias=True, exclude_none=True))

    assert dumped == {"recipientEmail": "jane@example.com", "textContent": "Hi"}
    assert notification.is_actionable()


@pytest.mark.asyncio
async def test_executing_twice_delivers_twice(email_provider) -> None:
    handler = _handler(email_provider)
    handler.parse_payload(json.dumps({"recipientEmail": "a@b.com", "textContent": "Hi"}))

    await handler.execute_task()
    await handler.execute_task()

    assert [sent.to for sent in email_provider.sent] == ["a@b.com", "a@b.com"]


def test_ensure_actionable_raises_validation_failure() -> None:
    with pytest.raises(ValidationFailure) as exc_info:
        EmailNotification(text_content="Hi").ensure_actionable()

    assert "recipientEmail is required" in str(exc_info.value)
