"""Pydantic models describing notification payloads."""

from __future__ import annotations

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
)

from notifier.domain.exceptions import ValidationFailure

_EMAIL_ADAPTER: TypeAdapter[str] = TypeAdapter(EmailStr)


def _aliases(camel: str, snake: str) -> AliasChoices:
    # Older publishers serialized properties in PascalCase.
    pascal = camel[0].upper() + camel[1:]
    return AliasChoices(camel, pascal, snake)


class EmailNotification(BaseModel):
    """Payload of an ``EMAIL`` notification.

    Every field is optional at parse time: a payload missing its recipient is
    well formed but not actionable, which :meth:`validation_errors` reports.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    recipient_email: str | None = Field(
        default=None,
        validation_alias=_aliases("recipientEmail", "recipient_email"),
        serialization_alias="recipientEmail",
    )
    text_content: str | None = Field(
        default=None,
        validation_alias=_aliases("textContent", "text_content"),
        serialization_alias="textContent",
    )
    html_content: str | None = Field(
        default=None,
        validation_alias=_aliases("htmlContent", "html_content"),
        serialization_alias="htmlContent",
    )

    def validation_errors(self) -> list[str]:
        """Return the business rules violated by this payload."""

        errors: list[str] = []
        recipient = (self.recipient_email or "").strip()
        if not recipient:
            errors.append("recipientEmail is required")
        elif not is_valid_email_address(recipient):
            errors.append("recipientEmail is not a valid email address")

        if not self.text_content:
            errors.append("textContent is required")
        return errors

    def is_actionable(self) -> bool:
        """Return ``True`` when the payload can be delivered."""

        return not self.validation_errors()

    def ensure_actionable(self) -> "EmailNotification":
        """Return ``self`` or raise :class:`ValidationFailure` listing the violations."""

        errors = self.validation_errors()
        if errors:
            raise ValidationFailure("; ".join(errors))
        return self


def is_valid_email_address(value: str) -> bool:
    """Return ``True`` when ``value`` is a syntactically valid address."""

    try:
        _EMAIL_ADAPTER.validate_python(value)
    except ValidationError:
        return False
    return True


__all__ = ["EmailNotification", "is_valid_email_address"]
