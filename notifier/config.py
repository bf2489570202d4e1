"""Application configuration settings."""

from __future__ import annotations

import socket
from functools import lru_cache
from urllib.parse import quote

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"

DEFAULT_EMAIL_SUBJECT = "You have a new notification on DeX"


def _default_consumer_name() -> str:
    return f"dispatcher-{socket.gethostname()}"


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    broker_host: str = Field(
        default="localhost",
        description="Hostname of the Redis server used as message broker",
        min_length=1,
    )
    broker_port: int = Field(default=6379, gt=0, lt=65536)
    broker_username: str | None = Field(default=None)
    broker_password: str | None = Field(default=None)
    broker_db: int = Field(default=0, ge=0)

    notification_stream: str = Field(
        default="notifications",
        description="Stream that carries notification envelopes",
        min_length=1,
    )
    dead_letter_stream: str = Field(
        default="notifications:dead-letter",
        description="Stream receiving messages that exhausted their delivery attempts",
        min_length=1,
    )
    consumer_group: str = Field(default="notification-dispatchers", min_length=1)
    consumer_name: str = Field(default_factory=_default_consumer_name, min_length=1)
    dispatcher_workers: int = Field(default=1, ge=1)
    dispatcher_batch_size: int = Field(default=10, ge=1)
    dispatcher_block_ms: int = Field(
        default=1000,
        description="Maximum time a worker blocks waiting for new messages",
        gt=0,
    )
    max_delivery_attempts: int = Field(
        default=5,
        description="Number of delivery attempts before a message is dead-lettered",
        ge=1,
    )
    dead_letter_rejected: bool = Field(
        default=False,
        description="Also copy permanently rejected messages to the dead-letter stream",
    )
    retry_backoff_seconds: float = Field(
        default=5.0,
        description="Delay before the first retry of a failed delivery, doubled on every attempt",
        ge=0,
    )
    retry_backoff_max_seconds: float = Field(default=120.0, ge=0)
    claim_idle_ms: int = Field(
        default=300_000,
        description="Unacknowledged messages idle this long are taken over from other consumers",
        gt=0,
    )
    claim_interval_seconds: float = Field(default=30.0, gt=0)

    sendgrid_api_key: str | None = Field(
        default=None,
        description="SendGrid API key used for sending notification emails via the REST API",
    )
    sendgrid_sender: str | None = Field(
        default=None,
        description="Email address that will appear as the sender of notification emails",
        min_length=3,
    )
    email_subject: str = Field(default=DEFAULT_EMAIL_SUBJECT, min_length=1)

    api_url: str | None = Field(
        default=None, description="Base URL of the DeX REST API queried by the scheduler"
    )
    identity_url: str | None = Field(
        default=None, description="Base URL of the identity server issuing API tokens"
    )
    identity_client_id: str | None = Field(default=None)
    identity_client_secret: str | None = Field(default=None)
    identity_scope: str = Field(default="dex-api")
    api_timeout_seconds: float = Field(default=30.0, gt=0)

    job_interval_seconds: float = Field(
        default=6 * 60 * 60,
        description="Time between two graduation job runs",
        gt=0,
    )
    job_startup_delay_seconds: float = Field(
        default=10.0,
        description="Delay before the first run so the API and identity server can start",
        ge=0,
    )
    job_time_range_months: int = Field(
        default=6,
        description="Users expected to graduate between now and this many months are notified",
        gt=0,
    )

    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def _validate_sendgrid_pair(self) -> "Settings":
        if bool(self.sendgrid_api_key) ^ bool(self.sendgrid_sender):
            raise ValueError(
                "SENDGRID_API_KEY and SENDGRID_SENDER must both be provided to enable email"
            )
        if self.sendgrid_sender and "@" not in self.sendgrid_sender:
            raise ValueError("SENDGRID_SENDER must be a valid email address")
        return self

    @model_validator(mode="after")
    def _validate_retry_window(self) -> "Settings":
        if (
            self.retry_backoff_seconds > 0
            and self.retry_backoff_max_seconds * 1000 >= self.claim_idle_ms
        ):
            raise ValueError("RETRY_BACKOFF_MAX_SECONDS must stay below CLAIM_IDLE_MS")
        return self

    @model_validator(mode="after")
    def _validate_identity_credentials(self) -> "Settings":
        if self.identity_url and not (
            self.identity_client_id and self.identity_client_secret
        ):
            raise ValueError(
                "IDENTITY_CLIENT_ID and IDENTITY_CLIENT_SECRET are required when IDENTITY_URL is set"
            )
        return self

    @property
    def broker_url(self) -> str:
        """Return the ``redis://`` URL assembled from the broker settings."""

        credentials = ""
        if self.broker_username or self.broker_password:
            username = quote(self.broker_username or "", safe="")
            password = quote(self.broker_password or "", safe="")
            credentials = f"{username}:{password}@"
        return f"redis://{credentials}{self.broker_host}:{self.broker_port}/{self.broker_db}"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()


__all__ = [
    "DEFAULT_EMAIL_SUBJECT",
    "Settings",
    "get_settings",
    "reset_settings_cache",
]
