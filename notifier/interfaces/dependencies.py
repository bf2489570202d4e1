"""Wiring helpers building the collaborators of each process from settings."""

from __future__ import annotations

from notifier.application.handlers import EmailHandler, HandlerRegistry
from notifier.application.jobs import GraduationWorker
from notifier.application.ports import Broker, EmailDeliveryProvider, TaskApi
from notifier.config import Settings
from notifier.domain.entities import NotificationKind
from notifier.domain.exceptions import ConfigurationError
from notifier.infrastructure.api_client import DexApiClient
from notifier.infrastructure.broker import RedisStreamBroker
from notifier.infrastructure.email import SendGridEmailProvider
from notifier.infrastructure.notifications import NotificationPublisher


def build_broker(settings: Settings) -> RedisStreamBroker:
    return RedisStreamBroker.from_url(
        settings.broker_url, dead_letter_stream=settings.dead_letter_stream
    )


def build_email_provider(settings: Settings) -> SendGridEmailProvider:
    if not (settings.sendgrid_api_key and settings.sendgrid_sender):
        raise ConfigurationError(
            "SENDGRID_API_KEY and SENDGRID_SENDER are required to run the dispatcher"
        )
    return SendGridEmailProvider(settings.sendgrid_api_key)


def build_handler_registry(
    settings: Settings, email_provider: EmailDeliveryProvider
) -> HandlerRegistry:
    """Register one handler factory per supported notification kind."""

    sender = settings.sendgrid_sender or ""
    subject = settings.email_subject

    registry = HandlerRegistry()
    registry.register(
        NotificationKind.EMAIL,
        lambda: EmailHandler(email_provider, sender=sender, subject=subject),
    )
    return registry


def build_api_client(settings: Settings) -> DexApiClient:
    if not settings.api_url:
        raise ConfigurationError("API_URL is required to run the scheduler")
    return DexApiClient.create(
        settings.api_url,
        timeout=settings.api_timeout_seconds,
        identity_url=settings.identity_url,
        client_id=settings.identity_client_id,
        client_secret=settings.identity_client_secret,
        scope=settings.identity_scope,
    )


def build_graduation_worker(
    settings: Settings, api: TaskApi, broker: Broker
) -> GraduationWorker:
    publisher = NotificationPublisher(broker, stream=settings.notification_stream)
    return GraduationWorker(
        api,
        publisher,
        interval_seconds=settings.job_interval_seconds,
        startup_delay_seconds=settings.job_startup_delay_seconds,
        time_range_months=settings.job_time_range_months,
    )


__all__ = [
    "build_api_client",
    "build_broker",
    "build_email_provider",
    "build_graduation_worker",
    "build_handler_registry",
]
