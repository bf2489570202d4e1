"""Entry points for the notification dispatcher and the graduation scheduler."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Sequence

from pydantic import ValidationError

from notifier.application.dispatcher import run_dispatchers
from notifier.config import Settings, get_settings
from notifier.domain.exceptions import BrokerError, ConfigurationError
from notifier.interfaces.dependencies import (
    build_api_client,
    build_broker,
    build_email_provider,
    build_graduation_worker,
    build_handler_registry,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
COMMANDS = ("dispatcher", "scheduler")


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for a worker process."""

    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set ``shutdown_event`` when the process receives SIGINT or SIGTERM."""

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, shutdown_event.set)
        except NotImplementedError:
            # Event loops without signal support (Windows) fall back to signal.signal.
            signal.signal(
                signum, lambda *_: loop.call_soon_threadsafe(shutdown_event.set)
            )


async def run_dispatcher(settings: Settings, shutdown_event: asyncio.Event) -> None:
    """Consume notification envelopes until shutdown."""

    email_provider = build_email_provider(settings)
    registry = build_handler_registry(settings, email_provider)

    async with build_broker(settings) as broker:
        logger.info(
            "Starting %s dispatcher worker(s) on %s",
            settings.dispatcher_workers,
            settings.notification_stream,
        )
        await run_dispatchers(
            broker,
            registry,
            shutdown_event,
            stream=settings.notification_stream,
            group=settings.consumer_group,
            consumer_name=settings.consumer_name,
            workers=settings.dispatcher_workers,
            max_attempts=settings.max_delivery_attempts,
            batch_size=settings.dispatcher_batch_size,
            block_ms=settings.dispatcher_block_ms,
            dead_letter_rejected=settings.dead_letter_rejected,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            retry_backoff_max_seconds=settings.retry_backoff_max_seconds,
            claim_idle_ms=settings.claim_idle_ms,
            claim_interval_seconds=settings.claim_interval_seconds,
        )


async def run_scheduler(settings: Settings, shutdown_event: asyncio.Event) -> None:
    """Run the graduation job until shutdown."""

    api = build_api_client(settings)
    async with api, build_broker(settings) as broker:
        worker = build_graduation_worker(settings, api, broker)
        logger.info(
            "Starting graduation job every %s seconds", settings.job_interval_seconds
        )
        await worker.run(shutdown_event)


async def serve(command: str, settings: Settings) -> None:
    shutdown_event = asyncio.Event()
    install_signal_handlers(shutdown_event)
    if command == "dispatcher":
        await run_dispatcher(settings, shutdown_event)
    elif command == "scheduler":
        await run_scheduler(settings, shutdown_event)
    else:
        raise ValueError(f"Unknown command {command!r}")


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point.

    Example:
        python -m notifier.main dispatcher
        python -m notifier.main scheduler
    """

    parser = argparse.ArgumentParser(description="DeX notification service")
    parser.add_argument("command", choices=COMMANDS, help="Process to run")
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        configure_logging()
        logger.critical("Invalid configuration: %s", exc)
        return 1

    configure_logging(settings.log_level)
    try:
        asyncio.run(serve(args.command, settings))
    except (BrokerError, ConfigurationError) as exc:
        logger.critical("The %s could not start: %s", args.command, exc)
        return 1
    return 0


def dispatcher_main() -> int:
    return main(["dispatcher"])


def scheduler_main() -> int:
    return main(["scheduler"])


if __name__ == "__main__":
    raise SystemExit(main())
