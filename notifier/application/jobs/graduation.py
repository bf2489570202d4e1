"""Background job notifying users who are expected to graduate."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from html import escape
from typing import Protocol

from notifier.application.ports import TaskApi
from notifier.domain.entities import NotificationKind, UserTask
from notifier.domain.exceptions import NotificationError, ValidationFailure
from notifier.schemas import EmailNotification
from notifier.utils import wait_for_shutdown

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def publish(self, kind: NotificationKind | str, notification: object) -> str:
        ...


@dataclass
class GraduationJobReport:
    """Counters describing one run of the graduation job."""

    found: int = 0
    skipped: int = 0
    published: int = 0
    marked: int = 0
    failed: int = 0


def build_graduation_email(task: UserTask, *, time_range_months: int) -> EmailNotification:
    """Return the email sent to the user of ``task``."""

    greeting = f"Hi {task.user.name}," if task.user.name else "Hi,"
    text_content = "\n\n".join(
        (
            greeting,
            "According to DeX you are expected to graduate within the next "
            f"{time_range_months} months.",
            "Take a moment to review your projects and make sure everything you "
            "want to keep is up to date before you graduate.",
            "Kind regards,\nThe DeX team",
        )
    )
    html_greeting = (
        f"<p>Hi {escape(task.user.name)},</p>" if task.user.name else "<p>Hi,</p>"
    )
    html_content = "".join(
        (
            html_greeting,
            "<p>According to DeX you are expected to graduate within the next "
            f"<strong>{time_range_months} months</strong>.</p>",
            "<p>Take a moment to review your projects and make sure everything you "
            "want to keep is up to date before you graduate.</p>",
            "<p>Kind regards,<br>The DeX team</p>",
        )
    )
    return EmailNotification(
        recipient_email=task.user.email,
        text_content=text_content,
        html_content=html_content,
    )


class GraduationWorker:
    """Periodically publish graduation reminders for the tasks returned by the API.

    Publishing happens before the task is marked as mailed. A crash between the
    two steps may send a reminder twice but never loses one.
    """

    def __init__(
        self,
        api: TaskApi,
        publisher: NotificationSink,
        *,
        interval_seconds: float,
        startup_delay_seconds: float = 10.0,
        time_range_months: int = 6,
    ) -> None:
        self._api = api
        self._publisher = publisher
        self._interval_seconds = interval_seconds
        self._startup_delay_seconds = startup_delay_seconds
        self._time_range_months = time_range_months
        self.iterations = 0

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run the job every ``interval_seconds`` until ``shutdown_event`` is set."""

        # Startup delay.
        if await wait_for_shutdown(shutdown_event, self._startup_delay_seconds):
            logger.info("Graduation job stopped before its first run")
            return

        while not shutdown_event.is_set():
            self.iterations += 1
            logger.info(
                "Graduation job started: %s", datetime.now(timezone.utc).isoformat()
            )
            try:
                report = await self.run_once()
            except Exception:  # noqa: BLE001
                logger.critical("Graduation job failed", exc_info=True)
            else:
                logger.info(
                    "Graduation job finished: %s (found %s, skipped %s, published %s, marked %s, failed %s)",
                    datetime.now(timezone.utc).isoformat(),
                    report.found,
                    report.skipped,
                    report.published,
                    report.marked,
                    report.failed,
                )

            if await wait_for_shutdown(shutdown_event, self._interval_seconds):
                break

        logger.info("Graduation job stopped")

    async def run_once(self) -> GraduationJobReport:
        """Notify every user currently expected to graduate."""

        report = GraduationJobReport()
        tasks = await self._api.get_expected_graduation_users(self._time_range_months)
        report.found = len(tasks)

        for task in tasks:
            if not task.is_open():
                report.skipped += 1
                logger.info(
                    "Skipping user task %s with status %s", task.id, task.status.value
                )
                continue

            try:
                notification = build_graduation_email(
                    task, time_range_months=self._time_range_months
                ).ensure_actionable()
                await self._publisher.publish(NotificationKind.EMAIL, notification)
            except ValidationFailure as exc:
                report.failed += 1
                logger.warning(
                    "Skipping graduation notification for user %s: %s", task.user.id, exc
                )
                continue
            except NotificationError:
                report.failed += 1
                logger.exception(
                    "Could not publish graduation notification for user %s", task.user.id
                )
                continue
            report.published += 1
            logger.info("Found expected graduating user: %s", task.user.id)

            try:
                await self._api.set_graduation_task_status_to_mailed(task.id)
            except NotificationError:
                report.failed += 1
                logger.exception("Could not mark user task %s as mailed", task.id)
                continue
            report.marked += 1

        return report


__all__ = ["GraduationJobReport", "GraduationWorker", "build_graduation_email"]
