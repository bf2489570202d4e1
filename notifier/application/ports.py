"""Capabilities the application layer consumes from the infrastructure."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from notifier.domain.entities import UserTask


@dataclass(frozen=True)
class Delivery:
    """A message read from the broker together with what is needed to settle it."""

    message_id: str
    routing_key: str
    body: bytes
    attempt: int = 0
    not_before: float | None = None

    def is_due(self, now: float) -> bool:
        """Return ``True`` once a delayed retry may be attempted (epoch seconds)."""

        return self.not_before is None or self.not_before <= now


class Broker(Protocol):
    """Publish/consume primitives of the message broker."""

    async def publish(
        self,
        routing_key: str,
        body: bytes,
        *,
        attempt: int = 0,
        not_before: float | None = None,
    ) -> str:
        ...

    async def ensure_group(self, routing_key: str, group: str) -> None:
        ...

    async def consume(
        self,
        routing_key: str,
        group: str,
        consumer: str,
        *,
        count: int = 10,
        block_ms: int | None = None,
        start_id: str = ">",
    ) -> list[Delivery]:
        ...

    async def ack(self, delivery: Delivery, *, group: str) -> None:
        ...

    async def nack(
        self,
        delivery: Delivery,
        *,
        group: str,
        requeue: bool,
        delay_seconds: float = 0.0,
    ) -> None:
        ...

    async def claim_stale(
        self,
        routing_key: str,
        group: str,
        consumer: str,
        *,
        min_idle_ms: int,
        start_id: str = "0-0",
        count: int = 10,
    ) -> tuple[str, list[Delivery]]:
        """Take over entries of any consumer idle for ``min_idle_ms``.

        Returns the cursor to continue from (``"0-0"`` once the scan is
        complete) and the claimed deliveries.
        """
        ...

    async def dead_letter(
        self, delivery: Delivery, *, group: str, reason: str, error: str | None = None
    ) -> None:
        ...


class EmailDeliveryProvider(Protocol):
    """Sends one email; raises ``DeliveryFailure`` when the provider fails."""

    async def send_email(
        self,
        sender: str,
        to: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        ...


class TaskApi(Protocol):
    """Endpoints of the DeX API used by the graduation scheduler."""

    async def get_expected_graduation_users(
        self, time_range_months: int
    ) -> Sequence[UserTask]:
        ...

    async def set_graduation_task_status_to_mailed(self, task_id: int) -> None:
        ...


__all__ = ["Broker", "Delivery", "EmailDeliveryProvider", "TaskApi"]
