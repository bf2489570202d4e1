"""Shared fixtures and in-memory stand-ins for the notification tests."""

from __future__ import annotations

import asyncio
import os
import time
from collections import defaultdict
from dataclasses import dataclass

import pytest

os.environ.setdefault("SENDGRID_API_KEY", "SG.test")
os.environ.setdefault("SENDGRID_SENDER", "noreply@example.com")
os.environ.setdefault("API_URL", "https://api.example.com")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from notifier.application.ports import Delivery
from notifier.config import reset_settings_cache
from notifier.domain.entities import NotificationEnvelope
from notifier.domain.exceptions import DeliveryFailure


def _sequence(message_id: str) -> int:
    return int(message_id.split("-", 1)[0])


class FakeBroker:
    """Broker keeping streams, pending entries and settlements in memory."""

    def __init__(self) -> None:
        self.streams: dict[str, list[Delivery]] = defaultdict(list)
        self.pending: dict[str, Delivery] = {}
        self.owners: dict[str, str] = {}
        self.read_at: dict[str, float] = {}
        self.published: list[tuple[str, bytes]] = []
        self.acked: list[str] = []
        self.requeued: list[str] = []
        self.dead_letters: list[tuple[Delivery, str, str | None]] = []
        self.groups: set[tuple[str, str]] = set()
        self.consumers: set[str] = set()
        self.claims: list[str] = []
        self._counter = 0

    async def publish(
        self,
        routing_key: str,
        body: bytes,
        *,
        attempt: int = 0,
        not_before: float | None = None,
    ) -> str:
        self._counter += 1
        message_id = f"{self._counter}-0"
        self.published.append((routing_key, body))
        self.streams[routing_key].append(
            Delivery(
                message_id=message_id,
                routing_key=routing_key,
                body=body,
                attempt=attempt,
                not_before=not_before,
            )
        )
        return message_id

    async def ensure_group(self, routing_key: str, group: str) -> None:
        self.groups.add((routing_key, group))

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
        self.consumers.add(consumer)
        if start_id != ">":
            after = _sequence(start_id)
            return [
                delivery
                for delivery in self.pending.values()
                if delivery.routing_key == routing_key
                and self.owners[delivery.message_id] == consumer
                and _sequence(delivery.message_id) > after
            ][:count]

        queue = self.streams[routing_key]
        batch = queue[:count]
        del queue[:count]
        for delivery in batch:
            self.pending[delivery.message_id] = delivery
            self.owners[delivery.message_id] = consumer
            self.read_at[delivery.message_id] = time.monotonic()
        if not batch:
            await asyncio.sleep(0.005)
        return batch

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
        self.claims.append(consumer)
        now = time.monotonic()
        after = _sequence(start_id)
        claimed = [
            delivery
            for delivery in self.pending.values()
            if delivery.routing_key == routing_key
            and _sequence(delivery.message_id) > after
            and (now - self.read_at[delivery.message_id]) * 1000 >= min_idle_ms
        ][:count]
        for delivery in claimed:
            self.owners[delivery.message_id] = consumer
            self.read_at[delivery.message_id] = now
        cursor = claimed[-1].message_id if len(claimed) == count else "0-0"
        return cursor, claimed

    async def ack(self, delivery: Delivery, *, group: str) -> None:
        self.pending.pop(delivery.message_id, None)
        self.acked.append(delivery.message_id)

    async def nack(
        self,
        delivery: Delivery,
        *,
        group: str,
        requeue: bool,
        delay_seconds: float = 0.0,
    ) -> None:
        if requeue:
            self.requeued.append(delivery.message_id)
            await self.publish(
                delivery.routing_key,
                delivery.body,
                attempt=delivery.attempt + 1,
                not_before=time.time() + delay_seconds if delay_seconds > 0 else None,
            )
        await self.ack(delivery, group=group)

    async def dead_letter(
        self, delivery: Delivery, *, group: str, reason: str, error: str | None = None
    ) -> None:
        self.dead_letters.append((delivery, reason, error))
        await self.ack(delivery, group=group)

    def envelopes(self, routing_key: str | None = None) -> list[NotificationEnvelope]:
        return [
            NotificationEnvelope.from_bytes(body)
            for key, body in self.published
            if routing_key is None or key == routing_key
        ]


@dataclass
class SentEmail:
    sender: str
    to: str
    subject: str
    text: str
    html: str | None


class RecordingEmailProvider:
    """Email provider recording every delivery attempt."""

    def __init__(self, *, failures: int = 0, retryable: bool = True) -> None:
        self.sent: list[SentEmail] = []
        self.sent_at: list[float] = []
        self.failures = failures
        self.retryable = retryable

    async def send_email(
        self,
        sender: str,
        to: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        self.sent.append(SentEmail(sender, to, subject, text, html))
        self.sent_at.append(time.monotonic())
        if self.failures > 0:
            self.failures -= 1
            raise DeliveryFailure("provider unavailable", retryable=self.retryable)
        return f"message-{len(self.sent)}"


async def eventually(predicate, *, timeout: float = 2.0) -> None:
    """Wait until ``predicate()`` holds or fail after ``timeout`` seconds."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture()
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture()
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture()
def eventually_fn():
    return eventually


@pytest.fixture()
def make_email_provider():
    return RecordingEmailProvider
