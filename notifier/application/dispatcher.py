"""Consumer loop routing broker messages to notification handlers."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from enum import Enum
from typing import Any

from notifier.domain.entities import NotificationEnvelope
from notifier.domain.exceptions import (
    BrokerError,
    DeliveryFailure,
    MalformedPayload,
    UnknownKind,
)
from notifier.utils import wait_for_shutdown

from .handlers import HandlerRegistry
from .ports import Broker, Delivery

logger = logging.getLogger(__name__)

READ_ERROR_BACKOFF_SECONDS = 1.0
CLAIM_SCAN_DONE = ("0-0", "0", "")


class DispatchOutcome(str, Enum):
    EXECUTED = "executed"
    UNKNOWN_KIND = "unknown_kind"
    MALFORMED = "malformed"
    VALIDATION_FAILED = "validation_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    DEFERRED = "deferred"
    FAILED = "failed"


_REJECTIONS = {
    DispatchOutcome.UNKNOWN_KIND,
    DispatchOutcome.MALFORMED,
    DispatchOutcome.VALIDATION_FAILED,
}


class Dispatcher:
    """Pull envelopes from the broker and run parse, validate and execute.

    A message is acknowledged only after it was delivered or deliberately
    discarded, so a worker dying mid-message leaves it pending. The same
    consumer re-reads it on restart; any other consumer claims it once it has
    been idle for ``claim_idle_ms``.

    Failed deliveries are re-published with an exponential delay. Entries read
    before their delay elapsed are held in memory, still unacknowledged, until
    they are due.
    """

    def __init__(
        self,
        broker: Broker,
        registry: HandlerRegistry,
        *,
        stream: str,
        group: str,
        consumer: str,
        max_attempts: int = 5,
        batch_size: int = 10,
        block_ms: int = 1000,
        dead_letter_rejected: bool = False,
        retry_backoff_seconds: float = 5.0,
        retry_backoff_max_seconds: float = 120.0,
        claim_idle_ms: int = 300_000,
        claim_interval_seconds: float = 30.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        backoff_ms = retry_backoff_max_seconds * 1000
        if retry_backoff_seconds > 0 and backoff_ms >= claim_idle_ms:
            # Delayed retries held in memory must not look stale to other consumers.
            raise ValueError("retry_backoff_max_seconds must stay below claim_idle_ms")
        self._broker = broker
        self._registry = registry
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._max_attempts = max_attempts
        self._batch_size = batch_size
        self._block_ms = block_ms
        self._dead_letter_rejected = dead_letter_rejected
        self._retry_backoff_seconds = retry_backoff_seconds
        self._retry_backoff_max_seconds = retry_backoff_max_seconds
        self._claim_idle_ms = claim_idle_ms
        self._claim_interval_seconds = claim_interval_seconds
        self._deferred: dict[str, Delivery] = {}

    @property
    def consumer(self) -> str:
        return self._consumer

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Consume messages until ``shutdown_event`` is set."""

        await self._broker.ensure_group(self._stream, self._group)
        await self._recover_pending(shutdown_event)
        await self._claim_stale(shutdown_event)

        logger.info(
            "Dispatcher %s consuming %s (group %s, kinds %s)",
            self._consumer,
            self._stream,
            self._group,
            ", ".join(self._registry.kinds) or "none",
        )

        loop = asyncio.get_running_loop()
        next_claim = loop.time() + self._claim_interval_seconds
        while not shutdown_event.is_set():
            await self.process(self._take_due())

            if loop.time() >= next_claim:
                await self._claim_stale(shutdown_event)
                next_claim = loop.time() + self._claim_interval_seconds

            try:
                deliveries = await self._broker.consume(
                    self._stream,
                    self._group,
                    self._consumer,
                    count=self._batch_size,
                    block_ms=self._next_block_ms(),
                )
            except BrokerError:
                logger.exception(
                    "Dispatcher %s failed to read from %s; retrying",
                    self._consumer,
                    self._stream,
                )
                await wait_for_shutdown(shutdown_event, READ_ERROR_BACKOFF_SECONDS)
                continue

            # The whole batch is drained even if shutdown was requested meanwhile.
            await self.process(deliveries)

        if self._deferred:
            logger.info(
                "Dispatcher %s stopped with %s delayed retry(ies) left pending",
                self._consumer,
                len(self._deferred),
            )
        logger.info("Dispatcher %s stopped", self._consumer)

    async def process(self, deliveries: Sequence[Delivery]) -> list[DispatchOutcome]:
        """Handle ``deliveries`` one after the other."""

        outcomes: list[DispatchOutcome] = []
        for delivery in deliveries:
            try:
                outcomes.append(await self.handle(delivery))
            except BrokerError:
                # Left unacknowledged; the entry stays pending and is retried on restart.
                logger.exception(
                    "Dispatcher %s could not settle message %s",
                    self._consumer,
                    delivery.message_id,
                )
                outcomes.append(DispatchOutcome.FAILED)
        return outcomes

    async def handle(self, delivery: Delivery) -> DispatchOutcome:
        """Run the parse, validate and execute pipeline for one delivery."""

        self._deferred.pop(delivery.message_id, None)
        if not delivery.is_due(time.time()):
            self._deferred[delivery.message_id] = delivery
            logger.debug(
                "Message %s deferred until %s", delivery.message_id, delivery.not_before
            )
            return DispatchOutcome.DEFERRED

        try:
            envelope = NotificationEnvelope.from_bytes(delivery.body)
        except MalformedPayload as exc:
            logger.warning(
                "Discarding message %s: unreadable envelope (%s)",
                delivery.message_id,
                exc,
            )
            return await self._reject(delivery, DispatchOutcome.MALFORMED, str(exc))

        try:
            handler = self._registry.resolve(envelope.kind)
        except UnknownKind as exc:
            logger.error(
                "Discarding notification %s: %s. Publisher and dispatcher versions differ.",
                envelope.id,
                exc,
            )
            return await self._reject(delivery, DispatchOutcome.UNKNOWN_KIND, str(exc))

        try:
            handler.parse_payload(envelope.payload)
        except MalformedPayload as exc:
            logger.warning(
                "Discarding %s notification %s: %s", envelope.kind, envelope.id, exc
            )
            return await self._reject(delivery, DispatchOutcome.MALFORMED, str(exc))
        except Exception as exc:  # noqa: BLE001
            return await self._handler_error(delivery, envelope, exc)

        try:
            valid = handler.validate_payload()
        except Exception as exc:  # noqa: BLE001
            return await self._handler_error(delivery, envelope, exc)

        if not valid:
            logger.warning(
                "Discarding %s notification %s: payload failed validation",
                envelope.kind,
                envelope.id,
            )
            return await self._reject(
                delivery, DispatchOutcome.VALIDATION_FAILED, "payload failed validation"
            )

        try:
            await handler.execute_task()
        except DeliveryFailure as exc:
            return await self._delivery_failed(delivery, envelope, exc)
        except Exception as exc:  # noqa: BLE001
            return await self._handler_error(delivery, envelope, exc)

        await self._broker.ack(delivery, group=self._group)
        logger.debug("Notification %s delivered", envelope.id)
        return DispatchOutcome.EXECUTED

    async def _delivery_failed(
        self,
        delivery: Delivery,
        envelope: NotificationEnvelope,
        exc: DeliveryFailure,
    ) -> DispatchOutcome:
        next_attempt = delivery.attempt + 1
        if exc.retryable and next_attempt < self._max_attempts:
            delay = self.retry_delay(delivery.attempt)
            logger.warning(
                "Delivery of %s notification %s failed (attempt %s/%s), retrying in %.1fs: %s",
                envelope.kind,
                envelope.id,
                next_attempt,
                self._max_attempts,
                delay,
                exc,
            )
            await self._broker.nack(
                delivery, group=self._group, requeue=True, delay_seconds=delay
            )
            return DispatchOutcome.RETRY_SCHEDULED

        logger.error(
            "Delivery of %s notification %s failed permanently after %s attempt(s): %s",
            envelope.kind,
            envelope.id,
            next_attempt,
            exc,
        )
        await self._broker.dead_letter(
            delivery, group=self._group, reason="delivery_failed", error=str(exc)
        )
        return DispatchOutcome.DEAD_LETTERED

    def retry_delay(self, attempt: int) -> float:
        """Return the delay before retrying a delivery that failed on ``attempt``."""

        if self._retry_backoff_seconds <= 0:
            return 0.0
        return min(
            self._retry_backoff_seconds * 2**attempt, self._retry_backoff_max_seconds
        )

    async def _handler_error(
        self, delivery: Delivery, envelope: NotificationEnvelope, exc: Exception
    ) -> DispatchOutcome:
        logger.error(
            "Unexpected error while handling %s notification %s",
            envelope.kind,
            envelope.id,
            exc_info=exc,
        )
        await self._broker.dead_letter(
            delivery, group=self._group, reason="handler_error", error=repr(exc)
        )
        return DispatchOutcome.FAILED

    async def _reject(
        self, delivery: Delivery, outcome: DispatchOutcome, error: str
    ) -> DispatchOutcome:
        if self._dead_letter_rejected and outcome in _REJECTIONS:
            await self._broker.dead_letter(
                delivery, group=self._group, reason=outcome.value, error=error
            )
        else:
            await self._broker.ack(delivery, group=self._group)
        return outcome

    def _take_due(self) -> list[Delivery]:
        now = time.time()
        return [
            delivery for delivery in self._deferred.values() if delivery.is_due(now)
        ]

    def _next_block_ms(self) -> int:
        if not self._deferred:
            return self._block_ms
        next_due = min(delivery.not_before or 0.0 for delivery in self._deferred.values())
        wait_ms = int((next_due - time.time()) * 1000)
        return max(1, min(self._block_ms, wait_ms))

    async def _recover_pending(self, shutdown_event: asyncio.Event) -> None:
        """Reprocess messages delivered to this consumer but never acknowledged."""

        last_id = "0"
        while not shutdown_event.is_set():
            try:
                deliveries = await self._broker.consume(
                    self._stream,
                    self._group,
                    self._consumer,
                    count=self._batch_size,
                    start_id=last_id,
                )
            except BrokerError:
                logger.exception(
                    "Dispatcher %s pending recovery failed", self._consumer
                )
                return
            if not deliveries:
                return
            logger.info(
                "Dispatcher %s recovering %s pending message(s)",
                self._consumer,
                len(deliveries),
            )
            await self.process(deliveries)
            last_id = deliveries[-1].message_id

    async def _claim_stale(self, shutdown_event: asyncio.Event) -> None:
        """Take over messages other consumers read but never acknowledged."""

        cursor = "0-0"
        while not shutdown_event.is_set():
            try:
                cursor, deliveries = await self._broker.claim_stale(
                    self._stream,
                    self._group,
                    self._consumer,
                    min_idle_ms=self._claim_idle_ms,
                    start_id=cursor,
                    count=self._batch_size,
                )
            except BrokerError:
                logger.exception("Dispatcher %s stale claim failed", self._consumer)
                return
            if deliveries:
                logger.warning(
                    "Dispatcher %s took over %s stale message(s)",
                    self._consumer,
                    len(deliveries),
                )
                await self.process(deliveries)
            if cursor in CLAIM_SCAN_DONE:
                return


async def run_dispatchers(
    broker: Broker,
    registry: HandlerRegistry,
    shutdown_event: asyncio.Event,
    *,
    stream: str,
    group: str,
    consumer_name: str,
    workers: int = 1,
    **options: Any,
) -> None:
    """Run ``workers`` independent dispatchers until shutdown.

    ``options`` are passed to every :class:`Dispatcher`.
    """

    dispatchers = [
        Dispatcher(
            broker,
            registry,
            stream=stream,
            group=group,
            consumer=f"{consumer_name}-{index}",
            **options,
        )
        for index in range(workers)
    ]
    await asyncio.gather(*(dispatcher.run(shutdown_event) for dispatcher in dispatchers))


__all__ = ["DispatchOutcome", "Dispatcher", "run_dispatchers"]
