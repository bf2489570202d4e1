"""Message broker backed by Redis Streams and consumer groups."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from notifier.application.ports import Delivery
from notifier.domain.exceptions import BrokerError

logger = logging.getLogger(__name__)

BODY_FIELD = "body"
ATTEMPT_FIELD = "attempt"
NOT_BEFORE_FIELD = "not_before"


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _field(fields: Mapping[Any, Any], name: str) -> Any:
    value = fields.get(name.encode())
    if value is None:
        value = fields.get(name)
    return value


def _optional_float(value: Any) -> float | None:
    try:
        return float(_decode(value)) if value not in (None, b"", "") else None
    except ValueError:
        return None


class RedisStreamBroker:
    """Publish and consume broker messages through Redis Streams.

    The routing key is the stream name. Messages read through a consumer group
    stay in the group's pending list until they are acknowledged, which gives
    at-least-once delivery across worker crashes.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        dead_letter_stream: str,
        maxlen: int | None = 100_000,
    ) -> None:
        self._redis = redis
        self._dead_letter_stream = dead_letter_stream
        self._maxlen = maxlen

    @classmethod
    def from_url(cls, url: str, *, dead_letter_stream: str) -> "RedisStreamBroker":
        """Create a broker owning a new Redis connection pool for ``url``."""

        return cls(Redis.from_url(url), dead_letter_stream=dead_letter_stream)

    async def __aenter__(self) -> "RedisStreamBroker":
        try:
            await self.ping()
        except BrokerError:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def ping(self) -> None:
        """Raise :class:`BrokerError` when Redis cannot be reached."""

        try:
            await self._redis.ping()
        except RedisError as exc:
            raise BrokerError(f"Cannot reach the message broker: {exc}") from exc

    async def close(self) -> None:
        await self._redis.aclose()

    async def publish(
        self,
        routing_key: str,
        body: bytes,
        *,
        attempt: int = 0,
        not_before: float | None = None,
    ) -> str:
        fields = {BODY_FIELD: body, ATTEMPT_FIELD: str(attempt)}
        if not_before is not None:
            fields[NOT_BEFORE_FIELD] = repr(not_before)
        try:
            message_id = await self._redis.xadd(
                routing_key, fields, maxlen=self._maxlen, approximate=True
            )
        except RedisError as exc:
            raise BrokerError(f"Failed to publish to {routing_key}: {exc}") from exc
        decoded = _decode(message_id)
        logger.debug("Published message %s to %s", decoded, routing_key)
        return decoded

    async def ensure_group(self, routing_key: str, group: str) -> None:
        """Create the consumer group (and the stream) when missing."""

        try:
            await self._redis.xgroup_create(routing_key, group, id="0", mkstream=True)
            logger.info("Created consumer group %s on %s", group, routing_key)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise BrokerError(
                    f"Failed to create consumer group {group}: {exc}"
                ) from exc
        except RedisError as exc:
            raise BrokerError(f"Failed to create consumer group {group}: {exc}") from exc

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
        """Read up to ``count`` messages for ``consumer``.

        ``start_id`` ``">"`` reads new messages. Any other id reads this
        consumer's pending (delivered but unacknowledged) messages after it;
        pages made only of trimmed entries are skipped.
        """

        while True:
            try:
                raw = await self._redis.xreadgroup(
                    group,
                    consumer,
                    {routing_key: start_id},
                    count=count,
                    block=block_ms if start_id == ">" and block_ms else None,
                )
            except RedisError as exc:
                raise BrokerError(f"Failed to read from {routing_key}: {exc}") from exc

            entries = [entry for _stream, page in raw or [] for entry in page]
            deliveries = await self._to_deliveries(routing_key, group, entries)
            if deliveries or start_id == ">" or not entries:
                return deliveries
            start_id = _decode(entries[-1][0])

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
        """Claim entries left unacknowledged by any consumer for ``min_idle_ms``."""

        try:
            response = await self._redis.xautoclaim(
                routing_key,
                group,
                consumer,
                min_idle_ms,
                start_id=start_id,
                count=count,
            )
        except RedisError as exc:
            raise BrokerError(
                f"Failed to claim stale messages on {routing_key}: {exc}"
            ) from exc

        next_id = _decode(response[0]) if response else "0-0"
        entries = [
            entry for entry in (response[1] if response else []) if entry[0] is not None
        ]
        deliveries = await self._to_deliveries(routing_key, group, entries)
        if deliveries:
            logger.info(
                "Consumer %s claimed %s stale message(s) on %s",
                consumer,
                len(deliveries),
                routing_key,
            )
        return next_id, deliveries

    async def ack(self, delivery: Delivery, *, group: str) -> None:
        await self._ack_ids(delivery.routing_key, group, delivery.message_id)

    async def nack(
        self,
        delivery: Delivery,
        *,
        group: str,
        requeue: bool,
        delay_seconds: float = 0.0,
    ) -> None:
        """Settle a failed delivery, re-publishing it first when ``requeue``.

        A positive ``delay_seconds`` stamps the copy with the wall-clock time
        before which dispatchers must not attempt it.
        """

        if requeue:
            not_before = time.time() + delay_seconds if delay_seconds > 0 else None
            await self.publish(
                delivery.routing_key,
                delivery.body,
                attempt=delivery.attempt + 1,
                not_before=not_before,
            )
        await self._ack_ids(delivery.routing_key, group, delivery.message_id)

    async def dead_letter(
        self, delivery: Delivery, *, group: str, reason: str, error: str | None = None
    ) -> None:
        """Move ``delivery`` to the dead-letter stream."""

        fields = {
            BODY_FIELD: delivery.body,
            ATTEMPT_FIELD: str(delivery.attempt),
            "reason": reason,
            "error": error or "",
            "source_stream": delivery.routing_key,
            "source_id": delivery.message_id,
            "dead_lettered_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._redis.xadd(self._dead_letter_stream, fields)
        except RedisError as exc:
            raise BrokerError(
                f"Failed to dead-letter message {delivery.message_id}: {exc}"
            ) from exc
        logger.info(
            "Message %s moved to %s (%s)",
            delivery.message_id,
            self._dead_letter_stream,
            reason,
        )
        await self._ack_ids(delivery.routing_key, group, delivery.message_id)

    async def _to_deliveries(
        self, routing_key: str, group: str, entries: list[Any]
    ) -> list[Delivery]:
        deliveries: list[Delivery] = []
        for message_id, fields in entries:
            if not fields:
                # Pending entry whose payload was trimmed from the stream.
                await self._ack_ids(routing_key, group, message_id)
                continue
            body = _field(fields, BODY_FIELD) or b""
            if isinstance(body, str):
                body = body.encode("utf-8")
            try:
                attempt = int(_decode(_field(fields, ATTEMPT_FIELD)) or 0)
            except ValueError:
                attempt = 0
            deliveries.append(
                Delivery(
                    message_id=_decode(message_id),
                    routing_key=routing_key,
                    body=body,
                    attempt=attempt,
                    not_before=_optional_float(_field(fields, NOT_BEFORE_FIELD)),
                )
            )
        return deliveries

    async def _ack_ids(self, routing_key: str, group: str, *message_ids: Any) -> None:
        try:
            await self._redis.xack(routing_key, group, *message_ids)
        except RedisError as exc:
            raise BrokerError(f"Failed to acknowledge on {routing_key}: {exc}") from exc


__all__ = ["ATTEMPT_FIELD", "BODY_FIELD", "NOT_BEFORE_FIELD", "RedisStreamBroker"]
