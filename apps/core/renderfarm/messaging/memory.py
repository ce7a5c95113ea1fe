"""In-memory broker channel used by local runs and tests."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import json
from typing import Any

from renderfarm.messaging.channel import MessageCallback


@dataclass(slots=True)
class Delivery:
    delivery_tag: int
    redelivered: bool = False


@dataclass(slots=True)
class MessageProperties:
    message_id: str | None = None
    headers: dict[str, Any] | None = None


@dataclass(slots=True)
class QueuedMessage:
    body: bytes
    properties: MessageProperties = field(default_factory=MessageProperties)
    redelivered: bool = False


@dataclass(slots=True)
class InMemoryChannel:
    """Single-process stand-in for a broker channel.

    Honours the prefetch bound: no new delivery is made while the number of
    unacknowledged deliveries equals ``prefetch_count`` (0 means unbounded).
    ``start_consuming`` returns once the queues are drained or delivery is
    blocked on unacknowledged messages.
    """

    queues: dict[str, deque[QueuedMessage]] = field(default_factory=dict)
    durable_queues: set[str] = field(default_factory=set)
    prefetch_count: int = 0
    acked: list[bytes] = field(default_factory=list)
    requeued: list[bytes] = field(default_factory=list)
    dead_lettered: list[bytes] = field(default_factory=list)
    max_unacked_observed: int = 0
    _consumers: dict[str, tuple[str, MessageCallback]] = field(default_factory=dict)
    _unacked: dict[int, tuple[str, QueuedMessage]] = field(default_factory=dict)
    _next_delivery_tag: int = 1
    _consuming: bool = False

    def queue_declare(self, queue: str, durable: bool = False) -> None:
        self.queues.setdefault(queue, deque())
        if durable:
            self.durable_queues.add(queue)

    def basic_qos(self, prefetch_count: int = 0) -> None:
        self.prefetch_count = prefetch_count

    def basic_consume(self, queue: str, on_message_callback: MessageCallback, auto_ack: bool = False) -> str:
        if auto_ack:
            raise ValueError("InMemoryChannel only supports manual acknowledgement")
        self.queues.setdefault(queue, deque())
        consumer_tag = f"ctag-{len(self._consumers) + 1}"
        self._consumers[consumer_tag] = (queue, on_message_callback)
        return consumer_tag

    def basic_ack(self, delivery_tag: int = 0) -> None:
        _, message = self._settle(delivery_tag)
        self.acked.append(message.body)

    def basic_nack(self, delivery_tag: int = 0, requeue: bool = True) -> None:
        queue, message = self._settle(delivery_tag)
        if requeue:
            message.redelivered = True
            self.queues[queue].appendleft(message)
            self.requeued.append(message.body)
        else:
            self.dead_lettered.append(message.body)

    def publish(
        self,
        queue: str,
        body: bytes | str | dict[str, Any],
        *,
        properties: MessageProperties | None = None,
    ) -> None:
        if isinstance(body, dict):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.queues.setdefault(queue, deque()).append(
            QueuedMessage(body=body, properties=properties or MessageProperties())
        )

    def start_consuming(self) -> None:
        self._consuming = True
        try:
            while self._consuming and self._deliver_next():
                pass
        finally:
            self._consuming = False

    def stop_consuming(self, consumer_tag: str | None = None) -> None:
        self._consuming = False
        if consumer_tag is not None:
            self._consumers.pop(consumer_tag, None)

    @property
    def unacked_count(self) -> int:
        return len(self._unacked)

    def _deliver_next(self) -> bool:
        if self.prefetch_count and len(self._unacked) >= self.prefetch_count:
            return False

        for queue, callback in list(self._consumers.values()):
            pending = self.queues.get(queue)
            if not pending:
                continue

            message = pending.popleft()
            delivery_tag = self._next_delivery_tag
            self._next_delivery_tag += 1
            self._unacked[delivery_tag] = (queue, message)
            self.max_unacked_observed = max(self.max_unacked_observed, len(self._unacked))
            callback(self, Delivery(delivery_tag=delivery_tag, redelivered=message.redelivered), message.properties, message.body)
            return True
        return False

    def _settle(self, delivery_tag: int) -> tuple[str, QueuedMessage]:
        try:
            return self._unacked.pop(delivery_tag)
        except KeyError:
            raise ValueError(f"Unknown delivery tag: {delivery_tag}") from None
