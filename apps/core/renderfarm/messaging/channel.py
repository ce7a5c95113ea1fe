"""Broker channel interface consumed by the report consumer."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol


class DeliveryInfo(Protocol):
    delivery_tag: int
    redelivered: bool


MessageCallback = Callable[[Any, DeliveryInfo, Any, bytes], Any]


class ReportChannel(Protocol):
    """Subset of a blocking AMQP channel used by the consumer.

    Method names and keywords follow pika's ``BlockingChannel`` so a channel
    opened by process bootstrap can be passed in unchanged.
    """

    def queue_declare(self, queue: str, durable: bool = False) -> Any: ...

    def basic_qos(self, prefetch_count: int = 0) -> Any: ...

    def basic_consume(self, queue: str, on_message_callback: MessageCallback, auto_ack: bool = False) -> str: ...

    def basic_ack(self, delivery_tag: int = 0) -> Any: ...

    def basic_nack(self, delivery_tag: int = 0, requeue: bool = True) -> Any: ...

    def start_consuming(self) -> Any: ...

    def stop_consuming(self, consumer_tag: str | None = None) -> Any: ...
