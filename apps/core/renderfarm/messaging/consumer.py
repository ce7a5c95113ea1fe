"""Queue consumer for render task reports."""

from __future__ import annotations

from collections import OrderedDict
import hashlib
import logging
from typing import Any, Literal

from renderfarm.core.config import Settings
from renderfarm.messaging.channel import DeliveryInfo, ReportChannel
from renderfarm.messaging.dispatcher import DispatchOutcome, DispatchStatus, ReportDispatcher
from renderfarm.repositories.base import RenderTaskRepository
from renderfarm.services.task_reports import TaskReportService

logger = logging.getLogger(__name__)

AckPolicy = Literal["classified", "always"]


class TaskReportConsumer:
    """Feeds queue deliveries to the dispatcher and settles each one.

    With the ``always`` policy every delivery is acknowledged whatever the
    outcome. With ``classified`` only transient failures are negatively
    acknowledged: requeued up to ``max_redeliveries`` times, then rejected
    without requeue so the broker dead-letters them.
    """

    def __init__(
        self,
        channel: ReportChannel,
        dispatcher: ReportDispatcher,
        *,
        queue_name: str,
        prefetch_count: int = 1,
        ack_policy: AckPolicy = "classified",
        max_redeliveries: int = 3,
        max_tracked_messages: int = 10_000,
    ) -> None:
        if max_tracked_messages < 1:
            raise ValueError("max_tracked_messages must be at least 1")
        self._channel = channel
        self._dispatcher = dispatcher
        self._queue_name = queue_name
        self._prefetch_count = prefetch_count
        self._ack_policy = ack_policy
        self._max_redeliveries = max_redeliveries
        self._consumer_tag: str | None = None
        self._max_tracked_messages = max_tracked_messages
        # Oldest entries are evicted: another consumer may settle a requeued message.
        self._transient_failures: OrderedDict[str, int] = OrderedDict()

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def tracked_message_count(self) -> int:
        return len(self._transient_failures)

    def start(self) -> str:
        """Declare the durable queue, bound prefetch and register the callback."""
        self._channel.queue_declare(queue=self._queue_name, durable=True)
        self._channel.basic_qos(prefetch_count=self._prefetch_count)
        self._consumer_tag = self._channel.basic_consume(
            queue=self._queue_name,
            on_message_callback=self.on_message,
            auto_ack=False,
        )
        logger.info(
            "consumer.started queue=%s prefetch=%s ack_policy=%s max_redeliveries=%s",
            self._queue_name,
            self._prefetch_count,
            self._ack_policy,
            self._max_redeliveries,
        )
        return self._consumer_tag

    def run(self) -> None:
        """Start and block in the channel's consume loop."""
        self.start()
        self._channel.start_consuming()

    def stop(self) -> None:
        self._channel.stop_consuming(self._consumer_tag)
        logger.info("consumer.stopped queue=%s", self._queue_name)

    def on_message(self, channel: ReportChannel, method: DeliveryInfo, properties: Any, body: bytes) -> DispatchOutcome:
        outcome = self._dispatcher.dispatch(body)
        self._settle(channel, method, properties, body, outcome)
        return outcome

    def _settle(
        self,
        channel: ReportChannel,
        method: DeliveryInfo,
        properties: Any,
        body: bytes,
        outcome: DispatchOutcome,
    ) -> None:
        delivery_tag = method.delivery_tag
        if self._ack_policy == "always" or outcome.status is not DispatchStatus.RETRY:
            self._transient_failures.pop(self._message_key(properties, body), None)
            channel.basic_ack(delivery_tag=delivery_tag)
            return

        key = self._message_key(properties, body)
        failures = self._transient_failures.get(key, 0) + 1
        if failures > self._max_redeliveries:
            self._transient_failures.pop(key, None)
            channel.basic_nack(delivery_tag=delivery_tag, requeue=False)
            logger.warning(
                "consumer.dead_lettered queue=%s action=%s failures=%s code=%s",
                self._queue_name,
                outcome.action or "-",
                failures,
                outcome.error.code if outcome.error is not None else "-",
            )
            return

        self._transient_failures[key] = failures
        self._transient_failures.move_to_end(key)
        while len(self._transient_failures) > self._max_tracked_messages:
            self._transient_failures.popitem(last=False)
        channel.basic_nack(delivery_tag=delivery_tag, requeue=True)
        logger.warning(
            "consumer.requeued queue=%s action=%s failures=%s max_redeliveries=%s",
            self._queue_name,
            outcome.action or "-",
            failures,
            self._max_redeliveries,
        )

    @staticmethod
    def _message_key(properties: Any, body: bytes) -> str:
        message_id = getattr(properties, "message_id", None)
        if isinstance(message_id, str) and message_id:
            return f"mid:{message_id}"
        return "sha:" + hashlib.sha256(body).hexdigest()


def build_task_report_consumer(
    channel: ReportChannel,
    store: RenderTaskRepository,
    settings: Settings,
) -> TaskReportConsumer:
    """Wire service, dispatcher and consumer around a channel owned by the caller."""
    service = TaskReportService(
        store,
        stale_attempt_timeout_seconds=settings.stale_attempt_timeout_seconds,
        legacy_missing_message_text=settings.legacy_missing_message_text,
    )
    return TaskReportConsumer(
        channel,
        ReportDispatcher(service),
        queue_name=settings.reports_queue,
        prefetch_count=settings.prefetch_count,
        ack_policy=settings.ack_policy,
        max_redeliveries=settings.max_redeliveries,
        max_tracked_messages=settings.max_tracked_messages,
    )
