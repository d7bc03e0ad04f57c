"""
Annotation worker: kombu ``ConsumerMixin`` wiring the input queue to the
message handler and the pipeline coordinator.

Threads:
    consumer thread   drains the connection, decodes, submits, publishes, acks
    coordinator slots run pipelines and resolve futures

Publishing and acknowledgment are confined to the consumer thread: a slot
finishing a document only puts it on ``completions``, which ``on_iteration``
drains once per event-loop turn (at most ``safety_interval`` seconds apart).

Usage:
    with PipelineCoordinator(pipeline_factory()) as coordinator:
        worker = AnnotationWorker(create_connection(), coordinator)
        worker.run()
"""

import logging
import queue
from typing import Any, List, Optional

from kombu import Producer
from kombu.mixins import ConsumerMixin

from annotation_service.config import BrokerConfig, CoordinatorConfig
from annotation_service.messaging.broker import ResultPublisher, Topology
from annotation_service.messaging.handler import MessageHandler, PendingDocument
from annotation_service.utils.dead_letter_queue import DeadLetterQueue

logger = logging.getLogger(__name__)


class AnnotationWorker(ConsumerMixin):
    """
    Args:
        connection: kombu Connection (see ``create_connection``)
        coordinator: Started ``PipelineCoordinator``
        broker_config: Topology and publishing settings (default from settings)
        coordinator_config: Prefetch and retry settings (default from settings)
        dead_letters: Dead-letter ledger (default path from settings)
    """

    def __init__(
        self,
        connection: Any,
        coordinator: Any,
        broker_config: Optional[BrokerConfig] = None,
        coordinator_config: Optional[CoordinatorConfig] = None,
        dead_letters: Optional[DeadLetterQueue] = None,
    ):
        from annotation_service.config import settings

        self.connection = connection
        self.coordinator = coordinator
        self.broker_config = broker_config or settings.broker
        self.coordinator_config = coordinator_config or settings.coordinator
        self.topology = Topology(self.broker_config)
        self.completions: "queue.Queue[PendingDocument]" = queue.Queue()
        self.publisher: Optional[ResultPublisher] = None
        self._draining = False

        self.handler = MessageHandler(
            coordinator,
            publish=self._publish,
            dead_letters=dead_letters,
            max_retries=self.coordinator_config.max_retries,
            publish_failures=self.broker_config.publish_failures,
            source=self.broker_config.input_queue,
        )

    @property
    def prefetch_count(self) -> int:
        return self.coordinator_config.prefetch_count

    # ------------------------------------------------------------------
    # ConsumerMixin hooks
    # ------------------------------------------------------------------

    def get_consumers(self, Consumer, channel) -> List[Any]:
        return [
            Consumer(
                queues=[self.topology.input_queue],
                on_message=self.on_message,
                accept=['json'],
                prefetch_count=self.prefetch_count,
            )
        ]

    def on_consume_ready(self, connection, channel, consumers, **kwargs) -> None:
        self.topology.declare(channel)
        self.publisher = ResultPublisher(Producer(channel), self.topology)
        logger.info(
            "Consuming from %s (prefetch %d), publishing to %s",
            self.broker_config.input_queue, self.prefetch_count,
            self.broker_config.output_routing_key,
        )

    def on_connection_error(self, exc, interval) -> None:
        logger.warning("Broker connection error: %s, retrying in %ss", exc, interval)

    def on_connection_revived(self) -> None:
        # Deliveries from the old channel cannot be settled any more
        self.handler.abandon_pending()
        self.publisher = None

    def on_iteration(self) -> None:
        self.drain_completions()
        if self._draining:
            self.handler.release_pending()
            self.should_stop = True

    # ------------------------------------------------------------------
    # Message flow
    # ------------------------------------------------------------------

    def on_message(self, message) -> None:
        pending = self.handler.receive(message)
        if pending is not None:
            pending.future.add_done_callback(
                lambda _future, item=pending: self.completions.put(item)
            )

    def drain_completions(self) -> int:
        """Settle every document finished since the last loop turn."""
        settled = 0
        while True:
            try:
                pending = self.completions.get_nowait()
            except queue.Empty:
                return settled
            self.handler.complete(pending)
            settled += 1

    def _publish(self, result) -> None:
        if self.publisher is None:
            raise RuntimeError("No open channel to publish on")
        self.publisher(result)

    def shutdown(self) -> None:
        """Graceful stop: requeue open deliveries on the next loop turn, then exit."""
        logger.info("Shutdown requested")
        self._draining = True
