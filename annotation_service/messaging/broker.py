"""
AMQP topology, connections and publishing (kombu).

    exchange "annotation" (direct, durable)
        "tasks"   -> queue annotation.tasks   [x-dead-letter-exchange: annotation.dlx]
        "results" -> queue annotation.results
    exchange "annotation.dlx" (fanout, durable)
        -> queue annotation.dead
"""

import logging
from typing import Any, Dict, Optional

from kombu import Connection, Exchange, Producer, Queue

from annotation_service.config import BrokerConfig
from annotation_service.messaging.codec import encode_result
from annotation_service.models.result import AnnotationResult

logger = logging.getLogger(__name__)

# Retry policy for kombu's publish(retry=True)
PUBLISH_RETRY_POLICY = {
    'interval_start': 0,
    'interval_step': 1,
    'interval_max': 5,
    'max_retries': 3,
}


def create_connection(config: Optional[BrokerConfig] = None) -> Connection:
    """Open (lazily) a broker connection with publisher confirms as configured."""
    if config is None:
        from annotation_service.config import settings
        config = settings.broker
    transport_options: Dict[str, Any] = {}
    if config.confirm_publish:
        transport_options['confirm_publish'] = True
    return Connection(
        config.url,
        heartbeat=config.heartbeat or None,
        transport_options=transport_options,
    )


class Topology:
    """Exchanges and queues used by the service, built from broker settings."""

    def __init__(self, config: Optional[BrokerConfig] = None):
        if config is None:
            from annotation_service.config import settings
            config = settings.broker
        self.config = config
        self.exchange = Exchange(config.exchange, type='direct', durable=True)

        queue_arguments = None
        self.dead_letter_exchange = None
        self.dead_letter_queue = None
        if config.dead_letter_exchange:
            self.dead_letter_exchange = Exchange(
                config.dead_letter_exchange, type='fanout', durable=True,
            )
            queue_arguments = {'x-dead-letter-exchange': config.dead_letter_exchange}
            if config.dead_letter_queue:
                self.dead_letter_queue = Queue(
                    config.dead_letter_queue,
                    exchange=self.dead_letter_exchange,
                    routing_key='',
                    durable=True,
                )

        self.input_queue = Queue(
            config.input_queue,
            exchange=self.exchange,
            routing_key=config.input_routing_key,
            durable=True,
            queue_arguments=queue_arguments,
        )
        self.output_queue = Queue(
            config.output_queue,
            exchange=self.exchange,
            routing_key=config.output_routing_key,
            durable=True,
        )

    @property
    def queues(self):
        queues = [self.input_queue, self.output_queue]
        if self.dead_letter_queue is not None:
            queues.append(self.dead_letter_queue)
        return queues

    def declare(self, channel: Any) -> None:
        """Declare every exchange, queue and binding on *channel*."""
        for queue in self.queues:
            queue(channel).declare()
        logger.debug("Declared topology: %s", ", ".join(q.name for q in self.queues))


class ResultPublisher:
    """
    Publishes AnnotationResults to the output routing key.

    Callable, so an instance can be handed to ``MessageHandler`` as its
    ``publish`` argument. Raises whatever kombu raises once its retry policy
    is exhausted.
    """

    def __init__(self, producer: Producer, topology: Topology):
        self.producer = producer
        self.topology = topology

    def __call__(self, result: AnnotationResult) -> None:
        self.producer.publish(
            encode_result(result),
            exchange=self.topology.exchange,
            routing_key=self.topology.config.output_routing_key,
            content_type='application/json',
            content_encoding='utf-8',
            delivery_mode=2,
            headers={'status': result.status.value},
            retry=True,
            retry_policy=PUBLISH_RETRY_POLICY,
            declare=[self.topology.output_queue],
        )
        logger.debug("Published result %s to %s", result.id, self.topology.config.output_routing_key)
