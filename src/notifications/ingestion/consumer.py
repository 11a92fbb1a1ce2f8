"""kombu consumer loop for the notification queue.

``ConsumerMixin`` owns reconnection: a lost broker connection is retried
with backoff and consumption resumes on the same durable queue. Each loop
prefetches ``prefetch_count`` messages and handles them one at a time;
several loops may compete on the queue for throughput.
"""

import structlog
from kombu import Connection
from kombu.mixins import ConsumerMixin
from notifications.config import Settings, get_settings
from notifications.ingestion.pipeline import MessagePipeline
from notifications.ingestion.topology import build_queue

logger = structlog.get_logger(__name__)


class NotificationConsumer(ConsumerMixin):
    def __init__(self, connection: Connection, pipeline: MessagePipeline | None = None, settings: Settings | None = None):
        self.connection = connection
        self.settings = settings or get_settings()
        self.pipeline = pipeline or MessagePipeline()
        self.queue = build_queue(self.settings)

    def get_consumers(self, Consumer, channel):
        consumer = Consumer(
            queues=[self.queue],
            callbacks=[self.pipeline.handle_message],
            accept=["json"],
            prefetch_count=self.settings.prefetch_count,
        )
        consumer.on_decode_error = self.pipeline.on_decode_error
        return [consumer]

    def on_connection_error(self, exc, interval):
        logger.warning("Broker connection lost, reconnecting", retry_in=interval, error=str(exc))

    def on_connection_revived(self):
        logger.info("Broker connection established", queue=self.queue.name)

    def on_consume_ready(self, connection, channel, consumers, **kwargs):
        logger.info(
            "Consuming notification events",
            queue=self.queue.name,
            routing_keys=[b.routing_key for b in self.queue.bindings],
        )


def declare_topology(connection: Connection, settings: Settings | None = None):
    """Declare exchange, queue and bindings up front."""
    queue = build_queue(settings)
    queue(connection.default_channel).declare()
    return queue

