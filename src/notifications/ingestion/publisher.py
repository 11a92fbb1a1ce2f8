"""Outbound publisher for advisory messages.

Publishing is best-effort: the connection is retried through
``Connection.ensure`` and, when the broker stays unreachable, the failure
is logged and ``publish`` returns False. It never raises into callers.
"""

import threading
from datetime import UTC, datetime

import structlog
from kombu import Connection
from notifications.config import Settings, get_settings
from notifications.ingestion.topology import build_exchange

logger = structlog.get_logger(__name__)


class EventPublisher:
    """Publishes JSON envelopes on the service exchange."""

    def __init__(self, connection: Connection | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._connection = connection
        self._exchange = build_exchange(self.settings)
        self._lock = threading.Lock()

    @property
    def connection(self) -> Connection:
        if self._connection is None:
            self._connection = Connection(self.settings.broker_url)
        return self._connection

    def envelope(self, event_type: str, data: dict) -> dict:
        return {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(),
            "service": self.settings.service_name,
        }

    def publish(self, routing_key: str, data: dict, message_id: str | None = None) -> bool:
        """Publish ``data`` wrapped in an envelope. Returns False on failure."""
        body = self.envelope(routing_key, data)

        def _errback(exc, interval):
            logger.warning(
                "Broker unavailable, retrying publish",
                routing_key=routing_key,
                retry_in=interval,
                error=str(exc),
            )

        try:
            with self._lock:
                producer = self.connection.Producer(serializer="json")
                publish = self.connection.ensure(
                    producer,
                    producer.publish,
                    errback=_errback,
                    max_retries=self.settings.publish_retry_attempts,
                )
                publish(
                    body,
                    exchange=self._exchange,
                    routing_key=routing_key,
                    declare=[self._exchange],
                    message_id=message_id,
                    delivery_mode="persistent",
                )
        except Exception as exc:
            logger.warning(
                "Publish failed, message dropped",
                routing_key=routing_key,
                error=str(exc),
            )
            return False

        logger.debug("Message published", routing_key=routing_key, message_id=message_id)
        return True

    def close(self):
        if self._connection is not None:
            self._connection.release()
            self._connection = None
