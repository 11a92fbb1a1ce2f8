"""Broker topology: one durable topic exchange, one durable queue.

The queue is bound once per supported routing key. When a dead-letter
exchange is configured, rejected messages are routed there by the broker.
"""

from kombu import Exchange, Queue, binding
from notifications.config import Settings, get_settings
from notifications.ingestion.contracts import EventType

NOTIFICATION_CREATED = "notification.created"


def build_exchange(settings: Settings | None = None) -> Exchange:
    settings = settings or get_settings()
    return Exchange(settings.exchange_name, type="topic", durable=True)


def build_queue(settings: Settings | None = None) -> Queue:
    settings = settings or get_settings()
    exchange = build_exchange(settings)

    queue_arguments = {}
    if settings.dead_letter_exchange:
        queue_arguments["x-dead-letter-exchange"] = settings.dead_letter_exchange

    return Queue(
        settings.queue_name,
        bindings=[binding(exchange, routing_key=event_type.routing_key) for event_type in EventType],
        durable=True,
        queue_arguments=queue_arguments or None,
    )
