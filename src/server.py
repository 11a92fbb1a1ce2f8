"""Notification event consumer runner.

Starts kombu consumer loops against the notification queue. Each loop
holds its own broker connection and processes one message at a time;
several loops compete on the same durable queue.

Usage:
    python src/server.py                  # One consumer loop
    python src/server.py --consumers 4    # Four competing loops
    python src/server.py --declare-only   # Declare exchange/queue/bindings and exit
"""

import argparse
import threading

import structlog
from kombu import Connection
from notifications.config import get_settings
from notifications.domain import notifications
from notifications.ingestion.consumer import NotificationConsumer, declare_topology
from notifications.ingestion.pipeline import MessagePipeline

logger = structlog.get_logger(__name__)


def _consume(index, consumers):
    settings = get_settings()
    with Connection(settings.broker_url, heartbeat=30) as connection:
        consumer = NotificationConsumer(connection, pipeline=MessagePipeline(notifications), settings=settings)
        consumers.append(consumer)
        logger.info("Consumer loop starting", consumer=index)
        consumer.run()
        logger.info("Consumer loop stopped", consumer=index, stats=dict(consumer.pipeline.stats))


def run(consumer_count):
    consumers: list[NotificationConsumer] = []
    threads = [
        threading.Thread(target=_consume, args=(i, consumers), name=f"consumer-{i}", daemon=True)
        for i in range(consumer_count)
    ]
    for thread in threads:
        thread.start()

    try:
        while any(thread.is_alive() for thread in threads):
            for thread in threads:
                thread.join(timeout=1.0)
    except KeyboardInterrupt:
        logger.info("Shutting down consumers")
        for consumer in consumers:
            consumer.should_stop = True
        for thread in threads:
            thread.join(timeout=10.0)


def main():
    parser = argparse.ArgumentParser(description="Pulse notification consumer runner")
    parser.add_argument(
        "--consumers",
        type=int,
        default=1,
        help="Number of competing consumer loops (default: 1)",
    )
    parser.add_argument(
        "--declare-only",
        action="store_true",
        help="Declare the broker topology and exit",
    )
    args = parser.parse_args()

    if args.consumers < 1:
        parser.error("--consumers must be at least 1")

    notifications.init()

    if args.declare_only:
        with Connection(get_settings().broker_url) as connection:
            queue = declare_topology(connection)
        logger.info("Topology declared", queue=queue.name)
        return

    run(args.consumers)


if __name__ == "__main__":
    main()
