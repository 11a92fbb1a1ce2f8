"""Integration tests for the kombu topology, consumer and publisher.

Uses kombu's in-memory transport; every test gets its own exchange and
queue names because the memory broker is shared by the whole process.
"""

import functools
import uuid

import pytest
from kombu import Connection, Consumer, Queue
from notifications.channel.broker_advisory import BrokerAdvisorySink
from notifications.config import Settings
from notifications.ingestion.consumer import NotificationConsumer, declare_topology
from notifications.ingestion.contracts import EventType
from notifications.ingestion.pipeline import PROCESSED, MessagePipeline
from notifications.ingestion.publisher import EventPublisher
from notifications.ingestion.topology import NOTIFICATION_CREATED, build_exchange, build_queue
from notifications.notification.store import list_notifications


@pytest.fixture
def settings():
    suffix = uuid.uuid4().hex[:8]
    return Settings(
        broker_url="memory://",
        exchange_name=f"pulse.events.{suffix}",
        queue_name=f"notification-service.{suffix}",
        publish_retry_attempts=1,
    )


@pytest.fixture
def connection():
    with Connection("memory://") as conn:
        yield conn


def _like():
    return {
        "type": "post.liked",
        "data": {"post_id": "post-1", "author_id": "author-1", "user_id": "liker-1", "user_username": "liker"},
        "timestamp": "2024-05-01T12:00:00Z",
        "service": "post-service",
    }


class TestTopology:
    def test_queue_is_bound_to_every_event_type(self, settings):
        queue = build_queue(settings)
        assert sorted(b.routing_key for b in queue.bindings) == sorted(t.value for t in EventType)
        assert queue.durable is True

    def test_exchange_is_durable_topic(self, settings):
        exchange = build_exchange(settings)
        assert exchange.type == "topic"
        assert exchange.durable is True

    def test_dead_letter_exchange_argument(self, settings):
        settings.dead_letter_exchange = "pulse.dead"
        assert build_queue(settings).queue_arguments == {"x-dead-letter-exchange": "pulse.dead"}

    def test_no_dead_letter_exchange_by_default(self, settings):
        assert not build_queue(settings).queue_arguments


class TestConsumeRoundTrip:
    def test_published_event_becomes_notification(self, settings, connection):
        queue = declare_topology(connection, settings)
        pipeline = MessagePipeline(timeout=0)

        producer = connection.Producer(serializer="json")
        producer.publish(
            _like(),
            exchange=build_exchange(settings),
            routing_key="post.liked",
            message_id="msg-1",
            declare=[queue],
        )

        with Consumer(connection, queues=[queue], callbacks=[pipeline.handle_message], accept=["json"]):
            connection.drain_events(timeout=2)

        assert pipeline.stats[PROCESSED] == 1
        assert list_notifications("author-1").total == 1

    def test_consumer_wires_pipeline_and_decode_hook(self, settings, connection):
        pipeline = MessagePipeline(timeout=0)
        consumer = NotificationConsumer(connection, pipeline=pipeline, settings=settings)
        channel = connection.channel()

        consumers = consumer.get_consumers(functools.partial(Consumer, channel), channel)

        assert len(consumers) == 1
        assert consumers[0].queues[0].name == settings.queue_name
        assert consumers[0].callbacks == [pipeline.handle_message]
        assert consumers[0].on_decode_error == pipeline.on_decode_error
        channel.close()


class TestPublisher:
    def test_advisory_signal_reaches_the_exchange(self, settings, connection):
        exchange = build_exchange(settings)
        advisory_queue = Queue(f"advisory-{settings.queue_name}", exchange, routing_key=NOTIFICATION_CREATED)
        listener = connection.SimpleQueue(advisory_queue)

        sink = BrokerAdvisorySink(EventPublisher(connection=connection, settings=settings))
        signal = {"signal_id": "n-1", "notification_id": None, "recipient_id": "u-1", "channels": {"push": True}}
        assert sink.publish(signal) is True

        message = listener.get(timeout=2)
        assert message.payload["type"] == NOTIFICATION_CREATED
        assert message.payload["data"]["signal_id"] == "n-1"
        assert message.properties["message_id"] == "n-1"
        message.ack()
        listener.close()

    def test_unreachable_broker_returns_false(self, settings):
        class _BrokenConnection:
            def Producer(self, **kwargs):
                raise ConnectionError("broker down")

        publisher = EventPublisher(connection=_BrokenConnection(), settings=settings)
        assert publisher.publish("notification.created", {"notification_id": "n-1"}) is False

    def test_envelope_shape(self, settings):
        publisher = EventPublisher(connection=object(), settings=settings)
        envelope = publisher.envelope("notification.created", {"k": "v"})
        assert envelope["type"] == "notification.created"
        assert envelope["data"] == {"k": "v"}
        assert envelope["service"] == "notification-service"
        assert envelope["timestamp"]
