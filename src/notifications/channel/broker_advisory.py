"""Broker advisory sink: publishes ``notification.created`` on the service exchange."""

from notifications.channel.advisory_port import AdvisorySink
from notifications.ingestion.publisher import EventPublisher
from notifications.ingestion.topology import NOTIFICATION_CREATED


class BrokerAdvisorySink(AdvisorySink):
    def __init__(self, publisher: EventPublisher | None = None):
        self.publisher = publisher or EventPublisher()

    def publish(self, signal: dict) -> bool:
        return self.publisher.publish(
            NOTIFICATION_CREATED,
            signal,
            message_id=signal.get("signal_id"),
        )

    def close(self):
        self.publisher.close()
