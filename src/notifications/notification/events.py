"""Domain events for the Notification aggregate."""

from notifications.domain import notifications
from protean.fields import DateTime, Identifier, String


@notifications.event(part_of="Notification")
class NotificationCreated:
    """A notification was recorded for a recipient."""

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    sender_id: Identifier()
    notification_type: String(required=True)
    priority: String(required=True)
    reference_id: String()
    reference_type: String()
    created_at: DateTime(required=True)


@notifications.event(part_of="Notification")
class NotificationRead:
    """A recipient read a notification for the first time."""

    notification_id: Identifier(required=True)
    recipient_id: Identifier(required=True)
    read_at: DateTime(required=True)
