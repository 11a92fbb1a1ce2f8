"""DeliveryReceipt: marks a signal-only delivery as done.

When the in-app channel is off no Notification row is written, so the
receipt is what makes a redelivered message recognizable. It shares the
deterministic id a Notification for the same cause would get.
"""

from notifications.domain import notifications
from protean.fields import DateTime, Identifier, String


@notifications.projection
class DeliveryReceipt:
    receipt_id: Identifier(identifier=True, required=True)
    recipient_id: Identifier(required=True)
    dedup_key: String(required=True, max_length=500)
    created_at: DateTime(required=True)
