"""Notification aggregate (CQRS): one in-app notification for a recipient.

Notifications are created reactively from cross-service events (follows,
likes, comments, mentions, event invites...) or by the internal create
call. Recipients can only read or delete them.

Lifecycle:
    UNREAD → READ            (mark_read, idempotent)
    UNREAD | READ → deleted  (delete one, delete all, age-based cleanup)
"""

import json
import uuid
from datetime import UTC, datetime
from enum import Enum

from notifications.domain import notifications
from notifications.notification.events import NotificationCreated, NotificationRead
from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, String, Text

# Namespace for ids derived from ingestion dedup keys
NOTIFICATION_ID_NAMESPACE = uuid.UUID("6f1c8d2e-4b7a-5e39-9c0d-1a2b3c4d5e6f")

_SCALAR_TYPES = (str, int, float, bool, type(None))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class NotificationType(Enum):
    FOLLOW = "FOLLOW"
    LIKE = "LIKE"
    COMMENT = "COMMENT"
    MESSAGE = "MESSAGE"
    SYSTEM = "SYSTEM"
    POST_MENTION = "POST_MENTION"
    POST_SHARE = "POST_SHARE"
    EVENT_INVITE = "EVENT_INVITE"
    EVENT_RSVP = "EVENT_RSVP"
    EVENT_REMINDER = "EVENT_REMINDER"
    FRIEND_REQUEST = "FRIEND_REQUEST"
    ACCOUNT_VERIFICATION = "ACCOUNT_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"
    SECURITY_ALERT = "SECURITY_ALERT"


class NotificationPriority(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ReferenceType(Enum):
    POST = "POST"
    EVENT = "EVENT"
    USER = "USER"
    MESSAGE = "MESSAGE"
    COMMENT = "COMMENT"


def notification_id_for(dedup_key: str) -> str:
    """Deterministic notification id for an ingestion dedup key."""
    return str(uuid.uuid5(NOTIFICATION_ID_NAMESPACE, dedup_key))


def _encode_metadata(metadata) -> str:
    if metadata is None:
        return json.dumps({})
    if not isinstance(metadata, dict):
        raise ValidationError({"metadata": ["Metadata must be an object"]})
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationError({"metadata": [f"Metadata keys must be strings, got {key!r}"]})
        if not isinstance(value, _SCALAR_TYPES):
            raise ValidationError({"metadata": [f"Metadata value for '{key}' must be a scalar"]})
    return json.dumps(metadata)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@notifications.aggregate
class Notification:
    """A notification shown in a recipient's inbox.

    ``read_at`` is set exactly once, on the first read, and is present if and
    only if ``is_read`` is true.
    """

    # Recipient and optional sender
    recipient_id: Identifier(required=True)
    sender_id: Identifier()

    # Classification
    notification_type: String(choices=NotificationType, required=True)
    priority: String(choices=NotificationPriority, default=NotificationPriority.MEDIUM.value)

    # Content
    title: String(required=True, max_length=200)
    message: String(required=True, max_length=1000)

    # Polymorphic pointer to whatever triggered the notification
    reference_id: String(max_length=255)
    reference_type: String(choices=ReferenceType)

    # Free-form scalar metadata
    context_data: Text()  # JSON object

    # Idempotency key supplied by ingestion
    dedup_key: String(max_length=500)

    # Read state
    is_read: Boolean(default=False)
    read_at: DateTime()

    # Timestamps
    created_at: DateTime()
    updated_at: DateTime()

    @invariant.post
    def read_at_tracks_read_state(self):
        if bool(self.is_read) != (self.read_at is not None):
            raise ValidationError({"read_at": ["read_at must be set if and only if the notification is read"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        recipient_id,
        notification_type,
        title,
        message,
        sender_id=None,
        reference_id=None,
        reference_type=None,
        priority=NotificationPriority.MEDIUM.value,
        metadata=None,
        dedup_key=None,
        created_at=None,
    ):
        """Create a new unread notification."""
        now = created_at or datetime.now(UTC)

        values = dict(
            recipient_id=recipient_id,
            sender_id=sender_id,
            notification_type=notification_type,
            priority=priority or NotificationPriority.MEDIUM.value,
            title=title,
            message=message,
            reference_id=reference_id,
            reference_type=reference_type,
            context_data=_encode_metadata(metadata),
            dedup_key=dedup_key,
            is_read=False,
            created_at=now,
            updated_at=now,
        )
        if dedup_key:
            values["id"] = notification_id_for(dedup_key)

        notification = cls(**values)

        notification.raise_(
            NotificationCreated(
                notification_id=str(notification.id),
                recipient_id=str(recipient_id),
                sender_id=str(sender_id) if sender_id else None,
                notification_type=notification.notification_type,
                priority=notification.priority,
                reference_id=reference_id,
                reference_type=reference_type,
                created_at=now,
            )
        )

        return notification

    # -------------------------------------------------------------------
    # Read state
    # -------------------------------------------------------------------
    def mark_read(self, read_at=None):
        """Mark as read. Returns False when it was already read (no-op)."""
        if self.is_read:
            return False

        now = read_at or datetime.now(UTC)
        with atomic_change(self):
            self.is_read = True
            self.read_at = now
            self.updated_at = now

        self.raise_(
            NotificationRead(
                notification_id=str(self.id),
                recipient_id=str(self.recipient_id),
                read_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Query helpers
    # -------------------------------------------------------------------
    def get_metadata(self) -> dict:
        return json.loads(self.context_data) if self.context_data else {}

    def belongs_to(self, user_id) -> bool:
        return str(self.recipient_id) == str(user_id)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "recipient_id": str(self.recipient_id),
            "sender_id": str(self.sender_id) if self.sender_id else None,
            "type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "is_read": bool(self.is_read),
            "priority": self.priority,
            "metadata": self.get_metadata(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "read_at": self.read_at,
        }
