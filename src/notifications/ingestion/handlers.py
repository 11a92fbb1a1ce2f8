"""Event handlers: turn validated inbound events into notifications.

Each handler refreshes the identity cache with whatever user data the
event embeds and returns the notifications the event calls for. Delivery
is common to all of them:

1. Resolve the recipient's preferences (created with defaults on first use).
2. Decide every channel at the processing time.
3. Persist the in-app record when the in-app channel is allowed, otherwise
   a delivery receipt, both under the dedup key so a redelivered message
   neither adds a row nor announces the cause twice.
4. Announce the decision on the advisory sink for the external sender.

Handlers are dispatched through ``HANDLERS``, keyed by ``EventType``.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from notifications.channel import get_advisory_sink
from notifications.config import get_settings
from notifications.delivery.decision import Channel, decisions_as_dict
from notifications.identity_cache.cache import find_identity, upsert_identity
from notifications.ingestion.contracts import (
    Envelope,
    EventCancelledPayload,
    EventInvitedPayload,
    EventRsvpPayload,
    EventType,
    FollowPayload,
    MessageSentPayload,
    PostCommentedPayload,
    PostMentionedPayload,
    PostReactionPayload,
    UserBlockedPayload,
    UserDeletedPayload,
    UserProfilePayload,
    parse_payload,
)
from notifications.maintenance import erase_user_data
from notifications.notification.notification import (
    NotificationPriority,
    NotificationType,
    ReferenceType,
    notification_id_for,
)
from notifications.notification.store import has_delivery_receipt, record_delivery_receipt, record_notification
from notifications.preference.resolution import delivery_decisions

logger = structlog.get_logger(__name__)

_TITLE_LIMIT = 200
_MESSAGE_LIMIT = 1000


@dataclass
class PlannedNotification:
    recipient_id: str
    notification_type: NotificationType
    title: str
    message: str
    sender_id: str | None = None
    reference_id: str | None = None
    reference_type: ReferenceType | None = None
    priority: NotificationPriority = NotificationPriority.MEDIUM
    metadata: dict = field(default_factory=dict)


@dataclass
class HandlerResult:
    event_type: str
    created: list[str] = field(default_factory=list)
    duplicates: int = 0
    filtered: int = 0
    signals: int = 0


def _someone(username) -> str:
    return username or "Someone"


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _refresh_actor(envelope: Envelope, user_id, username):
    """Opportunistic cache refresh from a username embedded in an event."""
    if user_id and username:
        upsert_identity(user_id, username=username, synced_at=envelope.occurred_at)


# ---------------------------------------------------------------------------
# User events
# ---------------------------------------------------------------------------
def on_user_profile(envelope: Envelope, payload: UserProfilePayload) -> list[PlannedNotification]:
    upsert_identity(
        payload.user_id,
        username=payload.username,
        display_name=payload.display_name,
        avatar_url=payload.avatar_url,
        verified=payload.verified,
        synced_at=envelope.occurred_at,
    )
    return []


def on_user_deleted(envelope: Envelope, payload: UserDeletedPayload) -> list[PlannedNotification]:
    erase_user_data(payload.user_id)
    return []


def on_user_blocked(envelope: Envelope, payload: UserBlockedPayload) -> list[PlannedNotification]:
    return [
        PlannedNotification(
            recipient_id=payload.blocked_user_id,
            notification_type=NotificationType.SECURITY_ALERT,
            title="Account Blocked",
            message="Your account has been blocked by another user",
            reference_id=payload.blocker_id,
            reference_type=ReferenceType.USER,
            priority=NotificationPriority.HIGH,
            metadata={"blocker_id": payload.blocker_id, "reason": payload.reason},
        )
    ]


# ---------------------------------------------------------------------------
# Social events
# ---------------------------------------------------------------------------
def on_followed(envelope: Envelope, payload: FollowPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.follower_id, payload.follower_username)
    return [
        PlannedNotification(
            recipient_id=payload.user_id,
            sender_id=payload.follower_id,
            notification_type=NotificationType.FOLLOW,
            title="New Follower",
            message=f"{_someone(payload.follower_username)} started following you",
            reference_id=payload.follower_id,
            reference_type=ReferenceType.USER,
            metadata={"follower_id": payload.follower_id, "follower_username": payload.follower_username},
        )
    ]


# ---------------------------------------------------------------------------
# Post events
# ---------------------------------------------------------------------------
def on_post_liked(envelope: Envelope, payload: PostReactionPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.user_id, payload.user_username)
    return [
        PlannedNotification(
            recipient_id=payload.author_id,
            sender_id=payload.user_id,
            notification_type=NotificationType.LIKE,
            title="Post Liked",
            message=f"{_someone(payload.user_username)} liked your post",
            reference_id=payload.post_id,
            reference_type=ReferenceType.POST,
            priority=NotificationPriority.LOW,
            metadata={"post_id": payload.post_id, "user_id": payload.user_id, "user_username": payload.user_username},
        )
    ]


def on_post_commented(envelope: Envelope, payload: PostCommentedPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.user_id, payload.user_username)
    return [
        PlannedNotification(
            recipient_id=payload.author_id,
            sender_id=payload.user_id,
            notification_type=NotificationType.COMMENT,
            title="New Comment",
            message=f"{_someone(payload.user_username)} commented on your post",
            reference_id=payload.post_id,
            reference_type=ReferenceType.POST,
            priority=NotificationPriority.HIGH,
            metadata={
                "post_id": payload.post_id,
                "comment_id": payload.comment_id,
                "commenter_id": payload.user_id,
                "commenter_username": payload.user_username,
            },
        )
    ]


def on_post_shared(envelope: Envelope, payload: PostReactionPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.user_id, payload.user_username)
    return [
        PlannedNotification(
            recipient_id=payload.author_id,
            sender_id=payload.user_id,
            notification_type=NotificationType.POST_SHARE,
            title="Post Shared",
            message=f"{_someone(payload.user_username)} shared your post",
            reference_id=payload.post_id,
            reference_type=ReferenceType.POST,
            priority=NotificationPriority.LOW,
            metadata={"post_id": payload.post_id, "user_id": payload.user_id, "user_username": payload.user_username},
        )
    ]


def on_post_mentioned(envelope: Envelope, payload: PostMentionedPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.user_id, payload.user_username)
    planned = []
    seen = set()
    for mentioned in payload.mentioned_users:
        # One notification per mentioned user, never to the author themselves
        if mentioned.user_id == payload.user_id or mentioned.user_id in seen:
            continue
        seen.add(mentioned.user_id)
        planned.append(
            PlannedNotification(
                recipient_id=mentioned.user_id,
                sender_id=payload.user_id,
                notification_type=NotificationType.POST_MENTION,
                title="You were mentioned",
                message=f"{_someone(payload.user_username)} mentioned you in a post",
                reference_id=payload.post_id,
                reference_type=ReferenceType.POST,
                priority=NotificationPriority.HIGH,
                metadata={
                    "post_id": payload.post_id,
                    "mentioner_id": payload.user_id,
                    "mentioner_username": payload.user_username,
                },
            )
        )
    return planned


# ---------------------------------------------------------------------------
# Event (calendar) events
# ---------------------------------------------------------------------------
def on_event_invited(envelope: Envelope, payload: EventInvitedPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.inviter_id, payload.inviter_username)
    title = payload.event_title or "an event"
    return [
        PlannedNotification(
            recipient_id=payload.invitee_id,
            sender_id=payload.inviter_id,
            notification_type=NotificationType.EVENT_INVITE,
            title="Event Invitation",
            message=f'{_someone(payload.inviter_username)} invited you to "{title}"',
            reference_id=payload.event_id,
            reference_type=ReferenceType.EVENT,
            metadata={"event_id": payload.event_id, "event_title": payload.event_title},
        )
    ]


def on_event_rsvp(envelope: Envelope, payload: EventRsvpPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.user_id, payload.user_username)
    return [
        PlannedNotification(
            recipient_id=payload.creator_id,
            sender_id=payload.user_id,
            notification_type=NotificationType.EVENT_RSVP,
            title="Event RSVP",
            message=f"{_someone(payload.user_username)} is {payload.status.lower()} to your event",
            reference_id=payload.event_id,
            reference_type=ReferenceType.EVENT,
            metadata={
                "event_id": payload.event_id,
                "event_title": payload.event_title,
                "user_id": payload.user_id,
                "user_username": payload.user_username,
                "status": payload.status,
            },
        )
    ]


def on_event_cancelled(envelope: Envelope, payload: EventCancelledPayload) -> list[PlannedNotification]:
    title = payload.event_title or "Untitled event"
    return [
        PlannedNotification(
            recipient_id=payload.creator_id,
            notification_type=NotificationType.SYSTEM,
            title="Event Cancelled",
            message=f'Your event "{title}" has been cancelled',
            reference_id=payload.event_id,
            reference_type=ReferenceType.EVENT,
            priority=NotificationPriority.HIGH,
            metadata={"event_id": payload.event_id, "event_title": payload.event_title},
        )
    ]


# ---------------------------------------------------------------------------
# Messaging events
# ---------------------------------------------------------------------------
def on_message_sent(envelope: Envelope, payload: MessageSentPayload) -> list[PlannedNotification]:
    _refresh_actor(envelope, payload.sender_id, payload.sender_username)
    if payload.sender_id == payload.recipient_id:
        return []
    return [
        PlannedNotification(
            recipient_id=payload.recipient_id,
            sender_id=payload.sender_id,
            notification_type=NotificationType.MESSAGE,
            title="New Message",
            message=f"{_someone(payload.sender_username)} sent you a message",
            reference_id=payload.conversation_id or payload.message_id,
            reference_type=ReferenceType.MESSAGE,
            priority=NotificationPriority.HIGH,
            metadata={
                "conversation_id": payload.conversation_id,
                "message_id": payload.message_id,
                "sender_id": payload.sender_id,
                "sender_username": payload.sender_username,
            },
        )
    ]


HANDLERS = {
    EventType.USER_CREATED: on_user_profile,
    EventType.USER_UPDATED: on_user_profile,
    EventType.USER_DELETED: on_user_deleted,
    EventType.USER_BLOCKED: on_user_blocked,
    EventType.SOCIAL_FOLLOWED: on_followed,
    EventType.POST_LIKED: on_post_liked,
    EventType.POST_COMMENTED: on_post_commented,
    EventType.POST_SHARED: on_post_shared,
    EventType.POST_MENTIONED: on_post_mentioned,
    EventType.EVENT_INVITED: on_event_invited,
    EventType.EVENT_RSVP: on_event_rsvp,
    EventType.EVENT_CANCELLED: on_event_cancelled,
    EventType.MESSAGE_SENT: on_message_sent,
}

_missing_handlers = set(EventType) - set(HANDLERS)
if _missing_handlers:
    raise RuntimeError(f"No handler for event types: {sorted(t.value for t in _missing_handlers)}")


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
def dedup_key_for(envelope: Envelope, planned: PlannedNotification, message_id: str | None = None) -> str:
    """Idempotency key for one notification produced by one message.

    Prefers the broker's message id, then the envelope id. Without either,
    the cause is identified by type, recipient, sender and reference within
    a time bucket of the envelope timestamp.
    """
    source_id = message_id or envelope.id
    if source_id:
        return f"msg:{source_id}:{planned.recipient_id}"

    window = get_settings().dedup_window_seconds
    bucket = int(envelope.occurred_at.timestamp() // window)
    return ":".join(
        [
            envelope.type,
            planned.recipient_id,
            planned.sender_id or "-",
            planned.reference_id or "-",
            str(bucket),
        ]
    )


def _signal(notification, planned: PlannedNotification, decisions: dict, envelope: Envelope, signal_id: str) -> dict:
    sender = None
    if planned.sender_id:
        identity = find_identity(planned.sender_id)
        if identity is not None:
            sender = identity.to_dict()

    return {
        "signal_id": signal_id,
        "notification_id": str(notification.id) if notification is not None else None,
        "recipient_id": planned.recipient_id,
        "sender_id": planned.sender_id,
        "type": planned.notification_type.value,
        "title": planned.title,
        "message": planned.message,
        "priority": planned.priority.value,
        "reference_id": planned.reference_id,
        "reference_type": planned.reference_type.value if planned.reference_type else None,
        "channels": decisions_as_dict(decisions),
        "metadata": planned.metadata,
        "sender": sender,
        "source_event": envelope.type,
        "created_at": (notification.created_at if notification is not None else datetime.now(UTC)).isoformat(),
    }


def deliver(
    envelope: Envelope,
    planned: PlannedNotification,
    result: HandlerResult,
    message_id: str | None = None,
    now: datetime | None = None,
):
    now = now or datetime.now(UTC)
    decisions = delivery_decisions(planned.recipient_id, planned.notification_type, now)

    if not any(decisions.values()):
        result.filtered += 1
        logger.info(
            "Notification filtered by preferences",
            recipient_id=planned.recipient_id,
            notification_type=planned.notification_type.value,
            event_type=envelope.type,
        )
        return

    dedup_key = dedup_key_for(envelope, planned, message_id)
    notification = None
    if decisions[Channel.IN_APP] and not has_delivery_receipt(dedup_key):
        notification, created = record_notification(
            recipient_id=planned.recipient_id,
            notification_type=planned.notification_type.value,
            title=_clip(planned.title, _TITLE_LIMIT),
            message=_clip(planned.message, _MESSAGE_LIMIT),
            sender_id=planned.sender_id,
            reference_id=planned.reference_id,
            reference_type=planned.reference_type.value if planned.reference_type else None,
            priority=planned.priority.value,
            metadata=planned.metadata,
            dedup_key=dedup_key,
        )
        if not created:
            result.duplicates += 1
            return
        result.created.append(str(notification.id))
    elif not record_delivery_receipt(dedup_key, planned.recipient_id, created_at=now):
        # Already delivered under this dedup key
        result.duplicates += 1
        return

    signal = _signal(notification, planned, decisions, envelope, signal_id=notification_id_for(dedup_key))
    if get_advisory_sink().publish(signal):
        result.signals += 1


def process_envelope(envelope: Envelope, message_id: str | None = None, now: datetime | None = None) -> HandlerResult:
    """Validate the payload, run the type's handler and deliver what it produced."""
    payload = parse_payload(envelope)
    event_type = envelope.event_type
    result = HandlerResult(event_type=event_type.value)

    planned = HANDLERS[event_type](envelope, payload)
    for item in planned:
        deliver(envelope, item, result, message_id=message_id, now=now)

    logger.info(
        "Event processed",
        event_type=event_type.value,
        message_id=message_id or envelope.id,
        created=len(result.created),
        duplicates=result.duplicates,
        filtered=result.filtered,
    )
    return result
