"""Inbound message contracts for the event ingestion pipeline.

Every broker message is a self-describing envelope
``{type, data, timestamp, service, id?}``. The envelope and each
``data`` payload are validated with pydantic; anything that fails
validation is a poison message (``MalformedEventError``).

Contracts are separate from the domain model (anti-corruption pattern).
"""

import json
from datetime import UTC, datetime
from enum import Enum

from notifications.errors import MalformedEventError
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator


class EventType(Enum):
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    USER_BLOCKED = "user.blocked"
    SOCIAL_FOLLOWED = "social.followed"
    POST_LIKED = "post.liked"
    POST_COMMENTED = "post.commented"
    POST_SHARED = "post.shared"
    POST_MENTIONED = "post.mentioned"
    EVENT_INVITED = "event.invited"
    EVENT_RSVP = "event.rsvp"
    EVENT_CANCELLED = "event.cancelled"
    MESSAGE_SENT = "message.sent"

    @property
    def routing_key(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------
class Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    data: dict
    timestamp: datetime | None = None
    service: str | None = None
    id: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def event_type(self) -> EventType:
        return EventType(self.type)

    @property
    def occurred_at(self) -> datetime:
        return self.timestamp or datetime.now(UTC)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------
class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UserProfilePayload(Payload):
    """``user.created`` / ``user.updated``."""

    user_id: str = Field(..., min_length=1)
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    verified: bool | None = None


class UserDeletedPayload(Payload):
    user_id: str = Field(..., min_length=1)


class UserBlockedPayload(Payload):
    blocker_id: str = Field(..., min_length=1)
    blocked_user_id: str = Field(..., min_length=1)
    reason: str | None = None


class FollowPayload(Payload):
    """``social.followed``: ``user_id`` is the user being followed."""

    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "following_id"))
    follower_id: str = Field(..., min_length=1)
    follower_username: str | None = None


class PostReactionPayload(Payload):
    """``post.liked`` / ``post.shared``."""

    post_id: str = Field(..., min_length=1)
    author_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    user_username: str | None = None


class PostCommentedPayload(PostReactionPayload):
    comment_id: str | None = None


class MentionedUser(Payload):
    user_id: str = Field(..., min_length=1)
    username: str | None = None


class PostMentionedPayload(Payload):
    post_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    user_username: str | None = None
    mentioned_users: list[MentionedUser] = Field(default_factory=list)


class EventInvitedPayload(Payload):
    event_id: str = Field(..., min_length=1)
    event_title: str | None = None
    inviter_id: str = Field(..., min_length=1)
    inviter_username: str | None = None
    invitee_id: str = Field(..., min_length=1)


class EventRsvpPayload(Payload):
    event_id: str = Field(..., min_length=1)
    event_title: str | None = None
    creator_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    user_username: str | None = None
    status: str = ""


class EventCancelledPayload(Payload):
    event_id: str = Field(..., min_length=1)
    creator_id: str = Field(..., min_length=1)
    event_title: str | None = None


class MessageSentPayload(Payload):
    message_id: str = Field(..., min_length=1)
    conversation_id: str | None = None
    sender_id: str = Field(..., min_length=1)
    sender_username: str | None = None
    recipient_id: str = Field(..., min_length=1)


PAYLOADS: dict[EventType, type[Payload]] = {
    EventType.USER_CREATED: UserProfilePayload,
    EventType.USER_UPDATED: UserProfilePayload,
    EventType.USER_DELETED: UserDeletedPayload,
    EventType.USER_BLOCKED: UserBlockedPayload,
    EventType.SOCIAL_FOLLOWED: FollowPayload,
    EventType.POST_LIKED: PostReactionPayload,
    EventType.POST_COMMENTED: PostCommentedPayload,
    EventType.POST_SHARED: PostReactionPayload,
    EventType.POST_MENTIONED: PostMentionedPayload,
    EventType.EVENT_INVITED: EventInvitedPayload,
    EventType.EVENT_RSVP: EventRsvpPayload,
    EventType.EVENT_CANCELLED: EventCancelledPayload,
    EventType.MESSAGE_SENT: MessageSentPayload,
}

_missing_payloads = set(EventType) - set(PAYLOADS)
if _missing_payloads:
    raise RuntimeError(f"No payload contract for event types: {sorted(t.value for t in _missing_payloads)}")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


def parse_envelope(body) -> Envelope:
    """Decode and validate an envelope from a dict, JSON string or bytes."""
    if isinstance(body, bytes | bytearray):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEventError(f"Body is not UTF-8: {exc}") from exc
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError as exc:
            raise MalformedEventError(f"Body is not valid JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise MalformedEventError("Envelope must be a JSON object")

    try:
        envelope = Envelope.model_validate(body)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid envelope: {_first_error(exc)}", body.get("type")) from exc

    try:
        envelope.event_type
    except ValueError:
        raise MalformedEventError(f"Unknown event type: {envelope.type}", envelope.type) from None

    return envelope


def parse_payload(envelope: Envelope) -> Payload:
    """Validate the envelope's ``data`` against the contract for its type."""
    event_type = envelope.event_type
    try:
        return PAYLOADS[event_type].model_validate(envelope.data)
    except ValidationError as exc:
        raise MalformedEventError(
            f"Invalid {event_type.value} payload: {_first_error(exc)}",
            event_type.value,
        ) from exc
