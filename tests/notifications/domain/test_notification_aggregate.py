"""Tests for Notification aggregate creation, read state and invariants."""

from datetime import UTC, datetime, timedelta

import pytest
from notifications.notification.events import NotificationCreated, NotificationRead
from notifications.notification.notification import (
    Notification,
    NotificationPriority,
    NotificationType,
    ReferenceType,
    notification_id_for,
)
from protean.exceptions import ValidationError


def _make_notification(**overrides):
    defaults = {
        "recipient_id": "user-001",
        "notification_type": NotificationType.FOLLOW.value,
        "title": "New Follower",
        "message": "alice started following you",
    }
    defaults.update(overrides)
    return Notification.create(**defaults)


class TestNotificationCreation:
    def test_create_sets_id(self):
        n = _make_notification()
        assert n.id is not None

    def test_create_sets_recipient(self):
        n = _make_notification(recipient_id="user-123")
        assert str(n.recipient_id) == "user-123"

    def test_create_starts_unread(self):
        n = _make_notification()
        assert n.is_read is False
        assert n.read_at is None

    def test_create_defaults_to_medium_priority(self):
        n = _make_notification()
        assert n.priority == NotificationPriority.MEDIUM.value

    def test_create_with_reference(self):
        n = _make_notification(reference_id="post-1", reference_type=ReferenceType.POST.value)
        assert n.reference_id == "post-1"
        assert n.reference_type == "POST"

    def test_create_uses_given_timestamp(self):
        created = datetime.now(UTC) - timedelta(days=3)
        n = _make_notification(created_at=created)
        assert n.created_at == created

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError):
            _make_notification(notification_type="POKE")

    def test_missing_title_is_rejected(self):
        with pytest.raises(ValidationError):
            _make_notification(title=None)

    def test_overlong_message_is_rejected(self):
        with pytest.raises(ValidationError):
            _make_notification(message="x" * 1001)

    def test_dedup_key_derives_the_id(self):
        n = _make_notification(dedup_key="msg:abc:user-001")
        assert str(n.id) == notification_id_for("msg:abc:user-001")

    def test_same_dedup_key_same_id(self):
        first = _make_notification(dedup_key="msg:abc:user-001")
        second = _make_notification(dedup_key="msg:abc:user-001")
        assert first.id == second.id

    def test_raises_created_event(self):
        n = _make_notification(sender_id="user-002")
        assert len(n._events) == 1
        event = n._events[0]
        assert isinstance(event, NotificationCreated)
        assert event.notification_id == str(n.id)
        assert event.sender_id == "user-002"


class TestNotificationMetadata:
    def test_metadata_round_trips(self):
        n = _make_notification(metadata={"post_id": "p-1", "count": 3, "seen": False})
        assert n.get_metadata() == {"post_id": "p-1", "count": 3, "seen": False}

    def test_missing_metadata_is_empty(self):
        assert _make_notification().get_metadata() == {}

    def test_nested_metadata_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _make_notification(metadata={"post": {"id": "p-1"}})
        assert "metadata" in exc.value.messages

    def test_non_object_metadata_is_rejected(self):
        with pytest.raises(ValidationError):
            _make_notification(metadata=["a", "b"])


class TestMarkRead:
    def test_marks_read_and_sets_read_at(self):
        n = _make_notification()
        assert n.mark_read() is True
        assert n.is_read is True
        assert n.read_at is not None

    def test_second_read_is_a_no_op(self):
        n = _make_notification()
        n.mark_read()
        first_read_at = n.read_at
        n._events.clear()

        assert n.mark_read() is False
        assert n.read_at == first_read_at
        assert n._events == []

    def test_raises_read_event(self):
        n = _make_notification()
        n._events.clear()
        n.mark_read()
        assert isinstance(n._events[0], NotificationRead)

    def test_read_flag_without_timestamp_violates_invariant(self):
        n = _make_notification()
        with pytest.raises(ValidationError) as exc:
            n.is_read = True
        assert "read_at" in exc.value.messages


class TestOwnershipAndSerialization:
    def test_belongs_to_recipient(self):
        n = _make_notification(recipient_id="user-5")
        assert n.belongs_to("user-5") is True
        assert n.belongs_to("user-6") is False

    def test_to_dict_shape(self):
        n = _make_notification(metadata={"k": "v"})
        data = n.to_dict()
        assert data["type"] == "FOLLOW"
        assert data["metadata"] == {"k": "v"}
        assert data["is_read"] is False
        assert data["sender_id"] is None
