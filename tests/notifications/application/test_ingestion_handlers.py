"""Tests for event handlers: envelope in, notifications and advisory signals out."""

from datetime import UTC, datetime, timedelta

import pytest
from notifications.errors import MalformedEventError
from notifications.identity_cache.cache import find_identity, upsert_identity
from notifications.ingestion.contracts import parse_envelope
from notifications.ingestion.handlers import PlannedNotification, dedup_key_for, process_envelope
from notifications.notification.notification import NotificationType, notification_id_for
from notifications.notification.store import create_notification, get_unread_count, list_notifications
from notifications.preference.resolution import get_or_create_preferences, update_preferences

NOON = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
NIGHT = datetime(2024, 5, 1, 23, 0, tzinfo=UTC)


def _envelope(event_type, data, **extra):
    body = {"type": event_type, "data": data, "timestamp": NOON.isoformat(), "service": "test-service"}
    body.update(extra)
    return parse_envelope(body)


def _process(event_type, data, message_id="msg-1", now=NOON, **extra):
    return process_envelope(_envelope(event_type, data, **extra), message_id=message_id, now=now)


def _inbox(user_id):
    return list_notifications(user_id).items


_LIKE = {"post_id": "post-1", "author_id": "author-1", "user_id": "liker-1", "user_username": "liker"}


class TestPostLiked:
    def test_default_preferences_skip_email(self, advisory):
        result = _process("post.liked", _LIKE)

        inbox = _inbox("author-1")
        assert len(inbox) == 1
        assert inbox[0].notification_type == "LIKE"
        assert inbox[0].message == "liker liked your post"
        assert result.created == [str(inbox[0].id)]

        signal = advisory.signals_for("author-1")[0]
        assert signal["channels"] == {"email": False, "push": True, "in_app": True}
        assert signal["notification_id"] == str(inbox[0].id)
        assert signal["source_event"] == "post.liked"

    def test_refreshes_actor_identity(self):
        _process("post.liked", _LIKE)
        assert find_identity("liker-1").username == "liker"

    def test_signal_carries_sender_identity(self, advisory):
        _process("post.liked", _LIKE)
        assert advisory.signals[0]["sender"]["username"] == "liker"

    def test_redelivery_creates_no_duplicate(self, advisory):
        _process("post.liked", _LIKE, message_id="msg-42")
        result = _process("post.liked", _LIKE, message_id="msg-42")

        assert result.duplicates == 1
        assert result.created == []
        assert len(_inbox("author-1")) == 1
        assert len(advisory.signals) == 1

    def test_distinct_messages_create_distinct_notifications(self):
        _process("post.liked", _LIKE, message_id="msg-1")
        _process("post.liked", _LIKE, message_id="msg-2")
        assert len(_inbox("author-1")) == 2


class TestQuietHours:
    def test_night_keeps_in_app_and_suppresses_push(self, advisory):
        get_or_create_preferences("author-1")
        update_preferences(
            "author-1",
            {"quiet_hours": {"enabled": True, "start_time": "22:00", "end_time": "08:00", "timezone": "UTC"}},
        )

        _process("post.commented", {**_LIKE, "comment_id": "c-1"}, now=NIGHT)

        assert len(_inbox("author-1")) == 1
        signal = advisory.signals_for("author-1")[0]
        assert signal["channels"] == {"email": False, "push": False, "in_app": True}


class TestPreferenceFiltering:
    def test_everything_off_stores_and_signals_nothing(self, advisory):
        update_preferences("author-1", {"preferences": {"LIKE": {"email": False, "push": False, "in_app": False}}})

        result = _process("post.liked", _LIKE)

        assert result.filtered == 1
        assert _inbox("author-1") == []
        assert advisory.signals == []

    def test_in_app_off_still_signals_push(self, advisory):
        update_preferences("author-1", {"in_app_enabled": False})

        result = _process("post.liked", _LIKE)

        assert _inbox("author-1") == []
        assert result.signals == 1
        signal = advisory.signals[0]
        assert signal["notification_id"] is None
        assert signal["channels"] == {"email": False, "push": True, "in_app": False}

    def test_in_app_off_redelivery_signals_once(self, advisory):
        update_preferences("author-1", {"in_app_enabled": False})

        first = _process("post.liked", _LIKE, message_id="msg-9")
        second = _process("post.liked", _LIKE, message_id="msg-9")

        assert first.signals == 1
        assert second.signals == 0
        assert second.duplicates == 1
        assert len(advisory.signals) == 1
        assert _inbox("author-1") == []

    def test_signal_id_is_stable_across_redeliveries(self, advisory):
        update_preferences("author-1", {"in_app_enabled": False})
        _process("post.liked", _LIKE, message_id="msg-9")

        assert advisory.signals[0]["signal_id"] == notification_id_for("msg:msg-9:author-1")

    def test_signal_id_matches_in_app_notification(self, advisory):
        _process("post.liked", _LIKE)
        signal = advisory.signals[0]
        assert signal["signal_id"] == signal["notification_id"]

    def test_in_app_turned_on_after_signal_only_delivery_stays_silent(self, advisory):
        update_preferences("author-1", {"in_app_enabled": False})
        _process("post.liked", _LIKE, message_id="msg-9")
        update_preferences("author-1", {"in_app_enabled": True})

        result = _process("post.liked", _LIKE, message_id="msg-9")

        assert result.duplicates == 1
        assert _inbox("author-1") == []
        assert len(advisory.signals) == 1


class TestFollow:
    def test_follow_notifies_followed_user(self):
        _process("social.followed", {"user_id": "u-1", "follower_id": "u-2", "follower_username": "bob"})

        inbox = _inbox("u-1")
        assert inbox[0].title == "New Follower"
        assert inbox[0].message == "bob started following you"
        assert inbox[0].reference_type == "USER"

    def test_follow_with_following_id(self):
        _process("social.followed", {"following_id": "u-1", "follower_id": "u-2"})
        assert _inbox("u-1")[0].message == "Someone started following you"

    def test_follow_without_target_is_malformed(self):
        with pytest.raises(MalformedEventError):
            _process("social.followed", {"follower_id": "u-2"})
        assert get_unread_count("u-2") == 0


class TestPostMentioned:
    def test_one_notification_per_mentioned_user(self):
        result = _process(
            "post.mentioned",
            {
                "post_id": "post-1",
                "user_id": "author-1",
                "user_username": "author",
                "mentioned_users": [
                    {"user_id": "u-2"},
                    {"user_id": "u-3"},
                    {"user_id": "u-2"},
                    {"user_id": "author-1"},
                ],
            },
        )

        assert len(result.created) == 2
        assert len(_inbox("u-2")) == 1
        assert len(_inbox("u-3")) == 1
        assert _inbox("author-1") == []


class TestMessaging:
    def test_message_notifies_recipient(self):
        _process(
            "message.sent",
            {"message_id": "m-1", "conversation_id": "c-1", "sender_id": "u-1", "sender_username": "amy", "recipient_id": "u-2"},
        )
        inbox = _inbox("u-2")
        assert inbox[0].notification_type == "MESSAGE"
        assert inbox[0].priority == "HIGH"
        assert inbox[0].reference_id == "c-1"

    def test_message_to_self_is_skipped(self, advisory):
        result = _process("message.sent", {"message_id": "m-1", "sender_id": "u-1", "recipient_id": "u-1"})
        assert result.created == []
        assert advisory.signals == []


class TestEvents:
    def test_invite_notifies_invitee(self):
        _process(
            "event.invited",
            {"event_id": "e-1", "event_title": "Picnic", "inviter_id": "u-1", "inviter_username": "amy", "invitee_id": "u-2"},
        )
        assert _inbox("u-2")[0].message == 'amy invited you to "Picnic"'

    def test_rsvp_is_in_app_only_by_default(self, advisory):
        _process(
            "event.rsvp",
            {"event_id": "e-1", "creator_id": "u-1", "user_id": "u-2", "user_username": "bo", "status": "GOING"},
        )
        assert _inbox("u-1")[0].message == "bo is going to your event"
        assert advisory.signals[0]["channels"] == {"email": False, "push": False, "in_app": True}

    def test_cancellation_notifies_creator(self):
        _process("event.cancelled", {"event_id": "e-1", "creator_id": "u-1", "event_title": "Picnic"})
        inbox = _inbox("u-1")
        assert inbox[0].notification_type == "SYSTEM"
        assert inbox[0].message == 'Your event "Picnic" has been cancelled'


class TestUserEvents:
    def test_user_created_caches_identity(self):
        result = _process("user.created", {"user_id": "u-1", "username": "amy", "display_name": "Amy"})
        assert result.created == []
        assert find_identity("u-1").display_name == "Amy"

    def test_out_of_order_update_is_ignored(self):
        upsert_identity("u-1", username="amy_new", synced_at=NOON + timedelta(hours=1))
        _process("user.updated", {"user_id": "u-1", "username": "amy_old"})
        assert find_identity("u-1").username == "amy_new"

    def test_user_blocked_sends_security_alert(self):
        _process("user.blocked", {"blocker_id": "u-1", "blocked_user_id": "u-2", "reason": "spam"})
        inbox = _inbox("u-2")
        assert inbox[0].notification_type == "SECURITY_ALERT"
        assert inbox[0].get_metadata() == {"blocker_id": "u-1", "reason": "spam"}

    def test_user_deleted_erases_everything(self):
        create_notification("u-1", "SYSTEM", "Hello", "Welcome")
        get_or_create_preferences("u-1")
        upsert_identity("u-1", username="amy", synced_at=NOON - timedelta(days=1))

        _process("user.deleted", {"user_id": "u-1"})

        assert _inbox("u-1") == []
        assert find_identity("u-1") is None


class TestDedupKey:
    PLANNED = PlannedNotification(
        recipient_id="u-1",
        sender_id="u-2",
        notification_type=NotificationType.LIKE,
        title="Post Liked",
        message="x",
        reference_id="post-1",
    )

    def test_prefers_message_id(self):
        envelope = _envelope("post.liked", _LIKE, id="evt-1")
        assert dedup_key_for(envelope, self.PLANNED, "msg-9") == "msg:msg-9:u-1"

    def test_falls_back_to_envelope_id(self):
        envelope = _envelope("post.liked", _LIKE, id="evt-1")
        assert dedup_key_for(envelope, self.PLANNED) == "msg:evt-1:u-1"

    def test_without_ids_uses_time_bucket(self):
        envelope = _envelope("post.liked", _LIKE)
        same_bucket = _envelope("post.liked", _LIKE, timestamp=(NOON + timedelta(seconds=30)).isoformat())
        next_bucket = _envelope("post.liked", _LIKE, timestamp=(NOON + timedelta(minutes=10)).isoformat())

        key = dedup_key_for(envelope, self.PLANNED)
        assert key.startswith("post.liked:u-1:u-2:post-1:")
        assert dedup_key_for(same_bucket, self.PLANNED) == key
        assert dedup_key_for(next_bucket, self.PLANNED) != key
