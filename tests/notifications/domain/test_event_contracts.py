"""Tests for inbound envelope and payload contracts."""

import json
from datetime import UTC, datetime

import pytest
from notifications.errors import MalformedEventError
from notifications.ingestion.contracts import (
    PAYLOADS,
    EventType,
    FollowPayload,
    PostMentionedPayload,
    parse_envelope,
    parse_payload,
)


def _body(event_type="post.liked", data=None, **extra):
    body = {
        "type": event_type,
        "data": data if data is not None else {"post_id": "p-1", "author_id": "u-1", "user_id": "u-2"},
        "timestamp": "2024-05-01T12:00:00Z",
        "service": "post-service",
    }
    body.update(extra)
    return body


class TestParseEnvelope:
    def test_accepts_dict(self):
        envelope = parse_envelope(_body())
        assert envelope.event_type is EventType.POST_LIKED
        assert envelope.service == "post-service"

    def test_accepts_json_bytes(self):
        envelope = parse_envelope(json.dumps(_body()).encode())
        assert envelope.type == "post.liked"

    def test_timestamp_is_timezone_aware(self):
        envelope = parse_envelope(_body(timestamp="2024-05-01T12:00:00"))
        assert envelope.occurred_at == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def test_missing_timestamp_uses_now(self):
        body = _body()
        del body["timestamp"]
        assert parse_envelope(body).occurred_at.tzinfo is not None

    def test_keeps_envelope_id(self):
        assert parse_envelope(_body(id="evt-1")).id == "evt-1"

    def test_invalid_json_is_malformed(self):
        with pytest.raises(MalformedEventError, match="not valid JSON"):
            parse_envelope(b"{not json")

    def test_invalid_utf8_is_malformed(self):
        with pytest.raises(MalformedEventError, match="not UTF-8"):
            parse_envelope(b"\xff\xfe")

    def test_non_object_is_malformed(self):
        with pytest.raises(MalformedEventError, match="JSON object"):
            parse_envelope("[1, 2]")

    def test_missing_data_is_malformed(self):
        body = _body()
        del body["data"]
        with pytest.raises(MalformedEventError, match="Invalid envelope"):
            parse_envelope(body)

    def test_unknown_type_is_malformed(self):
        with pytest.raises(MalformedEventError) as exc:
            parse_envelope(_body(event_type="post.archived"))
        assert exc.value.event_type == "post.archived"


class TestParsePayload:
    def test_every_event_type_has_a_contract(self):
        assert set(PAYLOADS) == set(EventType)

    def test_follow_accepts_user_id(self):
        envelope = parse_envelope(_body("social.followed", {"user_id": "u-1", "follower_id": "u-2"}))
        payload = parse_payload(envelope)
        assert isinstance(payload, FollowPayload)
        assert payload.user_id == "u-1"

    def test_follow_accepts_following_id_alias(self):
        envelope = parse_envelope(_body("social.followed", {"following_id": "u-1", "follower_id": "u-2"}))
        assert parse_payload(envelope).user_id == "u-1"

    def test_follow_without_target_is_malformed(self):
        envelope = parse_envelope(_body("social.followed", {"follower_id": "u-2"}))
        with pytest.raises(MalformedEventError) as exc:
            parse_payload(envelope)
        assert exc.value.event_type == "social.followed"
        assert "Invalid social.followed payload" in exc.value.reason

    def test_empty_identifier_is_malformed(self):
        envelope = parse_envelope(_body("post.liked", {"post_id": "p-1", "author_id": "", "user_id": "u-2"}))
        with pytest.raises(MalformedEventError):
            parse_payload(envelope)

    def test_unknown_payload_fields_are_ignored(self):
        data = {"post_id": "p-1", "author_id": "u-1", "user_id": "u-2", "reaction": "heart"}
        payload = parse_payload(parse_envelope(_body("post.liked", data)))
        assert not hasattr(payload, "reaction")

    def test_mentions_parse_nested_users(self):
        data = {
            "post_id": "p-1",
            "user_id": "u-1",
            "mentioned_users": [{"user_id": "u-2", "username": "bob"}, {"user_id": "u-3"}],
        }
        payload = parse_payload(parse_envelope(_body("post.mentioned", data)))
        assert isinstance(payload, PostMentionedPayload)
        assert [m.user_id for m in payload.mentioned_users] == ["u-2", "u-3"]

    def test_routing_key_is_the_type(self):
        assert EventType.MESSAGE_SENT.routing_key == "message.sent"
