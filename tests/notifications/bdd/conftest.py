"""Shared BDD fixtures and step definitions for the Notifications domain."""

import pytest
from notifications.ingestion.pipeline import MessagePipeline
from notifications.preference.resolution import get_or_create_preferences, update_preferences
from pytest_bdd import given, parsers


@pytest.fixture()
def pipeline():
    return MessagePipeline(timeout=0)


@pytest.fixture()
def deliveries():
    """Every FakeMessage handed to the pipeline, in order."""
    return []


# ---------------------------------------------------------------------------
# Given steps: preferences
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse('a user "{recipient}" with default preferences'),
    target_fixture="user_id",
)
def user_with_defaults(recipient):
    get_or_create_preferences(recipient)
    return recipient


@given(parsers.cfparse('quiet hours from "{start}" to "{end}" in "{timezone}"'))
def quiet_hours(user_id, start, end, timezone):
    update_preferences(
        user_id,
        {"quiet_hours": {"enabled": True, "start_time": start, "end_time": end, "timezone": timezone}},
    )


@given(parsers.cfparse('the "{channel}" channel is switched off'))
def channel_switched_off(user_id, channel):
    update_preferences(user_id, {f"{channel}_enabled": False})
