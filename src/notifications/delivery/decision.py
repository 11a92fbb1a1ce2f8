"""Delivery decision engine: may a notification go out on a channel right now?

Pure functions over a preference document. The document only needs to
expose three methods:

* ``global_channel_enabled(channel) -> bool``
* ``type_channels(notification_type) -> ChannelSet``
* ``quiet_hours_window() -> QuietHours | None``

``NotificationPreference`` implements them; tests use light stand-ins.

Quiet hours only ever suppress the advisory channels (email, push). The
in-app record is governed by the preference gate alone.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime, time, tzinfo
from enum import Enum
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class Channel(Enum):
    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


class ChannelSet(NamedTuple):
    email: bool
    push: bool
    in_app: bool

    def allows(self, channel: Channel) -> bool:
        return getattr(self, channel.value)

    def as_dict(self) -> dict:
        return {"email": self.email, "push": self.push, "in_app": self.in_app}


QUIET_HOURS_EXEMPT = frozenset({Channel.IN_APP})


def parse_hhmm(value) -> time | None:
    """Parse a 24-hour ``HH:MM`` string, returning None when it is not one."""
    if not isinstance(value, str):
        return None
    match = _HHMM.match(value.strip())
    if not match:
        return None
    return time(int(match.group(1)), int(match.group(2)))


def resolve_timezone(name) -> tzinfo | None:
    """Resolve an IANA timezone name, returning None for unknown names."""
    if not isinstance(name, str) or not name.strip():
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return None


@dataclass(frozen=True)
class QuietHours:
    """A do-not-disturb window expressed in wall-clock time of ``tz``.

    ``start > end`` is an overnight window that wraps past midnight.
    ``start == end`` is an empty window.
    """

    start: time
    end: time
    tz: tzinfo

    @classmethod
    def from_settings(cls, enabled, start, end, timezone) -> "QuietHours | None":
        """Build a window from stored values; None when disabled or malformed."""
        if not enabled:
            return None
        start_time = parse_hhmm(start)
        end_time = parse_hhmm(end)
        tz = resolve_timezone(timezone)
        if start_time is None or end_time is None or tz is None:
            return None
        return cls(start=start_time, end=end_time, tz=tz)

    @property
    def is_overnight(self) -> bool:
        return self.start > self.end

    def local_time(self, now: datetime) -> time:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return now.astimezone(self.tz).time().replace(tzinfo=None)

    def contains(self, now: datetime) -> bool:
        current = self.local_time(now)
        if self.is_overnight:
            return current >= self.start or current < self.end
        return self.start <= current < self.end


def is_quiet_time(window: QuietHours | None, now: datetime) -> bool:
    return window is not None and window.contains(now)


def preference_gate(preferences, notification_type, channel: Channel) -> bool:
    """Per-type matrix entry AND the global channel toggle."""
    if not preferences.global_channel_enabled(channel):
        return False
    return preferences.type_channels(notification_type).allows(channel)


def should_deliver(preferences, notification_type, channel: Channel, now: datetime) -> bool:
    """Decide whether ``notification_type`` may be delivered on ``channel`` at ``now``."""
    channel = Channel(channel)
    if not preference_gate(preferences, notification_type, channel):
        return False

    if channel in QUIET_HOURS_EXEMPT:
        return True

    return not is_quiet_time(preferences.quiet_hours_window(), now)


def decide(preferences, notification_type, now: datetime | None = None) -> dict[Channel, bool]:
    """Evaluate every channel for one notification type."""
    now = now or datetime.now(UTC)
    return {channel: should_deliver(preferences, notification_type, channel, now) for channel in Channel}


def decisions_as_dict(decisions: dict[Channel, bool]) -> dict[str, bool]:
    return {channel.value: allowed for channel, allowed in decisions.items()}
