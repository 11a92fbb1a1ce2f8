"""NotificationPreference aggregate (CQRS): a user's delivery preferences.

One document per user, identified by the user id itself so the store's
primary key guarantees uniqueness. Holds the three global channel toggles,
the per-type channel matrix and the quiet-hours window. Documents are
created lazily with defaults on first access.
"""

import json
from datetime import UTC, datetime

from notifications.delivery.decision import (
    Channel,
    ChannelSet,
    QuietHours,
    parse_hhmm,
    resolve_timezone,
)
from notifications.domain import notifications
from notifications.notification.notification import NotificationType
from notifications.preference.events import PreferencesCreated, PreferencesReset, PreferencesUpdated
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, String, Text

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
_ALL = ChannelSet(email=True, push=True, in_app=True)
_NO_EMAIL = ChannelSet(email=False, push=True, in_app=True)

DEFAULT_TYPE_CHANNELS: dict[NotificationType, ChannelSet] = {
    NotificationType.FOLLOW: _ALL,
    NotificationType.LIKE: _NO_EMAIL,
    NotificationType.COMMENT: _ALL,
    NotificationType.MESSAGE: _NO_EMAIL,
    NotificationType.SYSTEM: _ALL,
    NotificationType.POST_MENTION: _ALL,
    NotificationType.POST_SHARE: _NO_EMAIL,
    NotificationType.EVENT_INVITE: _ALL,
    NotificationType.EVENT_RSVP: ChannelSet(email=False, push=False, in_app=True),
    NotificationType.EVENT_REMINDER: _ALL,
    NotificationType.FRIEND_REQUEST: _ALL,
    NotificationType.ACCOUNT_VERIFICATION: ChannelSet(email=True, push=False, in_app=True),
    NotificationType.PASSWORD_RESET: ChannelSet(email=True, push=False, in_app=False),
    NotificationType.SECURITY_ALERT: _ALL,
}

_missing_defaults = set(NotificationType) - set(DEFAULT_TYPE_CHANNELS)
if _missing_defaults:
    raise RuntimeError(f"No default channels for notification types: {sorted(t.value for t in _missing_defaults)}")

DEFAULT_QUIET_HOURS_START = "22:00"
DEFAULT_QUIET_HOURS_END = "08:00"
DEFAULT_QUIET_HOURS_TIMEZONE = "UTC"

_GLOBAL_TOGGLES = {
    Channel.EMAIL: "email_enabled",
    Channel.PUSH: "push_enabled",
    Channel.IN_APP: "in_app_enabled",
}


def default_matrix() -> dict[str, dict[str, bool]]:
    return {nt.value: channels.as_dict() for nt, channels in DEFAULT_TYPE_CHANNELS.items()}


def _coerce_type(notification_type) -> NotificationType:
    try:
        return NotificationType(notification_type.value if isinstance(notification_type, NotificationType) else notification_type)
    except ValueError:
        raise ValidationError({"preferences": [f"Unknown notification type: {notification_type}"]}) from None


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@notifications.aggregate
class NotificationPreference:
    """A user's notification preferences.

    The per-type matrix is stored as a JSON document. Entries missing from a
    stored document (a type added after the document was written, or a
    partially written entry) resolve to the documented defaults.
    """

    user_id: Identifier(identifier=True, required=True)

    # Global channel toggles
    email_enabled: Boolean(default=True)
    push_enabled: Boolean(default=True)
    in_app_enabled: Boolean(default=True)

    # Per-type channel matrix
    type_preferences: Text()  # JSON {TYPE: {email, push, in_app}}

    # Quiet hours (DND), wall-clock times in quiet_hours_timezone
    quiet_hours_enabled: Boolean(default=False)
    quiet_hours_start: String(max_length=5, default=DEFAULT_QUIET_HOURS_START)  # "22:00" format
    quiet_hours_end: String(max_length=5, default=DEFAULT_QUIET_HOURS_END)  # "08:00" format
    quiet_hours_timezone: String(max_length=64, default=DEFAULT_QUIET_HOURS_TIMEZONE)

    # Timestamps
    created_at: DateTime()
    updated_at: DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create_default(cls, user_id):
        """Create the default document for a user."""
        now = datetime.now(UTC)

        preference = cls(
            user_id=user_id,
            email_enabled=True,
            push_enabled=True,
            in_app_enabled=True,
            type_preferences=json.dumps(default_matrix()),
            quiet_hours_enabled=False,
            quiet_hours_start=DEFAULT_QUIET_HOURS_START,
            quiet_hours_end=DEFAULT_QUIET_HOURS_END,
            quiet_hours_timezone=DEFAULT_QUIET_HOURS_TIMEZONE,
            created_at=now,
            updated_at=now,
        )

        preference.raise_(PreferencesCreated(user_id=str(user_id), created_at=now))

        return preference

    # -------------------------------------------------------------------
    # Decision engine protocol
    # -------------------------------------------------------------------
    def global_channel_enabled(self, channel: Channel) -> bool:
        return bool(getattr(self, _GLOBAL_TOGGLES[Channel(channel)]))

    def type_channels(self, notification_type) -> ChannelSet:
        nt = _coerce_type(notification_type)
        default = DEFAULT_TYPE_CHANNELS[nt]
        stored = self._matrix().get(nt.value)
        if not isinstance(stored, dict):
            return default
        return ChannelSet(
            **{
                channel: stored[channel] if isinstance(stored.get(channel), bool) else getattr(default, channel)
                for channel in ChannelSet._fields
            }
        )

    def quiet_hours_window(self) -> QuietHours | None:
        return QuietHours.from_settings(
            self.quiet_hours_enabled,
            self.quiet_hours_start,
            self.quiet_hours_end,
            self.quiet_hours_timezone,
        )

    # -------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------
    def apply_patch(
        self,
        email_enabled=None,
        push_enabled=None,
        in_app_enabled=None,
        type_preferences=None,
        quiet_hours=None,
    ):
        """Merge a partial update. Only provided fields change."""
        changed = []

        for name, value in (
            ("email_enabled", email_enabled),
            ("push_enabled", push_enabled),
            ("in_app_enabled", in_app_enabled),
        ):
            if value is not None:
                if not isinstance(value, bool):
                    raise ValidationError({name: ["Must be a boolean"]})
                setattr(self, name, value)
                changed.append(name)

        if type_preferences:
            self._merge_type_preferences(type_preferences)
            changed.append("type_preferences")

        if quiet_hours:
            self._merge_quiet_hours(quiet_hours)
            changed.append("quiet_hours")

        if not changed:
            raise ValidationError({"preferences": ["At least one preference must be provided"]})

        now = datetime.now(UTC)
        self.updated_at = now
        self.raise_(
            PreferencesUpdated(
                user_id=str(self.user_id),
                changed_fields=",".join(changed),
                updated_at=now,
            )
        )

    def set_type_channel(self, notification_type, channel, enabled):
        """Toggle a single matrix cell."""
        self.apply_patch(type_preferences={notification_type: {Channel(channel).value: enabled}})

    def reset_to_defaults(self):
        """Restore every preference to its documented default."""
        now = datetime.now(UTC)
        self.email_enabled = True
        self.push_enabled = True
        self.in_app_enabled = True
        self.type_preferences = json.dumps(default_matrix())
        self.quiet_hours_enabled = False
        self.quiet_hours_start = DEFAULT_QUIET_HOURS_START
        self.quiet_hours_end = DEFAULT_QUIET_HOURS_END
        self.quiet_hours_timezone = DEFAULT_QUIET_HOURS_TIMEZONE
        self.updated_at = now

        self.raise_(PreferencesReset(user_id=str(self.user_id), reset_at=now))

    def _merge_type_preferences(self, patch):
        if not isinstance(patch, dict):
            raise ValidationError({"preferences": ["Per-type preferences must be an object"]})

        matrix = self._matrix()
        for notification_type, channels in patch.items():
            nt = _coerce_type(notification_type)
            if not isinstance(channels, dict):
                raise ValidationError({"preferences": [f"Channels for {nt.value} must be an object"]})

            entry = self.type_channels(nt).as_dict()
            for channel, enabled in channels.items():
                if channel not in ChannelSet._fields:
                    raise ValidationError({"preferences": [f"Unknown channel: {channel}"]})
                if enabled is None:
                    continue
                if not isinstance(enabled, bool):
                    raise ValidationError({"preferences": [f"{nt.value}.{channel} must be a boolean"]})
                entry[channel] = enabled
            matrix[nt.value] = entry

        self.type_preferences = json.dumps(matrix)

    def _merge_quiet_hours(self, patch):
        if not isinstance(patch, dict):
            raise ValidationError({"quiet_hours": ["Quiet hours must be an object"]})

        enabled = patch.get("enabled")
        start = patch.get("start_time")
        end = patch.get("end_time")
        timezone = patch.get("timezone")

        if enabled is not None and not isinstance(enabled, bool):
            raise ValidationError({"quiet_hours_enabled": ["Must be a boolean"]})
        for label, value in (("start", start), ("end", end)):
            if value is not None and parse_hhmm(value) is None:
                raise ValidationError({f"quiet_hours_{label}": [f"Invalid time format: {value}. Use HH:MM"]})
        if timezone is not None and resolve_timezone(timezone) is None:
            raise ValidationError({"quiet_hours_timezone": [f"Unknown timezone: {timezone}"]})

        if enabled is not None:
            self.quiet_hours_enabled = enabled
        if start is not None:
            self.quiet_hours_start = _normalize_hhmm(start)
        if end is not None:
            self.quiet_hours_end = _normalize_hhmm(end)
        if timezone is not None:
            self.quiet_hours_timezone = timezone.strip()

    # -------------------------------------------------------------------
    # Query helpers
    # -------------------------------------------------------------------
    def _matrix(self) -> dict:
        if not self.type_preferences:
            return {}
        try:
            matrix = json.loads(self.type_preferences)
        except ValueError:
            return {}
        return matrix if isinstance(matrix, dict) else {}

    def resolved_matrix(self) -> dict[str, dict[str, bool]]:
        """The full matrix with defaults filled in for missing entries."""
        return {nt.value: self.type_channels(nt).as_dict() for nt in NotificationType}

    def to_dict(self) -> dict:
        return {
            "user_id": str(self.user_id),
            "email_enabled": bool(self.email_enabled),
            "push_enabled": bool(self.push_enabled),
            "in_app_enabled": bool(self.in_app_enabled),
            "preferences": self.resolved_matrix(),
            "quiet_hours": {
                "enabled": bool(self.quiet_hours_enabled),
                "start_time": self.quiet_hours_start,
                "end_time": self.quiet_hours_end,
                "timezone": self.quiet_hours_timezone,
            },
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _normalize_hhmm(value: str) -> str:
    parsed = parse_hhmm(value)
    return parsed.strftime("%H:%M")
