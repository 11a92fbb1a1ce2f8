"""Domain events for the NotificationPreference aggregate."""

from notifications.domain import notifications
from protean.fields import DateTime, Identifier, String


@notifications.event(part_of="NotificationPreference")
class PreferencesCreated:
    """Default notification preferences were created for a user."""

    user_id: Identifier(required=True)
    created_at: DateTime(required=True)


@notifications.event(part_of="NotificationPreference")
class PreferencesUpdated:
    """A user changed some of their notification preferences."""

    user_id: Identifier(required=True)
    changed_fields: String(required=True)  # Comma-separated
    updated_at: DateTime(required=True)


@notifications.event(part_of="NotificationPreference")
class PreferencesReset:
    """A user restored every preference to its default."""

    user_id: Identifier(required=True)
    reset_at: DateTime(required=True)
