"""Preference resolution: get-or-create, partial update, reset, decisions.

Preference documents are keyed by the user id, so the store's primary key
is the uniqueness guarantee. Concurrent first accesses may all try to
create; the loser's conflicting insert is turned back into a read.
"""

from datetime import UTC, datetime

import structlog
from notifications.delivery.decision import decide
from notifications.errors import StorageUnavailableError
from notifications.preference.preference import NotificationPreference
from notifications.utils.storage import with_storage_retry
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)


def _repo():
    return current_domain.repository_for(NotificationPreference)


def _find(user_id):
    try:
        return _repo().get(str(user_id))
    except ObjectNotFoundError:
        return None


def _load(user_id) -> NotificationPreference | None:
    return with_storage_retry("load_preferences", _find, user_id)


def get_or_create_preferences(user_id) -> NotificationPreference:
    """Return the user's preferences, creating the default document on first access."""
    if not user_id:
        raise ValidationError({"user_id": ["is required"]})

    preference = _load(user_id)
    if preference is not None:
        return preference

    preference = NotificationPreference.create_default(str(user_id))
    try:
        with_storage_retry("create_preferences", _repo().add, preference)
    except (ValidationError, ExpectedVersionError, StorageUnavailableError):
        # Another consumer created the document first
        existing = with_storage_retry("load_preferences", _find, user_id)
        if existing is None:
            raise
        logger.info("Preferences created concurrently, using stored document", user_id=str(user_id))
        return existing

    logger.info("Default preferences created", user_id=str(user_id))
    return preference


def update_preferences(user_id, patch: dict) -> NotificationPreference:
    """Merge a partial preference update into the user's document.

    ``patch`` may carry ``email_enabled``, ``push_enabled``,
    ``in_app_enabled``, ``preferences`` (per-type matrix fragment) and
    ``quiet_hours`` (``enabled``, ``start_time``, ``end_time``, ``timezone``).
    """
    if not isinstance(patch, dict):
        raise ValidationError({"preferences": ["Patch must be an object"]})

    unknown = set(patch) - {"email_enabled", "push_enabled", "in_app_enabled", "preferences", "quiet_hours"}
    if unknown:
        raise ValidationError({"preferences": [f"Unknown preference fields: {', '.join(sorted(unknown))}"]})

    preference = get_or_create_preferences(user_id)
    preference.apply_patch(
        email_enabled=patch.get("email_enabled"),
        push_enabled=patch.get("push_enabled"),
        in_app_enabled=patch.get("in_app_enabled"),
        type_preferences=patch.get("preferences"),
        quiet_hours=patch.get("quiet_hours"),
    )
    with_storage_retry("update_preferences", _repo().add, preference)

    logger.info("Preferences updated", user_id=str(user_id), fields=sorted(patch))
    return preference


def reset_preferences(user_id) -> NotificationPreference:
    """Restore every preference of a user to the defaults."""
    preference = get_or_create_preferences(user_id)
    preference.reset_to_defaults()
    with_storage_retry("reset_preferences", _repo().add, preference)

    logger.info("Preferences reset to defaults", user_id=str(user_id))
    return preference


def delete_preferences(user_id) -> bool:
    """Remove a user's preference document. Returns False when there was none."""
    preference = _load(user_id)
    if preference is None:
        return False
    with_storage_retry("delete_preferences", _repo()._dao.delete, preference)
    return True


def delivery_decisions(user_id, notification_type, now: datetime | None = None):
    """Per-channel decisions for a notification type addressed to ``user_id``."""
    preference = get_or_create_preferences(user_id)
    return decide(preference, notification_type, now or datetime.now(UTC))
