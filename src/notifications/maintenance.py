"""Maintenance jobs: account erasure and age-based cleanup sweeps."""

import structlog
from notifications.identity_cache.cache import cleanup_identities_older_than, remove_identity
from notifications.notification.store import (
    cleanup_delivery_receipts_older_than,
    cleanup_notifications_older_than,
    delete_all_notifications,
    delete_delivery_receipts,
)
from notifications.preference.resolution import delete_preferences
from protean.exceptions import ValidationError

logger = structlog.get_logger(__name__)


def erase_user_data(user_id) -> dict:
    """Account-deletion hook: drop everything stored for ``user_id``.

    Removes the notifications and delivery receipts addressed to the user,
    their preference document and their cached identity. Notifications
    they sent to others stay and render with a fallback sender.
    """
    if not user_id:
        raise ValidationError({"user_id": ["is required"]})

    summary = {
        "notifications_deleted": delete_all_notifications(user_id),
        "receipts_deleted": delete_delivery_receipts(user_id),
        "preferences_deleted": delete_preferences(user_id),
        "identity_deleted": remove_identity(user_id),
    }
    logger.info("User data erased", user_id=str(user_id), **summary)
    return summary


def run_cleanup(notification_days=None, identity_days=None, read_only=False) -> dict:
    """Run every sweep; ``None`` falls back to the configured ages."""
    summary = {
        "notifications_deleted": cleanup_notifications_older_than(notification_days, read_only=read_only),
        "receipts_deleted": cleanup_delivery_receipts_older_than(notification_days),
        "identities_deleted": cleanup_identities_older_than(identity_days),
    }
    logger.info("Cleanup finished", **summary)
    return summary
