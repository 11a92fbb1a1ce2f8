"""Notification store: create, page, read, delete and count notifications.

Every repository call goes through ``with_storage_retry`` so a flaky store
is retried before ``StorageUnavailableError`` reaches the caller. Bulk
operations walk the matching rows in batches until none are left.
"""

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from notifications.config import get_settings
from notifications.errors import StorageUnavailableError
from notifications.notification.notification import (
    Notification,
    NotificationType,
    notification_id_for,
)
from notifications.notification.receipt import DeliveryReceipt
from notifications.utils.storage import with_storage_retry
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)

_BATCH_SIZE = 100


@dataclass
class NotificationPage:
    items: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def _repo():
    return current_domain.repository_for(Notification)


def _find(notification_id):
    try:
        return _repo().get(notification_id)
    except ObjectNotFoundError:
        return None


def _load_owned(notification_id, recipient_id=None) -> Notification:
    """Load a notification; someone else's notification counts as missing."""
    notification = with_storage_retry("load_notification", _find, notification_id)
    if notification is None or (recipient_id is not None and not notification.belongs_to(recipient_id)):
        raise ObjectNotFoundError(f"Notification {notification_id} not found")
    return notification


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
def record_notification(
    recipient_id,
    notification_type,
    title,
    message,
    sender_id=None,
    reference_id=None,
    reference_type=None,
    priority=None,
    metadata=None,
    dedup_key=None,
    created_at=None,
) -> tuple[Notification, bool]:
    """Persist a new notification; returns it with a flag telling whether it was created.

    With a ``dedup_key`` the id is derived from the key, so redelivering the
    same cause returns the stored notification (flag False) instead of adding
    a row.
    """
    if not recipient_id:
        raise ValidationError({"recipient_id": ["is required"]})

    if dedup_key:
        existing = with_storage_retry("load_notification", _find, notification_id_for(dedup_key))
        if existing is not None:
            logger.info(
                "Duplicate notification suppressed",
                notification_id=str(existing.id),
                recipient_id=str(recipient_id),
                dedup_key=dedup_key,
            )
            return existing, False

    notification = Notification.create(
        recipient_id=recipient_id,
        notification_type=notification_type,
        title=title,
        message=message,
        sender_id=sender_id,
        reference_id=reference_id,
        reference_type=reference_type,
        priority=priority,
        metadata=metadata,
        dedup_key=dedup_key,
        created_at=created_at,
    )
    try:
        with_storage_retry("create_notification", _repo().add, notification)
    except (ValidationError, ExpectedVersionError, StorageUnavailableError):
        # Same dedup key persisted by a competing consumer
        existing = with_storage_retry("load_notification", _find, notification.id) if dedup_key else None
        if existing is None:
            raise
        return existing, False

    logger.info(
        "Notification created",
        notification_id=str(notification.id),
        recipient_id=str(recipient_id),
        notification_type=notification.notification_type,
    )
    return notification, True


def create_notification(recipient_id, notification_type, title, message, **kwargs) -> Notification:
    """Internal create call. Returns the stored notification."""
    notification, _ = record_notification(recipient_id, notification_type, title, message, **kwargs)
    return notification


# ---------------------------------------------------------------------------
# Delivery receipts
# ---------------------------------------------------------------------------
def _receipts():
    return current_domain.repository_for(DeliveryReceipt)


def _find_receipt(receipt_id):
    try:
        return _receipts().get(receipt_id)
    except ObjectNotFoundError:
        return None


def has_delivery_receipt(dedup_key) -> bool:
    return with_storage_retry("load_receipt", _find_receipt, notification_id_for(dedup_key)) is not None


def was_delivered(dedup_key) -> bool:
    """True when the cause behind ``dedup_key`` already produced a notification or a receipt."""
    if with_storage_retry("load_notification", _find, notification_id_for(dedup_key)) is not None:
        return True
    return has_delivery_receipt(dedup_key)


def record_delivery_receipt(dedup_key, recipient_id, created_at=None) -> bool:
    """Remember a delivery that wrote no in-app row; False when it was already delivered."""
    if was_delivered(dedup_key):
        logger.info("Duplicate delivery suppressed", recipient_id=str(recipient_id), dedup_key=dedup_key)
        return False

    receipt = DeliveryReceipt(
        receipt_id=notification_id_for(dedup_key),
        recipient_id=str(recipient_id),
        dedup_key=dedup_key,
        created_at=created_at or datetime.now(UTC),
    )
    try:
        with_storage_retry("create_receipt", _receipts().add, receipt)
    except (ValidationError, ExpectedVersionError, StorageUnavailableError):
        if with_storage_retry("load_receipt", _find_receipt, receipt.receipt_id) is None:
            raise
        return False
    return True


def delete_delivery_receipts(recipient_id) -> int:
    """Delete every receipt addressed to a recipient; returns the count."""
    return _delete_matching("delete_receipts", _receipts(), recipient_id=str(recipient_id))


def cleanup_delivery_receipts_older_than(days=None) -> int:
    """Delete receipts recorded more than ``days`` ago."""
    if days is None:
        days = get_settings().notification_max_age_days
    if days < 0:
        raise ValidationError({"days": ["Days must not be negative"]})

    cutoff = datetime.now(UTC) - timedelta(days=days)
    deleted = _delete_matching("cleanup_receipts", _receipts(), created_at__lt=cutoff)
    logger.info("Old delivery receipts cleaned up", days=days, deleted_count=deleted)
    return deleted


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _validate_paging(page, limit) -> tuple[int, int]:
    settings = get_settings()
    errors = {}
    if not isinstance(page, int) or isinstance(page, bool) or page < 1:
        errors["page"] = ["Page must be a positive integer"]
    if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= settings.max_page_size:
        errors["limit"] = [f"Limit must be between 1 and {settings.max_page_size}"]
    if errors:
        raise ValidationError(errors)
    return page, limit


def list_notifications(recipient_id, page=1, limit=None, unread_only=False, notification_type=None) -> NotificationPage:
    """Page through a recipient's notifications, newest first."""
    if limit is None:
        limit = get_settings().default_page_size
    page, limit = _validate_paging(page, limit)

    criteria = {"recipient_id": str(recipient_id)}
    if unread_only:
        criteria["is_read"] = False
    if notification_type:
        try:
            criteria["notification_type"] = NotificationType(notification_type).value
        except ValueError:
            raise ValidationError({"type": [f"Unknown notification type: {notification_type}"]}) from None

    def _query():
        return (
            _repo()
            ._dao.query.filter(**criteria)
            .order_by("-created_at")
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

    result = with_storage_retry("list_notifications", _query)
    return NotificationPage(items=list(result.items), total=result.total, page=page, limit=limit)


def get_unread_count(recipient_id) -> int:
    """Unread notifications for a recipient, counted from the recipient/is_read filter."""

    def _count():
        return _repo()._dao.query.filter(recipient_id=str(recipient_id), is_read=False).all().total

    return with_storage_retry("get_unread_count", _count)


def get_notification_stats(recipient_id) -> dict:
    """Total, read and unread counts plus a per-type breakdown."""
    by_type: dict[str, dict[str, int]] = {}
    total = unread = 0

    for notification in _iterate(recipient_id=str(recipient_id)):
        total += 1
        bucket = by_type.setdefault(notification.notification_type, {"read": 0, "unread": 0})
        if notification.is_read:
            bucket["read"] += 1
        else:
            unread += 1
            bucket["unread"] += 1

    return {"total": total, "unread": unread, "read": total - unread, "by_type": by_type}


def _iterate(**criteria):
    offset = 0
    while True:
        batch = with_storage_retry(
            "scan_notifications",
            lambda: _repo()._dao.query.filter(**criteria).order_by("created_at").offset(offset).limit(_BATCH_SIZE).all(),
        )
        items = list(batch.items)
        yield from items
        if len(items) < _BATCH_SIZE:
            return
        offset += _BATCH_SIZE


# ---------------------------------------------------------------------------
# Read state
# ---------------------------------------------------------------------------
def mark_as_read(notification_id, recipient_id=None) -> Notification:
    """Mark one notification read. Already-read notifications are left untouched."""
    notification = _load_owned(notification_id, recipient_id)
    if notification.mark_read():
        with_storage_retry("mark_as_read", _repo().add, notification)
        logger.info(
            "Notification marked as read",
            notification_id=str(notification.id),
            recipient_id=str(notification.recipient_id),
        )
    return notification


def mark_all_as_read(recipient_id) -> int:
    """Mark every unread notification of a recipient read; returns how many changed."""
    repo = _repo()
    now = datetime.now(UTC)
    modified = 0

    while True:
        batch = with_storage_retry(
            "load_unread",
            lambda: repo._dao.query.filter(recipient_id=str(recipient_id), is_read=False).limit(_BATCH_SIZE).all(),
        )
        items = list(batch.items)
        if not items:
            break
        for notification in items:
            if notification.mark_read(read_at=now):
                with_storage_retry("mark_as_read", repo.add, notification)
                modified += 1

    logger.info("All notifications marked as read", recipient_id=str(recipient_id), modified_count=modified)
    return modified


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------
def delete_notification(notification_id, recipient_id=None) -> Notification:
    """Delete one notification and return it."""
    notification = _load_owned(notification_id, recipient_id)
    with_storage_retry("delete_notification", _repo()._dao.delete, notification)
    logger.info(
        "Notification deleted",
        notification_id=str(notification.id),
        recipient_id=str(notification.recipient_id),
        was_unread=not notification.is_read,
    )
    return notification


def _delete_matching(action, repo, **criteria) -> int:
    deleted = 0
    while True:
        batch = with_storage_retry(action, lambda: repo._dao.query.filter(**criteria).limit(_BATCH_SIZE).all())
        items = list(batch.items)
        if not items:
            return deleted
        for item in items:
            with_storage_retry(action, repo._dao.delete, item)
            deleted += 1


def delete_all_notifications(recipient_id) -> int:
    """Delete every notification addressed to a recipient; returns the count."""
    deleted = _delete_matching("delete_all_notifications", _repo(), recipient_id=str(recipient_id))
    logger.info("All notifications deleted", recipient_id=str(recipient_id), deleted_count=deleted)
    return deleted


def cleanup_notifications_older_than(days=None, read_only=False) -> int:
    """Maintenance sweep: delete notifications created more than ``days`` ago."""
    if days is None:
        days = get_settings().notification_max_age_days
    if days < 0:
        raise ValidationError({"days": ["Days must not be negative"]})

    cutoff = datetime.now(UTC) - timedelta(days=days)
    criteria = {"created_at__lt": cutoff}
    if read_only:
        criteria["is_read"] = True

    deleted = _delete_matching("cleanup_notifications", _repo(), **criteria)
    logger.info("Old notifications cleaned up", days=days, read_only=read_only, deleted_count=deleted)
    return deleted
