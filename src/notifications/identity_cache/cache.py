"""Identity cache: upsert, lookup and age-based cleanup of UserIdentity rows.

Rows are refreshed from ``user.*`` events and opportunistically from any
event that embeds a sender's username. An upsert carrying a ``synced_at``
that is not newer than the stored ``last_synced`` is skipped, so an
out-of-order redelivery never regresses newer identity data.

Readers must tolerate a missing row: ``identity_or_fallback`` renders a
minimal identity instead of failing.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from notifications.config import get_settings
from notifications.errors import StorageUnavailableError
from notifications.identity_cache.identity import UserIdentity
from notifications.utils.storage import with_storage_retry
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"

FALLBACK_DISPLAY_NAME = "Unknown user"

_UPDATABLE = ("username", "display_name", "avatar_url", "verified")
_BATCH_SIZE = 100


@dataclass
class BulkUpsertResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0

    def record(self, outcome: str):
        setattr(self, outcome, getattr(self, outcome) + 1)

    def as_dict(self) -> dict:
        return {"created": self.created, "updated": self.updated, "skipped": self.skipped}


def _repo():
    return current_domain.repository_for(UserIdentity)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _find(user_id):
    try:
        return _repo().get(str(user_id))
    except ObjectNotFoundError:
        return None


def find_identity(user_id) -> UserIdentity | None:
    """Cached identity for a user, or None when the cache has no row."""
    if not user_id:
        return None
    return with_storage_retry("find_identity", _find, user_id)


def find_identities(user_ids) -> dict[str, UserIdentity]:
    """Batch lookup keyed by user id. Missing users are simply absent."""
    wanted = sorted({str(user_id) for user_id in user_ids if user_id})
    if not wanted:
        return {}

    def _query():
        return _repo()._dao.query.filter(user_id__in=wanted).limit(len(wanted)).all()

    result = with_storage_retry("find_identities", _query)
    return {str(identity.user_id): identity for identity in result.items}


def fallback_identity(user_id) -> dict:
    return {
        "id": str(user_id),
        "username": None,
        "display_name": FALLBACK_DISPLAY_NAME,
        "avatar_url": None,
        "verified": False,
    }


def identity_or_fallback(user_id, identities: dict | None = None) -> dict:
    """Render-ready identity for ``user_id``, never failing on a cache miss."""
    if identities is not None:
        identity = identities.get(str(user_id))
    else:
        identity = find_identity(user_id)
    return identity.to_dict() if identity is not None else fallback_identity(user_id)


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------
def upsert_identity(
    user_id,
    username=None,
    display_name=None,
    avatar_url=None,
    verified=None,
    synced_at: datetime | None = None,
) -> str:
    """Create or refresh a cached identity.

    Only the fields that are provided overwrite stored values. A new row
    needs a username; without one the upsert is skipped. Returns one of
    ``created``, ``updated`` or ``skipped``.
    """
    if not user_id:
        raise ValidationError({"user_id": ["is required"]})

    synced_at = _aware(synced_at) or datetime.now(UTC)
    changes = {
        "username": username,
        "display_name": display_name,
        "avatar_url": avatar_url,
        "verified": verified,
    }

    identity = find_identity(user_id)
    if identity is None:
        if not username:
            logger.debug("Identity not cached and no username supplied", user_id=str(user_id))
            return SKIPPED

        identity = UserIdentity(
            user_id=str(user_id),
            username=username,
            display_name=display_name,
            avatar_url=avatar_url,
            verified=bool(verified),
            last_synced=synced_at,
            created_at=synced_at,
            updated_at=synced_at,
        )
        try:
            with_storage_retry("create_identity", _repo().add, identity)
        except (ValidationError, ExpectedVersionError, StorageUnavailableError):
            # Row appeared between the read and the insert; fall through to update it
            identity = find_identity(user_id)
            if identity is None:
                raise
        else:
            logger.info("Identity cached", user_id=str(user_id))
            return CREATED

    if _aware(identity.last_synced) is not None and synced_at <= _aware(identity.last_synced):
        logger.debug(
            "Stale identity update ignored",
            user_id=str(user_id),
            synced_at=synced_at.isoformat(),
            last_synced=_aware(identity.last_synced).isoformat(),
        )
        return SKIPPED

    for name in _UPDATABLE:
        if changes[name] is not None:
            setattr(identity, name, changes[name])
    identity.last_synced = synced_at
    identity.updated_at = datetime.now(UTC)

    with_storage_retry("update_identity", _repo().add, identity)
    logger.info("Identity refreshed", user_id=str(user_id))
    return UPDATED


def upsert_identities(records) -> BulkUpsertResult:
    """Bulk upsert for backfills and resyncs.

    ``records`` is an iterable of dicts with ``user_id`` and any of the
    identity fields plus an optional ``synced_at``.
    """
    result = BulkUpsertResult()
    for record in records:
        outcome = upsert_identity(
            record.get("user_id"),
            username=record.get("username"),
            display_name=record.get("display_name"),
            avatar_url=record.get("avatar_url"),
            verified=record.get("verified"),
            synced_at=record.get("synced_at"),
        )
        result.record(outcome)

    logger.info("Identities upserted", **result.as_dict())
    return result


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------
def remove_identity(user_id) -> bool:
    """Drop a user's cached identity. Returns False when nothing was cached."""
    identity = find_identity(user_id)
    if identity is None:
        return False
    with_storage_retry("remove_identity", _repo()._dao.delete, identity)
    logger.info("Identity removed", user_id=str(user_id))
    return True


def cleanup_identities_older_than(days=None) -> int:
    """Delete rows whose ``last_synced`` is more than ``days`` in the past."""
    if days is None:
        days = get_settings().identity_cache_max_age_days
    if days < 0:
        raise ValidationError({"days": ["Days must not be negative"]})

    cutoff = datetime.now(UTC) - timedelta(days=days)
    repo = _repo()
    deleted = 0
    while True:
        batch = with_storage_retry(
            "cleanup_identities",
            lambda: repo._dao.query.filter(last_synced__lt=cutoff).limit(_BATCH_SIZE).all(),
        )
        items = list(batch.items)
        if not items:
            break
        for identity in items:
            with_storage_retry("cleanup_identities", repo._dao.delete, identity)
            deleted += 1

    logger.info("Stale identities cleaned up", days=days, deleted_count=deleted)
    return deleted
