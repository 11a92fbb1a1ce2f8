"""Retry wrapper for store operations.

Domain outcomes (validation failures, missing objects, version conflicts)
pass straight through. Anything else is treated as a transient
infrastructure failure, retried with exponential backoff and finally
reported as ``StorageUnavailableError``.
"""

import time

import structlog
from notifications.config import get_settings
from notifications.errors import StorageUnavailableError
from protean.exceptions import ExpectedVersionError, InvalidOperationError, ObjectNotFoundError, ValidationError

logger = structlog.get_logger(__name__)

DOMAIN_ERRORS = (
    ValidationError,
    ObjectNotFoundError,
    InvalidOperationError,
    ExpectedVersionError,
    StorageUnavailableError,
)


def with_storage_retry(action: str, operation, *args, **kwargs):
    """Run ``operation(*args, **kwargs)``, retrying infrastructure failures."""
    settings = get_settings()
    attempts = settings.storage_retry_attempts
    backoff = settings.storage_retry_backoff_seconds

    for attempt in range(1, attempts + 1):
        try:
            return operation(*args, **kwargs)
        except DOMAIN_ERRORS:
            raise
        except Exception as exc:
            if attempt == attempts:
                logger.error(
                    "Storage operation failed after all retries",
                    action=action,
                    attempts=attempts,
                    error=str(exc),
                )
                raise StorageUnavailableError(action, exc) from exc

            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                "Storage operation failed, retrying",
                action=action,
                attempt=attempt,
                retry_in=delay,
                error=str(exc),
            )
            if delay:
                time.sleep(delay)
