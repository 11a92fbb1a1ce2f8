"""Errors raised by the notification core beyond protean's domain exceptions.

Validation problems surface as ``protean.exceptions.ValidationError`` and
unknown ids as ``protean.exceptions.ObjectNotFoundError``; the classes here
cover the infrastructure and transport failure modes.
"""


class StorageUnavailableError(Exception):
    """The backing store could not complete an operation after all retries."""

    def __init__(self, action: str, cause: Exception | None = None):
        self.action = action
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Storage unavailable during {action}{detail}")


class MalformedEventError(Exception):
    """An inbound broker message cannot be processed and must not be retried."""

    def __init__(self, reason: str, event_type: str | None = None):
        self.reason = reason
        self.event_type = event_type
        super().__init__(reason)


class HandlerTimeoutError(Exception):
    """A message handler ran past its processing timeout."""
