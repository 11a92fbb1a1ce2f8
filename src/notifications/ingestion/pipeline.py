"""Message pipeline: parse, process under a timeout, then ack or reject.

A message is acknowledged only after its handler finished, so the in-app
record is durable before the broker forgets the message. Any failure
(malformed envelope, unknown type, storage exhausted, timeout) rejects the
message without requeue so one poison message cannot block the queue.
"""

import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

import structlog
from notifications.config import get_settings
from notifications.domain import notifications
from notifications.errors import HandlerTimeoutError, MalformedEventError
from notifications.ingestion.contracts import parse_envelope
from notifications.ingestion.handlers import HandlerResult, process_envelope

logger = structlog.get_logger(__name__)

PROCESSED = "processed"
DROPPED = "dropped"
MALFORMED = "malformed"
DUPLICATES = "duplicates"
TIMED_OUT = "timed_out"


class MessagePipeline:
    """Runs one inbound message through the handlers with ack/reject semantics."""

    def __init__(self, domain=None, timeout: float | None = None):
        self.domain = domain or notifications
        self.timeout = get_settings().handler_timeout_seconds if timeout is None else timeout
        self.stats: Counter = Counter()
        self._lock = threading.Lock()

    def _count(self, key: str, amount: int = 1):
        with self._lock:
            self.stats[key] += amount

    # -------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------
    def _run(self, envelope, message_id) -> HandlerResult:
        with self.domain.domain_context():
            return process_envelope(envelope, message_id=message_id)

    def process(self, body, message_id: str | None = None) -> HandlerResult:
        """Process one message body, raising on any failure."""
        envelope = parse_envelope(body)

        if not self.timeout:
            return self._run(envelope, message_id)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notification-handler")
        try:
            future = executor.submit(self._run, envelope, message_id)
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeout:
                raise HandlerTimeoutError(
                    f"Handler for {envelope.type} exceeded {self.timeout}s"
                ) from None
        finally:
            executor.shutdown(wait=False)

    def handle_message(self, body, message):
        """kombu callback: process, then ack on success or reject on failure."""
        message_id = _message_id(message)
        log = logger.bind(message_id=message_id, routing_key=_routing_key(message))

        try:
            result = self.process(body, message_id=message_id)
        except MalformedEventError as exc:
            self._count(MALFORMED)
            self._count(DROPPED)
            log.error("Malformed message dropped", reason=exc.reason, event_type=exc.event_type)
            message.reject(requeue=False)
            return None
        except HandlerTimeoutError as exc:
            self._count(TIMED_OUT)
            self._count(DROPPED)
            log.error("Message handler timed out, message dropped", error=str(exc))
            message.reject(requeue=False)
            return None
        except Exception as exc:
            self._count(DROPPED)
            log.error("Message processing failed, message dropped", error=str(exc), exc_info=True)
            message.reject(requeue=False)
            return None

        message.ack()
        self._count(PROCESSED)
        if result.duplicates:
            self._count(DUPLICATES, result.duplicates)
        return result

    def on_decode_error(self, message, exc):
        """kombu hook for bodies the serializer could not decode."""
        self._count(MALFORMED)
        self._count(DROPPED)
        logger.error("Undecodable message dropped", message_id=_message_id(message), error=str(exc))
        message.reject(requeue=False)


def _message_id(message) -> str | None:
    properties = getattr(message, "properties", None) or {}
    return properties.get("message_id")


def _routing_key(message) -> str | None:
    delivery_info = getattr(message, "delivery_info", None) or {}
    return delivery_info.get("routing_key")
