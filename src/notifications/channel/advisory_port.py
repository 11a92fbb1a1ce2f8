"""Advisory sink port: abstract interface for publishing delivery decisions."""

from abc import ABC, abstractmethod


class AdvisorySink(ABC):
    """Receives the per-channel decision for every processed notification.

    The external email/push sender consumes these signals; this service
    only announces them.
    """

    @abstractmethod
    def publish(self, signal: dict) -> bool:
        """Publish a ``notification.created`` signal.

        Returns:
            True when the signal was handed off, False when it was dropped.
        """
        ...
