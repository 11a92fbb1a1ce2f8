"""Advisory sink registry: where per-channel delivery decisions are announced.

Provides singleton access to the configured sink. The broker sink is used
unless ``PULSE_NOTIFICATIONS_ADVISORY_SINK=memory`` selects the in-memory
fake; tests install their own with ``set_advisory_sink``.
"""

from notifications.config import get_settings

_sink = None


def get_advisory_sink():
    """Return the configured advisory sink (singleton)."""
    global _sink
    if _sink is None:
        if get_settings().advisory_sink == "memory":
            from notifications.channel.fake_advisory import FakeAdvisorySink

            _sink = FakeAdvisorySink()
        else:
            from notifications.channel.broker_advisory import BrokerAdvisorySink

            _sink = BrokerAdvisorySink()
    return _sink


def set_advisory_sink(sink):
    """Install a specific sink (a preconfigured broker sink or a test fake)."""
    global _sink
    _sink = sink


def reset_advisory_sink():
    """Drop the singleton so the next access rebuilds it from settings."""
    global _sink
    if _sink is not None and hasattr(_sink, "close"):
        _sink.close()
    _sink = None
