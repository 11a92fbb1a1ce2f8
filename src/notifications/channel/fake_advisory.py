"""Fake advisory sink: records published signals for testing."""

from notifications.channel.advisory_port import AdvisorySink


class FakeAdvisorySink(AdvisorySink):
    """Advisory sink that records signals in memory for test assertions."""

    def __init__(self):
        self.signals: list[dict] = []
        self.should_succeed = True

    def configure(self, should_succeed: bool = True):
        """Configure the fake sink behavior for testing."""
        self.should_succeed = should_succeed

    def publish(self, signal: dict) -> bool:
        if not self.should_succeed:
            return False
        self.signals.append(signal)
        return True

    def signals_for(self, recipient_id) -> list[dict]:
        return [signal for signal in self.signals if signal["recipient_id"] == str(recipient_id)]

    def reset(self):
        """Clear recorded signals (useful between tests)."""
        self.signals.clear()
        self.should_succeed = True
