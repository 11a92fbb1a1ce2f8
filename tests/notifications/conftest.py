import pytest
from notifications.channel import reset_advisory_sink, set_advisory_sink
from notifications.channel.fake_advisory import FakeAdvisorySink
from notifications.config import get_settings
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def notifications_bed():
    from notifications.domain import notifications

    bed = DomainFixture(notifications)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(notifications_bed):
    """Push domain context before each test, cleanup after."""
    with notifications_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()

        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def advisory():
    """Fresh in-memory advisory sink for every test."""
    sink = FakeAdvisorySink()
    set_advisory_sink(sink)
    yield sink
    reset_advisory_sink()
    get_settings.cache_clear()
