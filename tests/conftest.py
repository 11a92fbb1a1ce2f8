import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Selects the protean config environment and pins the service settings the
    suite relies on: decisions go to the in-memory advisory sink and storage
    retries do not sleep.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ["PULSE_NOTIFICATIONS_ADVISORY_SINK"] = "memory"
    os.environ["PULSE_NOTIFICATIONS_STORAGE_RETRY_BACKOFF_SECONDS"] = "0"
    os.environ["PULSE_NOTIFICATIONS_HANDLER_TIMEOUT_SECONDS"] = "0"


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)
