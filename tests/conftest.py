"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from src.scheduling import InMemoryCardStore, SM2Scheduler  # noqa: E402
from src.scheduling.context import SchedulerContext  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite database or HTTP app)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """A fixed review timestamp."""
    return datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """Empty in-memory Card Store."""
    return InMemoryCardStore()


@pytest.fixture
def sm2():
    """SM-2 scheduler with default configuration."""
    return SM2Scheduler()


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        lock_timeout_ms=200,
    )


@pytest.fixture
def scheduler_context(test_settings, store):
    """Scheduler context over the in-memory store with inline streak updates."""
    ctx = SchedulerContext(test_settings, store=store, notify_inline=True)
    yield ctx
    ctx.close()
