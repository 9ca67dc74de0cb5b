"""Shared fixtures for relayer tests."""

import pytest

from mintrelay.logging import LogConfig, LogLevel, MemoryHandler, setup_logging, shutdown_logging
from mintrelay.storage import IdempotencyStore


@pytest.fixture(autouse=True)
def fresh_logging():
    """Give every test its own log manager."""
    shutdown_logging()
    yield
    shutdown_logging()


@pytest.fixture
def store(tmp_path):
    store = IdempotencyStore.open(str(tmp_path / "relayer.sqlite3"))
    yield store
    store.close()


@pytest.fixture
def memory_log():
    """Capture log entries in memory for the duration of a test."""
    manager = setup_logging(LogConfig(level=LogLevel.DEBUG))
    manager.remove_handler("console")
    handler = MemoryHandler()
    manager.add_handler("memory", handler)
    yield handler
    shutdown_logging()
