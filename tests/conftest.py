"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any application import,
and the settings cache is cleared so they take effect.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_anonchat.db")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from anonchat.config import get_settings
get_settings.cache_clear()

from anonchat.storage import Base, engine, MessageStore
import anonchat.models  # noqa: F401  register tables on Base


class Recorder:
    """Delivery callable that records (connection, payload) pairs."""

    def __init__(self, failing=()):
        self.deliveries = []
        self.failing = set(failing)

    async def __call__(self, connection_ref, payload):
        if connection_ref in self.failing:
            raise ConnectionError(f"{connection_ref} is gone")
        self.deliveries.append((connection_ref, payload))

    def received_by(self, connection_ref):
        return [payload for ref, payload in self.deliveries if ref == connection_ref]


@pytest.fixture(scope="function")
def fresh_db():
    """Create tables before the test and drop them afterwards."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(fresh_db):
    return MessageStore()


@pytest.fixture
def recorder():
    return Recorder()
