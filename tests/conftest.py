"""
Pytest configuration and shared fixtures.

Settings are pointed at a throwaway SQLite file before any app module is
imported, then the settings cache is cleared so the test values are used.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_anonchat.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from anonchat.config import get_settings
get_settings.cache_clear()

from anonchat.pubsub import Broadcaster, get_broadcaster
from anonchat.storage import Base, SessionLocal, engine
import anonchat.models  # noqa: F401  (registers tables on Base)


@pytest.fixture
def db():
    """Fresh tables and a database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def broadcaster():
    """The process-wide broadcaster, emptied of leftover subscribers."""
    channel = get_broadcaster()
    yield channel
    for subscription in list(channel._subscriptions):
        subscription.close()


@pytest.fixture
def recorder(broadcaster: Broadcaster):
    """Subscribe a recorder that keeps every (event, payload) it sees."""
    events = []
    subscription = broadcaster.subscribe(lambda name, payload: events.append((name, payload)))
    yield events
    subscription.close()
