"""
Pytest configuration and shared fixtures.

Test settings are placed in the environment before any guestdesk import,
so the module-level settings, engine and app are built against them.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_guestdesk.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("AUTH_PASSWORD", "test-password")
os.environ.setdefault("WHATSAPP_URL", "http://relay.test")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from guestdesk.config import get_settings
get_settings.cache_clear()

from guestdesk.main import app  # noqa: E402
from guestdesk.storage import Base, SessionLocal, engine  # noqa: E402
from guestdesk import models  # noqa: E402,F401


TEST_PASSWORD = os.environ["AUTH_PASSWORD"]


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(client):
    """Session for seeding and inspecting the test database."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def auth():
    """Query params carrying the correct dashboard password."""
    return {"password": TEST_PASSWORD}
