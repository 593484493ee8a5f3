"""Pytest fixtures — file-backed SQLite database, simulated payments, API helpers."""
import os

os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["PAYSTACK_SECRET_KEY"] = ""
os.environ["EVENT_PUBLISHING_FEE"] = "0"

import httpx
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from eventpass.client.api import EventPassClient
from eventpass.database import Base, get_db
from eventpass.main import app
from eventpass.services.payment_provider import SimulatedProvider, get_payment_provider

# Import all models so they register with Base.metadata
from eventpass.models.user import User                # noqa: F401
from eventpass.models.event import Event              # noqa: F401
from eventpass.models.ticket import Ticket            # noqa: F401
from eventpass.models.payment import PaymentSession   # noqa: F401

SQLITE_URL = "sqlite:///./test.db"

# A Monday, far enough ahead that "now" never clips the instance window.
FUTURE_MONDAY = "2030-01-07T18:00:00+00:00"


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine):
    """Yield a database session bound to the test engine."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def provider():
    """Simulated payment provider; tests resolve transactions explicitly."""
    return SimulatedProvider()


@pytest.fixture(scope="function")
def client(db_engine, provider):
    """FastAPI TestClient with the database and payment provider overridden."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def _override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_payment_provider] = lambda: provider
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class CountingTransport(httpx.ASGITransport):
    """ASGI transport that records every request it forwards to the app."""

    def __init__(self):
        super().__init__(app=app)
        self.requests: list[tuple[str, str]] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        return await super().handle_async_request(request)


@pytest.fixture(scope="function")
def make_api(client):
    """Factory for async API clients talking to the app in-process.

    Depends on ``client`` so the same dependency overrides are active.
    """

    def _make(user_id: str) -> EventPassClient:
        return EventPassClient(user_id, base_url="http://testserver", transport=CountingTransport())

    return _make


# ---------------------------------------------------------------------------
# Helpers: create resources via the API, return the JSON response dict
# ---------------------------------------------------------------------------
def create_test_user(client: TestClient, name: str = "Test User", email: str = None) -> dict:
    """Helper — POST /api/users and return response JSON."""
    resp = client.post("/api/users/", json={"displayName": name, "email": email})
    assert resp.status_code == 201, resp.text
    return resp.json()


def weekly_pattern(days=(1, 3), start_time: str = "18:00", tz: str = "UTC", **extra) -> dict:
    return {"type": "weekly", "daysOfWeek": list(days), "startTime": start_time, "timezone": tz, **extra}


def create_test_event(client: TestClient, organizer_id: str, **overrides) -> dict:
    """Helper — POST /api/events and return the created event JSON."""
    payload = {
        "title": "Test Event",
        "eventDate": FUTURE_MONDAY,
        "maxAttendees": 0,
        "eventType": "free",
        **overrides,
    }
    resp = client.post("/api/events/", params={"actor_user_id": organizer_id}, json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def create_recurring_event(client: TestClient, organizer_id: str, **overrides) -> dict:
    overrides.setdefault("recurrencePattern", weekly_pattern())
    return create_test_event(client, organizer_id, isRecurring=True, **overrides)


def register(client: TestClient, event_id: str, user_id: str, instance_id: str = None):
    return client.post(
        f"/api/events/{event_id}/register",
        params={"actor_user_id": user_id},
        json={"instanceId": instance_id, "specialRequests": ""},
    )


def get_event(client: TestClient, event_id: str, user_id: str = None) -> dict:
    params = {"actor_user_id": user_id} if user_id else {}
    resp = client.get(f"/api/events/{event_id}", params=params)
    assert resp.status_code == 200, resp.text
    return resp.json()
