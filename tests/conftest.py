"""
tests/conftest.py -- Shared test fixtures for Gatehouse unit and integration tests.

This module provides:
  - FrozenClock: an injectable clock tests advance by hand
  - _make_test_engine(): an isolated in-memory database per test or module
  - make_settings(): Settings with a fixed key and a cheap bcrypt cost
  - services / clock / mailer: a fully wired object graph for unit tests
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client: TestClient against the real app with a seeded RBAC catalogue

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

DEBUG must be set before any api/ import so get_settings() can auto-generate
SECRET_KEY instead of raising ValueError. LOGIN_RATE_LIMIT is raised so the
credential endpoints do not throttle the suite.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any api/ or core/ import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from api.services import Services, build_services
from auth.models import User
from auth.tokens import hash_password
from core.clock import utc_now
from core.config import Settings
from core.schema import create_db_engine
from rbac.seed import ADMIN_ROLE, seed_defaults

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
TEST_PASSWORD = "correct-horse-battery"
TEST_BCRYPT_ROUNDS = 4

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FrozenClock:
    """Clock that only moves when advance() is called."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingMailer:
    """Mailer that keeps every message so tests can read the tokens back."""

    def __init__(self) -> None:
        self.verifications: list[tuple[str, str]] = []
        self.resets: list[tuple[str, str]] = []

    def send_verification(self, email: str, token: str) -> None:
        self.verifications.append((email, token))

    def send_password_reset(self, email: str, token: str) -> None:
        self.resets.append((email, token))


def _make_test_engine(db_suffix: str) -> Engine:
    """Create an isolated named shared-memory database.

    Args:
        db_suffix: Prefix for the DB name; a random suffix is appended so
                   repeated fixtures never share state.
    """
    return create_db_engine(
        f"sqlite:///file:test_{db_suffix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    )


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": TEST_BCRYPT_ROUNDS,
        "seed_on_startup": False,
        "login_rate_limit": "1000/minute",
    }
    values.update(overrides)
    return Settings(**values)


def create_user(
    services: Services,
    email: str,
    password: str = TEST_PASSWORD,
    verified: bool = True,
    active: bool = True,
) -> User:
    """Insert a user directly through the store and return it."""
    user_id = services.users.create_user(
        User(
            email=email,
            hashed_password=hash_password(password, rounds=TEST_BCRYPT_ROUNDS),
            is_email_verified=verified,
            is_active=active,
        )
    )
    return services.users.get_by_id(user_id)


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(services: Services):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.services = services
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = _make_test_engine("unit")
    yield eng
    eng.dispose()


@pytest.fixture
def services(engine: Engine, settings: Settings, clock: FrozenClock, mailer: RecordingMailer) -> Services:
    return build_services(engine, settings, clock, mailer=mailer)


@pytest.fixture
def user(services: Services) -> User:
    return create_user(services, "alice@example.com")


# ---------------------------------------------------------------------------
# Integration fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, Services], None, None]:
    """Yield (client, services) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers against an isolated in-memory store. The default
    RBAC catalogue is seeded, and admin@example.com holds the Admin role.
    """
    svc = build_services(_make_test_engine("api"), make_settings(), utc_now, mailer=RecordingMailer())
    seed_defaults(svc.graph)
    admin = create_user(svc, "admin@example.com")
    svc.graph.assign_role(admin.id, svc.graph.get_role_by_name(ADMIN_ROLE).id)

    app.router.lifespan_context = _patch_lifespan(svc)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, svc

    svc.close()


def login(client: TestClient, email: str, password: str = TEST_PASSWORD, **headers) -> dict:
    """POST /auth/login and return the JSON body, asserting success."""
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password}, headers=headers or None)
    assert resp.status_code == 200, f"Login failed for {email}: {resp.status_code} {resp.text}"
    return resp.json()
