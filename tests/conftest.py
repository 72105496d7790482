"""
tests/conftest.py -- Shared test fixtures for permitauth unit and integration tests.

This module provides:
  - store: EphemeralStore over a private fakeredis server (no real Redis)
  - clock: a controllable UTC clock injected into every time-aware service
  - user_store: isolated named shared-memory SQLite UserStore
  - mailer: RecordingEmailSender that keeps every message in memory
  - services: the full service graph built by api.services.wire_services()
  - create_user: factory for users with an Argon2 password hash
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

DEBUG and ALLOWED_HOSTS must be set before any api/auth/core import:
get_settings() is cached on first call, and api/main.py reads it at import
time to configure TrustedHostMiddleware. TestClient sends Host: testserver.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')

import fakeredis
import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.services import wire_services
from auth.models import AuthMethod, User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings
from ephemeral.store import EphemeralStore
from notify.tasks import TaskPool
from tests.helpers import STRONG_PASSWORD, FrozenClock, RecordingEmailSender


def _memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> Generator[EphemeralStore, None, None]:
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    ephemeral = EphemeralStore(client)
    yield ephemeral
    ephemeral.close()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    users = UserStore(_memory_db_url("test_users"))
    yield users
    users.close()


@pytest.fixture
def mailer() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def tasks() -> Generator[TaskPool, None, None]:
    pool = TaskPool(workers=1, queue_limit=10)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def services(store, user_store, mailer, tasks, clock) -> SimpleNamespace:
    """The wired service graph, exactly as the app builds it, on a plain namespace."""
    state = SimpleNamespace()
    wire_services(state, get_settings(), store, user_store, mailer, tasks, clock=clock)
    return state


@pytest.fixture
def create_user(user_store):
    """Factory: create_user(email, password=STRONG_PASSWORD, role="user", auth_method=...) -> User."""

    def _create(
        email: str = "alice@example.com",
        password: str | None = STRONG_PASSWORD,
        role: str = "user",
        auth_method: AuthMethod = AuthMethod.password,
    ) -> User:
        uid = user_store.create_user(
            User(
                email=email,
                role=role,
                auth_method=auth_method,
                hashed_password=hash_password(password) if password else None,
            )
        )
        return user_store.get_by_id(uid)

    return _create


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store, user_store, mailer, tasks, clock):
    """Return an async context manager that replaces the real lifespan.

    Wires the fake store and in-memory user DB into app.state through the
    same wire_services() the production lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app.state, get_settings(), store, user_store, mailer, tasks, clock=clock)
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    store, user_store, mailer, tasks, clock, create_user
) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, admin_id) for API integration tests.

    An admin user is created before the client starts and a Bearer access
    token is minted for it. The client starts without cookies.
    """
    admin = create_user("admin@example.com", role="admin")
    app.router.lifespan_context = _patch_lifespan(store, user_store, mailer, tasks, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        token = client.app.state.sessions.issue_pair(admin.id).access_token
        yield client, token, admin.id
