"""
tests/conftest.py -- Shared test fixtures for Pulse.

This module provides:
  - memory_db_url(): unique named shared-memory SQLite URL per call
  - FakeClock / clock: a hand-driven clock for de-duplication windows
  - user_store / team_store: isolated stores for unit tests
  - api_client: TestClient over the real app with a patched lifespan
  - bearer: builds Authorization headers from locally minted tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Tests that hammer the database from several threads at once use a file in
tmp_path instead: shared-cache memory databases fail fast on lock contention
rather than waiting.

DEBUG and ALLOWED_HOSTS must be set before any api/auth/core import:
get_settings() then auto-generates SECRET_KEY instead of raising, and
TrustedHostMiddleware accepts TestClient's "testserver" host.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any app import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("TEAM_CREATE_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, configure_state
from auth.store import UserStore
from auth.tokens import create_identity_token
from auth.verifier import LocalClaimsVerifier, RevocationList
from cache.dedup import CreationDeduplicator
from cache.store import InMemoryCreationStore
from core.config import get_settings
from teams.store import TeamStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def memory_db_url(prefix: str) -> str:
    """A fresh named shared-memory database, unique per call."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


class FakeClock:
    """Monotonic-style clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class ApiContext:
    client: TestClient
    user_store: UserStore
    team_store: TeamStore
    clock: FakeClock


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=memory_db_url("users"))
    yield store
    store.close()


@pytest.fixture
def team_store() -> Generator[TeamStore, None, None]:
    store = TeamStore(db_url=memory_db_url("teams"))
    yield store
    store.close()


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, team_store: TeamStore, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores, a local-mode verifier and a de-duplicator driven by
    the fake clock into app.state.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        revocations = RevocationList()
        configure_state(
            app,
            settings,
            user_store,
            team_store,
            LocalClaimsVerifier(settings.secret_key, revocations),
            revocations,
            CreationDeduplicator(InMemoryCreationStore(), clock=clock),
        )
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    One TestClient per test module for speed; every module gets its own
    databases, so tests in one module never see another module's teams.
    """
    user_store = UserStore(db_url=memory_db_url("api_users"))
    team_store = TeamStore(db_url=memory_db_url("api_teams"))
    clock = FakeClock()

    app.router.lifespan_context = _patch_lifespan(user_store, team_store, clock)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, user_store=user_store, team_store=team_store, clock=clock)

    user_store.close()
    team_store.close()


@pytest.fixture
def bearer() -> Callable[..., dict[str, str]]:
    """Return a factory: bearer("subject", email=..., name=...) -> headers."""

    def make(subject: str, email: str | None = None, name: str | None = None, **kwargs) -> dict[str, str]:
        token = create_identity_token(subject, email=email, display_name=name, **kwargs)
        return {"Authorization": f"Bearer {token}"}

    return make
