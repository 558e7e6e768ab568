"""
tests/conftest.py -- Shared test fixtures for Eventara auth tests.

This module provides:
  - make_store(): isolated named shared-memory account DB
  - make_account(): insert an account with explicit state flags
    (exposed to tests as the account_factory fixture)
  - store_factory: extra isolated stores, e.g. one without seeded roles
  - RecordingMailer: captures outgoing code mail (and can be told to fail)
  - FakeClock: a controllable UTC clock injected into every time-dependent service
  - api: Harness over a TestClient with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture gets a uuid-suffixed name so tests never see each other's rows.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_services
from auth.mailer import CodeMessage
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import hash_password
from cache.store import KeyedCache
from core.config import get_settings

# bcrypt is slow by design; hash the shared test password once.
PASSWORD = "Password1!"
PASSWORD_HASH = hash_password(PASSWORD)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Mailer that keeps every message in memory.

    Set fail=True to make send_code raise, as an unreachable SMTP relay would.
    """

    def __init__(self) -> None:
        self.sent: list[CodeMessage] = []
        self.fail = False

    def send_code(self, message: CodeMessage) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP relay unreachable")
        self.sent.append(message)

    def last_code(self, to: str | None = None) -> str:
        for message in reversed(self.sent):
            if to is None or message.to == to:
                return message.code
        raise AssertionError(f"no code mail sent to {to!r}")


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(seed_roles: bool = True) -> AccountStore:
    """Create an isolated named shared-memory account store."""
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    return AccountStore(db_url=url, seed_roles=seed_roles)


def make_account(
    store: AccountStore,
    email: str,
    role: str = "user",
    active: bool = True,
    suspended: bool = False,
    auth_provider: str = "email",
    password_set_by_user: bool = True,
    last_login: datetime | None = None,
    created_at: datetime | None = None,
    hashed_password: str = PASSWORD_HASH,
) -> Account:
    account_id = store.create_account(
        Account(
            email=email,
            hashed_password=hashed_password,
            role_id=store.get_role_id(role),
            active=active,
            suspended=suspended,
            auth_provider=auth_provider,
            password_set_by_user=password_set_by_user,
            last_login=last_login,
            created_at=created_at,
        )
    )
    return store.get_by_id(account_id)


# ---------------------------------------------------------------------------
# Plain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def account_factory():
    """Expose make_account() to test modules without importing conftest."""
    return make_account


@pytest.fixture
def store_factory():
    """Build extra stores (e.g. unseeded); every store built is closed on teardown."""
    built: list[AccountStore] = []

    def factory(seed_roles: bool = True) -> AccountStore:
        s = make_store(seed_roles=seed_roles)
        built.append(s)
        return s

    yield factory
    for s in built:
        s.close()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def cache(tmp_path) -> Generator[KeyedCache, None, None]:
    c = KeyedCache(tmp_path / "codes.db")
    yield c
    c.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings():
    return get_settings()


# ---------------------------------------------------------------------------
# HTTP harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    store: AccountStore
    cache: KeyedCache
    mailer: RecordingMailer
    clock: FakeClock

    def bearer(self, account: Account) -> dict[str, str]:
        """Open a session for account directly and return an Authorization header."""
        grant = app.state.sessions.open(account)
        return {"Authorization": f"Bearer {grant.token}"}


def _patch_lifespan(store: AccountStore, cache: KeyedCache, mailer: RecordingMailer, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores, mailer and clock into app.state and mocks the
    OAuth registry so no test ever reaches Google.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app.state, store, cache, mailer, get_settings(), clock=clock)
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api(tmp_path) -> Generator[Harness, None, None]:
    """Yield a Harness over the real FastAPI app with isolated stores.

    follow_redirects=False so OAuth tests can assert on Location headers.
    The shared slowapi limiter is reset so login limits never leak between
    tests.
    """
    store = make_store()
    cache = KeyedCache(tmp_path / "api_codes.db")
    mailer = RecordingMailer()
    clock = FakeClock()
    limiter.reset()

    app.router.lifespan_context = _patch_lifespan(store, cache, mailer, clock)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Harness(client=client, store=store, cache=cache, mailer=mailer, clock=clock)

    cache.close()
    store.close()
