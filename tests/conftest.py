"""
tests/conftest.py -- Shared test fixtures for Whiskey Canon integration tests.

This module provides:
  - FakeMailer: records every code, token and contact message instead of sending
  - _make_test_store(): isolated named shared-memory SQLite store per test
  - _patch_lifespan(): wires test stores and a fake mailer into app.state,
    bypassing real startup
  - app_ctx: TestClient plus direct handles on the store, mailer and service
  - helpers for the CSRF handshake and for creating accounts

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import:
get_settings() is cached on first call, DEBUG lets it auto-generate
SECRET_KEY, and 4 rounds keeps bcrypt fast enough for a test suite.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

# CRITICAL: Set before any auth/core import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import FixedWindowRateLimiter
from api.main import app
from auth.models import Account, Role
from auth.service import AuthService, ResendCooldown
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import hash_password

STRONG_PASSWORD = "Barrel-Proof-1792"
OTHER_STRONG_PASSWORD = "Single-Malt-Islay-18"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeMailer:
    """Stands in for core.mailer.Mailer. `succeed=False` simulates a send failure."""

    enabled = True

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.verification_codes: dict[str, list[str]] = {}
        self.reset_tokens: dict[str, list[str]] = {}
        self.contact_messages: list[tuple[str, str, str, str]] = []

    def send_verification_email(self, to: str, code: str) -> bool:
        self.verification_codes.setdefault(to, []).append(code)
        return self.succeed

    def send_password_reset_email(self, to: str, token: str) -> bool:
        self.reset_tokens.setdefault(to, []).append(token)
        return self.succeed

    def send_contact_email(self, name: str, email: str, subject: str, message: str) -> bool:
        self.contact_messages.append((name, email, subject, message))
        return self.succeed

    def last_code(self, email: str) -> str:
        return self.verification_codes[email][-1]

    def last_token(self, email: str) -> str:
        return self.reset_tokens[email][-1]


def no_breach(password: str) -> bool:
    return False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(prefix: str = "test_auth") -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    Each call gets a fresh database name so tests never see each other's rows.
    """
    n = next(_db_counter)
    return AccountStore(db_url=f"sqlite:///file:{prefix}_{os.getpid()}_{n}?mode=memory&cache=shared&uri=true")


def make_account(
    store: AccountStore,
    username: str,
    password: str = STRONG_PASSWORD,
    role: Role = Role.editor,
    verified: bool = True,
    email: Optional[str] = None,
    is_profile_public: bool = False,
) -> Account:
    """Insert an account directly, skipping the registration flow."""
    account = Account(
        username=username,
        email=email or f"{username}@example.com",
        role=role,
        hashed_password=hash_password(password),
        email_verified=verified,
        is_profile_public=is_profile_public,
    )
    account_id = store.create_account(account)
    return store.get_by_id(account_id)


def _patch_lifespan(store: AccountStore, session_store: SessionStore, mailer: FakeMailer, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can .cancel() a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.session_store = session_store
        app.state.mailer = mailer
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class AppContext:
    client: TestClient
    store: AccountStore
    mailer: FakeMailer
    service: AuthService
    limiter: FixedWindowRateLimiter


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = _make_test_store("test_unit")
    yield s
    s.close()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def app_ctx() -> Generator[AppContext, None, None]:
    """Yield a TestClient wired to a fresh store, fake mailer and rate limiter.

    Function-scoped: every test starts with no accounts, no sessions and
    empty rate-limit windows.
    """
    store = _make_test_store()
    session_store = SessionStore(store.engine, max_age_seconds=3600)
    mailer = FakeMailer()
    service = AuthService(store, mailer, breach_check=no_breach, cooldown=ResendCooldown(60))
    limiter = FixedWindowRateLimiter()

    app.state.rate_limiter = limiter
    app.router.lifespan_context = _patch_lifespan(store, session_store, mailer, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield AppContext(client=client, store=store, mailer=mailer, service=service, limiter=limiter)

    store.close()


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def csrf_headers(client: TestClient) -> dict[str, str]:
    """Run the CSRF handshake and return the header to echo on writes."""
    resp = client.get("/api/v1/auth/csrf-token")
    assert resp.status_code == 200, f"CSRF handshake failed: {resp.status_code} {resp.text}"
    return {"X-CSRF-Token": resp.json()["csrfToken"]}


def login(client: TestClient, username: str, password: str = STRONG_PASSWORD):
    headers = csrf_headers(client)
    return client.post("/api/v1/auth/login", json={"username": username, "password": password}, headers=headers)


def register(client: TestClient, username: str, email: str, password: str = STRONG_PASSWORD):
    headers = csrf_headers(client)
    return client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": email, "password": password},
        headers=headers,
    )
