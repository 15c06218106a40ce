"""
tests/conftest.py -- Shared test fixtures for FitCoach integration tests.

This module provides:
  - RecordingMailer: stands in for core.mailer.Mailer and keeps sent messages
  - _make_test_store(): creates an isolated in-memory UserStore per test module
  - _patch_lifespan(): wires the test store and mailer into app.state
  - api_client: (client, store, mailer) for API integration tests
  - make_user / auth_headers: factories for seeded accounts and Bearer headers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any api/auth/core import: get_settings() is
cached on first call and the route modules read their rate limits at import.
"""

from __future__ import annotations

import os
import smtplib
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import. DEBUG lets get_settings()
# auto-generate JWT_SECRET; the rest keeps tests fast and unthrottled.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_EMAILS", "root@example.com")
os.environ.setdefault("FRONTEND_BASE_URL", "http://frontend.test")
os.environ.setdefault("AUTH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PASSWORD_RESET_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import ROLE_CLIENT, User
from auth.store import UserStore
from auth.tokens import hash_password, issue_token_pair

DEFAULT_PASSWORD = "Str0ng!Pass"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Collects outgoing messages instead of talking to an SMTP relay.

    Set fail=True to make send() raise like an unreachable relay.
    """

    configured = True

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail = False

    def send(self, to_email: str, subject: str, text: str, html: str | None = None) -> bool:
        if self.fail:
            raise smtplib.SMTPException("relay unavailable")
        self.sent.append({"to": to_email, "subject": subject, "text": text})
        return True

    def last_to(self, email: str) -> dict | None:
        for message in reversed(self.sent):
            if message["to"] == email:
                return message
        return None


# ---------------------------------------------------------------------------
# Store / lifespan helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(f"sqlite:///file:test_fitcoach_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.mailer = mailer
        yield

    return test_lifespan


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, UserStore, RecordingMailer], None, None]:
    """Yield (client, store, mailer) for API integration tests.

    One TestClient per test module for speed. The real FastAPI app runs with
    a patched lifespan so tests hit real route handlers against an isolated
    in-memory store and a recording mailer.
    """
    user_store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(user_store, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, mailer

    user_store.close()


@pytest.fixture
def make_user(api_client) -> Callable[..., User]:
    """Factory that inserts a user directly into the test store.

    Usage: user = make_user(role="COACH"); user.email, user.id are set.
    """
    _client, user_store, _mailer = api_client

    def _make(email: str | None = None, password: str = DEFAULT_PASSWORD, role: str = ROLE_CLIENT, **fields) -> User:
        user = User(
            email=email or unique_email(role.lower()),
            password_hash=hash_password(password),
            role=role,
            **fields,
        )
        user.id = user_store.create_user(user)
        return user_store.get_by_id(user.id)

    return _make


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Factory returning an Authorization header with a fresh access token."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token_pair(user).access_token}"}

    return _headers
