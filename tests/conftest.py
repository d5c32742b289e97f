"""
tests/conftest.py -- Shared test fixtures for StockFolio.

This module provides:
  - settings / store / hasher / issuer / sessions / credentials: the auth
    object graph over an in-memory SQLite store, with bcrypt at cost 4
  - FakeSharedTier / FakeClock: stand-ins for Redis and time in cache tests
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG and AUTH_RATE_LIMIT must be set before any app import: get_settings()
is cached on first call, and the API tests make far more auth calls per
minute than the production limit allows.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import MagicMock

# CRITICAL: set before any api/core import so get_settings() picks these up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("AUTH_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, attach_services
from auth.credentials import CredentialManager
from auth.passwords import PasswordHasher
from auth.sessions import SessionLifecycleManager
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from cache.tiered import LocalCache, TieredCache
from core.config import Settings
from core.quotes import QuoteService

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"

SAMPLE_QUOTE = {
    "symbol": "AAPL",
    "name": "Apple Inc.",
    "price": 190.5,
    "change": 1.5,
    "change_percent": 0.7937,
    "volume": 51234000,
    "day_high": 191.0,
    "day_low": 188.2,
    "previous_close": 189.0,
    "currency": "USD",
    "exchange": "NMS",
    "last_updated": "2026-01-02T15:30:00+00:00",
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for LocalCache. Advance with clock.now += seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakeSharedTier:
    """Dict-backed SharedTier. Set fail=True to simulate an unreachable Redis."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("shared tier unreachable")

    def get(self, key: str) -> bytes | None:
        self._check()
        return self.data.get(key)

    def set_with_ttl(self, key: str, data: bytes, ttl_seconds: int) -> None:
        self._check()
        self.data[key] = data
        self.ttls[key] = ttl_seconds

    def delete(self, key: str) -> None:
        self._check()
        self.data.pop(key, None)

    def ping(self) -> bool:
        self._check()
        return True


# ---------------------------------------------------------------------------
# Auth object graph
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        jwt_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        bcrypt_rounds=4,
        database_url="sqlite:///:memory:",
    )


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher(settings)


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer(settings)


@pytest.fixture
def sessions(store, issuer, hasher, settings) -> SessionLifecycleManager:
    return SessionLifecycleManager(store, issuer, hasher, settings)


@pytest.fixture
def credentials(store, hasher, sessions) -> CredentialManager:
    return CredentialManager(store, hasher, sessions)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: AccountStore, cache: TieredCache, quotes: QuoteService):
    """Replace the real lifespan: same services, isolated store, no Redis, no network."""

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, settings, store, cache)
        app.state.quotes = quotes
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[SimpleNamespace, None, None]:
    """Yield a namespace with client, store, shared tier, and the fake fetchers.

    One TestClient per test module for speed. Tests that need a fresh
    account register one with a unique email.
    """
    settings = Settings(
        debug=True,
        jwt_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        bcrypt_rounds=4,
    )
    store = AccountStore("sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true")
    shared = FakeSharedTier()
    cache = TieredCache(LocalCache(), shared)
    quote_fetcher = MagicMock(return_value=dict(SAMPLE_QUOTE))
    search_fetcher = MagicMock(return_value=[{"symbol": "AAPL", "name": "Apple Inc.", "exchange": "NASDAQ"}])
    quotes = QuoteService(cache, settings, quote_fetcher=quote_fetcher, search_fetcher=search_fetcher)

    app.router.lifespan_context = _patch_lifespan(settings, store, cache, quotes)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield SimpleNamespace(
            client=client,
            store=store,
            shared=shared,
            cache=cache,
            quote_fetcher=quote_fetcher,
            search_fetcher=search_fetcher,
        )

    store.close()
