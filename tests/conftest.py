"""
tests/conftest.py -- Shared test fixtures for Keyward unit and integration tests.

This module provides:
  - store: an isolated in-memory AccountStore per test
  - file_store, race: a WAL file store and a barrier-released thread runner
    for concurrency tests
  - clock: a controllable time source injected into every manager
  - mailer: a recording fake that keeps every message instead of sending it
  - verifier: a stub Google verifier that returns whatever claims a test sets
  - service: an AccountService wired from the fixtures above
  - client: TestClient on the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import re
import threading
import uuid
from collections.abc import Callable, Generator
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.errors import UpstreamIdentityError
from auth.models import IdentityClaims
from auth.service import AccountService
from auth.store import AccountStore
from core.config import get_settings

_CODE_RE = re.compile(r"\b([A-Z0-9]{8})\b")


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable time source; tests move it forward with advance()."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SentMail:
    to: str
    sender: str
    subject: str
    body: str

    @property
    def code(self) -> str | None:
        match = _CODE_RE.search(self.body)
        return match.group(1) if match else None


@dataclass
class FakeMailer:
    """Records messages. Set fail=exc to make the next send raise it."""

    sent: list[SentMail] = field(default_factory=list)
    fail: Exception | None = None

    def send(self, to: str, sender: str, subject: str, body: str) -> None:
        if self.fail is not None:
            raise self.fail
        self.sent.append(SentMail(to, sender, subject, body))

    @property
    def last(self) -> SentMail:
        return self.sent[-1]


class StubVerifier:
    """Stands in for GoogleTokenVerifier: maps token strings to claims."""

    def __init__(self) -> None:
        self.tokens: dict[str, IdentityClaims] = {}
        self.audiences: list[str] = []

    def verify(self, token: str, audience: str) -> IdentityClaims:
        self.audiences.append(audience)
        if token not in self.tokens:
            raise UpstreamIdentityError("Invalid JWT", detail="unknown test token")
        return self.tokens[token]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store() -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    A fresh uuid per call keeps tests from seeing each other's rows.
    """
    return AccountStore(f"sqlite:///file:test_keyward_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AccountStore, service: AccountService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and service into app.state. No reaper task is
    started; tests drive SessionReaper.sweep() directly.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.account_service = service
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = make_test_store()
    yield s
    s.close()


@pytest.fixture
def file_store(tmp_path) -> Generator[AccountStore, None, None]:
    """File-backed store for threaded tests.

    Shared-cache memory databases answer a concurrent writer with
    SQLITE_LOCKED straight away instead of waiting on the busy timeout, so
    races are run against a real WAL file.
    """
    s = AccountStore(f"sqlite:///{tmp_path / 'keyward.db'}")
    yield s
    s.close()


@pytest.fixture
def race() -> Callable[[int, Callable[[], object]], list]:
    """Run fn on N threads released together; return each result or raised exception."""

    def run(workers: int, fn: Callable[[], object]) -> list:
        barrier = threading.Barrier(workers, timeout=30)

        def released():
            barrier.wait()
            return fn()

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(released) for _ in range(workers)]
        return [f.exception() or f.result() for f in futures]

    return run


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def verifier() -> StubVerifier:
    return StubVerifier()


@pytest.fixture
def settings():
    s = get_settings().model_copy(update={"google_client_id": "test-client-id.apps.googleusercontent.com"})
    return s


@pytest.fixture
def service(settings, store, mailer, verifier, clock) -> AccountService:
    return AccountService.from_settings(settings, store, mailer, verifier, clock=clock)


@pytest.fixture
def client(store, service) -> Generator[TestClient, None, None]:
    """TestClient on the real app with the test service behind it.

    base_url is https so the Secure session cookie is sent back. The shared
    rate limiter is reset so earlier tests' logins do not count here.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(store, service)
    with TestClient(app, base_url="https://testserver", raise_server_exceptions=True) as c:
        yield c
