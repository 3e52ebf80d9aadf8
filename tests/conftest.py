"""
Shared pytest fixtures for the login guard test suite.

Strategy:
- Domain tests: pure, zero I/O, explicit millisecond timestamps.
- Service tests: in-memory store driven by a fake clock.
- SQL store tests: SQLite in-memory through the same SQLAlchemy models.
- API tests: FastAPI TestClient on an app wired with an in-memory store.
  DATABASE_URL is cleared so importing the real entry point never touches a DB.
"""
import os
import tempfile

import pytest

# ---------------------------------------------------------------------------
# Ensure no real database or project log directory is touched
# ---------------------------------------------------------------------------
os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("AUDIT_LOG_DIR", tempfile.mkdtemp(prefix="loginguard_audit_"))

from loginguard.application.guard_service import GuardService
from loginguard.domain.policy import MINUTE_MS, RateLimitPolicy
from loginguard.infrastructure.store.memory_store import InMemoryAttemptStore

ORIGIN = "203.0.113.5"
EMAIL = "user@example.com"

# Arbitrary fixed epoch so tests never depend on wall time
T0 = 1_700_000_000_000


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms

    def advance_minutes(self, minutes: float) -> None:
        self.now += int(minutes * MINUTE_MS)


# ---------------------------------------------------------------------------
# pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return RateLimitPolicy()


@pytest.fixture
def memory_store(policy):
    return InMemoryAttemptStore(policy)


class AuditRecorder:
    """Collects lock/reset audit calls as (action, key, payload) tuples."""

    def __init__(self, events=None):
        self.events = [] if events is None else events

    def log_lock(self, identity_key, retry_after, failed_attempts):
        self.events.append(("login_locked", identity_key,
                            {"retry_after": retry_after, "failed_attempts": failed_attempts}))

    def log_reset(self, identity_key, cleared_count, was_locked):
        self.events.append(("login_reset", identity_key,
                            {"cleared_count": cleared_count, "was_locked": was_locked}))


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def service(memory_store, policy, clock, audit_events):
    return GuardService(memory_store, policy, clock=clock, audit=AuditRecorder(audit_events))


# ---------------------------------------------------------------------------
# FastAPI TestClient
# ---------------------------------------------------------------------------

@pytest.fixture
def test_app(service):
    """Fresh app per test so counters never leak between tests."""
    from loginguard.main import create_app
    return create_app(service)


@pytest.fixture
def client(test_app):
    from fastapi.testclient import TestClient
    return TestClient(test_app)
