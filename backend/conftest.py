# backend/conftest.py
import os
from datetime import datetime, timedelta, timezone

import pytest

from backend.core import idempotency
from backend.features.entitlements.roles import Role
from backend.features.ledger.memory import InMemoryLedgerStore
from backend.features.ledger.service import set_ledger_store_for_tests


class FixedClock:
    """Deterministic clock; call it like utc_now()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture(scope="session")
def db_url():
    """
    Provide DATABASE_URL for tests.

    Returns the URL from environment, or None if not set.
    """
    return os.getenv('DATABASE_URL')


@pytest.fixture(scope="session", autouse=True)
def create_tables(db_url):
    """Create all database tables once per session if DATABASE_URL is set."""
    if not db_url:
        yield
        return

    from backend.core.database import create_all_tables
    create_all_tables()
    yield


@pytest.fixture(scope="function", autouse=True)
def ledger_store():
    """Fresh in-memory ledger store per test, installed as the active store."""
    store = InMemoryLedgerStore()
    set_ledger_store_for_tests(store)
    yield store
    set_ledger_store_for_tests(None)


@pytest.fixture(scope="function", autouse=True)
def clear_idempotency_keys():
    """Each test starts with an empty webhook dedup window."""
    idempotency.clear_all_keys()
    yield
    idempotency.clear_all_keys()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_user(ledger_store, clock):
    """Insert a user entitlement record directly into the store."""

    def _make(identity: str, role: Role = Role.STANDARD, usage_count: int = 0, usage_reset_at=None, **profile):
        now = clock()
        return ledger_store.insert(
            "users",
            identity,
            {
                "role": Role(role).value,
                "usage_count": usage_count,
                "usage_reset_at": usage_reset_at or now,
                "created_at": now,
                "updated_at": now,
                **profile,
            },
        )

    return _make


@pytest.fixture
def post_service(ledger_store, clock):
    from backend.features.posts.service import PostService
    return PostService(store=ledger_store, clock=clock)


@pytest.fixture
def reconciler(ledger_store, clock, post_service):
    from backend.features.entitlements.reconciler import EntitlementReconciler
    return EntitlementReconciler(store=ledger_store, clock=clock, content_purger=post_service)


@pytest.fixture
def quota(ledger_store, clock):
    from backend.features.usage.quota import UsageQuotaTracker
    return UsageQuotaTracker(store=ledger_store, clock=clock, limit=5)
