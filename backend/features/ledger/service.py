"""
Ledger store wiring.

- SQL store when DATABASE_URL (or TEST_DATABASE_URL) is configured, in-memory store otherwise
- Test override hook
- Bounded optimistic retry for compare-and-swap writers
"""
import logging
from typing import Callable, Optional, TypeVar

from backend.core.config import settings
from backend.core.database import use_database
from backend.core.errors import TransientStoreError, VersionConflictError
from backend.features.ledger.memory import InMemoryLedgerStore
from backend.features.ledger.store import LedgerStore


logger = logging.getLogger("inkwell")

T = TypeVar("T")

_store_override: Optional[LedgerStore] = None
_default_store: Optional[LedgerStore] = None


def set_ledger_store_for_tests(store: Optional[LedgerStore]) -> None:
    """Set or clear the ledger store override (tests)."""
    global _store_override
    _store_override = store


def get_ledger_store() -> LedgerStore:
    """Get the active ledger store."""
    global _default_store
    if _store_override is not None:
        return _store_override
    if _default_store is None:
        if use_database():
            from backend.features.ledger.sql import SqlLedgerStore
            _default_store = SqlLedgerStore(statement_timeout_ms=settings.STORE_STATEMENT_TIMEOUT_MS)
        else:
            _default_store = InMemoryLedgerStore()
    return _default_store


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    description: str,
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run a read-decide-CAS operation, re-running it when the CAS loses.

    The operation must re-read its record on every attempt.

    Raises:
        TransientStoreError: If every attempt conflicted
    """
    attempts = max_attempts or settings.STORE_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except VersionConflictError:
            logger.info(
                "ledger.version_conflict",
                extra={"operation": description, "attempt": attempt, "outcome": "retry"},
            )
    logger.warning(
        "ledger.retries_exhausted",
        extra={"operation": description, "error_code": TransientStoreError.code},
    )
    raise TransientStoreError(f"{description} kept conflicting after {attempts} attempts")
