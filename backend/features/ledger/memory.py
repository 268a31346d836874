"""
In-memory ledger store.

Used when DATABASE_URL is not configured (local development) and by the
test suite. A single lock serializes calls, which gives every operation the
same all-or-nothing behavior as a database transaction.
"""
import copy
import threading
from typing import Any, Dict, List, Optional, Tuple

from backend.core.errors import NotFoundError, VersionConflictError
from backend.features.ledger.store import LedgerRecord


class InMemoryLedgerStore:
    """Dict-backed implementation of the LedgerStore protocol."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {}
        self._lock = threading.Lock()

    def _table(self, table: str) -> Dict[str, Tuple[int, Dict[str, Any]]]:
        return self._tables.setdefault(table, {})

    @staticmethod
    def _record(key: str, version: int, fields: Dict[str, Any]) -> LedgerRecord:
        return LedgerRecord(key=key, version=version, fields=copy.deepcopy(fields))

    def get(self, table: str, key: str) -> Optional[LedgerRecord]:
        with self._lock:
            row = self._table(table).get(key)
            if row is None:
                return None
            return self._record(key, *row)

    def put(self, table: str, key: str, fields: Dict[str, Any]) -> LedgerRecord:
        with self._lock:
            rows = self._table(table)
            version, current = rows.get(key, (0, {}))
            merged = {**current, **copy.deepcopy(fields)}
            rows[key] = (version + 1, merged)
            return self._record(key, version + 1, merged)

    def insert(self, table: str, key: str, fields: Dict[str, Any]) -> Optional[LedgerRecord]:
        with self._lock:
            rows = self._table(table)
            if key in rows:
                return None
            rows[key] = (1, copy.deepcopy(fields))
            return self._record(key, *rows[key])

    def compare_and_swap(
        self,
        table: str,
        key: str,
        expected_version: int,
        fields: Dict[str, Any],
    ) -> LedgerRecord:
        with self._lock:
            rows = self._table(table)
            if key not in rows:
                raise NotFoundError(f"{table}/{key} not found")
            version, current = rows[key]
            if version != expected_version:
                raise VersionConflictError(
                    f"{table}/{key} is at version {version}, expected {expected_version}"
                )
            merged = {**current, **copy.deepcopy(fields)}
            rows[key] = (version + 1, merged)
            return self._record(key, version + 1, merged)

    def atomic_increment(
        self,
        table: str,
        key: str,
        field: str,
        delta: int,
    ) -> int:
        with self._lock:
            rows = self._table(table)
            if key not in rows:
                raise NotFoundError(f"{table}/{key} not found")
            version, current = rows[key]
            value = int(current.get(field) or 0) + delta
            rows[key] = (version + 1, {**current, field: value})
            return value

    def delete(self, table: str, key: str) -> bool:
        with self._lock:
            return self._table(table).pop(key, None) is not None

    def find(self, table: str, **equals: Any) -> List[LedgerRecord]:
        with self._lock:
            return [
                self._record(key, version, fields)
                for key, (version, fields) in self._table(table).items()
                if all(fields.get(name) == value for name, value in equals.items())
            ]

    def clear(self) -> None:
        """Drop all records (testing only)."""
        with self._lock:
            self._tables.clear()
