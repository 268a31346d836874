"""
Ledger store protocol.

The ledger store is the only shared mutable resource of the platform. Engines
talk to it through this interface so the backing store (SQL, in-memory) can
be swapped without touching business logic.

Every record carries a monotonically increasing `version`; writers that must
not lose a concurrent update use `compare_and_swap` against the version they
read.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class LedgerRecord:
    """Snapshot of one stored record."""
    key: str
    version: int
    fields: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


class LedgerStore(Protocol):
    """
    Protocol for ledger stores.

    Implementations must make each call atomic: a call that raises leaves
    the stored state unchanged.
    """

    def get(self, table: str, key: str) -> Optional[LedgerRecord]:
        """Point read. Returns None if the record does not exist."""
        ...

    def put(self, table: str, key: str, fields: Dict[str, Any]) -> LedgerRecord:
        """Create the record or overwrite the given fields, bumping version."""
        ...

    def insert(self, table: str, key: str, fields: Dict[str, Any]) -> Optional[LedgerRecord]:
        """
        Idempotent create.

        Returns:
            The new record, or None if a record with this key already exists
        """
        ...

    def compare_and_swap(
        self,
        table: str,
        key: str,
        expected_version: int,
        fields: Dict[str, Any],
    ) -> LedgerRecord:
        """
        Overwrite the given fields only if the stored version still matches.

        Raises:
            NotFoundError: If the record does not exist
            VersionConflictError: If another writer got there first
        """
        ...

    def atomic_increment(
        self,
        table: str,
        key: str,
        field: str,
        delta: int,
    ) -> int:
        """
        Add delta to an integer field in a single statement.

        Deltas are applied exactly (no clamping) so paired +1/-1 writes
        always cancel, whatever order they land in.

        Returns:
            The new value

        Raises:
            NotFoundError: If the record does not exist
        """
        ...

    def delete(self, table: str, key: str) -> bool:
        """Delete a record. Returns False if it was already absent."""
        ...

    def find(self, table: str, **equals: Any) -> List[LedgerRecord]:
        """Return all records whose fields equal the given values."""
        ...
