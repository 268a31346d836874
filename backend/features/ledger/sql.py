"""
SQL ledger store (SQLAlchemy Core).

Each call runs in its own transaction. Conditional writes are expressed as
`UPDATE ... WHERE key = :key AND version = :expected`, so compare-and-swap
and atomic increments are enforced by the database rather than by locks in
application code. A failed or timed-out statement rolls the transaction
back, leaving the record untouched.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import and_, delete, insert, select, text, update
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from backend.core.database import LEDGER_TABLES, get_engine
from backend.core.errors import NotFoundError, TransientStoreError, VersionConflictError
from backend.features.ledger.store import LedgerRecord


logger = logging.getLogger("inkwell")


class SqlLedgerStore:
    """LedgerStore protocol over the tables declared in backend.core.database."""

    def __init__(self, engine: Optional[Engine] = None, statement_timeout_ms: int = 0):
        self._engine = engine or get_engine()
        self._session_factory = sessionmaker(bind=self._engine, autoflush=False)
        self._statement_timeout_ms = int(statement_timeout_ms or 0)

    @staticmethod
    def _table(table: str):
        try:
            return LEDGER_TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown ledger table: {table}")

    @staticmethod
    def _check_columns(t, fields: Dict[str, Any]) -> None:
        unknown = [name for name in fields if name not in t.c or name in ("key", "version")]
        if unknown:
            raise ValueError(f"Unknown or reserved columns for {t.name}: {', '.join(sorted(unknown))}")

    @staticmethod
    def _to_record(row: Row) -> LedgerRecord:
        mapping = dict(row._mapping)
        key = mapping.pop("key")
        version = mapping.pop("version")
        return LedgerRecord(key=key, version=version, fields=mapping)

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            if self._statement_timeout_ms and self._engine.dialect.name == "postgresql":
                session.execute(text(f"SET LOCAL statement_timeout = {self._statement_timeout_ms}"))
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except DBAPIError as exc:
            session.rollback()
            logger.warning(
                "ledger.transient_failure",
                extra={"operation": operation, "error_code": exc.__class__.__name__},
            )
            raise TransientStoreError(f"Ledger {operation} failed: {exc.__class__.__name__}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, table: str, key: str) -> Optional[LedgerRecord]:
        t = self._table(table)
        with self._transaction("get") as session:
            row = session.execute(select(t).where(t.c.key == key)).first()
        return self._to_record(row) if row else None

    def put(self, table: str, key: str, fields: Dict[str, Any]) -> LedgerRecord:
        t = self._table(table)
        self._check_columns(t, fields)
        try:
            with self._transaction("put") as session:
                row = session.execute(
                    update(t)
                    .where(t.c.key == key)
                    .values(**fields, version=t.c.version + 1)
                    .returning(*t.c)
                ).first()
                if row is None:
                    row = session.execute(
                        insert(t).values(key=key, version=1, **fields).returning(*t.c)
                    ).first()
        except IntegrityError as exc:
            # Lost an insert race; the caller re-reads and retries
            raise VersionConflictError(f"{table}/{key} was created concurrently") from exc
        return self._to_record(row)

    def insert(self, table: str, key: str, fields: Dict[str, Any]) -> Optional[LedgerRecord]:
        t = self._table(table)
        self._check_columns(t, fields)
        try:
            with self._transaction("insert") as session:
                row = session.execute(
                    insert(t).values(key=key, version=1, **fields).returning(*t.c)
                ).first()
        except IntegrityError:
            return None
        return self._to_record(row)

    def compare_and_swap(
        self,
        table: str,
        key: str,
        expected_version: int,
        fields: Dict[str, Any],
    ) -> LedgerRecord:
        t = self._table(table)
        self._check_columns(t, fields)
        with self._transaction("compare_and_swap") as session:
            row = session.execute(
                update(t)
                .where(and_(t.c.key == key, t.c.version == expected_version))
                .values(**fields, version=expected_version + 1)
                .returning(*t.c)
            ).first()
            if row is None:
                current = session.execute(select(t.c.version).where(t.c.key == key)).first()
                if current is None:
                    raise NotFoundError(f"{table}/{key} not found")
                raise VersionConflictError(
                    f"{table}/{key} is at version {current.version}, expected {expected_version}"
                )
        return self._to_record(row)

    def atomic_increment(
        self,
        table: str,
        key: str,
        field: str,
        delta: int,
    ) -> int:
        t = self._table(table)
        self._check_columns(t, {field: delta})
        column = t.c[field]
        with self._transaction("atomic_increment") as session:
            row = session.execute(
                update(t)
                .where(t.c.key == key)
                .values({field: column + delta, "version": t.c.version + 1})
                .returning(column)
            ).first()
            if row is None:
                raise NotFoundError(f"{table}/{key} not found")
        return int(row[0])

    def delete(self, table: str, key: str) -> bool:
        t = self._table(table)
        with self._transaction("delete") as session:
            result = session.execute(delete(t).where(t.c.key == key))
        return result.rowcount > 0

    def find(self, table: str, **equals: Any) -> List[LedgerRecord]:
        t = self._table(table)
        self._check_columns(t, equals)
        clauses = [
            t.c[name].is_(None) if value is None else t.c[name] == value
            for name, value in equals.items()
        ]
        query = select(t).order_by(t.c.key)
        if clauses:
            query = query.where(and_(*clauses))
        with self._transaction("find") as session:
            rows = session.execute(query).all()
        return [self._to_record(row) for row in rows]
