"""Store adapters: per-dialect error classification and transaction timeouts.

The version allocator only retries failures that the adapter classifies as a
unique-constraint conflict, so the retry loop never depends on one
database's error codes.
"""

import enum
import math
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session


class StoreErrorKind(str, enum.Enum):
    unique_conflict = "unique_conflict"
    timeout = "timeout"
    other = "other"


class StoreAdapterBase(ABC):
    """Base class for relational store adapters."""

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the SQLAlchemy dialect name (e.g., 'postgresql')."""
        ...

    @abstractmethod
    def classify(self, exc: DBAPIError) -> StoreErrorKind:
        """Classify a failure raised by the driver."""
        ...

    @abstractmethod
    def apply_transaction_timeout(self, db: Session, timeout_ms: int) -> None:
        """Bound the current transaction's lock waits and statements."""
        ...


class PostgresAdapter(StoreAdapterBase):
    UNIQUE_VIOLATION = "23505"
    # query_canceled (statement_timeout), lock_not_available
    TIMEOUT_CODES = {"57014", "55P03"}

    @property
    def dialect_name(self) -> str:
        return "postgresql"

    @staticmethod
    def _sqlstate(exc: DBAPIError) -> Optional[str]:
        # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
        orig = getattr(exc, "orig", None)
        return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)

    def classify(self, exc: DBAPIError) -> StoreErrorKind:
        code = self._sqlstate(exc)
        if isinstance(exc, IntegrityError) and code == self.UNIQUE_VIOLATION:
            return StoreErrorKind.unique_conflict
        if code in self.TIMEOUT_CODES:
            return StoreErrorKind.timeout
        return StoreErrorKind.other

    def apply_transaction_timeout(self, db: Session, timeout_ms: int) -> None:
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


class MySQLAdapter(StoreAdapterBase):
    DUPLICATE_ENTRY = 1062
    # lock wait timeout, max_execution_time exceeded
    TIMEOUT_CODES = {1205, 3024}

    @property
    def dialect_name(self) -> str:
        return "mysql"

    @staticmethod
    def _errno(exc: DBAPIError) -> Optional[int]:
        orig = getattr(exc, "orig", None)
        args = getattr(orig, "args", None)
        if args and isinstance(args[0], int):
            return args[0]
        return None

    def classify(self, exc: DBAPIError) -> StoreErrorKind:
        errno = self._errno(exc)
        if isinstance(exc, IntegrityError) and errno == self.DUPLICATE_ENTRY:
            return StoreErrorKind.unique_conflict
        if errno in self.TIMEOUT_CODES:
            return StoreErrorKind.timeout
        return StoreErrorKind.other

    def apply_transaction_timeout(self, db: Session, timeout_ms: int) -> None:
        seconds = max(1, math.ceil(timeout_ms / 1000))
        db.execute(text(f"SET SESSION innodb_lock_wait_timeout = {seconds}"))


class SQLiteAdapter(StoreAdapterBase):

    @property
    def dialect_name(self) -> str:
        return "sqlite"

    def classify(self, exc: DBAPIError) -> StoreErrorKind:
        message = str(getattr(exc, "orig", exc))
        if isinstance(exc, IntegrityError) and "UNIQUE constraint failed" in message:
            return StoreErrorKind.unique_conflict
        if isinstance(exc, OperationalError) and "database is locked" in message:
            return StoreErrorKind.timeout
        return StoreErrorKind.other

    def apply_transaction_timeout(self, db: Session, timeout_ms: int) -> None:
        # busy timeout is set per connection in build_engine()
        return None


ADAPTER_REGISTRY: Dict[str, type] = {
    "postgresql": PostgresAdapter,
    "mysql": MySQLAdapter,
    "mariadb": MySQLAdapter,
    "sqlite": SQLiteAdapter,
}


def get_adapter_for_dialect(dialect_name: str) -> StoreAdapterBase:
    """Get the adapter registered for a SQLAlchemy dialect name."""
    cls = ADAPTER_REGISTRY.get(dialect_name)
    if not cls:
        raise ValueError(f"Unsupported database dialect: {dialect_name}")
    return cls()


def get_store_adapter(db: Session) -> StoreAdapterBase:
    """Get the adapter matching the dialect ``db`` is bound to."""
    return get_adapter_for_dialect(db.get_bind().dialect.name)
