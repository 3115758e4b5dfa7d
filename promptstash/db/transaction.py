"""Transaction boundary used by every content-changing write."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from promptstash.core.exceptions import TransactionTimeoutError
from promptstash.db.adapters import StoreAdapterBase, StoreErrorKind, get_store_adapter

logger = logging.getLogger("promptstash.db")


@contextmanager
def atomic(db: Session, timeout_ms: int) -> Iterator[StoreAdapterBase]:
    """Run the block as one unit of work on ``db``.

    Commits when the block finishes and rolls back on any failure, so a
    file row never shows new content without its version (or the reverse).
    A store-side timeout is re-raised as ``TransactionTimeoutError``; every
    other error propagates unchanged after the rollback.
    """
    adapter = get_store_adapter(db)
    try:
        adapter.apply_transaction_timeout(db, timeout_ms)
        yield adapter
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if adapter.classify(exc) is StoreErrorKind.timeout:
            logger.warning("Transaction exceeded %sms and was rolled back", timeout_ms)
            raise TransactionTimeoutError(
                f"Transaction timed out after {timeout_ms}ms"
            ) from exc
        raise
    except Exception:
        db.rollback()
        raise
