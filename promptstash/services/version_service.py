"""Version service: allocates sequential, collision-free file versions.

Concurrency control is optimistic: the next number is read as
``max(version) + 1`` and the insert relies on the unique constraint on
``(file_id, version)``. A writer that loses the race gets a unique
violation, rolls back its savepoint and tries again with a fresh maximum.
No row or advisory locks are taken.
"""

import logging
import time
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from promptstash.core.config import settings
from promptstash.core.exceptions import VersionConflictError
from promptstash.db.adapters import StoreErrorKind, get_store_adapter
from promptstash.db.transaction import atomic
from promptstash.models.file import FileVersion

logger = logging.getLogger("promptstash.versions")


class VersionService:
    """Creates and reads immutable file versions."""

    def __init__(
        self,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.max_retries = max_retries if max_retries is not None else settings.VERSION_MAX_RETRIES
        self.base_delay_ms = (
            base_delay_ms if base_delay_ms is not None else settings.VERSION_RETRY_BASE_DELAY_MS
        )
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.TRANSACTION_TIMEOUT_MS

    @staticmethod
    def latest_version_number(db: Session, file_id: int) -> int:
        """Highest version number recorded for a file, 0 when there is none."""
        latest = (
            db.query(func.max(FileVersion.version))
            .filter(FileVersion.file_id == file_id)
            .scalar()
        )
        return latest or 0

    @staticmethod
    def latest_content(db: Session, file_id: int) -> Optional[str]:
        """Content of a file's highest-numbered version, None when there is none."""
        return (
            db.query(FileVersion.content)
            .filter(FileVersion.file_id == file_id)
            .order_by(FileVersion.version.desc())
            .limit(1)
            .scalar()
        )

    def create_in_transaction(
        self,
        db: Session,
        *,
        file_id: int,
        content: str,
        created_by: int,
    ) -> FileVersion:
        """Insert the next version of a file inside the caller's transaction.

        Each attempt runs in a SAVEPOINT so a rejected insert leaves the
        enclosing transaction usable. Only unique-constraint conflicts are
        retried; any other store error propagates immediately.

        Raises:
            VersionConflictError: no free number was found within
                ``max_retries`` attempts. The caller must roll back.
        """
        adapter = get_store_adapter(db)

        for attempt in range(1, self.max_retries + 1):
            next_version = self.latest_version_number(db, file_id) + 1
            version = FileVersion(
                file_id=file_id,
                content=content,
                version=next_version,
                created_by=created_by,
            )
            try:
                with db.begin_nested():
                    db.add(version)
                return version
            except IntegrityError as exc:
                if adapter.classify(exc) is not StoreErrorKind.unique_conflict:
                    raise
                logger.warning(
                    "Version conflict for file %s at v%s (attempt %s/%s)",
                    file_id, next_version, attempt, self.max_retries,
                )
                if attempt < self.max_retries:
                    time.sleep(self.base_delay_ms * attempt / 1000)

        logger.error(
            "Giving up on version for file %s after %s attempts", file_id, self.max_retries
        )
        raise VersionConflictError(file_id, self.max_retries)

    def create(
        self,
        session_factory: sessionmaker,
        *,
        file_id: int,
        content: str,
        created_by: int,
    ) -> FileVersion:
        """Insert the next version of a file in a transaction of its own."""
        with session_factory(expire_on_commit=False) as db:
            with atomic(db, self.timeout_ms):
                version = self.create_in_transaction(
                    db, file_id=file_id, content=content, created_by=created_by
                )
            db.expunge(version)
            return version

    @staticmethod
    def list_versions(db: Session, file_id: int) -> List[FileVersion]:
        """All versions of a file, newest first."""
        return (
            db.query(FileVersion)
            .filter(FileVersion.file_id == file_id)
            .order_by(FileVersion.version.desc())
            .all()
        )

    @staticmethod
    def get_version(db: Session, file_id: int, version_id: int) -> Optional[FileVersion]:
        """One version, only if it belongs to ``file_id``."""
        return (
            db.query(FileVersion)
            .filter(FileVersion.id == version_id, FileVersion.file_id == file_id)
            .first()
        )


version_service = VersionService()


def create_file_version(
    session_factory: sessionmaker, *, file_id: int, content: str, created_by: int
) -> FileVersion:
    """Standalone entry point: opens and commits its own transaction."""
    return version_service.create(
        session_factory, file_id=file_id, content=content, created_by=created_by
    )


def create_file_version_in_transaction(
    db: Session, *, file_id: int, content: str, created_by: int
) -> FileVersion:
    """Entry point for callers that already hold a transaction."""
    return version_service.create_in_transaction(
        db, file_id=file_id, content=content, created_by=created_by
    )
