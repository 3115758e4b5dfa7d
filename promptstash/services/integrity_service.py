"""Integrity service: checks and repairs over the version history."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from promptstash.core.config import settings
from promptstash.db.transaction import atomic
from promptstash.models.file import File, FileVersion

logger = logging.getLogger("promptstash.integrity")


class IntegrityService:
    """Detects, and where possible repairs, version rows that break the history invariants."""

    def __init__(self, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.TRANSACTION_TIMEOUT_MS

    @staticmethod
    def find_duplicate_versions(db: Session) -> List[Dict[str, Any]]:
        """(file_id, version) pairs recorded more than once.

        Always empty while the unique constraint is in place; useful against
        databases restored from dumps or migrated without it.
        """
        rows = (
            db.query(
                FileVersion.file_id,
                FileVersion.version,
                func.count(FileVersion.id).label("count"),
            )
            .group_by(FileVersion.file_id, FileVersion.version)
            .having(func.count(FileVersion.id) > 1)
            .order_by(FileVersion.file_id, FileVersion.version)
            .all()
        )
        return [
            {"file_id": row.file_id, "version": row.version, "count": row.count}
            for row in rows
        ]

    @staticmethod
    def find_content_drift(db: Session) -> List[Dict[str, Any]]:
        """Files whose current content differs from their latest version."""
        latest = (
            db.query(
                FileVersion.file_id.label("file_id"),
                func.max(FileVersion.version).label("version"),
            )
            .group_by(FileVersion.file_id)
            .subquery()
        )
        rows = (
            db.query(File.id, File.name, FileVersion.version)
            .join(latest, latest.c.file_id == File.id)
            .join(
                FileVersion,
                and_(
                    FileVersion.file_id == latest.c.file_id,
                    FileVersion.version == latest.c.version,
                ),
            )
            .filter(File.content != FileVersion.content)
            .order_by(File.id)
            .all()
        )
        return [
            {"file_id": row.id, "name": row.name, "latest_version": row.version}
            for row in rows
        ]

    def check(self, db: Session) -> Dict[str, Any]:
        """Run every check; ``ok`` is False when anything was found."""
        duplicates = self.find_duplicate_versions(db)
        drift = self.find_content_drift(db)
        return {
            "ok": not duplicates and not drift,
            "duplicates": duplicates,
            "drift": drift,
        }

    def repair_duplicate_versions(self, db: Session, dry_run: bool = False) -> List[Dict[str, Any]]:
        """Renumber the versions of every file that has duplicates.

        Each affected file gets 1..n again in creation order (``created_at``,
        then ``id``); version content and authorship are untouched. All files
        are fixed in one transaction. With ``dry_run`` the planned changes are
        returned and nothing is written.
        """
        with atomic(db, self.timeout_ms):
            file_ids = sorted({dup["file_id"] for dup in self.find_duplicate_versions(db)})
            changes = []
            for file_id in file_ids:
                versions = (
                    db.query(FileVersion.id, FileVersion.version)
                    .filter(FileVersion.file_id == file_id)
                    .order_by(FileVersion.created_at, FileVersion.id)
                    .all()
                )
                for number, row in enumerate(versions, start=1):
                    if row.version != number:
                        changes.append({
                            "file_id": file_id,
                            "version_id": row.id,
                            "from_version": row.version,
                            "to_version": number,
                        })

            if changes and not dry_run:
                # park on negative numbers first so no intermediate state collides
                for change in changes:
                    self._set_version_number(db, change["version_id"], -change["to_version"])
                for change in changes:
                    self._set_version_number(db, change["version_id"], change["to_version"])

        if changes and not dry_run:
            logger.warning(
                "Renumbered %s version(s) across %s file(s)", len(changes), len(file_ids)
            )
        return changes

    @staticmethod
    def _set_version_number(db: Session, version_id: int, number: int) -> None:
        db.query(FileVersion).filter(FileVersion.id == version_id).update(
            {"version": number}, synchronize_session=False
        )


integrity_service = IntegrityService()
