"""File service: create, update, revert and delete versioned files.

Every content-changing write goes through ``atomic()`` so that the file's
current content and its new version row commit or roll back together.
"""

import logging
import re
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from promptstash.core.exceptions import (
    AuthorizationError, ResourceNotFoundError, ValidationError,
)
from promptstash.db.transaction import atomic
from promptstash.models.file import File, FileType, FileVersion
from promptstash.models.stash import Folder, Stash
from promptstash.models.tag import FileTag, Tag
from promptstash.services.version_service import VersionService, version_service

logger = logging.getLogger("promptstash.files")

PATH_TEMPLATES = {
    FileType.MARKDOWN: "{slug}.md",
    FileType.JSON: "{slug}.json",
    FileType.JSONL: "{slug}.jsonl",
    FileType.YAML: "{slug}.yaml",
}


def generate_file_path(name: str, file_type: FileType) -> str:
    """Default logical path for a file: slugified name plus type extension."""
    slug = re.sub(r"\s+", "-", name.strip()).lower()
    return PATH_TEMPLATES[file_type].format(slug=slug)


class FileService:
    """Versioned file operations on top of the version allocator."""

    def __init__(self, versions: VersionService = version_service):
        self.versions = versions

    # ---- Reads and ownership ----

    @staticmethod
    def get_file(db: Session, file_id: int) -> File:
        """Get a single file by ID."""
        file = db.query(File).filter(File.id == file_id).first()
        if not file:
            raise ResourceNotFoundError(f"File {file_id} not found")
        return file

    @staticmethod
    def get_owned_stash(db: Session, stash_id: int, user_id: int) -> Stash:
        """Get a stash, checking it belongs to ``user_id``."""
        stash = db.query(Stash).filter(Stash.id == stash_id).first()
        if not stash:
            raise ResourceNotFoundError(f"Stash {stash_id} not found")
        if stash.user_id != user_id:
            raise AuthorizationError(f"Stash {stash_id} belongs to another user")
        return stash

    def get_owned_file(self, db: Session, file_id: int, user_id: int) -> File:
        """Get a file, checking its stash belongs to ``user_id``."""
        file = self.get_file(db, file_id)
        if file.stash.user_id != user_id:
            raise AuthorizationError(f"File {file_id} belongs to another user")
        return file

    def list_versions(self, db: Session, file_id: int) -> List[FileVersion]:
        self.get_file(db, file_id)
        return self.versions.list_versions(db, file_id)

    def get_version(self, db: Session, file_id: int, version_id: int) -> FileVersion:
        version = self.versions.get_version(db, file_id, version_id)
        if not version:
            raise ResourceNotFoundError(f"Version {version_id} not found for file {file_id}")
        return version

    # ---- Writes ----

    def create_file(
        self,
        db: Session,
        *,
        stash_id: int,
        name: str,
        content: str,
        file_type: FileType,
        created_by: int,
        path: Optional[str] = None,
        folder_id: Optional[int] = None,
        tag_ids: Optional[Iterable[int]] = None,
        owner_id: Optional[int] = None,
    ) -> File:
        """Create a file together with its version 1.

        With ``owner_id`` the stash ownership check runs inside the same
        transaction as the writes.
        """
        with atomic(db, self.versions.timeout_ms):
            if owner_id is not None:
                self.get_owned_stash(db, stash_id, owner_id)
            if folder_id is not None:
                folder = db.query(Folder).filter(Folder.id == folder_id).first()
                if not folder:
                    raise ResourceNotFoundError(f"Folder {folder_id} not found")
                if folder.stash_id != stash_id:
                    raise ValidationError("Folder must belong to the same stash")

            file = File(
                name=name,
                path=path or generate_file_path(name, file_type),
                content=content,
                file_type=file_type,
                stash_id=stash_id,
                folder_id=folder_id,
            )
            db.add(file)
            db.flush()
            if tag_ids:
                self._replace_tags(db, file.id, tag_ids)
            db.flush()

            version = self.versions.create_in_transaction(
                db, file_id=file.id, content=content, created_by=created_by
            )
            file_id = file.id

        logger.info("Created file %s (%s) at v%s", file_id, name, version.version)
        return self.get_file(db, file_id)

    def update_file(
        self,
        db: Session,
        file_id: int,
        *,
        updated_by: int,
        content: Optional[str] = None,
        name: Optional[str] = None,
        tag_ids: Optional[Iterable[int]] = None,
        owner_id: Optional[int] = None,
    ) -> File:
        """Update a file's fields, appending a version only when content changes.

        New content is compared with the latest version, read after the row
        UPDATE holds the file's row lock: a read taken before the lock can
        miss a competing writer that commits in between. Name and tag
        changes never create a version.
        """
        version = None
        with atomic(db, self.versions.timeout_ms):
            if owner_id is not None:
                self.get_owned_file(db, file_id, owner_id)

            values = {}
            if name is not None:
                values["name"] = name
            if content is not None:
                values["content"] = content
            if values:
                self._update_file_row(db, file_id, values)
            elif owner_id is None:
                self.get_file(db, file_id)
            if tag_ids is not None:
                self._replace_tags(db, file_id, tag_ids)
            db.flush()

            if content is not None and content != self.versions.latest_content(db, file_id):
                version = self.versions.create_in_transaction(
                    db, file_id=file_id, content=content, created_by=updated_by
                )

        if version is not None:
            logger.info("Updated file %s to v%s", file_id, version.version)
        else:
            logger.debug("Updated file %s without content change", file_id)
        return self.get_file(db, file_id)

    def revert_file(
        self,
        db: Session,
        file_id: int,
        *,
        version_id: int,
        reverted_by: int,
        owner_id: Optional[int] = None,
    ) -> Tuple[File, FileVersion]:
        """Restore an earlier version's content as a brand-new version.

        History is append-only: the target version is copied forward, never
        rewound to, and no version row is modified.
        """
        with atomic(db, self.versions.timeout_ms):
            if owner_id is not None:
                self.get_owned_file(db, file_id, owner_id)
            target = self.get_version(db, file_id, version_id)
            restored_content = target.content
            restored_from = target.version

            self._update_file_row(db, file_id, {"content": restored_content})
            version = self.versions.create_in_transaction(
                db, file_id=file_id, content=restored_content, created_by=reverted_by
            )

        logger.info("Reverted file %s to v%s as v%s", file_id, restored_from, version.version)
        return self.get_file(db, file_id), version

    def delete_file(self, db: Session, file_id: int, owner_id: Optional[int] = None) -> None:
        """Delete a file; its versions and tag links go with it."""
        with atomic(db, self.versions.timeout_ms):
            if owner_id is not None:
                self.get_owned_file(db, file_id, owner_id)
            deleted = (
                db.query(File)
                .filter(File.id == file_id)
                .delete(synchronize_session=False)
            )
            if deleted == 0:
                raise ResourceNotFoundError(f"File {file_id} not found")
        logger.info("Deleted file %s", file_id)

    # ---- Helpers ----

    @staticmethod
    def _update_file_row(db: Session, file_id: int, values: dict) -> None:
        # zero rows means the file was deleted under us
        updated = (
            db.query(File)
            .filter(File.id == file_id)
            .update(values, synchronize_session=False)
        )
        if updated == 0:
            raise ResourceNotFoundError(f"File {file_id} not found")

    @staticmethod
    def _replace_tags(db: Session, file_id: int, tag_ids: Iterable[int]) -> None:
        wanted = list(dict.fromkeys(tag_ids))
        if wanted:
            found = {
                tag_id for (tag_id,) in db.query(Tag.id).filter(Tag.id.in_(wanted)).all()
            }
            missing = [tag_id for tag_id in wanted if tag_id not in found]
            if missing:
                raise ValidationError(f"Unknown tag ids: {missing}")

        db.query(FileTag).filter(FileTag.file_id == file_id).delete(synchronize_session=False)
        for tag_id in wanted:
            db.add(FileTag(file_id=file_id, tag_id=tag_id))


file_service = FileService()
