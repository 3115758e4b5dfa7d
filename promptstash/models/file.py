"""File and FileVersion models.

A file's ``content`` always mirrors its highest-numbered version. Version
rows are append-only: they are never updated, and only disappear through
the cascade when their file is deleted.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Enum, Index,
    UniqueConstraint, func,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import relationship
from promptstash.db.base import Base

# MySQL TEXT tops out at 64KB
ContentText = Text().with_variant(mysql.LONGTEXT(), "mysql")

VERSION_UNIQUE_CONSTRAINT = "uq_file_versions_file_id_version"


class FileType(str, enum.Enum):
    MARKDOWN = "MARKDOWN"
    JSON = "JSON"
    JSONL = "JSONL"
    YAML = "YAML"


class File(Base):
    """Versioned text/config file stored in a stash."""
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    path = Column(String(1000), nullable=False)
    content = Column(ContentText, nullable=False)
    file_type = Column(Enum(FileType), nullable=False)
    stash_id = Column(Integer, ForeignKey("stashes.id", ondelete="CASCADE"), nullable=False, index=True)
    folder_id = Column(Integer, ForeignKey("folders.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    stash = relationship("Stash", back_populates="files")
    folder = relationship("Folder")
    versions = relationship(
        "FileVersion",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="FileVersion.version.desc()",
    )
    tag_links = relationship(
        "FileTag",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def tags(self):
        return [link.tag for link in self.tag_links]


class FileVersion(Base):
    """Immutable snapshot of a file's content."""
    __tablename__ = "file_versions"
    __table_args__ = (
        UniqueConstraint("file_id", "version", name=VERSION_UNIQUE_CONSTRAINT),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    content = Column(ContentText, nullable=False)
    version = Column(Integer, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    file = relationship("File", back_populates="versions")

    # load created_at at insert time so detached versions stay readable
    __mapper_args__ = {"eager_defaults": True}


# Serves the "latest version of file X" lookup
Index(
    "ix_file_versions_file_id_version_desc",
    FileVersion.file_id,
    FileVersion.version.desc(),
)
