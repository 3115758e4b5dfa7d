"""Tag and FileTag models."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from promptstash.db.base import Base


class Tag(Base):
    """Label that can be attached to files."""
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    color = Column(String(20), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class FileTag(Base):
    """Association between files and tags."""
    __tablename__ = "file_tags"
    __table_args__ = (UniqueConstraint("file_id", "tag_id", name="uq_file_tags_file_id_tag_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    file = relationship("File", back_populates="tag_links")
    tag = relationship("Tag", lazy="joined")
