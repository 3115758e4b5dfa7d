"""Stash and Folder models."""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, func
from sqlalchemy.orm import relationship
from promptstash.db.base import Base


class StashScope(str, enum.Enum):
    USER = "USER"
    PROJECT = "PROJECT"
    PLUGIN = "PLUGIN"
    MARKETPLACE = "MARKETPLACE"


class Stash(Base):
    """Named top-level container of folders and files, owned by one user."""
    __tablename__ = "stashes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    scope = Column(Enum(StashScope), default=StashScope.USER, nullable=False)
    description = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    owner = relationship("User", back_populates="stashes")
    folders = relationship("Folder", back_populates="stash", passive_deletes=True)
    files = relationship("File", back_populates="stash", passive_deletes=True)


class Folder(Base):
    """Folder inside a stash; folders nest through parent_id."""
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    path = Column(String(1000), nullable=False)
    parent_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True)
    stash_id = Column(Integer, ForeignKey("stashes.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    stash = relationship("Stash", back_populates="folders")
