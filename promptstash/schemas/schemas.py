"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from promptstash.models.file import FileType


# ---- Tag ----
class TagOut(BaseModel):
    id: int
    name: str
    color: Optional[str] = None

    class Config:
        from_attributes = True


# ---- File ----
class FileCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    content: str
    file_type: FileType
    stash_id: int
    folder_id: Optional[int] = None
    path: Optional[str] = Field(None, min_length=1, max_length=1000)
    tags: Optional[List[int]] = None

class FileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    content: Optional[str] = None
    tags: Optional[List[int]] = None

class FileOut(BaseModel):
    id: int
    name: str
    path: str
    content: str
    file_type: FileType
    stash_id: int
    folder_id: Optional[int] = None
    tags: List[TagOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Version ----
class VersionOut(BaseModel):
    id: int
    file_id: int
    version: int
    content: str
    created_by: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class RevertRequest(BaseModel):
    version_id: int

class RevertResponse(BaseModel):
    file: FileOut
    version: VersionOut


# ---- Generic ----
class ErrorResponse(BaseModel):
    detail: str
    retryable: bool = False
