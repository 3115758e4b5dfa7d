"""Files API router: create, read, update, delete, versions, revert.

Handlers are plain ``def`` so FastAPI runs them in its thread pool: the
session is synchronous and version allocation may back off with a sleep.
"""

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from promptstash.db.session import get_db
from promptstash.schemas.schemas import (
    FileCreate, FileUpdate, FileOut, VersionOut, RevertRequest, RevertResponse,
)
from promptstash.services.file_service import file_service
from promptstash.core.security import get_current_user_id

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/", response_model=FileOut, status_code=status.HTTP_201_CREATED)
def create_file(
    body: FileCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Create a file and its first version."""
    return file_service.create_file(
        db,
        stash_id=body.stash_id,
        name=body.name,
        content=body.content,
        file_type=body.file_type,
        created_by=user_id,
        path=body.path,
        folder_id=body.folder_id,
        tag_ids=body.tags,
        owner_id=user_id,
    )


@router.get("/{file_id}", response_model=FileOut)
def get_file(file_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)):
    """Get a file with its tags."""
    return file_service.get_owned_file(db, file_id, user_id)


@router.put("/{file_id}", response_model=FileOut)
def update_file(
    file_id: int,
    body: FileUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Update name, content or tags; a content change appends a version."""
    return file_service.update_file(
        db,
        file_id,
        updated_by=user_id,
        content=body.content,
        name=body.name,
        tag_ids=body.tags,
        owner_id=user_id,
    )


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(file_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)):
    """Delete a file and its whole version history."""
    file_service.delete_file(db, file_id, owner_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{file_id}/versions", response_model=List[VersionOut])
def list_versions(file_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)):
    """List a file's versions, newest first."""
    file_service.get_owned_file(db, file_id, user_id)
    return file_service.list_versions(db, file_id)


@router.get("/{file_id}/versions/{version_id}", response_model=VersionOut)
def get_version(
    file_id: int,
    version_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Get one version of a file."""
    file_service.get_owned_file(db, file_id, user_id)
    return file_service.get_version(db, file_id, version_id)


@router.post("/{file_id}/revert", response_model=RevertResponse)
def revert_file(
    file_id: int,
    body: RevertRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Restore an earlier version's content as a new version."""
    file, version = file_service.revert_file(
        db, file_id, version_id=body.version_id, reverted_by=user_id, owner_id=user_id
    )
    return RevertResponse(
        file=FileOut.model_validate(file),
        version=VersionOut.model_validate(version),
    )
