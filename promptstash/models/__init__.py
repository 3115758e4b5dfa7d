"""Models package: import all models so create_all() can discover them."""

from promptstash.models.user import User
from promptstash.models.stash import Stash, StashScope, Folder
from promptstash.models.file import File, FileType, FileVersion
from promptstash.models.tag import Tag, FileTag

__all__ = [
    "User", "Stash", "StashScope", "Folder",
    "File", "FileType", "FileVersion",
    "Tag", "FileTag",
]
