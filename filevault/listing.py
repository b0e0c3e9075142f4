from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import StorageError
from .models import FileEntry, Visibility
from .repository import FileEntryRepository


def _matches(entry: FileEntry, tag: Optional[str]) -> bool:
    return tag is None or tag in (entry.tags or [])


def _normalize_tag(tag: Optional[str]) -> Optional[str]:
    if tag is None or not tag.strip():
        return None
    return tag.strip().lower()


class FileLister:
    """Newest-first listings of an owner's files or of all public files."""

    def __init__(self, files: FileEntryRepository) -> None:
        self.files = files

    def list_mine(self, owner_id: str, tag: Optional[str] = None) -> list[FileEntry]:
        tag = _normalize_tag(tag)
        try:
            entries = self.files.list_by_owner(owner_id)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to list files") from exc
        return [entry for entry in entries if _matches(entry, tag)]

    def list_public(self, tag: Optional[str] = None) -> list[FileEntry]:
        tag = _normalize_tag(tag)
        try:
            entries = self.files.list_by_visibility(Visibility.PUBLIC)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to list files") from exc
        return [entry for entry in entries if _matches(entry, tag)]
