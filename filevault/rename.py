from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from .errors import DuplicateFilenameError, NotFoundError, StaleUpdateError, StorageError
from .ingestion import normalize_filename
from .models import FileEntry
from .repository import FILENAME, FileEntryRepository, StaleVersion, UniquenessViolation

logger = logging.getLogger(__name__)


class RenameArbiter:
    """Renames a file while keeping (owner, lower-cased name) unique.

    A change that only touches letter case collides with nothing but the file
    itself, so it skips the uniqueness lookup. Everything else is decided by the
    unique index on update; the lookup in front of it is only a shortcut.
    """

    def __init__(self, files: FileEntryRepository) -> None:
        self.files = files

    def rename(self, owner_id: str, file_id: str, new_name: str) -> FileEntry:
        name = normalize_filename(new_name)
        name_lc = name.lower()
        try:
            return self._rename(owner_id, file_id, name, name_lc)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to rename file") from exc

    def _rename(self, owner_id: str, file_id: str, name: str, name_lc: str) -> FileEntry:
        entry = self.files.get(file_id)
        if entry is None or entry.owner_id != owner_id:
            raise NotFoundError("File not found")

        if name_lc == entry.filename_lc:
            if name == entry.filename:
                return entry
        elif self.files.find_by_owner_and_name_lower(owner_id, name_lc) is not None:
            raise DuplicateFilenameError("Filename already exists")

        try:
            updated = self.files.update_with_version_check(entry, filename=name, filename_lc=name_lc)
        except UniquenessViolation as exc:
            if exc.constraint == FILENAME:
                raise DuplicateFilenameError("Filename already exists") from exc
            raise StorageError("Rename rejected by the metadata store") from exc
        except StaleVersion as exc:
            if self.files.get(file_id) is None:
                raise NotFoundError("File not found") from exc
            raise StaleUpdateError("File was modified concurrently, please retry") from exc

        logger.info("Renamed file %s from %r to %r", file_id, entry.filename, updated.filename)
        return updated
