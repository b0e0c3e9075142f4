from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from .blobstore import BlobStore, BlobStoreError
from .errors import NotFoundError, StorageError
from .repository import DownloadLinkRepository, FileEntryRepository

logger = logging.getLogger(__name__)


class DeletionOrchestrator:
    def __init__(self, files: FileEntryRepository, links: DownloadLinkRepository, blobs: BlobStore) -> None:
        self.files = files
        self.links = links
        self.blobs = blobs

    def delete(self, owner_id: str, file_id: str) -> None:
        try:
            entry = self.files.get(file_id)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to load file metadata") from exc
        # another owner's file is reported exactly like a missing one
        if entry is None or entry.owner_id != owner_id:
            raise NotFoundError("File not found")

        # links, then blob, then entry
        try:
            removed_links = self.links.delete_by_file_id(file_id)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to delete download links") from exc

        try:
            self.blobs.delete(entry.blob_key)
        except (BlobStoreError, OSError) as exc:
            logger.error("Deleting blob %s of file %s failed; metadata kept for retry", entry.blob_key, file_id)
            raise StorageError("Failed to delete stored object") from exc

        try:
            self.files.delete_by_id(file_id)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to delete file metadata") from exc

        logger.info("Deleted file %s of %s (%d links)", file_id, owner_id, removed_links)
