from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import BinaryIO

from sqlalchemy.exc import SQLAlchemyError

from .blobstore import BlobNotFoundError, BlobStore, BlobStoreError
from .detection import OCTET_STREAM
from .errors import NotFoundError, StorageError
from .repository import DownloadLinkRepository, FileEntryRepository, MetadataStoreError

logger = logging.getLogger(__name__)


@dataclass
class DownloadResult:
    filename: str
    content_type: str
    size: int
    stream: BinaryIO


class RetrievalResolver:
    """Resolves a download token to an open blob.

    A missing link, file or blob all produce the same NotFoundError so a token
    reveals nothing about why it stopped working.
    """

    def __init__(self, files: FileEntryRepository, links: DownloadLinkRepository, blobs: BlobStore) -> None:
        self.files = files
        self.links = links
        self.blobs = blobs

    def resolve(self, token: str) -> DownloadResult:
        not_found = NotFoundError("Download link not found")
        if not token:
            raise not_found
        try:
            link = self.links.find_by_token(token)
            entry = self.files.get(link.file_id) if link is not None else None
        except SQLAlchemyError as exc:
            raise StorageError("Failed to resolve download token") from exc
        if entry is None:
            raise not_found

        try:
            stream = self.blobs.open(entry.blob_key)
        except BlobNotFoundError:
            logger.warning("File %s references missing blob %s", entry.id, entry.blob_key)
            raise not_found from None
        except (BlobStoreError, OSError) as exc:
            raise StorageError("Failed to open stored object") from exc

        self._count_access(token)
        return DownloadResult(
            filename=entry.filename,
            content_type=entry.content_type or OCTET_STREAM,
            size=entry.size,
            stream=stream,
        )

    def _count_access(self, token: str) -> None:
        # the counter is observability only, the download goes ahead regardless
        try:
            self.links.increment_access_count(token)
        except (MetadataStoreError, SQLAlchemyError):
            logger.warning("Could not increment access count for a download link", exc_info=True)
