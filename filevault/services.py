"""Service facade.

``FileService`` wires the stores and the individual flows together so the web
layer depends on a single object.
"""

from __future__ import annotations

from datetime import timedelta
import logging
import threading
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .blobstore import BlobStore, LocalBlobStore
from .config import Settings
from .database import create_db_engine, init_db, make_session_factory
from .deletion import DeletionOrchestrator
from .detection import TypeDetector
from .errors import NotFoundError, StorageError
from .ingestion import IngestionPipeline, UploadCommand, UploadResult
from .listing import FileLister
from .models import DownloadLink, FileEntry, Visibility
from .rename import RenameArbiter
from .repository import DownloadLinkRepository, FileEntryRepository
from .retrieval import DownloadResult, RetrievalResolver
from .scanner import VirusScanner
from .tee import Source
from .tokens import LinkIssuer

logger = logging.getLogger(__name__)


class FileService:
    def __init__(
        self,
        files: FileEntryRepository,
        links: DownloadLinkRepository,
        blobs: BlobStore,
        settings: Optional[Settings] = None,
        detector: Optional[TypeDetector] = None,
        scanner: Optional[VirusScanner] = None,
    ) -> None:
        settings = settings or Settings()
        self.settings = settings
        self.files = files
        self.links = links
        self.blobs = blobs
        self.link_issuer = LinkIssuer(
            links,
            token_length=settings.token_length,
            fallback_token_length=settings.fallback_token_length,
        )
        self.ingestion = IngestionPipeline(
            files,
            blobs,
            self.link_issuer,
            detector=detector,
            scanner=scanner,
            sniff_window=settings.sniff_window_bytes,
            max_upload_bytes=settings.max_upload_bytes,
        )
        self.deletion = DeletionOrchestrator(files, links, blobs)
        self.retrieval = RetrievalResolver(files, links, blobs)
        self.renamer = RenameArbiter(files)
        self.lister = FileLister(files)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "FileService":
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)
        blobs = LocalBlobStore(settings.upload_dir, fsync_on_write=settings.fsync_on_write)
        return cls(
            FileEntryRepository(session_factory),
            DownloadLinkRepository(session_factory),
            blobs,
            settings=settings,
            **kwargs,
        )

    def upload(
        self,
        owner_id: str,
        filename: str,
        visibility: Visibility | str | None,
        tags: Optional[Iterable[str]],
        content_type_hint: Optional[str],
        stream: Source,
    ) -> UploadResult:
        return self.ingestion.upload(
            UploadCommand(
                owner_id=owner_id,
                filename=filename,
                stream=stream,
                visibility=visibility,
                tags=tags or [],
                content_type_hint=content_type_hint,
            )
        )

    def delete(self, owner_id: str, file_id: str) -> None:
        self.deletion.delete(owner_id, file_id)

    def rename(self, owner_id: str, file_id: str, new_name: str) -> FileEntry:
        return self.renamer.rename(owner_id, file_id, new_name)

    def resolve_token(self, token: str) -> DownloadResult:
        return self.retrieval.resolve(token)

    def create_link(self, owner_id: str, file_id: str, expires_in: Optional[timedelta] = None) -> DownloadLink:
        try:
            entry = self.files.get(file_id)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to load file metadata") from exc
        if entry is None or entry.owner_id != owner_id:
            raise NotFoundError("File not found")
        return self.link_issuer.issue(file_id, owner_id, expires_in=expires_in)

    def list_mine(self, owner_id: str, tag: Optional[str] = None) -> list[FileEntry]:
        return self.lister.list_mine(owner_id, tag)

    def list_public(self, tag: Optional[str] = None) -> list[FileEntry]:
        return self.lister.list_public(tag)

    def purge_expired_links(self) -> int:
        return self.links.purge_expired()


class LinkPurger:
    """Background thread removing expired download links every ``interval`` seconds."""

    def __init__(self, service: FileService, interval: float) -> None:
        self.service = service
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.interval <= 0 or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="filevault-link-purger", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.service.purge_expired_links()
            except SQLAlchemyError:
                logger.exception("Purging expired download links failed")
