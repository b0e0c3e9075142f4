"""Upload ingestion: store through the tee, then commit against the unique indexes."""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
import logging
from typing import Iterable, Optional
import uuid

from sqlalchemy.exc import SQLAlchemyError

from .blobstore import BlobStore, BlobStoreError, StoredBlob
from .detection import OCTET_STREAM, TypeDetector, is_meaningful
from .errors import (
    DuplicateContentError,
    DuplicateFilenameError,
    FileVaultError,
    StorageError,
    ValidationError,
    VirusDetectedError,
)
from .models import FileEntry, Visibility, normalize_tags
from .repository import CONTENT, FILENAME, FileEntryRepository, UniquenessViolation
from .scanner import NoOpVirusScanner, Verdict, VirusScanner
from .tee import DEFAULT_SNIFF_WINDOW, DigestTee, Source, TeeDigest
from .tokens import LinkIssuer

logger = logging.getLogger(__name__)


class IngestionState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    STORING = "STORING"
    HASHED = "HASHED"
    DUPLICATE_CHECK = "DUPLICATE_CHECK"
    SCANNING = "SCANNING"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    DUPLICATE_REJECTED = "DUPLICATE_REJECTED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


@dataclass
class UploadCommand:
    owner_id: str
    filename: str
    stream: Source
    visibility: Visibility = Visibility.PRIVATE
    tags: Iterable[str] = field(default_factory=list)
    content_type_hint: Optional[str] = None


@dataclass(frozen=True)
class UploadResult:
    file_id: str
    token: str
    filename: str


def normalize_filename(name: Optional[str]) -> str:
    """Trim and validate a display filename."""
    if name is None or not name.strip():
        raise ValidationError("Filename must not be blank")
    if "/" in name or "\\" in name:
        raise ValidationError("Filename must not contain path separators")
    return name.strip()


class _Attempt:
    """Book-keeping for one upload run."""

    def __init__(self, cmd: UploadCommand) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.cmd = cmd
        self.state = IngestionState.RECEIVED
        self.blob: Optional[StoredBlob] = None

    def advance(self, state: IngestionState) -> None:
        logger.debug("upload %s: %s -> %s", self.id, self.state.value, state.value)
        self.state = state


class IngestionPipeline:
    def __init__(
        self,
        files: FileEntryRepository,
        blobs: BlobStore,
        link_issuer: LinkIssuer,
        detector: Optional[TypeDetector] = None,
        scanner: Optional[VirusScanner] = None,
        sniff_window: int = DEFAULT_SNIFF_WINDOW,
        max_upload_bytes: int = 0,
    ) -> None:
        self.files = files
        self.blobs = blobs
        self.link_issuer = link_issuer
        self.detector = detector or TypeDetector()
        self.scanner = scanner or NoOpVirusScanner()
        self.sniff_window = sniff_window
        self.max_upload_bytes = max_upload_bytes

    def upload(self, cmd: UploadCommand) -> UploadResult:
        attempt = _Attempt(cmd)
        try:
            result = self._run(attempt)
        except (DuplicateFilenameError, DuplicateContentError) as exc:
            attempt.advance(IngestionState.DUPLICATE_REJECTED)
            logger.warning("Upload of %r by %s rejected: %s", cmd.filename, cmd.owner_id, exc.message)
            raise
        except StorageError:
            if attempt.state != IngestionState.COMMITTED:
                attempt.advance(IngestionState.FAILED)
            logger.exception("Upload of %r by %s failed", cmd.filename, cmd.owner_id)
            raise
        except FileVaultError as exc:
            attempt.advance(IngestionState.REJECTED)
            logger.warning("Upload of %r by %s rejected: %s", cmd.filename, cmd.owner_id, exc.message)
            raise
        logger.info("Uploaded %s for %s as %s", result.filename, cmd.owner_id, result.file_id)
        return result

    def _run(self, attempt: _Attempt) -> UploadResult:
        try:
            return self._ingest(attempt)
        except SQLAlchemyError as exc:
            # only the advisory lookups get here; insert and link errors are mapped where they happen
            self._discard_blob(attempt)
            raise StorageError("Metadata store unavailable") from exc
        except BaseException:
            if attempt.state != IngestionState.COMMITTED:
                self._discard_blob(attempt)
            raise

    def _ingest(self, attempt: _Attempt) -> UploadResult:
        cmd = attempt.cmd
        if cmd.owner_id is None or not str(cmd.owner_id).strip():
            raise ValidationError("Owner id is required")
        filename = normalize_filename(cmd.filename)
        filename_lc = filename.lower()
        try:
            visibility = Visibility.parse(cmd.visibility)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        tags = normalize_tags(cmd.tags)

        if self.files.find_by_owner_and_name_lower(cmd.owner_id, filename_lc) is not None:
            raise DuplicateFilenameError("Filename already exists")

        attempt.advance(IngestionState.STORING)
        tee = DigestTee(cmd.stream, sniff_window=self.sniff_window, max_bytes=self.max_upload_bytes)
        stored, digest = self._store(attempt, tee, filename)

        attempt.advance(IngestionState.HASHED)
        size = stored.size if stored.size >= 0 else digest.size

        attempt.advance(IngestionState.DUPLICATE_CHECK)
        if self.files.find_by_owner_and_digest(cmd.owner_id, digest.sha256) is not None:
            self._discard_blob(attempt)
            raise DuplicateContentError("File content already exists")

        attempt.advance(IngestionState.SCANNING)
        self._scan(attempt)

        attempt.advance(IngestionState.COMMITTING)
        entry = FileEntry(
            owner_id=cmd.owner_id,
            filename=filename,
            filename_lc=filename_lc,
            content_type=self._resolve_content_type(cmd.content_type_hint, digest.head, filename),
            size=size,
            visibility=visibility,
            tags=tags,
            blob_key=stored.key,
            content_sha256=digest.sha256,
        )
        entry = self._commit(attempt, entry)
        attempt.advance(IngestionState.COMMITTED)

        # the entry stays committed even if no link can be issued
        link = self.link_issuer.issue(entry.id, cmd.owner_id)
        return UploadResult(file_id=entry.id, token=link.token, filename=entry.filename)

    def _store(self, attempt: _Attempt, tee: DigestTee, filename: str) -> tuple[StoredBlob, TeeDigest]:
        cmd = attempt.cmd
        try:
            stored = self.blobs.store(tee, filename, cmd.content_type_hint, {"owner_id": cmd.owner_id})
        except (BlobStoreError, OSError) as exc:
            raise StorageError("Failed to store upload") from exc
        attempt.blob = stored
        if not tee.result.done():
            self._discard_blob(attempt)
            raise StorageError("Blob store returned before the upload stream was drained")
        return stored, tee.result.result()

    def _scan(self, attempt: _Attempt) -> None:
        try:
            stream = self.blobs.open(attempt.blob.key)
        except (BlobStoreError, OSError) as exc:
            self._discard_blob(attempt)
            raise StorageError("Failed to read back upload for scanning") from exc
        try:
            with stream:
                report = self.scanner.scan(stream)
        except Exception as exc:
            logger.warning("upload %s: scanner failed", attempt.id, exc_info=True)
            self._discard_blob(attempt)
            raise VirusDetectedError(f"Virus scan error: {exc}") from exc
        if report.verdict == Verdict.INFECTED:
            self._discard_blob(attempt)
            raise VirusDetectedError(f"Upload rejected: {report.details}")
        if report.verdict == Verdict.ERROR:
            self._discard_blob(attempt)
            raise VirusDetectedError(f"Virus scan error: {report.details}")

    def _commit(self, attempt: _Attempt, entry: FileEntry) -> FileEntry:
        try:
            return self.files.insert(entry)
        except UniquenessViolation as exc:
            self._discard_blob(attempt)
            if exc.constraint == CONTENT:
                raise DuplicateContentError("File content already exists") from exc
            if exc.constraint == FILENAME:
                raise DuplicateFilenameError("Filename already exists") from exc
            raise StorageError("Metadata insert rejected") from exc
        except SQLAlchemyError as exc:
            self._discard_blob(attempt)
            raise StorageError("Failed to persist file metadata") from exc

    def _resolve_content_type(self, hint: Optional[str], head: bytes, filename: str) -> str:
        if is_meaningful(hint):
            return hint.strip()
        detected = self.detector.detect(head, filename)
        return detected if is_meaningful(detected) else OCTET_STREAM

    def _discard_blob(self, attempt: _Attempt) -> None:
        """Compensating delete; a failure here is logged, never raised over the original error."""
        if attempt.blob is None:
            return
        key = attempt.blob.key
        try:
            self.blobs.delete(key)
        except (BlobStoreError, OSError):
            logger.exception("upload %s: could not delete orphan blob %s", attempt.id, key)
        else:
            attempt.blob = None
            logger.debug("upload %s: deleted blob %s", attempt.id, key)
