"""Metadata store over SQLAlchemy; unique indexes arbitrate concurrent writers."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import re
from typing import Iterator, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .models import UNIQ_OWNER_FILENAME, UNIQ_OWNER_SHA256, UNIQ_TOKEN, DownloadLink, FileEntry, Visibility

logger = logging.getLogger(__name__)

FILENAME = "filename"
CONTENT = "content"
TOKEN = "token"

_BY_INDEX = {UNIQ_OWNER_FILENAME: FILENAME, UNIQ_OWNER_SHA256: CONTENT, UNIQ_TOKEN: TOKEN}
_BY_COLUMN = (("content_sha256", CONTENT), ("filename_lc", FILENAME), ("token", TOKEN))
_SQLITE_PREFIX = "unique constraint failed:"


class MetadataStoreError(Exception):
    pass


class UniquenessViolation(MetadataStoreError):
    def __init__(self, constraint: Optional[str], message: str = "") -> None:
        super().__init__(message or f"unique constraint violated: {constraint or 'unknown'}")
        self.constraint = constraint


class StaleVersion(MetadataStoreError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def violated_constraint(exc: IntegrityError) -> Optional[str]:
    """Map a driver's unique-violation message onto FILENAME, CONTENT or TOKEN.

    PostgreSQL and MySQL report the index name, SQLite reports the columns.
    Returns None for integrity errors that are not unique violations.
    """
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name in _BY_INDEX:
        return _BY_INDEX[name]

    message = str(exc.orig if exc.orig is not None else exc)
    lowered = message.lower()
    if "unique" not in lowered and "duplicate" not in lowered:
        return None
    # only the first line names the constraint; DETAIL lines echo row values
    first_line = lowered.splitlines()[0] if lowered else ""
    # MySQL quotes the offending values before "for key"
    key_part = first_line.rsplit(" for key ", 1)[-1]
    for index, constraint in _BY_INDEX.items():
        if re.search(rf"\b{index}\b", key_part):
            return constraint

    if first_line.startswith(_SQLITE_PREFIX):
        columns = {col.strip().rsplit(".", 1)[-1] for col in first_line[len(_SQLITE_PREFIX):].split(",")}
        for marker, constraint in _BY_COLUMN:
            if marker in columns:
                return constraint
    return None


class _Repository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        with self._session() as session:
            try:
                yield session
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise UniquenessViolation(violated_constraint(exc), str(exc.orig)) from exc
            except SQLAlchemyError:
                session.rollback()
                raise


class FileEntryRepository(_Repository):
    def get(self, file_id: str) -> Optional[FileEntry]:
        with self._session() as session:
            return session.get(FileEntry, file_id)

    def find_by_owner_and_digest(self, owner_id: str, sha256: str) -> Optional[FileEntry]:
        with self._session() as session:
            stmt = select(FileEntry).where(FileEntry.owner_id == owner_id, FileEntry.content_sha256 == sha256)
            return session.scalars(stmt).first()

    def find_by_owner_and_name_lower(self, owner_id: str, filename_lc: str) -> Optional[FileEntry]:
        with self._session() as session:
            stmt = select(FileEntry).where(FileEntry.owner_id == owner_id, FileEntry.filename_lc == filename_lc)
            return session.scalars(stmt).first()

    def insert(self, entry: FileEntry) -> FileEntry:
        """Insert a new entry; raises UniquenessViolation on either owner-scoped rule."""
        with self._transaction() as session:
            session.add(entry)
        with self._session() as session:
            session.add(entry)
            session.refresh(entry)
        return entry

    def update_with_version_check(self, entry: FileEntry, **changes) -> FileEntry:
        """Apply ``changes`` only if the row still carries ``entry.version``.

        Raises StaleVersion when another writer got there first and
        UniquenessViolation when the new values collide with another row.
        """
        values = dict(changes)
        values["updated_at"] = utcnow()
        stmt = (
            update(FileEntry)
            .where(FileEntry.id == entry.id, FileEntry.version == entry.version)
            .values(version=FileEntry.version + 1, **values)
        )
        with self._transaction() as session:
            result = session.execute(stmt)
            if result.rowcount != 1:
                raise StaleVersion(f"FileEntry {entry.id} is no longer at version {entry.version}")
        updated = self.get(entry.id)
        if updated is None:
            raise StaleVersion(f"FileEntry {entry.id} was deleted concurrently")
        return updated

    def delete_by_id(self, file_id: str) -> bool:
        with self._transaction() as session:
            result = session.execute(delete(FileEntry).where(FileEntry.id == file_id))
        return result.rowcount > 0

    def list_by_owner(self, owner_id: str) -> list[FileEntry]:
        with self._session() as session:
            stmt = select(FileEntry).where(FileEntry.owner_id == owner_id).order_by(FileEntry.created_at.desc())
            return list(session.scalars(stmt))

    def list_by_visibility(self, visibility: Visibility) -> list[FileEntry]:
        with self._session() as session:
            stmt = select(FileEntry).where(FileEntry.visibility == visibility).order_by(FileEntry.created_at.desc())
            return list(session.scalars(stmt))


class DownloadLinkRepository(_Repository):
    def insert(self, link: DownloadLink) -> DownloadLink:
        with self._transaction() as session:
            session.add(link)
        with self._session() as session:
            session.add(link)
            session.refresh(link)
        return link

    def find_by_token(self, token: str) -> Optional[DownloadLink]:
        with self._session() as session:
            return session.scalars(select(DownloadLink).where(DownloadLink.token == token)).first()

    def list_by_file_id(self, file_id: str) -> list[DownloadLink]:
        with self._session() as session:
            return list(session.scalars(select(DownloadLink).where(DownloadLink.file_id == file_id)))

    def increment_access_count(self, token: str) -> None:
        stmt = (
            update(DownloadLink)
            .where(DownloadLink.token == token)
            .values(access_count=DownloadLink.access_count + 1)
        )
        with self._transaction() as session:
            session.execute(stmt)

    def delete_by_file_id(self, file_id: str) -> int:
        with self._transaction() as session:
            result = session.execute(delete(DownloadLink).where(DownloadLink.file_id == file_id))
        return result.rowcount

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        stmt = delete(DownloadLink).where(DownloadLink.expires_at.is_not(None), DownloadLink.expires_at <= now)
        with self._transaction() as session:
            result = session.execute(stmt)
        if result.rowcount:
            logger.info("Purged %d expired download links", result.rowcount)
        return result.rowcount
