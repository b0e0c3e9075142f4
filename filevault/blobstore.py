from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shutil
from typing import BinaryIO, Mapping, Optional, Protocol
import uuid

logger = logging.getLogger(__name__)

COPY_BUFSIZE = 64 * 1024


class BlobStoreError(Exception):
    pass


class BlobNotFoundError(BlobStoreError):
    pass


@dataclass(frozen=True)
class StoredBlob:
    key: str
    size: int


class BlobStore(Protocol):
    def store(
        self,
        stream: BinaryIO,
        filename_hint: Optional[str] = None,
        content_type_hint: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> StoredBlob: ...

    def open(self, key: str) -> BinaryIO: ...

    def delete(self, key: str) -> None: ...


class LocalBlobStore:
    def __init__(self, root: str | Path = "uploads", fsync_on_write: bool = False) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.fsync_on_write = fsync_on_write

    def store(self, stream, filename_hint=None, content_type_hint=None, metadata=None) -> StoredBlob:
        key = self._new_key()
        target = self._path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with target.open("xb") as out:
                shutil.copyfileobj(stream, out, COPY_BUFSIZE)
                out.flush()
                if self.fsync_on_write:
                    os.fsync(out.fileno())
        except BaseException:
            # abandoned writes must not leave a partial object behind
            target.unlink(missing_ok=True)
            raise
        size = target.stat().st_size
        logger.debug("Stored blob %s (%d bytes, hint=%r)", key, size, filename_hint)
        return StoredBlob(key=key, size=size)

    def open(self, key: str) -> BinaryIO:
        path = self._path(key)
        try:
            return path.open("rb")
        except FileNotFoundError as exc:
            raise BlobNotFoundError(key) from exc
        except OSError as exc:
            raise BlobStoreError(f"Failed to open blob {key}") from exc

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStoreError(f"Failed to delete blob {key}") from exc
        # drop emptied fan-out directories
        parent = path.parent
        for _ in range(2):
            if parent == self.root:
                break
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    def _new_key(self) -> str:
        name = uuid.uuid4().hex
        return f"{name[:2]}/{name[2:4]}/{name}"

    def _path(self, key: str) -> Path:
        cleaned = key.strip().replace("\\", "/").lstrip("/")
        path = (self.root / cleaned).resolve()
        if path == self.root or self.root not in path.parents:
            raise BlobStoreError(f"Refusing to escape blob root: {key}")
        return path
