"""Single-pass digest, size and head capture for upload streams."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from concurrent.futures import Future
from dataclasses import dataclass
import hashlib
from typing import BinaryIO, Union

from .errors import PayloadTooLargeError

DEFAULT_SNIFF_WINDOW = 16 * 1024
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class TeeDigest:
    sha256: str
    size: int
    head: bytes


class _ChunkReader:
    """File-like ``read`` over an iterable of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks = iter(chunks)
        self._pending = b""

    def read(self, size: int = -1) -> bytes:
        if size == 0:
            return b""
        if size is None or size < 0:
            data = self._pending + b"".join(self._chunks)
            self._pending = b""
            return data
        while not self._pending:
            try:
                self._pending = bytes(next(self._chunks))
            except StopIteration:
                return b""
        data, self._pending = self._pending[:size], self._pending[size:]
        return data


Source = Union[BinaryIO, Iterable[bytes]]


class DigestTee:
    """Hashes, counts and keeps the head of everything read through it.

    ``result`` resolves once the source has been read to the end; a consumer
    that stops early leaves it pending.
    """

    def __init__(self, source: Source, sniff_window: int = DEFAULT_SNIFF_WINDOW, max_bytes: int = 0) -> None:
        self._source = source if hasattr(source, "read") else _ChunkReader(source)  # type: ignore[arg-type]
        self._window = max(0, sniff_window)
        self._max_bytes = max_bytes
        self._sha256 = hashlib.sha256()
        self._size = 0
        self._head = bytearray()
        self.result: Future[TeeDigest] = Future()

    @property
    def bytes_seen(self) -> int:
        return self._size

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        # an empty chunk only means end of stream when something was asked for
        if size == 0 or self.result.done():
            return b""
        chunk = self._source.read(size)
        if not chunk:
            self.result.set_result(TeeDigest(self._sha256.hexdigest(), self._size, bytes(self._head)))
            return b""
        self._observe(chunk)
        return chunk

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    def _observe(self, chunk: bytes) -> None:
        self._size += len(chunk)
        if self._max_bytes and self._size > self._max_bytes:
            raise PayloadTooLargeError(f"Upload exceeds the {self._max_bytes} byte limit")
        self._sha256.update(chunk)
        missing = self._window - len(self._head)
        if missing > 0:
            self._head += chunk[:missing]
