"""Content-type sniffing from the first bytes of an upload."""

from __future__ import annotations

import logging
import mimetypes
from typing import Optional

import magic

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"

# libmagic answers these when it recognises nothing more specific
_GENERIC = {OCTET_STREAM, "text/plain", "inode/x-empty", "application/x-empty"}


def is_meaningful(content_type: Optional[str]) -> bool:
    """True for a non-blank content type other than the generic octet-stream marker."""
    if not content_type:
        return False
    value = content_type.strip().lower()
    return bool(value) and value != OCTET_STREAM


class TypeDetector:
    """libmagic on the head bytes, with the filename extension as fallback."""

    def detect(self, head: bytes, filename_hint: Optional[str] = None) -> Optional[str]:
        sniffed = self._from_content(head)
        if sniffed is None or sniffed in _GENERIC:
            guessed = mimetypes.guess_type(filename_hint)[0] if filename_hint else None
            if is_meaningful(guessed):
                return guessed
        if sniffed in ("inode/x-empty", "application/x-empty"):
            return None
        return sniffed if is_meaningful(sniffed) else None

    def _from_content(self, head: bytes) -> Optional[str]:
        if not head:
            return None
        try:
            return magic.from_buffer(head, mime=True)
        except magic.MagicException:
            logger.warning("libmagic could not classify %d head bytes", len(head), exc_info=True)
            return None
