"""Download token generation and link issuance."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
import secrets
import string
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import LinkIssueError
from .models import DownloadLink
from .repository import TOKEN, DownloadLinkRepository, UniquenessViolation, utcnow

logger = logging.getLogger(__name__)

ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
TOKEN_LENGTH = 32
FALLBACK_TOKEN_LENGTH = 40


def generate_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


class LinkIssuer:
    """Creates DownloadLinks, regenerating the token on a collision.

    Two attempts at the regular length are followed by one at the fallback
    length. The file the link points to is never touched here.
    """

    def __init__(
        self,
        links: DownloadLinkRepository,
        token_length: int = TOKEN_LENGTH,
        fallback_token_length: int = FALLBACK_TOKEN_LENGTH,
        token_factory: Callable[[int], str] = generate_token,
    ) -> None:
        self.links = links
        self.token_length = token_length
        self.fallback_token_length = fallback_token_length
        self.token_factory = token_factory

    def issue(self, file_id: str, owner_id: str, expires_in: Optional[timedelta] = None) -> DownloadLink:
        expires_at: Optional[datetime] = utcnow() + expires_in if expires_in else None
        lengths = (self.token_length, self.token_length, self.fallback_token_length)
        for attempt, length in enumerate(lengths, start=1):
            link = DownloadLink(
                token=self.token_factory(length),
                file_id=file_id,
                created_by=owner_id,
                expires_at=expires_at,
            )
            try:
                return self.links.insert(link)
            except UniquenessViolation as exc:
                if exc.constraint != TOKEN:
                    raise LinkIssueError(file_id) from exc
                logger.warning("Download token collision for file %s (attempt %d)", file_id, attempt)
            except SQLAlchemyError as exc:
                raise LinkIssueError(file_id) from exc
        raise LinkIssueError(file_id, f"Token collisions exhausted for file {file_id}")
