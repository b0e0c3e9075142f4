import enum
import uuid

from sqlalchemy import JSON, BigInteger, Column, DateTime, Enum, Index, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base

MAX_TAGS = 5

# names of the unique indexes, used to tell which rule an insert violated
UNIQ_OWNER_FILENAME = "uniq_owner_filename"
UNIQ_OWNER_SHA256 = "uniq_owner_sha256"
UNIQ_TOKEN = "uniq_token"


class Visibility(str, enum.Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"

    @classmethod
    def parse(cls, value):
        if value is None or value == "":
            return cls.PRIVATE
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown visibility: {value!r}") from None


def new_id():
    return uuid.uuid4().hex


def normalize_tags(tags):
    """Lower-case, trim, drop blanks and duplicates, keep at most MAX_TAGS."""
    cleaned = []
    for tag in tags or []:
        if tag is None:
            continue
        value = str(tag).strip().lower()
        if value and value not in cleaned:
            cleaned.append(value)
            if len(cleaned) == MAX_TAGS:
                break
    return cleaned


class FileEntry(Base):
    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("owner_id", "filename_lc", name=UNIQ_OWNER_FILENAME),
        UniqueConstraint("owner_id", "content_sha256", name=UNIQ_OWNER_SHA256),
        Index("idx_files_visibility", "visibility"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(128), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    filename_lc = Column(String(255), nullable=False)
    content_type = Column(String(255), nullable=False)
    size = Column(BigInteger, nullable=False)
    visibility = Column(Enum(Visibility, name="visibility"), nullable=False, default=Visibility.PRIVATE)
    tags = Column(JSON, nullable=False, default=list)
    blob_key = Column(String(255), nullable=False)
    content_sha256 = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
    version = Column(Integer, nullable=False, default=1)

    def set_filename(self, filename):
        self.filename = filename
        self.filename_lc = filename.lower()

    def __repr__(self):
        return f"<FileEntry(id={self.id}, owner_id={self.owner_id}, filename={self.filename}, version={self.version})>"


class DownloadLink(Base):
    __tablename__ = "download_links"
    __table_args__ = (UniqueConstraint("token", name=UNIQ_TOKEN),)

    id = Column(String(32), primary_key=True, default=new_id)
    token = Column(String(64), nullable=False)
    file_id = Column(String(32), nullable=False, index=True)
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    access_count = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<DownloadLink(id={self.id}, file_id={self.file_id}, access_count={self.access_count})>"
