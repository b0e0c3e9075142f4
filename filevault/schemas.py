from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .models import Visibility


class FileEntryBase(BaseModel):
    filename: str
    content_type: str
    size: int
    visibility: Visibility
    tags: List[str] = []


class FileEntryResponse(FileEntryBase):
    id: str
    owner_id: str
    content_sha256: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int

    class Config:
        from_attributes = True


class FileListResponse(BaseModel):
    count: int
    files: List[FileEntryResponse]


class UploadResponse(BaseModel):
    file_id: str
    download_url: str


class LinkResponse(BaseModel):
    token: str
    download_url: str
    expires_at: Optional[datetime] = None


class RenameRequest(BaseModel):
    filename: str


class LinkRequest(BaseModel):
    expires_in_seconds: Optional[int] = None


class ErrorResponse(BaseModel):
    code: str
    detail: str
