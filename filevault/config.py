"""Runtime configuration.

Values come from ``FILEVAULT_*`` environment variables (a local ``.env`` file is
loaded first). Every field has a default so the service starts with nothing set.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

ENV_PREFIX = "FILEVAULT_"


class Settings(BaseModel):
    """Service settings."""

    database_url: str = Field(default="sqlite:///data/files.db", description="SQLAlchemy database URL")
    upload_dir: str = Field(default="uploads", description="Root directory of the local blob store")
    log_dir: str = Field(default="logs", description="Directory for the rotating log file")
    log_level: str = Field(default="INFO", description="Level of the filevault logger")
    sniff_window_bytes: int = Field(default=16 * 1024, gt=0, description="Head bytes captured for type detection")
    max_upload_bytes: int = Field(default=0, ge=0, description="Upload size limit in bytes, 0 disables the limit")
    token_length: int = Field(default=32, ge=16, description="Length of download tokens")
    fallback_token_length: int = Field(default=40, ge=16, description="Token length used after repeated collisions")
    fsync_on_write: bool = Field(default=False, description="fsync blobs before reporting the write as done")
    link_purge_interval_seconds: int = Field(default=60, ge=0, description="Expired link purge period, 0 disables")
    base_url: str = Field(default="/", description="Prefix of generated download URLs")

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)


def get_settings() -> Settings:
    return Settings.from_env()
