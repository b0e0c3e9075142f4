from pathlib import Path

from fastapi.testclient import TestClient
import pytest

from filevault.config import Settings
from filevault.main import create_app
from filevault.services import FileService


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'db' / 'files.db'}",
        upload_dir=str(tmp_path / "uploads"),
        log_dir=str(tmp_path / "logs"),
        link_purge_interval_seconds=0,
    )


@pytest.fixture
def service(settings: Settings) -> FileService:
    return FileService.from_settings(settings)


@pytest.fixture
def blob_files(settings: Settings):
    """Return the files currently held by the local blob store."""

    def _list() -> list[Path]:
        return [p for p in Path(settings.upload_dir).rglob("*") if p.is_file()]

    return _list


@pytest.fixture
def client(settings: Settings, service: FileService) -> TestClient:
    return TestClient(create_app(settings, service=service))
