"""Error taxonomy shared by the upload, rename, delete and download flows."""

from __future__ import annotations


class FileVaultError(Exception):
    """Base exception for expected, user-facing outcomes."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or str(self.args[0])


class DuplicateFileError(FileVaultError):
    """A file with the same name or content already exists for this owner."""

    kind = "UNKNOWN"
    status_code = 409

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"DUPLICATE_{self.kind}"


class DuplicateFilenameError(DuplicateFileError):
    """Filename already exists"""

    kind = "FILENAME"


class DuplicateContentError(DuplicateFileError):
    """File content already exists"""

    kind = "CONTENT"


class NotFoundError(FileVaultError):
    """File not found"""

    code = "NOT_FOUND"
    status_code = 404


class StaleUpdateError(FileVaultError):
    """File was modified concurrently, please retry"""

    code = "STALE_UPDATE"
    status_code = 409


class VirusDetectedError(FileVaultError):
    """Upload rejected by the malware scanner"""

    code = "VIRUS_DETECTED"
    status_code = 422


class ValidationError(FileVaultError):
    """Malformed input"""

    code = "VALIDATION_ERROR"
    status_code = 400


class PayloadTooLargeError(ValidationError):
    """Request body too large"""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413


class StorageError(FileVaultError):
    """Blob or metadata I/O failed"""

    code = "STORAGE_FAILURE"
    status_code = 500


class LinkIssueError(StorageError):
    """The file was stored but no download link could be issued."""

    def __init__(self, file_id: str, message: str = "") -> None:
        super().__init__(message or f"Could not issue a download link for file {file_id}")
        self.file_id = file_id
