from contextlib import asynccontextmanager
from datetime import timedelta
import logging
from typing import List, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Form, Header, Request, Response, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from . import schemas
from .config import Settings, get_settings
from .errors import FileVaultError, LinkIssueError
from .logging_config import setup_logging
from .services import FileService, LinkPurger

logger = logging.getLogger("filevault.api")

STREAM_CHUNK = 64 * 1024


def normalize_base_url(base_url):
    base = (base_url or "/").strip()
    if not base.startswith("/") and "://" not in base:
        base = "/" + base
    return base.rstrip("/")


def safe_ascii(name):
    return "".join(c if 32 <= ord(c) <= 126 and c not in '"\\' else "_" for c in name)


def content_disposition(filename):
    # ASCII fallback plus RFC 5987 filename* for everything else
    return f"attachment; filename=\"{safe_ascii(filename)}\"; filename*=UTF-8''{quote(filename, safe='')}"


def iter_stream(stream):
    try:
        while True:
            chunk = stream.read(STREAM_CHUNK)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


def create_app(settings: Optional[Settings] = None, service: Optional[FileService] = None) -> FastAPI:
    """
    Build the API. Run with ``uvicorn filevault.main:create_app --factory``.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    service = service or FileService.from_settings(settings)
    purger = LinkPurger(service, settings.link_purge_interval_seconds)
    base_url = normalize_base_url(settings.base_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        purger.start()
        try:
            yield
        finally:
            purger.stop()

    app = FastAPI(title="filevault", lifespan=lifespan)
    app.state.service = service
    app.state.settings = settings

    def get_service() -> FileService:
        return service

    def download_url(token):
        return f"{base_url}/download/{token}"

    @app.get("/")
    def root():
        return {"status": "API running"}

    @app.post("/files", response_model=schemas.UploadResponse, status_code=201)
    def upload_file(
        request: Request,
        file: UploadFile = File(...),
        filename: Optional[str] = Form(None),
        visibility: str = Form("PRIVATE"),
        tag: Optional[List[str]] = Form(None),
        x_user_id: str = Header(...),
        svc: FileService = Depends(get_service),
    ):
        name = filename if filename is not None else file.filename
        if not name:
            client = request.client.host if request.client else "unknown"
            logger.warning("Missing filename from %s", client)

        try:
            result = svc.upload(x_user_id, name, visibility, tag, file.content_type, file.file)
        finally:
            file.file.close()
        return schemas.UploadResponse(file_id=result.file_id, download_url=download_url(result.token))

    @app.get("/files/me", response_model=schemas.FileListResponse)
    def list_my_files(tag: Optional[str] = None, x_user_id: str = Header(...), svc: FileService = Depends(get_service)):
        files = svc.list_mine(x_user_id, tag)
        return {"count": len(files), "files": files}

    @app.get("/files/public", response_model=schemas.FileListResponse)
    def list_public_files(tag: Optional[str] = None, svc: FileService = Depends(get_service)):
        files = svc.list_public(tag)
        return {"count": len(files), "files": files}

    @app.patch("/files/{file_id}/rename", response_model=schemas.FileEntryResponse)
    def rename_file(
        file_id: str,
        body: schemas.RenameRequest,
        x_user_id: str = Header(...),
        svc: FileService = Depends(get_service),
    ):
        return svc.rename(x_user_id, file_id, body.filename)

    @app.delete("/files/{file_id}", status_code=204)
    def delete_file(file_id: str, x_user_id: str = Header(...), svc: FileService = Depends(get_service)):
        svc.delete(x_user_id, file_id)
        return Response(status_code=204)

    @app.post("/files/{file_id}/links", response_model=schemas.LinkResponse, status_code=201)
    def create_link(
        file_id: str,
        body: Optional[schemas.LinkRequest] = None,
        x_user_id: str = Header(...),
        svc: FileService = Depends(get_service),
    ):
        expires_in = None
        if body is not None and body.expires_in_seconds:
            expires_in = timedelta(seconds=body.expires_in_seconds)
        link = svc.create_link(x_user_id, file_id, expires_in=expires_in)
        return schemas.LinkResponse(token=link.token, download_url=download_url(link.token), expires_at=link.expires_at)

    @app.get("/download/{token}")
    def download_file(token: str, svc: FileService = Depends(get_service)):
        res = svc.resolve_token(token)
        headers = {
            "Content-Disposition": content_disposition(res.filename),
            "Content-Length": str(res.size),
            "X-Content-Type-Options": "nosniff",
        }
        return StreamingResponse(iter_stream(res.stream), media_type=res.content_type, headers=headers)

    @app.exception_handler(FileVaultError)
    async def file_vault_error(request: Request, exc: FileVaultError):
        if isinstance(exc, LinkIssueError):
            logger.error("File %s stored without a download link", exc.file_id)
        body = schemas.ErrorResponse(code=exc.code, detail=exc.message)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    @app.exception_handler(Exception)
    async def global_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    return app
