"""FastAPI router for file upload endpoints."""
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse

from app.auth.router import get_current_user
from app.storage.schemas import UserRecord

from .schemas import FileUploadResponse
from .service import FileRejected, FileStorageService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


@router.post("/api/upload", response_model=FileUploadResponse)
async def upload_file(
    file: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
) -> FileUploadResponse:
    """Upload a file to share in chat.

    Requires ``Authorization: Bearer <token>``. The response's ``fileUrl``
    and ``originalName`` form the content of the file message the client
    sends next.

    Raises:
        HTTPException 400: No file, or extension not allowed
        HTTPException 413: File exceeds the size limit
    """
    content = await file.read()
    service = FileStorageService.get_instance()
    try:
        result = await run_in_threadpool(
            service.store,
            filename=file.filename or "",
            content=content,
            mime_type=file.content_type or "application/octet-stream",
        )
    except FileRejected as e:
        logger.info(f"[Files] Upload from {user.id} rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    logger.info(f"[Files] {user.username} uploaded {result.originalName} ({result.size} bytes)")
    return result


@router.get("/uploads/{name}")
async def download_file(name: str):
    """Serve a stored upload.

    Raises:
        HTTPException 404: If file not found
    """
    path = FileStorageService.get_instance().path_for(name)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path=path)
