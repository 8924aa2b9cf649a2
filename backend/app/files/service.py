"""File storage service.

Handles validation and storage of uploads on disk.
Files are stored in: {upload_dir}/{uuid}.{ext}
"""
import logging
import uuid
from pathlib import Path
from typing import List, Optional

from app.config import get_config

from .schemas import FileUploadResponse

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/uploads"


class FileRejected(ValueError):
    """Upload refused.

    Attributes:
        status_code: HTTP status the router maps this to (400 or 413).
    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class FileStorageService:
    """Service for validating and storing uploaded files."""

    _instance: Optional["FileStorageService"] = None

    def __init__(
        self,
        upload_dir: str = "uploads",
        max_size_bytes: int = 5 * 1024 * 1024,
        allowed_extensions: Optional[List[str]] = None,
    ) -> None:
        self._upload_dir = Path(upload_dir)
        self.max_size_bytes = max_size_bytes
        self.allowed_extensions = allowed_extensions or [
            "jpeg", "jpg", "png", "gif", "pdf", "doc", "docx", "txt",
        ]
        self._ensure_upload_dir()

    @classmethod
    def get_instance(cls) -> "FileStorageService":
        """Get or create the singleton instance from the uploads config."""
        if cls._instance is None:
            uploads = get_config().uploads
            cls._instance = cls(
                upload_dir=uploads.upload_dir,
                max_size_bytes=uploads.max_size_bytes,
                allowed_extensions=uploads.allowed_extensions,
            )
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        cls._instance = None

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    def _ensure_upload_dir(self) -> None:
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    def store(self, filename: str, content: bytes, mime_type: str) -> FileUploadResponse:
        """Validate and save an uploaded file.

        Args:
            filename: Original filename
            content: File content as bytes
            mime_type: MIME type reported by the client

        Returns:
            FileUploadResponse with the serving URL

        Raises:
            FileRejected: 400 for a missing name or disallowed extension,
                413 if the file exceeds the size limit
        """
        if not filename:
            raise FileRejected("No file uploaded")

        ext = Path(filename).suffix.lower().lstrip(".")
        if ext not in self.allowed_extensions:
            raise FileRejected("Only images and documents are allowed!")

        size = len(content)
        if size > self.max_size_bytes:
            raise FileRejected(
                f"File size ({size} bytes) exceeds limit ({self.max_size_bytes} bytes)",
                status_code=413,
            )

        stored_name = f"{uuid.uuid4().hex}.{ext}"
        self._ensure_upload_dir()
        (self._upload_dir / stored_name).write_bytes(content)
        logger.info(f"[Files] Saved {filename!r} as {stored_name} ({size} bytes)")

        return FileUploadResponse(
            fileUrl=f"{UPLOAD_URL_PREFIX}/{stored_name}",
            originalName=filename,
            size=size,
            mimetype=mime_type,
        )

    def path_for(self, stored_name: str) -> Optional[Path]:
        """Disk path of a stored file, or None if absent or not a plain name."""
        if not stored_name or Path(stored_name).name != stored_name or stored_name.startswith("."):
            return None
        path = self._upload_dir / stored_name
        if not path.is_file():
            return None
        return path
