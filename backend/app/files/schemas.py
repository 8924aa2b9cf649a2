"""Pydantic schemas and content helpers for file sharing.

- FileUploadResponse: API response after a successful upload
- file_message_content / parse_file_message_content: the
  ``originalName|fileUrl`` convention used as file-message content
"""
from typing import Optional, Tuple

from pydantic import BaseModel, Field

FILE_CONTENT_DELIMITER = "|"


class FileUploadResponse(BaseModel):
    """Response after successful file upload.

    Returned by POST /api/upload. Clients send ``fileUrl`` back as part of a
    file message's content.
    """
    fileUrl: str = Field(..., description="Path the file is served from")
    originalName: str = Field(..., description="Original filename")
    size: int = Field(..., description="File size in bytes")
    mimetype: str = Field(..., description="MIME type reported by the client")


def file_message_content(original_name: str, file_url: str) -> str:
    """Build the content of a file message.

    Example:
        >>> file_message_content("notes.txt", "/uploads/1a2b.txt")
        'notes.txt|/uploads/1a2b.txt'
    """
    return f"{original_name}{FILE_CONTENT_DELIMITER}{file_url}"


def parse_file_message_content(content: str) -> Optional[Tuple[str, str]]:
    """Split file-message content into ``(original_name, file_url)``.

    The URL is taken after the last delimiter, so original names that
    contain ``|`` survive. Returns None if there is no delimiter or either
    part is empty.
    """
    name, sep, url = content.rpartition(FILE_CONTENT_DELIMITER)
    if not sep or not name or not url:
        return None
    return name, url
