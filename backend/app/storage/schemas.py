"""Pydantic models shared by the stores and the chat core.

Field names use camelCase (e.g., isOnline, createdAt) to match the JSON
payloads the WebSocket clients consume.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form stored in DuckDB."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_timestamp(value: datetime) -> datetime:
    """Inverse of :func:`to_db_timestamp`."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class MessageType(str, Enum):
    """Type of chat message.

    Attributes:
        TEXT: Plain text message.
        FILE: Uploaded file; content is ``originalName|url``.
    """
    TEXT = "text"
    FILE = "file"


class SenderInfo(BaseModel):
    """Sender snapshot embedded in every message."""
    id: str = Field(..., description="Sender user ID")
    username: str = Field(..., description="Sender username at send time")
    avatar: str = Field(default="", description="Sender avatar at send time")


class ChatMessage(BaseModel):
    """A persisted message.

    Attributes:
        id: Unique message identifier.
        content: Message text (or file reference for file messages).
        sender: Sender snapshot.
        room: Broadcast topic or canonical private room id.
        messageType: text or file.
        createdAt: Persistence time (UTC).
        seq: Store-assigned, strictly increasing sequence number.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str
    sender: SenderInfo
    room: str
    messageType: MessageType = MessageType.TEXT
    createdAt: datetime = Field(default_factory=utcnow)
    seq: int = 0

    def to_payload(self) -> dict:
        """JSON-ready dict sent to clients (``seq`` is internal)."""
        return self.model_dump(mode="json", exclude={"seq"})


class UserRecord(BaseModel):
    """A user as stored in the directory, including the password hash."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    username: str
    passwordHash: str
    avatar: str = ""
    isOnline: bool = False
    lastSeen: datetime = Field(default_factory=utcnow)
    createdAt: datetime = Field(default_factory=utcnow)

    def public(self) -> "UserPublic":
        return UserPublic(
            id=self.id,
            username=self.username,
            avatar=self.avatar,
            isOnline=self.isOnline,
            lastSeen=self.lastSeen,
        )

    def sender_info(self) -> SenderInfo:
        return SenderInfo(id=self.id, username=self.username, avatar=self.avatar)


class UserPublic(BaseModel):
    """User fields safe to send to other clients."""
    id: str
    username: str
    avatar: str = ""
    isOnline: bool = False
    lastSeen: Optional[datetime] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")
