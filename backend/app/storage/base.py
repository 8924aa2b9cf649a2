"""Abstract store interfaces consumed by the chat core.

Every backend (DuckDB today) implements these so the routers stay
storage-agnostic. Methods are synchronous and may block; the chat core
calls them from the default thread-pool executor.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .schemas import ChatMessage, MessageType, SenderInfo, UserRecord


class MessageHistoryStore(ABC):
    """Append-only message log."""

    @abstractmethod
    def append(
        self,
        room: str,
        sender: SenderInfo,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> ChatMessage:
        """Persist a message and return it with id, createdAt and seq set."""

    @abstractmethod
    def find_by_room(
        self,
        room: str,
        skip: int = 0,
        limit: int = 20,
        max_seq: Optional[int] = None,
    ) -> List[ChatMessage]:
        """Return up to ``limit`` messages of ``room``, newest first.

        Args:
            room: Room to query.
            skip: Number of newest messages to skip.
            limit: Page size.
            max_seq: If given, only messages with ``seq <= max_seq`` count
                     (anchors a paging sequence against later inserts).
        """


class UserDirectory(ABC):
    """User lookup and presence persistence."""

    @abstractmethod
    def create(self, username: str, password_hash: str, avatar: str = "") -> UserRecord:
        """Insert a new user.

        Raises:
            ValueError: If the username is already taken.
        """

    @abstractmethod
    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        """Return the user or None."""

    @abstractmethod
    def find_by_username(self, username: str) -> Optional[UserRecord]:
        """Case-insensitive username lookup."""

    @abstractmethod
    def find_excluding(self, user_id: str, limit: int = 50) -> List[UserRecord]:
        """All users except ``user_id``, sorted (online desc, lastSeen desc)."""

    @abstractmethod
    def find_all(self, limit: int = 50) -> List[UserRecord]:
        """All users, sorted (online desc, lastSeen desc)."""

    @abstractmethod
    def update_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        """Persist presence; returns False if the user does not exist."""
