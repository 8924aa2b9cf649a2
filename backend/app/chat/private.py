"""Two-party private conversations.

Private messages are routed point-to-point: to whatever connection the
recipient currently has bound, plus an echo to the sending connection.
Nothing is kept per conversation beyond the canonical room id the history
is tagged with, so a message to an offline recipient simply waits in the
store until the recipient's next ``join_private``.
"""
import logging
from typing import Optional, Tuple

from app.storage.base import MessageHistoryStore, UserDirectory
from app.storage.schemas import ChatMessage, MessageType, UserRecord

from .connection import Connection, fan_out, require_user
from .errors import NotFound, ValidationError
from .queries import run_query
from .rate_limit import RateLimiter
from .room_ids import private_room_id
from .rooms import HistoryPage, RoomRouter, validate_content
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


class PrivateRouter:
    """Joins and sends for private conversations.

    Shares the room router's subscription map, paging and per-room send
    locks, so private sends to one pair are ordered like room sends.
    """

    def __init__(
        self,
        history: MessageHistoryStore,
        directory: UserDirectory,
        rooms: RoomRouter,
        sessions: SessionRegistry,
        rate_limiter: RateLimiter,
    ) -> None:
        self._history = history
        self._directory = directory
        self._rooms = rooms
        self._sessions = sessions
        self._rate_limiter = rate_limiter

    async def _resolve_recipient(self, user: UserRecord, recipient_id: Optional[str], action: str) -> UserRecord:
        if not recipient_id:
            raise ValidationError("Recipient ID required")
        if recipient_id == user.id:
            raise ValidationError("Cannot start a private conversation with yourself")
        recipient = await run_query(action, self._directory.find_by_id, recipient_id)
        if recipient is None:
            raise NotFound("Recipient not found")
        return recipient

    async def join_private(self, connection: Connection, recipient_id: str) -> Tuple[str, HistoryPage]:
        """Subscribe to the pair's canonical room and return its first page.

        The broadcast room subscription is left untouched.

        Returns:
            Tuple of (canonical room id, first history page).
        """
        user = require_user(connection)
        await self._resolve_recipient(user, recipient_id, "join private conversation")

        room = private_room_id(user.id, recipient_id)
        self._rooms.subscribe(connection, room)
        connection.private_rooms.add(room)
        logger.info(f"[Private] User {user.id} opened {room}")

        page = await self._rooms.first_page(connection, room)
        return room, page

    async def send_private(
        self,
        connection: Connection,
        recipient_id: str,
        content: Optional[str],
        message_type: MessageType = MessageType.TEXT,
    ) -> ChatMessage:
        """Persist and deliver ``new_private_message`` to both parties."""
        user = require_user(connection)
        text = validate_content(content, self._rooms.max_content_length)
        await self._resolve_recipient(user, recipient_id, "send private message")
        self._rate_limiter.check(user.id)

        room = private_room_id(user.id, recipient_id)
        async with self._rooms.send_slot(room):
            message = await run_query(
                "send private message",
                self._history.append, room, user.sender_info(), text, message_type,
            )
            event = {"type": "new_private_message", **message.to_payload()}
            targets = [connection]
            recipient_connection = self._sessions.connection_for(recipient_id)
            if recipient_connection is not None and recipient_connection is not connection:
                targets.append(recipient_connection)
            await fan_out(targets, event)

        if recipient_connection is None:
            logger.info(f"[Private] Recipient {recipient_id} offline; message {message.id} stored only")
        return message
