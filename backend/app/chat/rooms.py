"""Broadcast-room subscriptions, history paging and ordered fan-out.

The router owns an explicit ``room -> set of connections`` map; joining and
leaving mutate it and sends enumerate it directly.

Ordering:
    A send is accepted once its content validates and the rate limiter lets
    it through. The per-room send lock is taken right after acceptance with
    no await in between, and asyncio locks wake waiters in FIFO order, so
    persistence and multicast for a room happen in acceptance order.

Paging:
    The initial page of a room (join) records the newest ``seq`` it saw as
    the connection's anchor for that room. ``load_more`` pages count only
    messages at or below the anchor, so a message persisted after the join
    cannot shift the offsets and be returned twice.
"""
import logging
from dataclasses import dataclass, field
from typing import AsyncContextManager, Dict, List, Optional, Set

from app.storage.base import MessageHistoryStore
from app.storage.schemas import ChatMessage, MessageType, UserRecord

from .connection import Connection, fan_out, require_user
from .errors import NotFound, ValidationError
from .locks import KeyedLocks
from .queries import run_query
from .rate_limit import RateLimiter
from .room_ids import is_participant, is_private_room

logger = logging.getLogger(__name__)


@dataclass
class HistoryPage:
    """One page of room history, oldest first."""
    messages: List[ChatMessage] = field(default_factory=list)
    has_more: bool = False

    def to_payload(self) -> dict:
        return {
            "messages": [m.to_payload() for m in self.messages],
            "hasMore": self.has_more,
        }


def validate_content(content: Optional[str], max_length: int) -> str:
    """Strip and validate message content.

    Raises:
        ValidationError: If the content is empty, whitespace or too long.
    """
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    if len(text) > max_length:
        raise ValidationError(f"Message content exceeds {max_length} characters")
    return text


class RoomRouter:
    """Room subscriptions, history pages and in-order multicast.

    Args:
        history: Message history store.
        rate_limiter: Shared per-user send throttle.
        page_size: Messages per history page.
        max_page_size: Upper bound for a client-requested ``load_more`` size.
        max_content_length: Longest accepted message.
    """

    def __init__(
        self,
        history: MessageHistoryStore,
        rate_limiter: RateLimiter,
        page_size: int = 20,
        max_page_size: int = 100,
        max_content_length: int = 5000,
    ) -> None:
        self._history = history
        self._rate_limiter = rate_limiter
        self.page_size = page_size
        self.max_page_size = max(max_page_size, page_size)
        self.max_content_length = max_content_length

        # room -> connections currently subscribed
        self._subscribers: Dict[str, Set[Connection]] = {}

        # room -> lock serializing persist + multicast
        self.send_locks = KeyedLocks()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, connection: Connection, room: str) -> None:
        self._subscribers.setdefault(room, set()).add(connection)

    def unsubscribe(self, connection: Connection, room: str) -> None:
        members = self._subscribers.get(room)
        if not members:
            return
        members.discard(connection)
        if not members:
            del self._subscribers[room]

    def leave_all(self, connection: Connection) -> None:
        """Drop every subscription held by ``connection``."""
        for room in [r for r, members in self._subscribers.items() if connection in members]:
            self.unsubscribe(connection, room)
        connection.current_room = None
        connection.private_rooms.clear()

    def subscribers(self, room: str, exclude: Optional[Connection] = None) -> List[Connection]:
        """Snapshot of live subscribers of ``room``."""
        return [
            c for c in self._subscribers.get(room, ())
            if c is not exclude and not c.closed
        ]

    def rooms_of(self, connection: Connection) -> List[str]:
        return [room for room, members in self._subscribers.items() if connection in members]

    def send_slot(self, room: str) -> AsyncContextManager[None]:
        """Hold ``room``'s send lock (FIFO with other senders to ``room``)."""
        return self.send_locks.hold(room)

    # =========================================================================
    # Access rules
    # =========================================================================

    def check_access(self, user: UserRecord, room: str, allow_private: bool) -> None:
        """Reject broadcast operations on private ids the user does not own.

        Raises:
            ValidationError: Private room used where only broadcast rooms are allowed.
            NotFound: Private room the user is not a participant of.
        """
        if not is_private_room(room):
            return
        if not is_participant(room, user.id):
            raise NotFound("Room not found")
        if not allow_private:
            raise ValidationError("Use the private conversation events for private rooms")

    # =========================================================================
    # Operations
    # =========================================================================

    async def join(self, connection: Connection, room: str) -> HistoryPage:
        """Switch the connection's broadcast room and return its latest page."""
        user = require_user(connection)
        self.check_access(user, room, allow_private=False)

        previous = connection.current_room
        if previous is not None and previous != room:
            self.unsubscribe(connection, previous)
            logger.debug(f"[Rooms] {connection!r} left {previous}")
        # Subscribe before reading history so nothing sent meanwhile is missed.
        connection.current_room = room
        self.subscribe(connection, room)
        logger.info(f"[Rooms] User {user.id} joined {room} ({len(self.subscribers(room))} subscribers)")

        return await self.first_page(connection, room)

    async def first_page(self, connection: Connection, room: str) -> HistoryPage:
        """Newest page of ``room``; (re)starts the connection's paging sequence."""
        newest_first = await run_query(
            "load room messages",
            self._history.find_by_room, room, 0, self.page_size,
        )
        connection.paging_anchors[room] = newest_first[0].seq if newest_first else 0
        return HistoryPage(
            messages=list(reversed(newest_first)),
            has_more=len(newest_first) == self.page_size,
        )

    async def load_more(
        self,
        connection: Connection,
        room: str,
        page: int,
        limit: Optional[int] = None,
    ) -> HistoryPage:
        """Page ``page`` (offset ``page * size``) of the paging sequence.

        ``size`` is ``limit`` capped at ``max_page_size``, or ``page_size``.
        """
        size = min(limit, self.max_page_size) if limit else self.page_size
        user = require_user(connection)
        self.check_access(user, room, allow_private=True)

        anchor = connection.paging_anchors.get(room)
        if anchor is None:
            newest = await run_query(
                "load more messages", self._history.find_by_room, room, 0, 1,
            )
            anchor = connection.paging_anchors[room] = newest[0].seq if newest else 0

        newest_first = await run_query(
            "load more messages",
            self._history.find_by_room,
            room, page * size, size, anchor,
        )
        return HistoryPage(
            messages=list(reversed(newest_first)),
            has_more=len(newest_first) == size,
        )

    async def history_page(self, room: str, page: int = 0) -> HistoryPage:
        """Unanchored page of a broadcast room (read-only HTTP access)."""
        if is_private_room(room):
            raise NotFound("Room not found")
        newest_first = await run_query(
            "load room messages",
            self._history.find_by_room, room, page * self.page_size, self.page_size,
        )
        return HistoryPage(
            messages=list(reversed(newest_first)),
            has_more=len(newest_first) == self.page_size,
        )

    async def send(
        self,
        connection: Connection,
        content: Optional[str],
        room: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> ChatMessage:
        """Persist a message and multicast ``new_message`` to the room.

        Raises:
            AuthorizationRequired, ValidationError, NotFound,
            RateLimitExceeded, StorageFailure.
        """
        user = require_user(connection)
        text = validate_content(content, self.max_content_length)
        self.check_access(user, room, allow_private=False)
        self._rate_limiter.check(user.id)

        async with self.send_slot(room):
            message = await run_query(
                "send message",
                self._history.append, room, user.sender_info(), text, message_type,
            )
            delivered = await fan_out(
                self.subscribers(room),
                {"type": "new_message", **message.to_payload()},
            )

        logger.info(f"[Rooms] Message {message.id} from {user.id} to {room} delivered to {delivered}")
        return message
