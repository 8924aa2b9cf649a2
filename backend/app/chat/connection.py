"""Per-socket connection handle and concurrent fan-out.

A ``Connection`` wraps one accepted WebSocket for its whole life. It carries
the authenticated user (bound at most once per successful authentication),
the current broadcast room, and per-room paging anchors. Outbound writes
are serialized per connection so events from different tasks never
interleave mid-frame, and anything sent after the connection is closed is
dropped silently.
"""
import asyncio
import logging
import uuid
from typing import Dict, Iterable, Optional, Set

from fastapi import WebSocket

from app.storage.schemas import UserRecord

from .errors import AuthorizationRequired

logger = logging.getLogger(__name__)

# Close code sent to a connection displaced by a newer authentication.
SUPERSEDED_CLOSE_CODE = 4001

# Close code for an explicit logout.
LOGOUT_CLOSE_CODE = 4000


class Connection:
    """One live client connection.

    Attributes:
        id: Server-generated connection identifier.
        user: Authenticated user, or None.
        current_room: Subscribed broadcast room, or None.
        private_rooms: Canonical private rooms joined on this connection.
        paging_anchors: room -> newest ``seq`` returned by the initial page.
        superseded: True once a newer authentication displaced this one.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.user: Optional[UserRecord] = None
        self.current_room: Optional[str] = None
        self.private_rooms: Set[str] = set()
        self.paging_anchors: Dict[str, int] = {}
        self.superseded = False
        self.closed = False
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        user_id = self.user.id if self.user else None
        return f"Connection(id={self.id[:8]}, user={user_id}, room={self.current_room})"

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def send(self, event: dict) -> bool:
        """Send one JSON event.

        Returns:
            True if delivered, False if the connection is (or just became)
            unusable. A failed send marks the connection closed.
        """
        if self.closed:
            return False
        async with self._send_lock:
            if self.closed:
                return False
            try:
                await self.websocket.send_json(event)
                return True
            except Exception as e:
                logger.debug(f"[Connection] Send to {self.id[:8]} failed: {e}")
                self.closed = True
                return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the underlying socket once; later calls are no-ops."""
        if self.closed:
            return
        async with self._send_lock:
            if self.closed:
                return
            self.closed = True
            try:
                await self.websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"[Connection] Close of {self.id[:8]} failed: {e}")


def require_user(connection: Connection) -> UserRecord:
    """Return the bound user or reject the operation.

    Raises:
        AuthorizationRequired: If the connection has not authenticated.
    """
    if connection.user is None or connection.superseded:
        raise AuthorizationRequired("Not authenticated")
    return connection.user


async def fan_out(connections: Iterable[Connection], event: dict) -> int:
    """Send ``event`` to every connection concurrently.

    Returns:
        Number of connections that accepted the event.
    """
    targets = list(connections)
    if not targets:
        return 0
    results = await asyncio.gather(
        *[conn.send(event) for conn in targets],
        return_exceptions=True,
    )
    return sum(1 for ok in results if ok is True)
