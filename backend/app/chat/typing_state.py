"""Typing indicator relay.

Per (user, target) the state is Idle or Composing:

    Idle --start--> Composing --stop / next message to target--> Idle

Room targets relay to the room's other subscribers; private targets relay
only to the recipient's bound connection. No expiry is scheduled here:
senders re-send ``start`` or send ``stop`` after a short idle period, and
receivers expire an unrenewed private ``start`` with their own timer.
"""
import logging
from typing import Set, Tuple

from .connection import Connection, fan_out, require_user
from .rooms import RoomRouter
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

ROOM = "room"
DIRECT = "user"


class TypingBroadcaster:
    """Relays composing state; keeps only the in-memory Composing set."""

    def __init__(self, rooms: RoomRouter, sessions: SessionRegistry) -> None:
        self._rooms = rooms
        self._sessions = sessions
        # (user_id, ROOM|DIRECT, room or recipient id)
        self._composing: Set[Tuple[str, str, str]] = set()

    def is_composing(self, user_id: str, kind: str, target: str) -> bool:
        return (user_id, kind, target) in self._composing

    # -------------------------------------------------------------------------
    # Room targets
    # -------------------------------------------------------------------------

    async def start_room(self, connection: Connection, room: str) -> None:
        user = require_user(connection)
        self._rooms.check_access(user, room, allow_private=True)
        self._composing.add((user.id, ROOM, room))
        await fan_out(
            self._rooms.subscribers(room, exclude=connection),
            {"type": "user_typing", "userId": user.id, "username": user.username, "room": room},
        )

    async def stop_room(self, connection: Connection, room: str) -> None:
        user = require_user(connection)
        self._rooms.check_access(user, room, allow_private=True)
        self._composing.discard((user.id, ROOM, room))
        await fan_out(
            self._rooms.subscribers(room, exclude=connection),
            {"type": "user_stop_typing", "userId": user.id, "room": room},
        )

    # -------------------------------------------------------------------------
    # Private targets
    # -------------------------------------------------------------------------

    async def start_private(self, connection: Connection, recipient_id: str) -> None:
        user = require_user(connection)
        self._composing.add((user.id, DIRECT, recipient_id))
        target = self._sessions.connection_for(recipient_id)
        if target is not None:
            await target.send({"type": "private_typing", "userId": user.id, "username": user.username})

    async def stop_private(self, connection: Connection, recipient_id: str) -> None:
        user = require_user(connection)
        self._composing.discard((user.id, DIRECT, recipient_id))
        target = self._sessions.connection_for(recipient_id)
        if target is not None:
            await target.send({"type": "private_stop_typing", "userId": user.id})

    # -------------------------------------------------------------------------
    # Implicit stops
    # -------------------------------------------------------------------------

    async def message_sent(self, connection: Connection, kind: str, target: str) -> None:
        """A message to ``target`` ends the sender's composing state there."""
        user = connection.user
        if user is None or (user.id, kind, target) not in self._composing:
            return
        if kind == ROOM:
            await self.stop_room(connection, target)
        else:
            await self.stop_private(connection, target)

    async def clear_user(self, connection: Connection) -> None:
        """Relay stops for everything the departing user was composing."""
        user = connection.user
        if user is None:
            return
        pending = [entry for entry in self._composing if entry[0] == user.id]
        for _, kind, target in pending:
            self._composing.discard((user.id, kind, target))
            if kind == ROOM:
                await fan_out(
                    self._rooms.subscribers(target, exclude=connection),
                    {"type": "user_stop_typing", "userId": user.id, "room": target},
                )
            else:
                recipient = self._sessions.connection_for(target)
                if recipient is not None:
                    await recipient.send({"type": "private_stop_typing", "userId": user.id})
