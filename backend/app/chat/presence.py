"""Online/offline presence.

States per user: Offline -> Online (successful authentication) -> Offline
(logout or disconnect of the bound connection, whichever comes first).

Every transition persists ``isOnline`` + ``lastSeen`` and broadcasts an
incremental event naming only that user (``user_online`` / ``user_offline``)
to every other live connection. ``reconcile`` sends the full directory
snapshot (``users_list_update``) to every connection; the manager calls it
after authenticate and logout/disconnect when enabled in config.

Transitions for one user run under a per-user lock and re-check the session
binding first, so a stale offline write never lands after a newer online
one and a superseded connection never takes its user offline.

A failed offline write leaves the user "offline pending": the binding is
already gone, so the next release of one of that user's connections (for
instance the socket closing after logout) retries the write. A later
successful online transition clears the mark.
"""
import logging
from typing import List, Optional, Set

from app.storage.base import UserDirectory
from app.storage.schemas import UserPublic, UserRecord, utcnow

from .connection import Connection, fan_out
from .errors import StorageFailure
from .locks import KeyedLocks
from .queries import run_query
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Persists and propagates presence transitions.

    Args:
        directory: User directory (presence persistence + snapshots).
        sessions: Session registry (binding checks + broadcast targets).
        directory_limit: Max users in a snapshot.
    """

    def __init__(
        self,
        directory: UserDirectory,
        sessions: SessionRegistry,
        directory_limit: int = 50,
    ) -> None:
        self._directory = directory
        self._sessions = sessions
        self.directory_limit = directory_limit
        self.locks = KeyedLocks()
        # users whose offline write failed after their binding was dropped
        self._offline_pending: Set[str] = set()

    def offline_pending(self, user_id: str) -> bool:
        return user_id in self._offline_pending

    async def go_online(self, connection: Connection, exclude: Optional[Connection] = None) -> bool:
        """Mark the connection's user online.

        ``exclude`` (a connection about to be superseded) is left out of the
        broadcast.

        Raises:
            StorageFailure: The write failed; nothing was broadcast.

        Returns:
            False if the connection lost its binding before the write
            (superseded or gone), in which case nothing is persisted.
        """
        user = connection.user
        if user is None:
            return False
        async with self.locks.hold(user.id):
            if self._sessions.connection_for(user.id) is not connection:
                return False
            now = utcnow()
            await run_query("update presence", self._directory.update_presence, user.id, True, now)
            self._offline_pending.discard(user.id)
            user.isOnline = True
            user.lastSeen = now
            await fan_out(
                [c for c in self._sessions.others(connection) if c is not exclude],
                {"type": "user_online", "userId": user.id, "username": user.username},
            )
        logger.info(f"[Presence] {user.username} ({user.id}) is online")
        return True

    async def go_offline(self, user: UserRecord, exclude: Optional[Connection] = None) -> bool:
        """Mark ``user`` offline unless a newer connection is bound to it.

        The caller unbinds the connection first. ``exclude`` (the departing
        connection) is left out of the broadcast.

        Raises:
            StorageFailure: The write failed; the user stays offline pending.
        """
        async with self.locks.hold(user.id):
            if self._sessions.is_bound(user.id):
                logger.debug(f"[Presence] {user.id} re-bound meanwhile; skipping offline")
                self._offline_pending.discard(user.id)
                return False
            now = utcnow()
            try:
                await run_query("update presence", self._directory.update_presence, user.id, False, now)
            except StorageFailure:
                self._offline_pending.add(user.id)
                logger.warning(f"[Presence] Offline write for {user.id} failed; will retry on release")
                raise
            self._offline_pending.discard(user.id)
            user.isOnline = False
            user.lastSeen = now
            await fan_out(
                [c for c in self._sessions.all_connections() if c is not exclude],
                {"type": "user_offline", "userId": user.id},
            )
        logger.info(f"[Presence] {user.username} ({user.id}) is offline")
        return True

    async def snapshot_for(self, user_id: str) -> List[UserPublic]:
        """Every other user, (online desc, lastSeen desc), bounded."""
        users = await run_query(
            "get users list", self._directory.find_excluding, user_id, self.directory_limit,
        )
        return [u.public() for u in users]

    async def reconcile(self) -> None:
        """Broadcast the full directory snapshot to every connection."""
        users = await run_query("get users list", self._directory.find_all, self.directory_limit)
        await fan_out(
            self._sessions.all_connections(),
            {"type": "users_list_update", "users": [u.public().to_payload() for u in users]},
        )
