"""Session registry: live connections and the user -> connection binding.

Invariant: at most one live connection is bound to a given user id. Binding
a second connection returns the displaced one so the caller can close it
(last authentication wins).

Concurrency:
    All registry mutations are synchronous and run on the event loop, so no
    other task can observe a half-applied bind/unbind. ``auth_lock(user_id)``
    additionally serializes the whole authenticate sequence per user.
"""
import logging
from typing import AsyncContextManager, Dict, List, Optional

from .connection import Connection
from .locks import KeyedLocks

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every live connection and the single-active-binding map."""

    def __init__(self) -> None:
        # connection id -> Connection (authenticated or not)
        self._connections: Dict[str, Connection] = {}

        # user id -> the one Connection bound to that user
        self._bindings: Dict[str, Connection] = {}

        # user id -> lock serializing authentication for that user
        self.auth_locks = KeyedLocks()

    # -----------------------------------------------------------------------
    # Connection lifecycle
    # -----------------------------------------------------------------------

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    def unregister(self, connection: Connection) -> None:
        self._connections.pop(connection.id, None)

    def all_connections(self) -> List[Connection]:
        """Snapshot of every live connection."""
        return [c for c in self._connections.values() if not c.closed]

    def others(self, connection: Connection) -> List[Connection]:
        """Snapshot of every live connection except ``connection``."""
        return [c for c in self.all_connections() if c is not connection]

    def __len__(self) -> int:
        return len(self._connections)

    # -----------------------------------------------------------------------
    # Bindings
    # -----------------------------------------------------------------------

    def auth_lock(self, user_id: str) -> AsyncContextManager[None]:
        return self.auth_locks.hold(user_id)

    def bind(self, user_id: str, connection: Connection) -> Optional[Connection]:
        """Bind ``connection`` to ``user_id``.

        Returns:
            The previously bound connection if it was a different one,
            else None.
        """
        previous = self._bindings.get(user_id)
        self._bindings[user_id] = connection
        if previous is connection:
            return None
        if previous is not None:
            logger.info(
                f"[Sessions] User {user_id} re-authenticated; "
                f"superseding connection {previous.id[:8]} with {connection.id[:8]}"
            )
        return previous

    def unbind(self, user_id: str, connection: Connection) -> bool:
        """Remove the binding only if it still points at ``connection``.

        Returns:
            True if the binding was removed. False means the connection had
            already been superseded (or was never bound).
        """
        if self._bindings.get(user_id) is not connection:
            return False
        del self._bindings[user_id]
        return True

    def connection_for(self, user_id: str) -> Optional[Connection]:
        """The live connection bound to ``user_id``, if any."""
        connection = self._bindings.get(user_id)
        if connection is None or connection.closed:
            return None
        return connection

    def is_bound(self, user_id: str) -> bool:
        return user_id in self._bindings

    def bound_user_ids(self) -> List[str]:
        return list(self._bindings)
