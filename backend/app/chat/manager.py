"""WebSocket connection manager for the real-time chat core.

This module owns every piece of per-process chat state and wires the
components together:

    - SessionRegistry: live connections + the single-active user binding
    - RoomRouter: broadcast rooms, history paging and ordered fan-out
    - PrivateRouter: two-party conversations on canonical room ids
    - PresenceTracker: online/offline transitions and directory snapshots
    - TypingBroadcaster: composing-state relay
    - RateLimiter: per-user send throttle

Every inbound frame is parsed into one ``InboundEvent`` variant and handled
by ``dispatch``. Rejections are raised as ``ChatError`` subclasses and
reported to the originating connection only.

Thread Safety:
    Designed for a single event loop. Registries are only mutated from
    coroutines running on that loop; blocking store calls run in the
    default executor without touching them.
"""
import json
import logging
import time
from pathlib import Path
from typing import Callable, Optional, assert_never

from fastapi import WebSocket

from app.auth.tokens import TokenService, get_token_service
from app.config import MEMORY_DB, AppConfig, get_config
from app.storage.base import MessageHistoryStore, UserDirectory
from app.storage.messages import DuckDBMessageHistory
from app.storage.users import DuckDBUserDirectory

from .connection import LOGOUT_CLOSE_CODE, SUPERSEDED_CLOSE_CODE, Connection, require_user
from .errors import AuthenticationFailure, ChatError, StorageFailure, ValidationError
from .events import (
    AuthenticateEvent,
    GetUsersEvent,
    InboundEvent,
    JoinPrivateConversationEvent,
    JoinRoomEvent,
    LoadMoreMessagesEvent,
    PrivateStopTypingEvent,
    PrivateTypingEvent,
    SendMessageEvent,
    SendPrivateMessageEvent,
    TypingStartEvent,
    TypingStopEvent,
    UserLogoutEvent,
    parse_event,
)
from .presence import PresenceTracker
from .private import PrivateRouter
from .queries import run_query
from .rate_limit import RateLimiter
from .rooms import RoomRouter
from .sessions import SessionRegistry
from .typing_state import DIRECT, ROOM, TypingBroadcaster

logger = logging.getLogger(__name__)


class ChatManager:
    """Process-wide chat state and event dispatch.

    Args:
        config: Application config (chat, rate_limit and presence sections).
        history: Message history store.
        directory: User directory.
        tokens: Access-token verifier.
        clock: Wall-clock source for the rate limiter.
    """

    def __init__(
        self,
        config: AppConfig,
        history: MessageHistoryStore,
        directory: UserDirectory,
        tokens: TokenService,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.history = history
        self.directory = directory
        self.tokens = tokens
        self.default_room = config.chat.default_room
        self.reconcile_snapshots = config.presence.reconcile_snapshots

        self.sessions = SessionRegistry()
        self.rate_limiter = RateLimiter(
            limit=config.rate_limit.max_messages,
            window_seconds=config.rate_limit.window_seconds,
            clock=clock,
        )
        self.rooms = RoomRouter(
            history,
            self.rate_limiter,
            page_size=config.chat.page_size,
            max_page_size=config.chat.max_page_size,
            max_content_length=config.chat.max_content_length,
        )
        self.private = PrivateRouter(history, directory, self.rooms, self.sessions, self.rate_limiter)
        self.presence = PresenceTracker(directory, self.sessions, config.chat.directory_limit)
        self.typing = TypingBroadcaster(self.rooms, self.sessions)

    @classmethod
    def from_config(cls, config: AppConfig) -> "ChatManager":
        """Build a manager on the DuckDB store singletons named in ``config``."""
        for db_path in (config.storage.messages_db, config.storage.users_db):
            if db_path != MEMORY_DB:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return cls(
            config,
            DuckDBMessageHistory.get_instance(config.storage.messages_db),
            DuckDBUserDirectory.get_instance(config.storage.users_db),
            get_token_service(),
        )

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> Connection:
        """Accept the socket and register an unauthenticated connection."""
        await websocket.accept()
        connection = Connection(websocket)
        self.sessions.register(connection)
        logger.info(f"[WS] Connection {connection.id[:8]} opened ({len(self.sessions)} live)")
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Tear down a connection whose socket is gone.

        The user goes offline only if this connection still held the
        binding, or if an earlier offline write for that user failed. A
        superseded connection changes nothing.
        """
        connection.closed = True
        self.sessions.unregister(connection)
        try:
            went_offline = await self._release(connection)
        except StorageFailure:
            # Logged by run_query; the user stays offline pending.
            went_offline = False
        logger.info(
            f"[WS] Connection {connection.id[:8]} closed "
            f"(user={connection.user_id}, offline={went_offline}, {len(self.sessions)} live)"
        )

    async def shutdown(self) -> None:
        """Close every live connection (application shutdown)."""
        for connection in self.sessions.all_connections():
            await connection.close(code=1001, reason="Server shutting down")

    async def _release(self, connection: Connection) -> bool:
        """Drop the connection's binding, subscriptions and composing state.

        Also retries an offline write that failed on an earlier release.

        Returns:
            True if the user went offline as a result.

        Raises:
            StorageFailure: The offline write failed.
        """
        user = connection.user
        if user is None:
            self.rooms.leave_all(connection)
            return False
        unbound = self.sessions.unbind(user.id, connection)
        if unbound:
            await self.typing.clear_user(connection)
        self.rooms.leave_all(connection)
        if not unbound and not self.presence.offline_pending(user.id):
            return False
        went_offline = await self.presence.go_offline(user, exclude=connection)
        if went_offline and self.reconcile_snapshots:
            await self.presence.reconcile()
        return went_offline

    async def _supersede(self, previous: Connection) -> None:
        previous.superseded = True
        self.rooms.leave_all(previous)
        await previous.send({"type": "session_superseded"})
        await previous.close(code=SUPERSEDED_CLOSE_CODE, reason="Session superseded")

    # =========================================================================
    # Inbound frames
    # =========================================================================

    async def handle_frame(self, connection: Connection, raw: str) -> None:
        """Parse and dispatch one text frame; report rejections to the sender."""
        try:
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ValidationError("Invalid event: malformed JSON") from exc
            event = parse_event(data)
            logger.debug("[WS] %s received: type=%s", connection.id[:8], event.type)
            await self.dispatch(connection, event)
        except ChatError as err:
            logger.info(f"[WS] Rejected event from {connection.id[:8]}: {err.code}: {err.reason}")
            await connection.send(err.to_event())

    async def dispatch(self, connection: Connection, event: InboundEvent) -> None:
        """Run the operation for ``event`` and send its reply, if any."""
        match event:
            case AuthenticateEvent(token=token):
                await self.authenticate(connection, token)

            case JoinRoomEvent(room=room):
                page = await self.rooms.join(connection, room)
                await connection.send({"type": "room_messages", "room": room, **page.to_payload()})

            case LoadMoreMessagesEvent(room=room, page=page_number, limit=limit):
                page = await self.rooms.load_more(connection, room, page_number, limit)
                await connection.send({
                    "type": "more_messages",
                    "room": room,
                    **page.to_payload(),
                    "nextPage": page_number + 1,
                })

            case SendMessageEvent(content=content, room=room, messageType=message_type):
                target = room or self.default_room
                await self.rooms.send(connection, content, target, message_type)
                await self.typing.message_sent(connection, ROOM, target)

            case JoinPrivateConversationEvent(recipientId=recipient_id):
                room, page = await self.private.join_private(connection, recipient_id)
                await connection.send({
                    "type": "private_messages",
                    **page.to_payload(),
                    "room": room,
                    "recipientId": recipient_id,
                })
                await connection.send({"type": "unread_cleared", "recipientId": recipient_id})

            case SendPrivateMessageEvent(recipientId=recipient_id, content=content, messageType=message_type):
                await self.private.send_private(connection, recipient_id, content, message_type)
                await self.typing.message_sent(connection, DIRECT, recipient_id)

            case TypingStartEvent(room=room):
                await self.typing.start_room(connection, room)

            case TypingStopEvent(room=room):
                await self.typing.stop_room(connection, room)

            case PrivateTypingEvent(recipientId=recipient_id):
                await self.typing.start_private(connection, recipient_id)

            case PrivateStopTypingEvent(recipientId=recipient_id):
                await self.typing.stop_private(connection, recipient_id)

            case GetUsersEvent():
                await self.get_users(connection)

            case UserLogoutEvent():
                await self.logout(connection)

            case _:
                assert_never(event)

    # =========================================================================
    # Session operations
    # =========================================================================

    async def authenticate(self, connection: Connection, token: str) -> None:
        """Bind ``connection`` to the token's user (last authentication wins).

        Raises:
            AuthenticationFailure: Missing/invalid token or unknown user.
                Nothing changes and the connection stays open.
            StorageFailure: The online write failed. The bind is undone and
                any previous session of the user is left in place.
        """
        if not token:
            raise AuthenticationFailure("Access token required")
        user_id = self.tokens.verify(token)
        user = await run_query("authenticate", self.directory.find_by_id, user_id)
        if user is None:
            raise AuthenticationFailure("Invalid user")
        if connection.closed:
            return

        if connection.user is not None and connection.user.id != user.id:
            logger.info(f"[Sessions] Connection {connection.id[:8]} switching user {connection.user.id} -> {user.id}")
            await self._release(connection)

        async with self.sessions.auth_lock(user.id):
            already_bound = self.sessions.connection_for(user.id) is connection
            connection.user = user
            connection.superseded = False
            previous = self.sessions.bind(user.id, connection)
            try:
                await self.presence.go_online(connection, exclude=previous)
            except StorageFailure:
                if not already_bound:
                    # Undo the bind; the previous session keeps the user.
                    self.sessions.unbind(user.id, connection)
                    if previous is not None and not previous.closed:
                        self.sessions.bind(user.id, previous)
                    connection.user = None
                raise
            if previous is not None:
                await self._supersede(previous)

        users = await self.presence.snapshot_for(user.id)
        await connection.send({
            "type": "authenticated",
            "user": user.public().to_payload(),
            "users": [u.to_payload() for u in users],
        })
        logger.info(f"[Sessions] {user.username} ({user.id}) authenticated on {connection.id[:8]}")

        if self.reconcile_snapshots:
            await self.presence.reconcile()

    async def logout(self, connection: Connection) -> None:
        """Explicit logout: go offline and close. No-op if unauthenticated."""
        if connection.user is None or connection.superseded:
            return
        user = connection.user
        try:
            await self._release(connection)
        finally:
            # On a failed offline write the user stays set so the
            # disconnect that follows the close retries it.
            await connection.close(code=LOGOUT_CLOSE_CODE, reason="Logged out")
        connection.user = None
        logger.info(f"[Sessions] {user.username} ({user.id}) logged out")

    async def get_users(self, connection: Connection) -> None:
        user = require_user(connection)
        users = await self.presence.snapshot_for(user.id)
        await connection.send({"type": "users_list", "users": [u.to_payload() for u in users]})


# =============================================================================
# Process-wide accessor
# =============================================================================

_manager: Optional[ChatManager] = None


def get_chat_manager() -> ChatManager:
    """Return the shared manager, building it from config on first use."""
    global _manager
    if _manager is None:
        _manager = ChatManager.from_config(get_config())
    return _manager


def set_chat_manager(manager: Optional[ChatManager]) -> None:
    """Replace (or clear, with ``None``) the shared manager."""
    global _manager
    _manager = manager
