"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws: Real-time chat channel (one per client)
    - GET /api/rooms/{room}/messages: Read-only history page of a broadcast room

The WebSocket protocol is JSON objects tagged by ``type``; see
``app.chat.events`` for the inbound variants and ``ChatManager.dispatch``
for the replies. A connection starts unauthenticated and must send
``authenticate`` before any data operation.
"""
import logging

import anyio
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from .errors import NotFound, StorageFailure
from .manager import get_chat_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/rooms/{room}/messages")
async def get_room_messages(
    room: str,
    page: int = Query(0, ge=0, description="Page number, 0 = most recent"),
) -> dict:
    """Get one page of a broadcast room's history.

    Args:
        room: Broadcast room name. Private conversation ids are not served.
        page: Page number; each page is ``chat.page_size`` messages.

    Returns:
        JSON with room, messages (oldest first), hasMore and page.

    Example:
        GET /api/rooms/general/messages?page=1
    """
    manager = get_chat_manager()
    try:
        history = await manager.rooms.history_page(room, page)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=e.reason)
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=e.reason)
    return {"room": room, **history.to_payload(), "page": page}


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for the real-time chat channel.

    Frames are handled one at a time, in arrival order. The loop ends when
    the client disconnects or the server closes the connection (logout or
    a newer authentication of the same user).
    """
    manager = get_chat_manager()
    connection = await manager.connect(websocket)
    try:
        while not connection.closed:
            raw = await websocket.receive_text()
            await manager.handle_frame(connection, raw)
    except WebSocketDisconnect:
        logger.debug(f"[WS] Client {connection.id[:8]} disconnected")
    except RuntimeError as e:
        # receive after a server-side close
        logger.debug(f"[WS] Receive on {connection.id[:8]} ended: {e}")
    finally:
        # Presence cleanup must complete even when the endpoint task is cancelled.
        with anyio.CancelScope(shield=True):
            await manager.disconnect(connection)
