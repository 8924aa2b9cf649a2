"""Relay Chat Backend Application.

Entry point for the Relay Chat service: a real-time multi-room chat
server with private conversations, presence and typing indicators over a
single WebSocket channel.

Packages:
    - chat: WebSocket sessions, rooms, private conversations, presence, typing
    - auth: username/password accounts and access tokens
    - files: uploads shared as chat messages
    - storage: DuckDB message history and user directory

Run with ``uvicorn app.main:app`` from the ``backend`` directory.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.router import router as auth_router
from app.chat.manager import get_chat_manager
from app.chat.router import router as chat_router
from app.config import get_config
from app.files.router import router as files_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Multipart parsing logs every upload part at DEBUG.
for _noisy in ("multipart", "python_multipart", "uvicorn.access"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _apply_log_level(level_name: str) -> None:
    """Set the root logger to ``logging.level`` from relaychat.settings.yaml."""
    level = getattr(logging, level_name.upper(), None)
    if level is None:
        logger.warning("Unknown logging.level %r, keeping INFO", level_name)
        return
    logging.getLogger().setLevel(level)
    logger.info("Root logger level set to %s", level_name.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the chat manager on startup; close every socket on shutdown."""
    config = get_config()
    _apply_log_level(config.logging.level)

    manager = get_chat_manager()
    logger.info(
        f"Chat ready on ws://{config.server.host}:{config.server.port}/ws "
        f"(default room '{manager.default_room}')"
    )

    yield

    await manager.shutdown()
    logger.info("Relay Chat stopped")


app = FastAPI(
    title="Relay Chat API",
    description="Backend service for Relay Chat - real-time rooms and private messaging",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router)
app.include_router(auth_router)
app.include_router(files_router)


@app.get("/health")
async def health() -> dict:
    """Liveness check."""
    return {"status": "ok"}
