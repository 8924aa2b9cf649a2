"""Shared test fixtures and configuration for backend tests."""
import json

import pytest
from fastapi.testclient import TestClient

from app.auth.tokens import TokenService, set_token_service
from app.chat.manager import ChatManager, set_chat_manager
from app.config import MEMORY_DB, AppConfig, set_config
from app.files.service import FileStorageService
from app.main import app
from app.storage.messages import DuckDBMessageHistory
from app.storage.users import DuckDBUserDirectory

TEST_SECRET = "test-secret-key-for-relaychat-tests"


class FakeClock:
    """Manually advanced wall clock for the rate limiter."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebSocket:
    """Records what the server sends; enough of WebSocket for Connection."""

    def __init__(self, fail_sends: bool = False) -> None:
        self.sent = []
        self.closed_with = None
        self.accepted = False
        self.fail_sends = fail_sends

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.fail_sends:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code

    def types(self) -> list:
        return [event["type"] for event in self.sent]

    def of_type(self, event_type: str) -> list:
        return [event for event in self.sent if event["type"] == event_type]


@pytest.fixture
def config(tmp_path):
    """In-memory stores, a temp upload dir and a fixed JWT secret."""
    cfg = AppConfig()
    cfg.storage.messages_db = MEMORY_DB
    cfg.storage.users_db = MEMORY_DB
    cfg.uploads.upload_dir = str(tmp_path / "uploads")
    cfg.secrets.jwt.secret_key = TEST_SECRET
    set_config(cfg)
    FileStorageService.reset_instance()
    yield cfg
    FileStorageService.reset_instance()
    set_config(None)


@pytest.fixture
def history(config):
    DuckDBMessageHistory.reset_instance()
    store = DuckDBMessageHistory.get_instance(db_path=MEMORY_DB)
    yield store
    DuckDBMessageHistory.reset_instance()


@pytest.fixture
def directory(config):
    DuckDBUserDirectory.reset_instance()
    store = DuckDBUserDirectory.get_instance(db_path=MEMORY_DB)
    yield store
    DuckDBUserDirectory.reset_instance()


@pytest.fixture
def tokens(config):
    service = TokenService(secret_key=TEST_SECRET)
    set_token_service(service)
    yield service
    set_token_service(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(config, history, directory, tokens, clock):
    """A fresh ChatManager wired to the in-memory stores."""
    chat_manager = ChatManager(config, history, directory, tokens, clock=clock)
    set_chat_manager(chat_manager)
    yield chat_manager
    set_chat_manager(None)


@pytest.fixture
def client(manager):
    """TestClient sharing one event loop across all WebSocket sessions."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(directory, tokens):
    """Create a user directly in the directory; returns (user, token)."""

    def _make(username: str):
        user = directory.create(username, "not-a-real-hash", username[0].upper())
        return user, tokens.issue(user.id)

    return _make


async def connect_as(chat_manager, user, tokens):
    """Open a fake connection and authenticate it as ``user``."""
    connection = await chat_manager.connect(FakeWebSocket())
    await chat_manager.handle_frame(
        connection,
        json.dumps({"type": "authenticate", "token": tokens.issue(user.id)}),
    )
    return connection
