"""UserDirectory backed by DuckDB."""
import logging
import threading
from datetime import datetime
from typing import List, Optional

import duckdb

from .base import UserDirectory
from .schemas import UserRecord, from_db_timestamp, to_db_timestamp, utcnow

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id            VARCHAR PRIMARY KEY,
    username      VARCHAR NOT NULL,
    -- lowercased username; uniqueness is case-insensitive
    username_key  VARCHAR NOT NULL UNIQUE,
    password_hash VARCHAR NOT NULL,
    avatar        VARCHAR NOT NULL DEFAULT '',
    is_online     BOOLEAN NOT NULL DEFAULT FALSE,
    last_seen     TIMESTAMP NOT NULL,
    created_at    TIMESTAMP NOT NULL
)
"""

_COLUMNS = "id, username, password_hash, avatar, is_online, last_seen, created_at"


def _username_key(username: str) -> str:
    return username.strip().lower()


class DuckDBUserDirectory(UserDirectory):
    """Singleton user directory.

    Every statement runs under ``_lock`` because callers come from
    executor threads.
    """

    _instance: Optional["DuckDBUserDirectory"] = None
    _default_db_path: str = "users.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._lock = threading.Lock()
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        logger.info("[UserDirectory] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "DuckDBUserDirectory":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def create(self, username: str, password_hash: str, avatar: str = "") -> UserRecord:
        user = UserRecord(username=username, passwordHash=password_hash, avatar=avatar)
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO users ({_COLUMNS}, username_key) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        user.id, user.username, user.passwordHash, user.avatar,
                        user.isOnline, to_db_timestamp(user.lastSeen),
                        to_db_timestamp(user.createdAt), _username_key(username),
                    ],
                )
            except duckdb.ConstraintException as exc:
                raise ValueError(f"Username '{username}' is already taken") from exc
        return user

    def update_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        with self._lock:
            row = self._conn.execute(
                "UPDATE users SET is_online = ?, last_seen = ? WHERE id = ? RETURNING id",
                [is_online, to_db_timestamp(last_seen), user_id],
            ).fetchone()
        return row is not None

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM users WHERE id = ?", [user_id]
            ).fetchone()
        return self._row_to_user(row) if row else None

    def find_by_username(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM users WHERE username_key = ?", [_username_key(username)]
            ).fetchone()
        return self._row_to_user(row) if row else None

    def find_excluding(self, user_id: str, limit: int = 50) -> List[UserRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM users
                WHERE id <> ?
                ORDER BY is_online DESC, last_seen DESC
                LIMIT ?
                """,
                [user_id, limit],
            ).fetchall()
        return [self._row_to_user(r) for r in rows]

    def find_all(self, limit: int = 50) -> List[UserRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM users ORDER BY is_online DESC, last_seen DESC LIMIT ?",
                [limit],
            ).fetchall()
        return [self._row_to_user(r) for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row) -> UserRecord:
        user_id, username, password_hash, avatar, is_online, last_seen, created_at = row
        return UserRecord(
            id=user_id,
            username=username,
            passwordHash=password_hash,
            avatar=avatar,
            isOnline=is_online,
            lastSeen=from_db_timestamp(last_seen),
            createdAt=from_db_timestamp(created_at),
        )
