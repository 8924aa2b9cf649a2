"""Account registration and login.

Passwords are stored as ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``
with a per-user random salt. Both operations return the public user and a
fresh access token.
"""
import hashlib
import hmac
import logging
import secrets
from typing import Optional

from pydantic import BaseModel

from app.config import get_config
from app.storage.base import UserDirectory
from app.storage.schemas import UserPublic, UserRecord
from app.storage.users import DuckDBUserDirectory

from .tokens import TokenService, get_token_service

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 6


class AccountError(Exception):
    """Registration or login rejected.

    Attributes:
        status_code: HTTP status the router maps this to.
    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthResult(BaseModel):
    token: str
    user: UserPublic


def hash_password(password: str, salt: Optional[str] = None) -> str:
    if salt is None:
        salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, _, salt, _ = stored.split("$", 3)
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored)


def avatar_for(username: str) -> str:
    """Initial-letter avatar shown by clients."""
    return username[0].upper()


class AccountService:
    """Registers and logs in users against the directory."""

    def __init__(self, directory: UserDirectory, tokens: TokenService) -> None:
        self._directory = directory
        self._tokens = tokens

    def register(self, username: str, password: str) -> AuthResult:
        """Create an account.

        Raises:
            AccountError: 400 for invalid input, 409 if the username is taken.
        """
        username = (username or "").strip()
        if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
            raise AccountError(
                f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters"
            )
        if "|" in username:
            raise AccountError("Username may not contain '|'")
        if len(password or "") < PASSWORD_MIN_LENGTH:
            raise AccountError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")

        if self._directory.find_by_username(username) is not None:
            raise AccountError("Username already taken", status_code=409)
        try:
            user = self._directory.create(username, hash_password(password), avatar_for(username))
        except ValueError:
            raise AccountError("Username already taken", status_code=409)

        logger.info(f"[Auth] Registered {user.username} ({user.id})")
        return self._result(user)

    def login(self, username: str, password: str) -> AuthResult:
        """Check credentials.

        Raises:
            AccountError: 401 for an unknown user or wrong password.
        """
        user = self._directory.find_by_username((username or "").strip())
        if user is None or not verify_password(password or "", user.passwordHash):
            logger.info(f"[Auth] Failed login for {username!r}")
            raise AccountError("Invalid credentials", status_code=401)
        logger.info(f"[Auth] {user.username} ({user.id}) logged in")
        return self._result(user)

    def _result(self, user: UserRecord) -> AuthResult:
        return AuthResult(token=self._tokens.issue(user.id), user=user.public())


def get_account_service() -> AccountService:
    config = get_config()
    return AccountService(
        DuckDBUserDirectory.get_instance(config.storage.users_db),
        get_token_service(),
    )
