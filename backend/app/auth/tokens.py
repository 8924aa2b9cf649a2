"""Access tokens.

Tokens are HS256 JWTs whose ``sub`` claim is the user id. The WebSocket
``authenticate`` event and the HTTP bearer dependency both resolve a token
through ``TokenService.verify``.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import jwt

from app.chat.errors import AuthenticationFailure
from app.config import get_config
from app.storage.schemas import utcnow

logger = logging.getLogger(__name__)


class TokenService:
    """Issues and verifies access tokens.

    Args:
        secret_key: HMAC signing key.
        algorithm: JWT algorithm (HS256).
        expire_minutes: Token lifetime.
        clock: Current-time source, injectable for tests.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 60 * 24,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.expire_minutes = expire_minutes
        self._clock = clock

    def issue(self, user_id: str) -> str:
        now = self._clock()
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> str:
        """Return the user id carried by ``token``.

        Raises:
            AuthenticationFailure: If the token is malformed, badly signed,
                expired or has no subject.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationFailure("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"[Auth] Token rejected: {e}")
            raise AuthenticationFailure("Invalid token")
        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationFailure("Invalid token")
        return user_id


_token_service: Optional[TokenService] = None


def get_token_service() -> TokenService:
    """Return the shared token service, built from config on first use."""
    global _token_service
    if _token_service is None:
        config = get_config()
        _token_service = TokenService(
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.secrets.jwt.algorithm,
            expire_minutes=config.auth.token_expire_minutes,
        )
    return _token_service


def set_token_service(service: Optional[TokenService]) -> None:
    """Replace (or clear, with ``None``) the shared token service."""
    global _token_service
    _token_service = service
