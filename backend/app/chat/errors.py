"""Rejection taxonomy for chat operations.

Every error carries a human-readable ``reason`` and a stable ``code``. The
WebSocket loop reports them to the originating connection only; none of
them closes the connection.
"""


class ChatError(Exception):
    """Base class for all rejections reported back to a single connection."""

    code = "error"
    event_type = "error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_event(self) -> dict:
        return {"type": self.event_type, "error": self.reason, "code": self.code}


class AuthenticationFailure(ChatError):
    """Bad, expired or unknown credential. The connection stays open."""
    code = "authentication_failed"
    event_type = "auth_error"


class AuthorizationRequired(ChatError):
    """Data operation attempted before a successful authentication."""
    code = "authorization_required"


class ValidationError(ChatError):
    """Malformed event, empty content or missing recipient."""
    code = "validation_error"


class RateLimitExceeded(ChatError):
    """Send throttle hit; clears itself when the window resets."""
    code = "rate_limited"


class NotFound(ChatError):
    """Unknown recipient, user or room."""
    code = "not_found"


class StorageFailure(ChatError):
    """History or directory query failed; details are logged, not sent."""
    code = "operation_failed"
