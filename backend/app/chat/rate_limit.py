"""Per-user fixed-window send throttle.

Windows are wall-clock: the first attempt after a window expires opens a
new one of ``window_seconds``. A burst straddling the boundary can pass
twice the limit; that is accepted for abuse mitigation.

State lives only in memory and is lost on restart. ``check`` has no await
points, so on the event loop it is atomic per call.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict

from .errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass
class RateState:
    count:           int
    window_reset_at: float


class RateLimiter:
    """Allow at most ``limit`` sends per user per window.

    Args:
        limit: Sends allowed per window (reference: 30).
        window_seconds: Window length in seconds (reference: 60).
        clock: Wall-clock source, injectable for tests.
    """

    def __init__(
        self,
        limit: int = 30,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._states: Dict[str, RateState] = {}

    def allow(self, user_id: str) -> bool:
        """Record one send attempt; False if it must be rejected."""
        now = self._clock()
        state = self._states.get(user_id)
        if state is None:
            state = self._states[user_id] = RateState(0, now + self.window_seconds)

        if now > state.window_reset_at:
            state.count = 0
            state.window_reset_at = now + self.window_seconds

        if state.count >= self.limit:
            return False

        state.count += 1
        return True

    def check(self, user_id: str) -> None:
        """Like :meth:`allow` but raises on rejection.

        Raises:
            RateLimitExceeded: If the user is over the limit for this window.
        """
        if not self.allow(user_id):
            logger.info(f"[RateLimit] User {user_id} exceeded {self.limit} messages per window")
            raise RateLimitExceeded("Rate limit exceeded. Please slow down.")

    def state_for(self, user_id: str) -> RateState | None:
        return self._states.get(user_id)

    def reset(self) -> None:
        self._states.clear()
