"""Run blocking store calls off the event loop.

DuckDB queries block, so every store call from the chat core goes through
``run_query``, which executes it on the default thread-pool executor. No
registry lock is held by the caller while a query runs. Failures are
logged with their traceback and re-raised as ``StorageFailure`` carrying a
generic reason; the originating connection stays usable.
"""
import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from .errors import StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_query(action: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await ``fn(*args, **kwargs)`` in the executor.

    Args:
        action: Short description used in the error reason
                (e.g. "load room messages" -> "Failed to load room messages").
        fn: Blocking store method.

    Raises:
        StorageFailure: If ``fn`` raises anything other than ``ValueError``.
    """
    call = functools.partial(fn, *args, **kwargs)
    try:
        return await asyncio.get_event_loop().run_in_executor(None, call)
    except ValueError:
        # Stores use ValueError for caller mistakes (e.g. duplicate username).
        raise
    except Exception as exc:
        logger.exception(f"[Storage] {action} failed: {exc}")
        raise StorageFailure(f"Failed to {action}") from exc
