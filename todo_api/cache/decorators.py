import logging
from functools import wraps
from typing import Callable

from todo_api.core.errors import CacheError

logger = logging.getLogger(__name__)


def absorb_cache_errors(action: str):
    """
    Decorator for async best-effort cache calls.

    A CacheError raised by the wrapped function is logged and turned into a
    ``None`` result. Every other exception propagates.
    Example:
      @absorb_cache_errors("put task")
      async def _cache_put(self, task): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except CacheError as e:
                logger.error(f"Failed to {action} in Redis: {e}")
                return None

        return wrapper

    return decorator
