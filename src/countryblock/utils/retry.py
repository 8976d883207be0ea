"""
countryblock.utils.retry
~~~~~~~~~~~~~~~~~~~~~~~~

Retry decorator with exponential back-off and jitter for the prefix
source transport.  Only transient failures (connection errors, timeouts)
should be listed in *exceptions*; everything else propagates at once.

Example
-------
>>> from countryblock.utils.retry import retry
>>> @retry(attempts=3, delay=0.5, exceptions=(ConnectionError,))
... def download():
...     ...
"""

from __future__ import annotations

import logging
import random
import time
from functools import wraps
from typing import Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def retry(
    *,
    attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    jitter: float = 0.1,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Return a decorator that calls the wrapped function up to *attempts* times.

    The wait before retry *n* is ``delay * backoff**(n-1)`` give or take
    ``jitter`` of itself.  The last exception is re-raised unchanged.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            wait = delay
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    if attempt == attempts:
                        raise
                    pause = max(wait * (1 + random.uniform(-jitter, jitter)), 0)
                    logger.warning(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        func.__name__,
                        attempt,
                        attempts,
                        exc,
                        pause,
                    )
                    time.sleep(pause)
                    wait *= backoff
            raise AssertionError("unreachable")

        return wrapper

    return decorator
