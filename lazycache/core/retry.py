"""Caller-side retry with exponential backoff.

The cache itself never retries a failed construction; callers that want a
second attempt wrap their own operation with :func:`retry`.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger("lazycache.retry")

_F = TypeVar("_F", bound=Callable[..., Any])


def retry(
    max_attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    backoff_factor: float = 2.0,
    retryable: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[_F], _F]:
    """Retry the decorated callable on ``retryable`` exceptions.

    Args:
        max_attempts: Total attempts, including the first call.
        base_delay: Pause before the second attempt, in seconds.
        max_delay: Upper bound for any single pause.
        backoff_factor: Multiplier applied to the pause after each failure.
        retryable: Exception types that trigger another attempt.
        sleep: Pause function, replaceable in tests.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: _F) -> _F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = base_delay
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    if attempt >= max_attempts:
                        logger.warning(
                            "%s gave up after %d attempt(s): %s",
                            func.__qualname__, attempt, exc,
                        )
                        raise
                    pause = min(delay, max_delay)
                    logger.info(
                        "%s attempt %d/%d failed (%s), retrying in %.2fs",
                        func.__qualname__, attempt, max_attempts, exc, pause,
                    )
                    sleep(pause)
                    delay *= backoff_factor
                    attempt += 1

        return wrapper  # type: ignore[return-value]

    return decorator
