"""
Retry logic with exponential backoff for GitHub API calls.
"""

import asyncio
import functools
import logging
import random

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {502, 503, 504}
RETRYABLE_EXCEPTIONS = (
    httpx.ConnectError,
    httpx.TimeoutException,
)


def retry_with_backoff(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator that retries a coroutine on transient failures.

    Retries on connect errors, timeouts, and HTTP 502/503/504.
    Does NOT retry on 4xx (auth failures, missing resources, validation errors).
    Uses exponential backoff with jitter. Cancellation interrupts the sleep.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except RETRYABLE_EXCEPTIONS as e:
                    if attempt >= max_retries:
                        raise
                    delay = base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                    logger.warning(
                        "Retry %d/%d for %s after %s (delay %.1fs)",
                        attempt + 1, max_retries, func.__name__, type(e).__name__, delay,
                    )
                    await asyncio.sleep(delay)
                except httpx.HTTPStatusError as e:
                    if e.response.status_code not in RETRYABLE_STATUS_CODES or attempt >= max_retries:
                        raise
                    delay = base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                    logger.warning(
                        "Retry %d/%d for %s after HTTP %d (delay %.1fs)",
                        attempt + 1, max_retries, func.__name__,
                        e.response.status_code, delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
