"""
Resilience utilities: retry with exponential backoff and a token bucket
rate limiter for outbound model and CAPTCHA service calls.
"""

import asyncio
import functools
import random
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from loguru import logger

T = TypeVar("T")


def _backoff_delay(attempt: int, base_delay: float, max_delay: float,
                   exponential_base: float, jitter: bool) -> float:
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random())
    return delay


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None
):
    """
    Decorator for retry with exponential backoff.

    Only the exception types listed in ``exceptions`` are retried; anything
    else propagates on the first failure.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Add random jitter to spread retries out
        exceptions: Tuple of exception types to retry
        on_retry: Callback called with (exception, attempt) before each retry
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        def _before_retry(error: Exception, attempt: int) -> float:
            delay = _backoff_delay(attempt, base_delay, max_delay, exponential_base, jitter)
            logger.warning(
                f"🔁 {func.__name__} attempt {attempt + 1}/{max_retries + 1} failed: {error}. "
                f"Retrying in {delay:.1f}s..."
            )
            if on_retry:
                on_retry(error, attempt)
            return delay

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        logger.error(f"❌ {func.__name__} failed after {max_retries + 1} attempts: {e}")
                        raise
                    await asyncio.sleep(_before_retry(e, attempt))

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        logger.error(f"❌ {func.__name__} failed after {max_retries + 1} attempts: {e}")
                        raise
                    time.sleep(_before_retry(e, attempt))

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


class RateLimiter:
    """
    Token bucket rate limiter for API calls.
    """

    def __init__(self, rate: float, burst: int = 1, name: str = "api"):
        """
        Args:
            rate: Tokens per second
            burst: Maximum burst size
            name: Label used in log messages
        """
        self.rate = rate
        self.burst = burst
        self.name = name
        self.tokens = float(burst)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a token is available."""
        async with self._lock:
            now = time.monotonic()
            self.tokens = min(self.burst, self.tokens + (now - self.last_update) * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                logger.debug(f"⏳ {self.name} rate limit: waiting {wait_time:.1f}s")
                await asyncio.sleep(wait_time)
                self.tokens = 0
                self.last_update = time.monotonic()
            else:
                self.tokens -= 1


# Shared limiter for language model requests (semantic and vision tiers)
model_rate_limiter = RateLimiter(rate=2.0, burst=5, name="model")
