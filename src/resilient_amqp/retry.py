"""RetryPolicy — exponential backoff around a fallible coroutine."""

from __future__ import annotations

import asyncio
import logging
import math
import random
from typing import TYPE_CHECKING, TypeVar

from .config import RetryConfig

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Bounded or unbounded retry with exponential backoff.

    The attempt counter starts at 0 and grows after every failed call, so
    ``max_tries=N`` means exactly N calls. After each failure the policy
    sleeps ``min(interval * backoff**count, max_interval)`` before deciding
    whether to go again; once ``count == max_tries`` the last error is
    re-raised untouched.
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        """Configure retry behavior; defaults to ``RetryConfig()`` (unbounded)."""
        self.config = config or RetryConfig()

    @property
    def max_tries(self) -> int:
        return self.config.max_tries

    def should_retry(self, attempt_count: int) -> bool:
        """Return True if another call is allowed after ``attempt_count`` failures."""
        return self.config.unbounded or attempt_count < self.config.max_tries

    def delay_for_attempt(self, attempt_count: int) -> float:
        """Return the wait in seconds after ``attempt_count`` earlier failures.

        Uses ``interval * backoff**attempt_count`` milliseconds, capped by
        ``max_interval``. With jitter the result is scaled by [0.5, 1.5].
        The growth saturates instead of overflowing, so a long outage keeps
        retrying at the cap.
        """
        if attempt_count < 0:
            return 0.0
        try:
            delay = self.config.interval * (self.config.backoff**attempt_count)
        except OverflowError:
            delay = math.inf
        if self.config.max_interval is not None:
            delay = min(delay, self.config.max_interval)
        if self.config.jitter:
            delay = delay * (0.5 + random.random())  # noqa: S311
        return max(0.0, delay) / 1000.0

    async def attempt(self, action: Callable[[], Awaitable[T]]) -> T:
        """Await ``action()`` until it succeeds or the tries run out.

        The final exception is re-raised as-is. Cancellation is never retried.
        """
        attempt_count = 0
        while True:
            try:
                return await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                delay = self.delay_for_attempt(attempt_count)
                logger.warning(
                    "Attempt %d%s failed: %r",
                    attempt_count + 1,
                    "" if self.config.unbounded else f"/{self.config.max_tries}",
                    e,
                )
                if delay > 0:
                    await _sleep(delay)
                attempt_count += 1
                if not self.should_retry(attempt_count):
                    logger.error(
                        "Giving up after %d attempt(s): %r", attempt_count, e
                    )
                    raise


async def _sleep(seconds: float) -> None:
    """Async sleep (overridable for tests)."""
    await asyncio.sleep(seconds)
