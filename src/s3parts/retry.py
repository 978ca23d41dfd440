"""Retry policy for idempotent S3 calls.

Part uploads, direct PUTs and the completion call are retried on transient
failures with exponential backoff and full jitter: the n-th retry sleeps a
random time in ``[0, min(max_delay, base_delay * 2 ** (n - 1))]``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from s3parts import metrics
from s3parts.config import RetryConfig
from s3parts.errors import S3Error, TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# S3 error codes that are worth retrying regardless of HTTP status
RETRYABLE_CODES = frozenset(
    {
        "RequestError",
        "RequestTimeout",
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "InternalError",
        "ExpiredToken",
        "ExpiredTokenException",
        "SlowDown",
    }
)


def is_retryable(exc: BaseException) -> bool:
    """Return True if ``exc`` is a transient failure.

    Connection-level errors are always transient. Server errors are
    transient when their code is in ``RETRYABLE_CODES`` or their status is
    5xx or 429.
    """
    if isinstance(exc, TransientNetworkError):
        return True
    if isinstance(exc, S3Error):
        if exc.code in RETRYABLE_CODES:
            return True
        return exc.http_status >= 500 or exc.http_status == 429
    return False


@dataclass
class RetryPolicy:
    """Exponential backoff with full jitter.

    Attributes:
        max_attempts: Total attempts per call, including the first.
        base_delay: Backoff unit in seconds.
        max_delay: Cap on a single backoff sleep in seconds.
        jitter: Randomize each sleep in ``[0, delay]``.
        retryable: Predicate deciding whether an error is transient.
        sleep: Coroutine used to wait between attempts.
    """

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 10.0
    jitter: bool = True
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay = random.uniform(0, delay)
        return delay

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        operation: str = "request",
        log_extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> T:
        """Await ``fn(*args, **kwargs)``, retrying transient failures.

        Args:
            fn: The coroutine function to call.
            operation: Name used in log messages.
            log_extra: Extra fields attached to retry log records.

        Returns:
            The result of the first successful attempt.

        Raises:
            Exception: The last error, once it is not retryable or the
                attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retryable(exc):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s); retrying in %.2fs",
                    operation,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                    extra={**(log_extra or {}), "attempt": attempt},
                )
                metrics.record_retry()
                await self.sleep(delay)
                attempt += 1
