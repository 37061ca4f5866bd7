"""
Retry policy shared by every endpoint fetcher.

A RetryPolicy is an immutable value: attempts budget, backoff function,
retry predicate and the sleeper used between attempts. Tests inject a fake
sleeper to record delays without waiting.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, TypeVar

from connectors.errors import TransientUpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]
BackoffFn = Callable[[int], float]
RetryPredicate = Callable[[BaseException], bool]

DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_BASE_DELAY: float = 1.0


def is_transient(exc: BaseException) -> bool:
    """Only transient upstream failures are worth another attempt."""
    return isinstance(exc, TransientUpstreamError)


def exponential_backoff(base_delay: float) -> BackoffFn:
    """Delay before retry ``attempt`` (1-based): base * 2^(attempt - 1)."""

    def _delay(attempt: int) -> float:
        return base_delay * (2 ** (attempt - 1))

    return _delay


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    retry_predicate: RetryPredicate = is_transient
    sleep: Sleeper = asyncio.sleep
    backoff: BackoffFn | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        backoff = self.backoff or exponential_backoff(self.base_delay)
        return backoff(attempt)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return replace(self, max_attempts=max(1, max_attempts))

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "") -> T:
        """
        Await ``operation`` until it succeeds, the predicate rejects the
        error, or the attempt budget runs out. The last error is re-raised.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retry_predicate(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.debug(
                    "Retrying %s after transient failure (attempt %d/%d, sleeping %.2fs): %s",
                    label or "operation",
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                await self.sleep(delay)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        from config import settings

        return cls(
            max_attempts=settings.FETCH_MAX_ATTEMPTS,
            base_delay=settings.FETCH_BASE_DELAY_SECONDS,
        )
