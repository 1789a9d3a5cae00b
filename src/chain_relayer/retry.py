"""
Bounded retry and backoff policy.

Shared by connection handling (endpoint connect attempts, source
reconnection with exponential backoff) and by transaction resubmission
(fixed delay).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retry policy.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        base_delay: Delay in seconds applied after the first attempt
        multiplier: Growth factor per attempt (1.0 = fixed, 2.0 = doubling)
        max_delay: Upper bound for a single delay, if any
    """
    max_attempts: int
    base_delay: float
    multiplier: float = 1.0
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be non-negative, got {self.base_delay}")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")

    @classmethod
    def fixed(cls, max_attempts: int, delay: float) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, base_delay=delay)

    @classmethod
    def exponential(cls, max_attempts: int, base_delay: float, max_delay: float | None = None) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, base_delay=base_delay, multiplier=2.0, max_delay=max_delay)

    def delay_for(self, attempt: int) -> float:
        """Delay associated with the given 1-based attempt number."""
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def delays(self) -> Iterator[float]:
        for attempt in range(1, self.max_attempts + 1):
            yield self.delay_for(attempt)


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_retry: Callable[[int, float, BaseException], None] | None = None,
    delay_first: bool = False,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: Coroutine factory receiving the 1-based attempt number
        policy: Retry policy bounding attempts and delays
        retry_on: Exception types that trigger another attempt
        on_retry: Called with (attempt, delay, error) before sleeping for a retry
        delay_first: Sleep before every attempt instead of between attempts
        sleep: Awaitable sleep function, defaults to asyncio.sleep

    Returns:
        Result of the first successful attempt

    Raises:
        The last error raised by ``operation`` once all attempts failed
    """
    sleep = sleep or asyncio.sleep

    for attempt in range(1, policy.max_attempts + 1):
        if delay_first:
            await sleep(policy.delay_for(attempt))
        try:
            return await operation(attempt)
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.debug(f"Giving up after {attempt} attempts: {e}")
                raise
            if delay_first:
                next_delay = policy.delay_for(attempt + 1)
            else:
                next_delay = policy.delay_for(attempt)
            if on_retry:
                on_retry(attempt, next_delay, e)
            if not delay_first:
                await sleep(next_delay)

    # max_attempts >= 1 guarantees the loop returns or raises
    raise AssertionError("unreachable")
