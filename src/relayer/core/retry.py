"""
Shared retry utility.

One parameterized loop used by submission and status polling. The policy
(attempt budget, backoff) and the transient-vs-permanent classification are
injected by each call site.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TransientPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry budget for one operation.

    Attributes:
        max_attempts: Total number of calls, including the first one
        backoff_seconds: Delay before the second attempt
        backoff_multiplier: Growth factor per attempt (1.0 = fixed backoff)
        max_backoff_seconds: Cap on the delay
        jitter_seconds: Uniform random delay added to each backoff
    """
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    backoff_multiplier: float = 1.0
    max_backoff_seconds: Optional[float] = None
    jitter_seconds: float = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        if self.max_backoff_seconds is not None:
            delay = min(delay, self.max_backoff_seconds)
        if self.jitter_seconds:
            delay += random.uniform(0, self.jitter_seconds)
        return delay


class RetryExhausted(Exception):
    """Raised when every attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    is_transient: TransientPredicate,
    label: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or the policy is exhausted.

    ``operation`` receives the 1-based attempt number. Errors for which
    ``is_transient`` is false propagate immediately. Cancellation is never
    treated as a failure.

    Raises:
        RetryExhausted: After ``policy.max_attempts`` transient failures
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_transient(e):
                raise
            if attempt >= policy.max_attempts:
                logger.warning(
                    "retry_exhausted",
                    operation=label,
                    attempts=attempt,
                    error=str(e),
                )
                raise RetryExhausted(attempt, e) from e

            delay = policy.delay_for(attempt)
            logger.info(
                "retry_scheduled",
                operation=label,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)


async def gather_or_cancel(awaitables: Iterable[Awaitable[T]]) -> List[T]:
    """
    Await all awaitables concurrently.

    On the first failure (or cancellation of the caller) the remaining ones
    are cancelled before the error propagates.
    """
    tasks = [asyncio.ensure_future(a) for a in awaitables]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
