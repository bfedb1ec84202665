"""
Bounded exponential-backoff retries for external calls.

Every call that leaves the process (catalog, inference, persistence) goes
through ``retry_async``. Retryable conditions are rate limits, 5xx responses,
timeouts and transport failures; everything else propagates on first failure.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
import openai

from facetmatch.config.logging import get_logger
from facetmatch.config.settings import Settings
from facetmatch.v1.core.exceptions import FacetMatchException

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 10.0
    multiplier: float = 2.0
    # Fraction of the delay added on top as random jitter. Never subtracted.
    jitter: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay_s=settings.retry_initial_delay_s,
            max_delay_s=settings.retry_max_delay_s,
            multiplier=settings.retry_backoff_multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to sleep after failed ``attempt`` (1-based) before the next one."""
        delay = min(
            self.max_delay_s, self.initial_delay_s * (self.multiplier ** (attempt - 1))
        )
        if self.jitter > 0:
            delay += delay * self.jitter * random.random()
        return delay


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception as transient (retry) or fatal (propagate)."""
    if isinstance(exc, FacetMatchException):
        return exc.retryable

    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True

    if isinstance(
        exc,
        (
            openai.RateLimitError,
            openai.APITimeoutError,
            openai.APIConnectionError,
            openai.InternalServerError,
        ),
    ):
        return True

    return isinstance(exc, (asyncio.TimeoutError, ConnectionError))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    retryable: Callable[[BaseException], bool] = is_retryable,
    *,
    operation: str = "external_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``fn`` until it succeeds, a fatal error occurs, or attempts run out.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt
        policy: Backoff policy, defaults to 3 attempts / 1s / 10s / x2
        retryable: Predicate deciding whether an error is transient
        operation: Name used in log lines
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The first successful result of ``fn``
    """
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.max_attempts or not retryable(e):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Retrying after transient failure",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_s=round(delay, 3),
                error=f"{e.__class__.__name__}: {e}",
            )
            await sleep(delay)
            attempt += 1
