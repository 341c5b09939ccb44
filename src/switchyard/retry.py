"""Same-provider retry for non-streaming calls.

Connection-class failures are never retried in place: the routing engine
hands them to the fallback chain instead. Streams are never retried since
their first events may already have reached the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from switchyard._http import RETRYABLE_STATUS_CODES
from switchyard.errors import ConfigurationError, ProviderError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``max_attempts`` counts the first call, so ``1`` disables retries.
    ``deadline_s`` bounds the total time spent sleeping between attempts.

    Example:
        RetryPolicy(max_attempts=3, initial_delay_s=0.25, jitter=False)
    """

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    deadline_s: float | None = 15.0

    def __post_init__(self) -> None:
        """Validate the policy."""
        problems = [
            label
            for label, bad in (
                ("max_attempts must be >= 1", self.max_attempts < 1),
                ("initial_delay_s must be >= 0", self.initial_delay_s < 0),
                ("backoff_multiplier must be > 0", self.backoff_multiplier <= 0),
                ("max_delay_s must be >= 0", self.max_delay_s < 0),
                (
                    "deadline_s must be >= 0 or None",
                    self.deadline_s is not None and self.deadline_s < 0,
                ),
            )
            if bad
        ]
        if problems:
            raise ConfigurationError(
                f"Invalid RetryPolicy: {'; '.join(problems)}",
                hint="Use RetryPolicy(max_attempts=1) to disable retries.",
            )

    def delay_for(self, retry: int, *, retry_after_s: float | None = None) -> float:
        """Seconds to sleep before retry number *retry* (1-based).

        Full jitter draws uniformly from ``[0, capped backoff]``. A server's
        ``Retry-After`` is a floor, never shortened by jitter.
        """
        capped = min(
            self.max_delay_s,
            self.initial_delay_s * self.backoff_multiplier ** max(0, retry - 1),
        )
        delay = random.uniform(0, capped) if self.jitter and capped > 0 else capped  # noqa: S311
        if retry_after_s is not None:
            delay = max(delay, retry_after_s)
        return delay


def should_retry_generate(exc: BaseException) -> bool:
    """Whether a failed *generate* call is worth repeating on the same provider.

    Only ``ProviderError`` qualifies: retriable, or carrying a retryable
    status code, and never connection-class.
    """
    if not isinstance(exc, ProviderError) or exc.connection:
        return False
    return exc.retriable or exc.status_code in RETRYABLE_STATUS_CODES


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_generate,
) -> T:
    """Await ``factory()`` until it succeeds or the policy gives up.

    The last exception propagates unchanged. A server-requested delay that
    would overrun ``deadline_s`` ends the retries instead of being shortened.
    """
    deadline = None if policy.deadline_s is None else time.monotonic() + policy.deadline_s
    attempt = 1
    while True:
        try:
            return await factory()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            retry_after = exc.retry_after_s if isinstance(exc, ProviderError) else None
            delay = policy.delay_for(attempt, retry_after_s=retry_after)
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0 or (retry_after is not None and retry_after > remaining):
                    raise
                delay = min(delay, remaining)
            logger.debug(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
