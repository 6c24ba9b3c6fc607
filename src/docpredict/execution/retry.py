"""Retry strategies for page-level prediction calls.

A strategy answers two questions after a failed attempt: may another attempt
be made, and how long to wait first. Budgets count *total* attempts, so
``max_attempts=3`` means the first call plus two retries.

Example:
    >>> strategy = ExponentialBackoff(max_attempts=3, base_delay=1.0, jitter=False)
    >>> [strategy.should_retry(n) for n in (1, 2, 3)]
    [True, True, False]
    >>> [strategy.next_delay(n) for n in (1, 2)]
    [1.0, 2.0]
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from docpredict.core.models import utcnow
from docpredict.core.settings import DocPredictSettings, RetryBackoff

T = TypeVar("T")

RetryPredicate = Callable[[Exception], bool]


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another attempt may follow attempt number ``attempt``."""
        ...


@dataclass
class _Budgeted(RetryStrategy):
    max_attempts: int = 3
    retry_if: RetryPredicate | None = None

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_attempts:
            return False
        if error is not None and self.retry_if is not None:
            return self.retry_if(error)
        return True


@dataclass
class ExponentialBackoff(_Budgeted):
    """Delay = min(base_delay * multiplier ** (attempt - 1), max_delay) +/- jitter."""

    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** max(attempt - 1, 0)), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay


@dataclass
class LinearBackoff(_Budgeted):
    """Delay = base_delay + increment * (attempt - 1), capped at max_delay."""

    base_delay: float = 1.0
    increment: float = 1.0
    max_delay: float = 30.0

    def next_delay(self, attempt: int) -> float:
        return min(self.base_delay + self.increment * max(attempt - 1, 0), self.max_delay)


@dataclass
class ConstantBackoff(_Budgeted):
    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class NoRetry(RetryStrategy):
    """Single attempt."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Attempt bookkeeping for one retried operation.

    Example:
        >>> ctx = RetryContext(ConstantBackoff(max_attempts=3, delay=0))
        >>> result = await ctx.run_async(client.predict, rows, "wht_v4")
        >>> ctx.attempts
        1
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        return self.attempt

    @property
    def elapsed_seconds(self) -> float:
        return (utcnow() - self.started_at).total_seconds()

    async def run_async(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func`` until it succeeds or the strategy gives up.

        Raises:
            The last exception once no further attempt is allowed
        """
        while True:
            self.attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                await asyncio.sleep(delay)


def strategy_from_settings(
    settings: DocPredictSettings,
    retry_if: RetryPredicate | None = None,
) -> RetryStrategy:
    """Strategy named by ``retry_backoff``, sized by ``max_attempts`` and ``retry_delay_seconds``.

    A single attempt means no retries; a zero delay retries immediately
    whatever the backoff.
    """
    if settings.max_attempts <= 1:
        return NoRetry()
    delay = settings.retry_delay_seconds
    if delay == 0 or settings.retry_backoff is RetryBackoff.CONSTANT:
        return ConstantBackoff(max_attempts=settings.max_attempts, retry_if=retry_if, delay=delay)
    if settings.retry_backoff is RetryBackoff.LINEAR:
        return LinearBackoff(
            max_attempts=settings.max_attempts,
            retry_if=retry_if,
            base_delay=delay,
            increment=delay,
        )
    return ExponentialBackoff(
        max_attempts=settings.max_attempts,
        retry_if=retry_if,
        base_delay=delay,
    )


__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "LinearBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "strategy_from_settings",
]
