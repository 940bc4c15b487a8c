"""Bounded retry policies for convoy's waits.

Two policies cover everything convoy waits on:

    ConstantBackoff: the readiness probe (N attempts, fixed interval).
    ExponentialBackoff: container health polling (1s, 2s, 4s ... capped).

``max_retries`` counts retries, not calls: ``RetryContext.run`` calls the
function at most ``max_retries + 1`` times and never sleeps after the last
call.

Example:
    >>> from convoy.core.retry import ConstantBackoff, RetryContext
    >>>
    >>> ctx = RetryContext(ConstantBackoff(max_retries=9, delay=10.0))
    >>> ctx.run(fetch_health)  # up to 10 calls, 10s apart
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")


@dataclass
class RetryStrategy(ABC):
    """Retry budget plus the delay schedule between calls.

    Attributes:
        max_retries: Retries allowed after the first call
        retryable_errors: Exception types worth retrying (None = any)
    """

    max_retries: int = 3
    retryable_errors: tuple[type[BaseException], ...] | None = None

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based)."""

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        if error is not None and self.retryable_errors is not None:
            return isinstance(error, self.retryable_errors)
        return True


@dataclass
class ConstantBackoff(RetryStrategy):
    """Same delay before every retry."""

    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class ExponentialBackoff(RetryStrategy):
    """``base_delay * multiplier ** attempt``, capped at ``max_delay``."""

    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0

    def next_delay(self, attempt: int) -> float:
        return min(self.base_delay * self.multiplier**attempt, self.max_delay)


@dataclass
class RetryContext:
    """Runs a callable under a strategy and records what happened.

    ``sleep`` is injectable so callers (and tests) control waiting;
    ``on_retry(attempt, error, delay)`` fires before each sleep.
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], None] = time.sleep
    attempts: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    _started: float = field(default_factory=time.monotonic, init=False, repr=False)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._started

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it returns.

        Re-raises the last error once the strategy gives up.
        """
        while True:
            self.attempts += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                retries_done = self.attempts - 1
                if not self.strategy.should_retry(retries_done, e):
                    raise
                delay = self.strategy.next_delay(retries_done)
                if self.on_retry:
                    self.on_retry(self.attempts, e, delay)
                self.sleep(delay)
