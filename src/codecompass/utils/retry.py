"""Fixed-delay retry policy shared by every remote call."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from codecompass.exceptions import (
    AuthenticationError,
    NotFoundError,
    RetryExhaustedError,
    is_rate_limit_error,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    """Run a callable up to ``max_attempts`` times with a fixed pause between tries.

    Rate-limit class errors wait ``rate_limit_delay`` seconds instead of ``delay``.
    Errors listed in ``give_up_on`` are re-raised immediately.
    """

    max_attempts: int = 3
    delay: float = 2.0
    rate_limit_delay: float = 5.0
    give_up_on: tuple[type[BaseException], ...] = (AuthenticationError, NotFoundError)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0 or self.rate_limit_delay < 0:
            raise ValueError("retry delays must not be negative")

    def delay_for(self, error: BaseException) -> float:
        """Return how long to wait after *error* before the next attempt."""
        if is_rate_limit_error(error):
            return self.rate_limit_delay
        return self.delay

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        description: str = "operation",
        **kwargs: Any,
    ) -> T:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func(*args, **kwargs)
            except self.give_up_on:
                raise
            except Exception as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                wait = self.delay_for(exc)
                LOGGER.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description,
                    attempt,
                    self.max_attempts,
                    exc,
                    wait,
                )
                self.sleep(wait)

        raise RetryExhaustedError(self.max_attempts, last_error) from last_error
