"""Retry with exponential backoff, shared by embedding and upstream calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from catalog_search.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Bounded retry policy.

    Attempt ``n`` (0-indexed) waits ``initial_delay * backoff_factor**n`` seconds,
    capped at ``max_delay``, before the next attempt. After ``max_attempts``
    attempts the last exception is re-raised.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            backoff_factor=settings.retry_backoff_factor,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * (self.backoff_factor**attempt), self.max_delay)

    def call(
        self,
        fn: Callable[..., T],
        *args,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        **kwargs,
    ) -> T:
        """Call ``fn`` and retry on the given exception types.

        Args:
            fn: Callable to invoke.
            retry_on: Exception types that trigger another attempt. Anything
                else propagates immediately.

        Returns:
            Whatever ``fn`` returns on the first successful attempt.
        """
        for attempt in range(self.max_attempts):
            try:
                return fn(*args, **kwargs)
            except retry_on as exc:
                if attempt >= self.max_attempts - 1:
                    logger.error(
                        "Giving up after %d attempts: %s",
                        self.max_attempts,
                        str(exc)[:200],
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d failed, retrying in %.2fs: %s",
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    str(exc)[:200],
                )
                self.sleep(delay)

        raise RuntimeError("RetryPolicy.call exhausted without result")
