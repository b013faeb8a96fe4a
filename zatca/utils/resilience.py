# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Resilience Utilities for ZATCA

Retry with a backoff schedule for submissions. Only failures the
authority may recover from (timeouts, throttling, 5xx) are retried.
"""

import functools
import time
from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar

from zatca.exceptions import SubmissionError
from zatca.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger("zatca.resilience")


@dataclass(frozen=True)
class BackoffPolicy:
    """Attempt budget and the delay before each retry (seconds)"""
    max_attempts: int = 3
    delays: tuple = (30, 60, 120)

    def delay_for(self, retry: int) -> float:
        """Delay before retry number `retry` (1-based); the last delay repeats"""
        if not self.delays:
            return 0
        return self.delays[min(retry, len(self.delays)) - 1]

    @classmethod
    def from_config(cls, config) -> "BackoffPolicy":
        return cls(max_attempts=max(1, int(config.max_attempts)), delays=tuple(config.backoff))


def is_retryable(error: Exception) -> bool:
    """True for SubmissionErrors the authority may recover from"""
    return isinstance(error, SubmissionError) and bool(error.retryable)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    delays: Sequence[float] | None = None,
    exceptions: tuple = (Exception,),
    retry_if: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[Exception, int], None] | None = None,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Decorator for retry with backoff.

    Args:
        max_retries: Retries after the first call
        initial_delay: First delay for exponential backoff
        max_delay: Upper bound for exponential backoff
        exponential_base: Backoff multiplier
        delays: Explicit schedule; overrides the exponential settings
        exceptions: Exception types that may be retried
        retry_if: Extra predicate; False re-raises immediately
        on_retry: Called with (error, retry number) before sleeping
        sleep: Sleep function
    """
    policy = BackoffPolicy(max_attempts=max_retries + 1, delays=tuple(delays)) if delays is not None else None

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries or (retry_if is not None and not retry_if(e)):
                        raise

                    retry = attempt + 1
                    if on_retry:
                        on_retry(e, retry)

                    wait = policy.delay_for(retry) if policy else delay
                    logger.warning(
                        f"Retry {retry}/{max_retries} for {func.__name__} in {wait}s: {e}",
                        retry=retry,
                        delay=wait
                    )

                    sleep(wait)
                    delay = min(delay * exponential_base, max_delay)

            raise RuntimeError(f"Retry failed for {func.__name__} with no exception captured")

        return wrapper

    return decorator
