#!/usr/bin/env python3
"""
Retry logic for calls to the deployment/execution service.

Only TransientServiceError is retried, with exponential backoff and a bounded
attempt count. When attempts are exhausted the last error is surfaced as
ServiceUnavailableError. Customer errors pass straight through.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import functools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple, Type

from omicsengine.core.errors import ServiceUnavailableError, TransientServiceError


logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """Delay growth between attempts."""

    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"
    IMMEDIATE = "immediate"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry configuration."""

    max_attempts: int = 3
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        if self.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.strategy == RetryStrategy.LINEAR_BACKOFF:
            return min(self.base_delay * attempt, self.max_delay)
        return 0.0


def call_with_retry(
    func: Callable,
    *args,
    policy: RetryPolicy = RetryPolicy(),
    operation: Optional[str] = None,
    exceptions: Tuple[Type[BaseException], ...] = (TransientServiceError,),
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
):
    """
    Call func, retrying the given exceptions with backoff.

    Args:
        func: Callable to invoke
        policy: Attempt count and backoff
        operation: Name used in log messages
        exceptions: Exception types that trigger a retry
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever func returns

    Raises:
        ServiceUnavailableError: If every attempt raised a retryable error
    """
    name = operation or getattr(func, "__name__", "service call")
    last_exception: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except exceptions as e:
            last_exception = e
            if attempt == policy.max_attempts:
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                name, attempt, policy.max_attempts, e, delay,
            )
            if delay > 0:
                sleep(delay)

    raise ServiceUnavailableError(
        f"{name} failed after {policy.max_attempts} attempt(s): {last_exception}",
        attempts=policy.max_attempts,
        cause=last_exception,
    )


def retry_on_transient(policy: RetryPolicy = RetryPolicy(), operation: Optional[str] = None):
    """
    Decorator form of call_with_retry.

    Example:
        @retry_on_transient(RetryPolicy(max_attempts=5))
        def start_run(...):
            ...
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return call_with_retry(func, *args, policy=policy, operation=operation, **kwargs)
        return wrapper
    return decorator
