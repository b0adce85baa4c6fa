"""Retry policy for object store calls.

Only transient store failures are retried. Missing objects, denied access
and malformed payloads fail on the first attempt. Stages never retry on
their own; retry belongs to the store client.

Implementation: Uses tenacity library internally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

import tenacity
from tenacity.wait import wait_base

from relay.lib.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "retry_store_call"]

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for store retry behavior."""

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 10.0
    jitter: bool = True
    retry_on: Tuple[Type[BaseException], ...] = (StoreUnavailableError,)

    @classmethod
    def none(cls) -> "RetryConfig":
        """Single attempt; transient failures surface immediately."""
        return cls(max_attempts=1)

    def wait_strategy(self) -> wait_base:
        wait: wait_base = tenacity.wait_exponential(
            multiplier=self.backoff_seconds,
            min=self.backoff_seconds,
            max=self.max_backoff_seconds,
        )
        if self.jitter:
            wait = wait + tenacity.wait_random(0, self.backoff_seconds * 0.5)
        return wait


def retry_store_call(
    operation: Callable[[], T],
    config: RetryConfig,
    operation_name: str = "store call",
) -> T:
    """Execute a store operation, retrying transient failures.

    Args:
        operation: Zero-argument callable performing one store request
        config: Retry configuration
        operation_name: Name for logging (e.g. "get s3://bucket/key")

    Returns:
        Result of the operation

    Raises:
        The last exception raised by ``operation`` once attempts are exhausted,
        or immediately for exceptions not listed in ``config.retry_on``.
    """

    def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s failed (attempt %d of %d): %s; retrying in %.1fs",
            operation_name,
            retry_state.attempt_number,
            config.max_attempts,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(max(1, config.max_attempts)),
        wait=config.wait_strategy(),
        retry=tenacity.retry_if_exception_type(config.retry_on),
        before_sleep=before_sleep_handler,
        reraise=True,
    )

    try:
        return retryer(operation)
    except config.retry_on:
        logger.error("%s failed after %d attempts", operation_name, config.max_attempts)
        raise
