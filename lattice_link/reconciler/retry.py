# File: lattice_link/reconciler/retry.py
"""Bounded exponential backoff for provider calls."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..errors import OperationError, TransientProviderError
from ..metrics import METRICS

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    base_delay: float = 1.0
    factor: float = 2.0
    max_attempts: int = 5
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            base_delay=settings.retry_base_delay,
            factor=settings.retry_factor,
            max_attempts=settings.retry_max_attempts,
            max_delay=settings.retry_max_delay,
        )


def call_with_retry(fn: Callable[[], T], policy: RetryPolicy, description: str = "",
                    sleep: Callable[[float], None] = time.sleep,
                    max_attempts: Optional[int] = None) -> T:
    """Run ``fn``, retrying TransientProviderError with exponential backoff.

    Any other exception propagates untouched. When the attempts run out the
    last transient error is surfaced as an OperationError.
    """
    attempts = max_attempts or policy.max_attempts
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except TransientProviderError as e:
            METRICS["provider_errors"].labels(kind="transient").inc()
            if attempt >= attempts:
                raise OperationError(
                    f"{description or 'provider call'} failed after {attempt} attempts: {e}"
                ) from e
            delay = policy.delay(attempt)
            logger.warning(
                f"{description or 'provider call'}: transient error "
                f"(attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}"
            )
            sleep(delay)


def wait_until_deleted(get: Callable[[], Optional[object]], policy: RetryPolicy, attempts: int,
                       description: str = "", sleep: Callable[[float], None] = time.sleep) -> None:
    """Poll ``get`` until the provider no longer returns the resource.

    A resource still reported (even as deleting) blocks the delete of its
    parent, so only a missing resource counts as gone.
    """
    attempt = 0
    while call_with_retry(get, policy, description=description, sleep=sleep) is not None:
        attempt += 1
        if attempt > attempts:
            raise OperationError(f"{description or 'resource'} still present after {attempts} checks")
        sleep(policy.delay(attempt))
