# retry.py - Retry loop with linear backoff for the finalize call
import logging
import threading
import time
from typing import Callable, TypeVar

import requests

from cronocam.errors import (
    CancellationError,
    FinalizeRetryableError,
    RetriesExhaustedError,
)
from cronocam.utils.ratelimit import RateLimiter

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(self, max_retries: int = 3, backoff_unit: float = 1.0):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.backoff_unit = backoff_unit

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before the given attempt (attempt 0 never waits)."""
        return attempt * 2 * self.backoff_unit


def _backoff(delay: float, cancel: threading.Event | None) -> None:
    if cancel is None:
        time.sleep(delay)
    elif cancel.wait(delay):
        raise CancellationError("Cancelled during retry backoff")


def run_with_retry(
    operation: Callable[[], T],
    config: RetryConfig,
    rate_limiter: RateLimiter,
    cancel: threading.Event | None = None,
    description: str = "request",
) -> T:
    """
    Call ``operation`` until it succeeds, fails fatally, or retries run out.

    Every attempt first takes a permit from ``rate_limiter``. Attempt ``n``
    (``n >= 1``) is preceded by a wait of ``n * 2`` backoff units.

    Retries on:
    - FinalizeRetryableError raised by the operation
    - requests.RequestException (network errors, timeouts)

    Anything else, including FinalizeFatalError, propagates immediately.

    Raises:
        CancellationError: cancel was set during a permit wait or backoff
        RetriesExhaustedError: all max_retries + 1 attempts failed
    """
    last_error: Exception | None = None
    attempts = 0

    for attempt in range(config.max_retries + 1):
        if attempt > 0:
            delay = config.delay_for(attempt)
            logger.warning(
                f"{description}: Retry {attempt}/{config.max_retries} "
                f"after {delay:.1f}s ({last_error})"
            )
            _backoff(delay, cancel)

        rate_limiter.acquire(cancel)
        attempts += 1

        try:
            return operation()
        except FinalizeRetryableError as e:
            last_error = e
        except requests.RequestException as e:
            last_error = FinalizeRetryableError(f"{type(e).__name__}: {e}")

    raise RetriesExhaustedError(
        f"{description}: all {attempts} attempts failed, last error: {last_error}",
        attempts=attempts,
        last_error=last_error,
    )
