"""
Utility functions and helpers.
"""

from cronocam.utils.ratelimit import RateLimiter
from cronocam.utils.retry import RetryConfig, run_with_retry

__all__ = [
    "RateLimiter",
    "RetryConfig",
    "run_with_retry",
]
