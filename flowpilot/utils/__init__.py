"""
Utility functions and helpers.
"""

from .logger import setup_logger
from .resilience import RateLimiter, retry_with_backoff

__all__ = ["setup_logger", "RateLimiter", "retry_with_backoff"]
