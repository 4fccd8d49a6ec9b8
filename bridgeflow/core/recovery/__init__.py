"""
Error Recovery Module

Error classification and the retry policy used when submitting operations.
"""

from .errors import (
    ErrorCategory,
    ErrorContext,
    RecoverableError,
    UnrecoverableError,
    RateLimitError,
    NetworkError,
    classify_error,
    is_duplicate_submission,
)
from .strategies import RetryConfig, RetryStrategy

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "RecoverableError",
    "UnrecoverableError",
    "RateLimitError",
    "NetworkError",
    "classify_error",
    "is_duplicate_submission",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
]
