"""
Error Classification

Sorts failures into recoverable (worth another attempt) and unrecoverable
(retrying cannot help) so the sequencer knows when a submission may be retried.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from ..errors import SigningRejected, SponsorshipDeclined, StepRevertedError, StepTimeoutError

_ENTRYPOINT_CODE = re.compile(r"\baa\d\d\b")


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    NETWORK = "network"           # Network/connectivity issues
    RATE_LIMIT = "rate_limit"     # API rate limits
    TIMEOUT = "timeout"           # Operation timed out
    TRANSACTION_REVERTED = "transaction_reverted"  # On-chain revert
    VALIDATION = "validation"     # Bundler/EntryPoint rejected the operation (AAxx)
    SPONSORSHIP = "sponsorship"   # Paymaster refused
    SIGNING = "signing"           # Signature missing or rejected
    UNKNOWN = "unknown"           # Unclassified error


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    provider: Optional[str] = None
    chain_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for errors that can be retried.

    These errors are typically transient:
    - Network issues
    - Rate limits
    - Temporary bundler outages
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retry_after = retry_after
        self.context = context or ErrorContext(category=category, recoverable=True)


class UnrecoverableError(Exception):
    """Base class for errors that cannot be retried."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category, recoverable=False)


class RateLimitError(RecoverableError):
    """API rate limit exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float = 5.0,
        provider: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.RATE_LIMIT,
            retry_after=retry_after,
            context=ErrorContext(
                category=ErrorCategory.RATE_LIMIT,
                recoverable=True,
                retry_after_seconds=retry_after,
                provider=provider,
                suggested_action=f"Wait {retry_after}s before retrying",
            ),
        )


class NetworkError(RecoverableError):
    """Network connectivity error."""

    def __init__(
        self,
        message: str = "Network error",
        provider: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            context=ErrorContext(
                category=ErrorCategory.NETWORK,
                recoverable=True,
                provider=provider,
                suggested_action="Retry with exponential backoff",
            ),
        )


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Known types are classified directly; anything else is matched on its
    message.
    """
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    if isinstance(error, SponsorshipDeclined):
        return ErrorContext(
            category=ErrorCategory.SPONSORSHIP,
            recoverable=False,
            chain_id=error.chain_id,
            suggested_action="Check the paymaster policy limits",
        )

    if isinstance(error, SigningRejected):
        return ErrorContext(category=ErrorCategory.SIGNING, recoverable=False)

    if isinstance(error, StepRevertedError):
        return ErrorContext(
            category=ErrorCategory.TRANSACTION_REVERTED,
            recoverable=False,
            chain_id=error.chain_id,
            suggested_action="Review operation calldata",
        )

    if isinstance(error, StepTimeoutError):
        # The operation may still land; resubmitting would double-spend the nonce
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=False,
            chain_id=error.chain_id,
            suggested_action="Look up the user operation hash later",
        )

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            return ErrorContext(
                category=ErrorCategory.RATE_LIMIT,
                recoverable=True,
                retry_after_seconds=5.0,
                suggested_action="Wait before retrying",
            )
        if status >= 500:
            return ErrorContext(
                category=ErrorCategory.NETWORK,
                recoverable=True,
                suggested_action="Retry operation",
            )
        return ErrorContext(
            category=ErrorCategory.VALIDATION,
            recoverable=False,
            details={"status_code": status},
        )

    if isinstance(error, httpx.TransportError):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Check network connectivity",
        )

    message = str(error).lower()

    rate_limit_patterns = ["rate limit", "too many requests", "429", "throttl"]
    if any(p in message for p in rate_limit_patterns):
        return ErrorContext(
            category=ErrorCategory.RATE_LIMIT,
            recoverable=True,
            retry_after_seconds=5.0,
            suggested_action="Wait before retrying",
        )

    network_patterns = ["connection", "network", "unreachable", "refused", "dns", "socket"]
    if any(p in message for p in network_patterns):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Check network connectivity",
        )

    # EntryPoint validation codes (AA10..AA99) and bundler duplicate/nonce errors
    validation_patterns = ["invalid", "nonce", "already known"]
    if _ENTRYPOINT_CODE.search(message) or any(p in message for p in validation_patterns):
        return ErrorContext(
            category=ErrorCategory.VALIDATION,
            recoverable=False,
            suggested_action="Rebuild and re-sign the operation",
        )

    revert_patterns = ["revert", "execution reverted", "out of gas"]
    if any(p in message for p in revert_patterns):
        return ErrorContext(
            category=ErrorCategory.TRANSACTION_REVERTED,
            recoverable=False,
            suggested_action="Review operation calldata",
        )

    # Unknown errors are treated as recoverable, bounded by the attempt count
    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=True,
        suggested_action="Retry operation",
    )


_DUPLICATE_PATTERNS = ("already known", "already exists", "duplicate", "nonce too low", "invalid account nonce")


def is_duplicate_submission(error: Exception) -> bool:
    """
    True when a bundler rejected an operation because it already holds it.

    Only meaningful after an earlier attempt with the same signed operation
    ended in a transport error: the bundler may have accepted that attempt.
    """
    message = str(error).lower()
    return "aa25" in message or any(p in message for p in _DUPLICATE_PATTERNS)
