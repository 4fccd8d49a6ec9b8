"""
Tests for the Error Recovery System

Tests for error classification and the retry policy used for submissions.
"""

import httpx
import pytest

from bridgeflow.core.errors import (
    SigningRejected,
    SponsorshipDeclined,
    StepRevertedError,
    StepTimeoutError,
)
from bridgeflow.core.recovery import (
    NetworkError,
    RateLimitError,
    RecoverableError,
    RetryConfig,
    RetryStrategy,
    UnrecoverableError,
    classify_error,
    is_duplicate_submission,
)
from bridgeflow.core.recovery.errors import ErrorCategory


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://bundler.test")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


# =============================================================================
# Error Classification Tests
# =============================================================================

class TestErrorClassification:
    """Tests for error classification."""

    def test_recoverable_error_is_recoverable(self):
        """Test that RecoverableError is classified as recoverable."""
        error = RecoverableError("Test error")
        assert error.context.recoverable is True

    def test_unrecoverable_error_is_not_recoverable(self):
        """Test that UnrecoverableError is classified as not recoverable."""
        error = UnrecoverableError("Test error")
        assert error.context.recoverable is False

    def test_rate_limit_error(self):
        """Test RateLimitError properties."""
        error = RateLimitError(retry_after=30.0, provider="bundler")

        assert error.category == ErrorCategory.RATE_LIMIT
        assert error.retry_after == 30.0
        assert error.context.provider == "bundler"

    def test_network_error(self):
        error = NetworkError(provider="paymaster")

        assert error.category == ErrorCategory.NETWORK
        assert error.context.recoverable is True

    def test_duplicate_submission_messages(self):
        for message in [
            "AA25 invalid account nonce",
            "already known",
            "UserOperation already exists in the mempool",
            "nonce too low",
        ]:
            assert is_duplicate_submission(Exception(message))

    def test_other_rejections_are_not_duplicates(self):
        assert not is_duplicate_submission(Exception("AA21 didn't pay prefund"))
        assert not is_duplicate_submission(httpx.ReadTimeout("timed out"))

    def test_transfer_errors_are_unrecoverable(self):
        """Declines, rejections, reverts and timeouts must never be retried."""
        for error in [
            SponsorshipDeclined(43113, "cap exceeded"),
            SigningRejected("user declined"),
            StepRevertedError("reverted", chain_id=1),
            StepTimeoutError("no receipt", chain_id=1),
        ]:
            assert classify_error(error).recoverable is False

    def test_classify_http_status(self):
        assert classify_error(_status_error(429)).category == ErrorCategory.RATE_LIMIT
        assert classify_error(_status_error(503)).recoverable is True
        bad_request = classify_error(_status_error(400))
        assert bad_request.category == ErrorCategory.VALIDATION
        assert bad_request.recoverable is False

    def test_classify_transport_error(self):
        context = classify_error(httpx.ReadTimeout("timed out"))

        assert context.category == ErrorCategory.NETWORK
        assert context.recoverable is True

    def test_classify_rate_limit_message(self):
        context = classify_error(Exception("429 Too Many Requests"))

        assert context.category == ErrorCategory.RATE_LIMIT
        assert context.recoverable is True

    def test_classify_entrypoint_codes(self):
        """EntryPoint AAxx failures are validation errors."""
        context = classify_error(Exception("AA21 didn't pay prefund"))

        assert context.category == ErrorCategory.VALIDATION
        assert context.recoverable is False

    def test_hex_hash_is_not_an_entrypoint_code(self):
        context = classify_error(Exception("pending op 0xaa12bb34 still queued"))

        assert context.category == ErrorCategory.UNKNOWN

    def test_classify_revert_error(self):
        context = classify_error(Exception("execution reverted: ERC20: insufficient allowance"))

        assert context.category == ErrorCategory.TRANSACTION_REVERTED
        assert context.recoverable is False

    def test_classify_unknown_error(self):
        context = classify_error(Exception("Something weird happened"))

        assert context.category == ErrorCategory.UNKNOWN
        # Unknown defaults to recoverable (bounded by max attempts)
        assert context.recoverable is True


# =============================================================================
# Retry Strategy Tests
# =============================================================================

async def _no_sleep(_seconds):
    return None


class TestRetryStrategy:
    """Tests for retry strategies."""

    @pytest.mark.asyncio
    async def test_successful_operation(self):
        """Test successful operation doesn't retry."""
        strategy = RetryStrategy(RetryConfig(max_attempts=3), sleep=_no_sleep)

        call_count = 0
        async def operation():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await strategy.execute(operation)

        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_recoverable_error(self):
        """Test retry on recoverable error."""
        strategy = RetryStrategy(RetryConfig(max_attempts=3), sleep=_no_sleep)

        call_count = 0
        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise NetworkError("Temporary failure")
            return "success"

        result = await strategy.execute(operation, {"operation": "submit"})

        assert result == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_no_retry_unrecoverable(self):
        """Test no retry on unrecoverable error."""
        strategy = RetryStrategy(RetryConfig(max_attempts=3), sleep=_no_sleep)

        call_count = 0
        async def operation():
            nonlocal call_count
            call_count += 1
            raise UnrecoverableError("AA25 invalid account nonce")

        with pytest.raises(UnrecoverableError):
            await strategy.execute(operation)

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_all_retries_exhausted(self):
        """Test error when all retries exhausted."""
        strategy = RetryStrategy(RetryConfig(max_attempts=3), sleep=_no_sleep)

        call_count = 0
        async def operation():
            nonlocal call_count
            call_count += 1
            raise NetworkError("Always fails")

        with pytest.raises(NetworkError):
            await strategy.execute(operation)

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self):
        delays = []

        async def sleep(seconds):
            delays.append(seconds)

        strategy = RetryStrategy(RetryConfig(max_attempts=2), sleep=sleep)

        call_count = 0
        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise RateLimitError(retry_after=7.0)
            return "ok"

        assert await strategy.execute(operation) == "ok"
        assert delays == [7.0]

    def test_delay_calculation(self):
        """Test exponential delay calculation without jitter."""
        config = RetryConfig(initial_delay_seconds=1.0, exponential_base=2.0, max_delay_seconds=5.0, jitter=False)

        assert config.get_delay(0) == 1.0
        assert config.get_delay(1) == 2.0
        assert config.get_delay(2) == 4.0
        assert config.get_delay(3) == 5.0

    @pytest.mark.asyncio
    async def test_transport_errors_back_off_exponentially(self):
        delays = []

        async def sleep(seconds):
            delays.append(seconds)

        strategy = RetryStrategy(RetryConfig(max_attempts=3, initial_delay_seconds=1.0), sleep=sleep)

        async def operation():
            raise httpx.ConnectError("connection refused")

        with pytest.raises(httpx.ConnectError):
            await strategy.execute(operation)

        assert len(delays) == 2
        assert 0.9 <= delays[0] <= 1.1
        assert 1.8 <= delays[1] <= 2.2
