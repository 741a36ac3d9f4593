"""
Tests for provider error classification and retry policy.
"""

from __future__ import annotations

import asyncio
import random

import pytest

from valreport.llm.base import ErrorType, GenerationError, GenerationErrorDetail
from valreport.llm.errors import (
    CallKind,
    RetryPolicy,
    backoff_delay_ms,
    classify_error,
)

from .conftest import FakeStatusError


class FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__()
        self.value = value

    def random(self) -> float:
        return self.value


class TestClassifyError:
    """Test classify_error."""

    def test_rate_limit_is_retryable_with_default_wait(self) -> None:
        detail = classify_error(FakeStatusError(429, "rate limited"))

        assert detail.type is ErrorType.RATE_LIMIT
        assert detail.retryable is True
        assert detail.retry_after_seconds == 60

    def test_rate_limit_reads_retry_after_header(self) -> None:
        detail = classify_error(FakeStatusError(429, "slow down", headers={"retry-after": "12"}))

        assert detail.retry_after_seconds == 12.0

    @pytest.mark.parametrize("status", [401, 403])
    def test_authentication_not_retryable(self, status: int) -> None:
        detail = classify_error(FakeStatusError(status, "bad key"))

        assert detail.type is ErrorType.AUTHENTICATION
        assert detail.retryable is False

    def test_bad_request_mentioning_tokens_is_token_limit(self) -> None:
        detail = classify_error(FakeStatusError(400, "prompt is too long: 250000 tokens"))

        assert detail.type is ErrorType.TOKEN_LIMIT
        assert detail.retryable is False

    def test_bad_request_mentioning_length_is_token_limit(self) -> None:
        detail = classify_error(FakeStatusError(400, "input length exceeded"))

        assert detail.type is ErrorType.TOKEN_LIMIT

    def test_other_bad_request_is_invalid_request(self) -> None:
        detail = classify_error(FakeStatusError(400, "messages: field required"))

        assert detail.type is ErrorType.INVALID_REQUEST
        assert detail.retryable is False

    @pytest.mark.parametrize("status", [500, 502, 529])
    def test_server_errors_are_retryable(self, status: int) -> None:
        detail = classify_error(FakeStatusError(status, "overloaded"))

        assert detail.type is ErrorType.SERVER_ERROR
        assert detail.retryable is True

    def test_asyncio_timeout_is_timeout(self) -> None:
        detail = classify_error(asyncio.TimeoutError())

        assert detail.type is ErrorType.TIMEOUT
        assert detail.retryable is True

    def test_timeout_in_message_is_timeout(self) -> None:
        detail = classify_error(RuntimeError("upstream request timeout"))

        assert detail.type is ErrorType.TIMEOUT

    def test_anything_else_is_unknown(self) -> None:
        detail = classify_error(ValueError("something odd"))

        assert detail.type is ErrorType.UNKNOWN
        assert detail.retryable is False
        assert detail.message == "Generation failed"

    def test_generation_error_passes_through(self) -> None:
        original = GenerationError.of(ErrorType.TOKEN_LIMIT, "too long")

        assert classify_error(original) is original.detail

    def test_status_attribute_is_read(self) -> None:
        exc = RuntimeError("service unavailable")
        exc.status = 503  # type: ignore[attr-defined]

        assert classify_error(exc).type is ErrorType.SERVER_ERROR


class TestBackoff:
    """Test exponential backoff."""

    def test_delay_without_jitter(self) -> None:
        rng = FixedRandom(0.0)

        assert backoff_delay_ms(0, rng) == 1000
        assert backoff_delay_ms(1, rng) == 2000
        assert backoff_delay_ms(2, rng) == 4000

    def test_jitter_bounded(self) -> None:
        rng = FixedRandom(0.999)

        delay = backoff_delay_ms(1, rng)
        assert 2000 <= delay < 3000

    def test_delay_capped(self) -> None:
        assert backoff_delay_ms(10, FixedRandom(0.5)) == 30_000

    def test_increasing_in_expectation(self) -> None:
        rng = random.Random(42)
        means = [
            sum(backoff_delay_ms(attempt, rng) for _ in range(200)) / 200
            for attempt in (0, 1, 2)
        ]

        assert means[0] < means[1] < means[2]


class TestRetryPolicy:
    """Test RetryPolicy schedules."""

    def _detail(self, retry_after: float | None = None) -> GenerationErrorDetail:
        return GenerationErrorDetail(
            type=ErrorType.SERVER_ERROR,
            message="boom",
            retryable=True,
            retry_after_seconds=retry_after,
        )

    def test_text_policy_is_exponential(self) -> None:
        policy = RetryPolicy.for_kind(CallKind.TEXT)
        rng = FixedRandom(0.0)

        assert policy.max_attempts == 3
        assert policy.delay_seconds(1, self._detail(), rng) == 1.0
        assert policy.delay_seconds(2, self._detail(), rng) == 2.0

    def test_document_policy_is_linear(self) -> None:
        policy = RetryPolicy.for_kind(CallKind.DOCUMENT)

        assert policy.delay_seconds(1, self._detail()) == 30.0
        assert policy.delay_seconds(2, self._detail()) == 60.0

    def test_retry_after_wins(self) -> None:
        for kind in CallKind:
            policy = RetryPolicy.for_kind(kind)
            assert policy.delay_seconds(1, self._detail(retry_after=7)) == 7

    def test_max_attempts_passed_through(self) -> None:
        assert RetryPolicy.for_kind(CallKind.DOCUMENT, max_attempts=5).max_attempts == 5


class TestErrorDetail:
    """Test GenerationErrorDetail helpers."""

    def test_user_message_per_type(self) -> None:
        for error_type in ErrorType:
            detail = GenerationErrorDetail(type=error_type, message="x", retryable=False)
            assert detail.user_message

    def test_generation_error_str_has_type_but_no_payload(self) -> None:
        error = GenerationError.of(ErrorType.RATE_LIMIT, "Too many requests", retryable=True)

        assert str(error) == "Too many requests (error_type='rate_limit')"
        assert error.retryable is True
