"""
Error classification and retry policy for provider calls.

Every exception raised by a provider is translated into a
GenerationErrorDetail here, so the text and document paths share one
taxonomy and one retryable predicate. They differ only in how long they
wait between attempts (see RetryPolicy.for_kind).
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any

from anthropic import APITimeoutError

from valreport.llm.base import ErrorType, GenerationError, GenerationErrorDetail
from valreport.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60.0
BASE_DELAY_MS = 1000
MAX_DELAY_MS = 30_000
JITTER_MS = 1000
DOCUMENT_STEP_MS = 30_000

# Provider error text can carry request ids and response bodies; it is
# logged at debug level and never copied into the classified detail.
ERROR_MESSAGES: dict[ErrorType, str] = {
    ErrorType.RATE_LIMIT: "Rate limit exceeded",
    ErrorType.TOKEN_LIMIT: "Token limit exceeded",
    ErrorType.AUTHENTICATION: "Authentication failed",
    ErrorType.INVALID_REQUEST: "Invalid request",
    ErrorType.SERVER_ERROR: "Server error",
    ErrorType.TIMEOUT: "Request timed out",
    ErrorType.UNKNOWN: "Generation failed",
}


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def _retry_after_of(exc: BaseException) -> float | None:
    response: Any = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _is_timeout(exc: BaseException, message: str) -> bool:
    if isinstance(exc, (APITimeoutError, asyncio.TimeoutError, TimeoutError)):
        return True
    return "timeout" in message.lower() or "timed out" in message.lower()


def _classify(exc: BaseException, raw: str) -> tuple[ErrorType, bool, float | None]:
    status = _status_of(exc)

    if status == 429:
        retry_after = _retry_after_of(exc)
        return (
            ErrorType.RATE_LIMIT,
            True,
            retry_after if retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS,
        )
    if status in (401, 403):
        return ErrorType.AUTHENTICATION, False, None
    if status == 400:
        lowered = raw.lower()
        if "token" in lowered or "length" in lowered:
            return ErrorType.TOKEN_LIMIT, False, None
        return ErrorType.INVALID_REQUEST, False, None
    if status is not None and status >= 500:
        return ErrorType.SERVER_ERROR, True, None
    if _is_timeout(exc, raw):
        return ErrorType.TIMEOUT, True, None
    return ErrorType.UNKNOWN, False, None


def classify_error(exc: BaseException) -> GenerationErrorDetail:
    """Translate a provider exception into the shared taxonomy.

    The detail's message is the fixed text for its type; the provider's own
    message only reaches the debug log.

    Args:
        exc: Whatever the provider call raised.

    Returns:
        Classified error detail.
    """
    if isinstance(exc, GenerationError):
        return exc.detail

    raw = str(exc) or exc.__class__.__name__
    error_type, retryable, retry_after = _classify(exc, raw)
    logger.debug(
        "Classified provider error",
        error_type=error_type.value,
        exception=exc.__class__.__name__,
        provider_message=raw,
    )
    return GenerationErrorDetail(
        type=error_type,
        message=ERROR_MESSAGES[error_type],
        retryable=retryable,
        retry_after_seconds=retry_after,
    )


def backoff_delay_ms(attempt: int, rng: random.Random | None = None) -> float:
    """Exponential backoff with jitter.

    Args:
        attempt: Zero-based attempt number that just failed.
        rng: Random source for the jitter (module random when None).

    Returns:
        Delay in milliseconds, at most 30000.
    """
    jitter = (rng or random).random() * JITTER_MS
    return min(BASE_DELAY_MS * (2**attempt) + jitter, MAX_DELAY_MS)


class CallKind(str, Enum):
    """Kind of provider call, selecting its wait schedule."""

    TEXT = "text"
    DOCUMENT = "document"


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to wait between them.

    Attributes:
        max_attempts: Total attempts including the first.
        base_delay_ms: Exponential base, or the linear step when linear is set.
        max_delay_ms: Cap applied to the exponential schedule.
        linear: Wait base_delay_ms * attempt instead of exponential backoff.
    """

    max_attempts: int = 3
    base_delay_ms: int = BASE_DELAY_MS
    max_delay_ms: int = MAX_DELAY_MS
    linear: bool = False

    @classmethod
    def for_kind(cls, kind: CallKind, max_attempts: int = 3) -> RetryPolicy:
        if kind is CallKind.DOCUMENT:
            return cls(
                max_attempts=max_attempts,
                base_delay_ms=DOCUMENT_STEP_MS,
                max_delay_ms=DOCUMENT_STEP_MS * max_attempts,
                linear=True,
            )
        return cls(max_attempts=max_attempts)

    def delay_seconds(
        self,
        attempt: int,
        detail: GenerationErrorDetail,
        rng: random.Random | None = None,
    ) -> float:
        """Wait before the next attempt.

        Args:
            attempt: One-based number of the attempt that just failed.
            detail: Classified failure of that attempt.
            rng: Random source for jitter.

        Returns:
            Seconds to sleep. An explicit retry-after always wins.
        """
        if detail.retry_after_seconds is not None:
            return detail.retry_after_seconds

        if self.linear:
            return min(self.base_delay_ms * attempt, self.max_delay_ms) / 1000

        jitter = (rng or random).random() * JITTER_MS
        delay = self.base_delay_ms * (2 ** (attempt - 1)) + jitter
        return min(delay, self.max_delay_ms) / 1000
