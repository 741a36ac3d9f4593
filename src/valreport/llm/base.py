"""
Base classes and interfaces for the generation client.

This module defines:
- GenerationRequest / GenerationResponse: Standardized request and response
- GenerationOptions: Per-call options accepted by the client
- ErrorType / GenerationErrorDetail: The single failure taxonomy
- GenerationError: Exception carrying a classified detail
- Ok / Err: Tagged result used where callers fan out many calls
- GenerationProvider: Protocol for provider adapters
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Protocol, TypeVar, Union, runtime_checkable

from valreport.exceptions import ReportError

T = TypeVar("T")


@dataclass
class GenerationOptions:
    """Options for a single text generation call."""

    system_prompt: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stop_sequences: list[str] | None = None
    timeout_seconds: float | None = None


@dataclass
class GenerationRequest:
    """Provider-neutral request built by the client from a prompt and options."""

    prompt: str
    model: str
    max_tokens: int
    temperature: float | None = None
    system_prompt: str | None = None
    stop_sequences: list[str] | None = None


@dataclass
class GenerationResponse:
    """Provider-neutral response."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = "end_turn"
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


class ErrorType(str, Enum):
    """Failure categories every provider error is translated into."""

    RATE_LIMIT = "rate_limit"
    TOKEN_LIMIT = "token_limit"
    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid_request"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_USER_MESSAGES: dict[ErrorType, str] = {
    ErrorType.RATE_LIMIT: "AI service is currently busy. Please try again in a few moments.",
    ErrorType.TOKEN_LIMIT: "The content is too long for AI processing. Try with less data.",
    ErrorType.AUTHENTICATION: "AI service authentication failed. Please contact support.",
    ErrorType.INVALID_REQUEST: "Invalid request to AI service. Please try again.",
    ErrorType.SERVER_ERROR: "AI service is temporarily unavailable. Please try again later.",
    ErrorType.TIMEOUT: "AI request timed out. Please try again.",
    ErrorType.UNKNOWN: "An unexpected error occurred with the AI service.",
}


@dataclass(frozen=True)
class GenerationErrorDetail:
    """Classified description of a failed provider call."""

    type: ErrorType
    message: str
    retryable: bool
    retry_after_seconds: float | None = None

    @property
    def user_message(self) -> str:
        """Explanation suitable for showing to an end user."""
        return _USER_MESSAGES[self.type]


class GenerationError(ReportError):
    """Raised when a generation call fails; carries the classified detail."""

    def __init__(self, detail: GenerationErrorDetail, attempts: int = 1) -> None:
        super().__init__(detail.message, {"error_type": detail.type.value})
        self.detail = detail
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return self.detail.retryable

    @classmethod
    def of(
        cls,
        error_type: ErrorType,
        message: str,
        retryable: bool = False,
        retry_after_seconds: float | None = None,
    ) -> GenerationError:
        return cls(
            GenerationErrorDetail(
                type=error_type,
                message=message,
                retryable=retryable,
                retry_after_seconds=retry_after_seconds,
            )
        )


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful generation result."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed generation result with its classified detail."""

    error: GenerationErrorDetail
    warnings: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


@runtime_checkable
class GenerationProvider(Protocol):
    """Protocol for provider adapters.

    Adapters raise whatever their SDK raises; classification is done by
    the client so every provider shares one taxonomy.
    """

    async def complete(self, request: GenerationRequest) -> GenerationResponse:
        """Send a text generation request."""
        ...

    async def complete_document(
        self,
        request: GenerationRequest,
        document: bytes,
        media_type: str = "application/pdf",
    ) -> GenerationResponse:
        """Send a request grounded on an attached document."""
        ...

    async def close(self) -> None:
        """Close any open connections."""
        ...
