"""
Generation client.

Single entry point for every provider call made by the pipeline:
- generate: plain text generation
- generate_structured: JSON output parsed with orjson
- generate_from_document: generation grounded on an attached PDF
- generate_result: generate, returning Ok/Err instead of raising

All paths classify failures with classify_error and retry through one
tenacity loop; only the wait schedule differs between call kinds.
"""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import orjson
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from valreport.cancellation import CancellationToken
from valreport.config import Settings, get_settings
from valreport.exceptions import ConfigurationError
from valreport.llm.base import (
    Err,
    ErrorType,
    GenerationError,
    GenerationOptions,
    GenerationProvider,
    GenerationRequest,
    GenerationResponse,
    Ok,
    Result,
)
from valreport.llm.errors import CallKind, RetryPolicy, classify_error
from valreport.logging import get_job_id, get_logger, get_stage
from valreport.usage import UsageTracker

logger = get_logger(__name__)

T = TypeVar("T")

STRUCTURED_TEMPERATURE = 0.3
STRUCTURED_SUFFIX = (
    "\n\nRespond ONLY with valid JSON. No markdown, no explanation, just the JSON object."
)

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")

Sleep = Callable[[float], Awaitable[None]]


def strip_code_fences(text: str) -> str:
    """Remove an optional surrounding ```json / ``` fence."""
    cleaned = text.strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned)
    return cleaned.strip()


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, GenerationError) and exc.retryable


async def as_result(awaitable: Awaitable[T]) -> Result[T]:
    """Await a generation call and capture a GenerationError as Err.

    Cancellation and non-generation errors still propagate.
    """
    try:
        return Ok(await awaitable)
    except GenerationError as e:
        return Err(e.detail)


class GenerationClient:
    """Retrying, classifying client over a GenerationProvider."""

    def __init__(
        self,
        provider: GenerationProvider,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        max_document_bytes: int | None = None,
        usage: UsageTracker | None = None,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            provider: Provider adapter that performs the raw calls.
            model: Model ID; defaults to GENERATION_MODEL.
            max_tokens: Default max tokens per call.
            temperature: Default sampling temperature.
            timeout_seconds: Per-call timeout; defaults to REQUEST_TIMEOUT_SECONDS.
            max_attempts: Attempts per call including the first.
            max_document_bytes: Size cap for document-grounded calls.
            usage: Tracker receiving token counts of successful calls.
            sleep: Coroutine used between attempts (tests pass a no-op).
            rng: Random source for backoff jitter.
            settings: Settings to read defaults from.
        """
        settings = settings or get_settings()
        self._provider = provider
        self.model = model or settings.GENERATION_MODEL
        self.max_tokens = max_tokens or settings.GENERATION_MAX_TOKENS
        self.temperature = (
            temperature if temperature is not None else settings.GENERATION_TEMPERATURE
        )
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.REQUEST_TIMEOUT_SECONDS
        )
        self.max_attempts = max_attempts or settings.MAX_GENERATION_ATTEMPTS
        self.max_document_bytes = max_document_bytes or settings.MAX_DOCUMENT_BYTES
        self.usage = usage or UsageTracker()
        self._sleep: Sleep = sleep or asyncio.sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> GenerationClient:
        """Build a client backed by the Anthropic provider.

        Raises:
            ConfigurationError: If no API key is configured or the model
                is not an Anthropic model.
        """
        from valreport.llm.anthropic_client import AnthropicProvider

        settings = settings or get_settings()
        api_key = settings.anthropic_api_key
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")
        provider = AnthropicProvider(api_key=api_key)
        if not provider.supports_model(settings.GENERATION_MODEL):
            raise ConfigurationError(
                "Unsupported generation model", {"model": settings.GENERATION_MODEL}
            )
        return cls(provider, settings=settings, **kwargs)

    async def close(self) -> None:
        await self._provider.close()

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _call_with_retry(
        self,
        call: Callable[[], Awaitable[GenerationResponse]],
        kind: CallKind,
        timeout_seconds: float | None,
        token: CancellationToken | None,
    ) -> GenerationResponse:
        policy = RetryPolicy.for_kind(kind, self.max_attempts)

        def wait(retry_state: RetryCallState) -> float:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            if not isinstance(exc, GenerationError):
                return 0.0
            return policy.delay_seconds(retry_state.attempt_number, exc.detail, self._rng)

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Generation attempt failed, retrying",
                kind=kind.value,
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                error_type=exc.detail.type.value if isinstance(exc, GenerationError) else None,
                wait_seconds=round(retry_state.upcoming_sleep, 2),
            )

        async def sleep(seconds: float) -> None:
            if token is not None:
                token.raise_if_cancelled()
            await self._sleep(seconds)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep,
            sleep=sleep,
            reraise=True,
        )

        async for attempt in retrying:
            if token is not None:
                token.raise_if_cancelled()
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                try:
                    return await asyncio.wait_for(call(), timeout=timeout_seconds)
                except GenerationError as e:
                    e.attempts = attempt_number
                    raise
                except Exception as e:
                    detail = classify_error(e)
                    logger.debug(
                        "Provider call failed",
                        kind=kind.value,
                        attempt=attempt_number,
                        error_type=detail.type.value,
                        retryable=detail.retryable,
                    )
                    raise GenerationError(detail, attempts=attempt_number) from e

        # AsyncRetrying with reraise=True never falls through
        raise GenerationError.of(ErrorType.UNKNOWN, "Retry loop exited without a result")

    def _record(self, response: GenerationResponse) -> None:
        self.usage.record_usage(
            model=response.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            stage=get_stage(),
            job_id=get_job_id(),
        )

    def _request(self, prompt: str, options: GenerationOptions) -> GenerationRequest:
        return GenerationRequest(
            prompt=prompt,
            model=self.model,
            max_tokens=options.max_tokens or self.max_tokens,
            temperature=(
                options.temperature if options.temperature is not None else self.temperature
            ),
            system_prompt=options.system_prompt,
            stop_sequences=options.stop_sequences,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions | None = None,
        token: CancellationToken | None = None,
    ) -> str:
        """Generate text for a prompt.

        Args:
            prompt: User prompt.
            options: Per-call overrides.
            token: Cancellation token checked before each attempt and sleep.

        Returns:
            Generated text.

        Raises:
            GenerationError: Classified failure after retries are exhausted
                or on the first non-retryable failure.
            JobCancelledError: If the token was cancelled.
        """
        options = options or GenerationOptions()
        request = self._request(prompt, options)
        timeout = (
            options.timeout_seconds if options.timeout_seconds is not None else self.timeout_seconds
        )

        response = await self._call_with_retry(
            lambda: self._provider.complete(request), CallKind.TEXT, timeout, token
        )
        self._record(response)
        return response.content

    async def generate_structured(
        self,
        prompt: str,
        system_prompt: str | None = None,
        token: CancellationToken | None = None,
    ) -> Any:
        """Generate and parse a JSON response.

        A response that does not parse is a request defect: it raises a
        non-retryable invalid_request error without calling the provider again.
        """
        text = await self.generate(
            prompt + STRUCTURED_SUFFIX,
            GenerationOptions(system_prompt=system_prompt, temperature=STRUCTURED_TEMPERATURE),
            token=token,
        )
        cleaned = strip_code_fences(text)
        try:
            return orjson.loads(cleaned)
        except orjson.JSONDecodeError as e:
            logger.warning("Structured response did not parse", error=str(e), length=len(text))
            raise GenerationError.of(
                ErrorType.INVALID_REQUEST,
                "Structured response was not valid JSON",
            ) from e

    async def generate_from_document(
        self,
        data: bytes,
        system_prompt: str,
        prompt: str,
        additional_context: str | None = None,
        token: CancellationToken | None = None,
    ) -> str:
        """Generate text grounded on an attached PDF document.

        Args:
            data: Raw PDF bytes.
            system_prompt: System prompt.
            prompt: Instruction placed after the document.
            additional_context: Analyst notes appended to the prompt.
            token: Cancellation token.

        Returns:
            Generated text.

        Raises:
            GenerationError: invalid_request for empty or oversized input
                (before any provider call), otherwise the classified failure.
        """
        if not data:
            raise GenerationError.of(ErrorType.INVALID_REQUEST, "Document is empty")
        if len(data) > self.max_document_bytes:
            raise GenerationError.of(
                ErrorType.INVALID_REQUEST,
                f"Document too large: {len(data)} bytes (max {self.max_document_bytes})",
            )

        full_prompt = (
            f"{prompt}\n\nADDITIONAL CONTEXT FROM ANALYST:\n{additional_context}"
            if additional_context
            else prompt
        )
        request = self._request(full_prompt, GenerationOptions(system_prompt=system_prompt))

        response = await self._call_with_retry(
            lambda: self._provider.complete_document(request, data),
            CallKind.DOCUMENT,
            self.timeout_seconds,
            token,
        )
        self._record(response)
        return response.content

    async def generate_result(
        self,
        prompt: str,
        options: GenerationOptions | None = None,
        token: CancellationToken | None = None,
    ) -> Result[str]:
        """Like generate, but returns Ok(text) or Err(detail)."""
        return await as_result(self.generate(prompt, options, token))
