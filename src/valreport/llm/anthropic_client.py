"""
Anthropic provider adapter.

Wraps AsyncAnthropic for plain text requests and for requests grounded on
an attached PDF document. SDK exceptions propagate unchanged; the
generation client classifies them.
"""

from __future__ import annotations

import base64
import time
from typing import Any

from anthropic import AsyncAnthropic

from valreport.llm.base import (
    ErrorType,
    GenerationError,
    GenerationRequest,
    GenerationResponse,
)
from valreport.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_MODELS = {
    "claude-opus-4-5-20251101",
    "claude-sonnet-4-5-20250929",
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
    "claude-3-5-haiku-20241022",
}


class AnthropicProvider:
    """Provider adapter using AsyncAnthropic."""

    def __init__(self, api_key: str | None = None, max_retries: int = 0) -> None:
        """Initialize the Anthropic provider.

        Args:
            api_key: Anthropic API key. If None, uses ANTHROPIC_API_KEY env var.
            max_retries: SDK-level retries. Kept at 0 because the generation
                client owns the retry loop.
        """
        self._client = AsyncAnthropic(api_key=api_key, max_retries=max_retries)

    def supports_model(self, model: str) -> bool:
        return model in SUPPORTED_MODELS or model.startswith("claude-")

    def _params(self, request: GenerationRequest, content: Any) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        if request.system_prompt:
            params["system"] = request.system_prompt
        if request.temperature is not None:
            params["temperature"] = request.temperature
        if request.stop_sequences:
            params["stop_sequences"] = request.stop_sequences
        return params

    async def _send(self, params: dict[str, Any]) -> GenerationResponse:
        start_time = time.monotonic()
        response = await self._client.messages.create(**params)
        latency_ms = int((time.monotonic() - start_time) * 1000)

        content = "".join(block.text for block in response.content if block.type == "text")
        if not content:
            raise GenerationError.of(ErrorType.UNKNOWN, "No text content in response")

        logger.debug(
            "Anthropic response received",
            model=response.model,
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=latency_ms,
        )

        return GenerationResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason or "end_turn",
            latency_ms=latency_ms,
        )

    async def complete(self, request: GenerationRequest) -> GenerationResponse:
        """Send a text generation request.

        Args:
            request: The generation request.

        Returns:
            Provider-neutral response.
        """
        return await self._send(self._params(request, request.prompt))

    async def complete_document(
        self,
        request: GenerationRequest,
        document: bytes,
        media_type: str = "application/pdf",
    ) -> GenerationResponse:
        """Send a request with the document attached as a base64 content block.

        Args:
            request: The generation request; its prompt follows the document.
            document: Raw document bytes.
            media_type: MIME type of the document.

        Returns:
            Provider-neutral response.
        """
        content = [
            {
                "type": "document",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": base64.standard_b64encode(document).decode("ascii"),
                },
            },
            {"type": "text", "text": request.prompt},
        ]
        return await self._send(self._params(request, content))

    async def close(self) -> None:
        await self._client.close()
