"""
Tests for GenerationClient: retries, structured output, document calls,
cancellation and usage tracking.
"""

from __future__ import annotations

import asyncio

import pytest

from valreport.cancellation import CancellationToken
from valreport.config import Settings
from valreport.exceptions import ConfigurationError, JobCancelledError
from valreport.llm.base import Err, ErrorType, GenerationError, GenerationOptions, Ok
from valreport.llm.client import (
    STRUCTURED_SUFFIX,
    GenerationClient,
    as_result,
    strip_code_fences,
)
from valreport.logging import job_scope, set_stage

from .conftest import FakeStatusError, RecordingSleep, ScriptedProvider


class SlowProvider(ScriptedProvider):
    """Provider whose text calls never finish within a short timeout."""

    async def complete(self, request):
        self.requests.append(request)
        await asyncio.sleep(5)
        return self._next(request)


class TestGenerate:
    """Test plain text generation."""

    async def test_returns_text(self, client: GenerationClient, provider: ScriptedProvider) -> None:
        provider.script = ["Hello there"]

        assert await client.generate("Say hello") == "Hello there"
        assert provider.calls == 1
        assert provider.requests[0].model == "claude-test-model"

    async def test_options_reach_request(self, client: GenerationClient, provider: ScriptedProvider) -> None:
        await client.generate(
            "prompt",
            GenerationOptions(system_prompt="be brief", max_tokens=256, temperature=0.1),
        )

        request = provider.requests[0]
        assert request.system_prompt == "be brief"
        assert request.max_tokens == 256
        assert request.temperature == 0.1

    async def test_retries_server_error_then_succeeds(
        self, client: GenerationClient, provider: ScriptedProvider, sleep: RecordingSleep
    ) -> None:
        provider.script = [FakeStatusError(500, "internal"), "recovered"]

        assert await client.generate("prompt") == "recovered"
        assert provider.calls == 2
        assert len(sleep.delays) == 1
        assert 1.0 <= sleep.delays[0] < 2.0

    async def test_non_retryable_fails_after_one_call(
        self, client: GenerationClient, provider: ScriptedProvider, sleep: RecordingSleep
    ) -> None:
        provider.script = [FakeStatusError(401, "invalid x-api-key")]

        with pytest.raises(GenerationError) as exc_info:
            await client.generate("prompt")

        assert exc_info.value.detail.type is ErrorType.AUTHENTICATION
        assert exc_info.value.attempts == 1
        assert provider.calls == 1
        assert sleep.delays == []

    async def test_exhausted_attempts_surface_last_error(
        self, client: GenerationClient, provider: ScriptedProvider, sleep: RecordingSleep
    ) -> None:
        provider.script = [
            FakeStatusError(503, "unavailable"),
            FakeStatusError(502, "bad gateway"),
            FakeStatusError(500, "still broken"),
        ]

        with pytest.raises(GenerationError) as exc_info:
            await client.generate("prompt")

        error = exc_info.value
        assert error.detail.type is ErrorType.SERVER_ERROR
        assert error.detail.message == "Server error"
        assert error.attempts == 3
        assert provider.calls == 3
        assert len(sleep.delays) == 2

    async def test_rate_limit_waits_retry_after(
        self, client: GenerationClient, provider: ScriptedProvider, sleep: RecordingSleep
    ) -> None:
        provider.script = [FakeStatusError(429, "slow down", headers={"retry-after": "5"}), "ok"]

        assert await client.generate("prompt") == "ok"
        assert sleep.delays == [5.0]

    async def test_timeout_is_classified_and_retried(
        self, settings: Settings, sleep: RecordingSleep
    ) -> None:
        provider = SlowProvider()
        client = GenerationClient(
            provider, timeout_seconds=0.01, max_attempts=2, sleep=sleep, settings=settings
        )

        with pytest.raises(GenerationError) as exc_info:
            await client.generate("prompt")

        assert exc_info.value.detail.type is ErrorType.TIMEOUT
        assert exc_info.value.attempts == 2
        assert provider.calls == 2


class TestCancellation:
    """Test cancellation token handling in the retry loop."""

    async def test_cancelled_token_prevents_call(
        self, client: GenerationClient, provider: ScriptedProvider
    ) -> None:
        token = CancellationToken()
        token.cancel("stop")

        with pytest.raises(JobCancelledError, match="stop"):
            await client.generate("prompt", token=token)

        assert provider.calls == 0

    async def test_cancel_between_attempts_stops_retrying(
        self, client: GenerationClient, provider: ScriptedProvider
    ) -> None:
        token = CancellationToken()

        def fail_and_cancel(request):
            token.cancel("superseded")
            return FakeStatusError(500, "boom")

        provider.script = [fail_and_cancel, "never returned"]

        with pytest.raises(JobCancelledError):
            await client.generate("prompt", token=token)

        assert provider.calls == 1


class TestStructured:
    """Test generate_structured."""

    async def test_parses_fenced_json(self, client: GenerationClient, provider: ScriptedProvider) -> None:
        provider.script = ['```json\n{"industry": "Robotics", "confidence": "high"}\n```']

        result = await client.generate_structured("Research Acme", system_prompt="researcher")

        assert result == {"industry": "Robotics", "confidence": "high"}
        request = provider.requests[0]
        assert request.prompt.endswith(STRUCTURED_SUFFIX)
        assert request.temperature == 0.3
        assert request.system_prompt == "researcher"

    async def test_unparsable_json_is_invalid_request(
        self, client: GenerationClient, provider: ScriptedProvider
    ) -> None:
        provider.script = ["I could not find anything about that company."]

        with pytest.raises(GenerationError) as exc_info:
            await client.generate_structured("Research Acme")

        assert exc_info.value.detail.type is ErrorType.INVALID_REQUEST
        assert exc_info.value.retryable is False
        assert provider.calls == 1

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestDocument:
    """Test generate_from_document."""

    async def test_empty_document_rejected_without_call(
        self, client: GenerationClient, provider: ScriptedProvider
    ) -> None:
        with pytest.raises(GenerationError, match="Document is empty") as exc_info:
            await client.generate_from_document(b"", "system", "summarize")

        assert exc_info.value.detail.type is ErrorType.INVALID_REQUEST
        assert provider.calls == 0

    async def test_oversized_document_rejected_without_call(
        self, provider: ScriptedProvider, sleep: RecordingSleep, settings: Settings
    ) -> None:
        client = GenerationClient(provider, max_document_bytes=10, sleep=sleep, settings=settings)

        with pytest.raises(GenerationError, match="Document too large") as exc_info:
            await client.generate_from_document(b"x" * 11, "system", "summarize")

        assert exc_info.value.detail.type is ErrorType.INVALID_REQUEST
        assert provider.calls == 0

    async def test_document_sent_with_context(
        self, client: GenerationClient, provider: ScriptedProvider
    ) -> None:
        provider.script = ["Summary of the deck"]

        text = await client.generate_from_document(
            b"%PDF-1.7 fake", "system", "Summarize the deck", additional_context="Focus on revenue"
        )

        assert text == "Summary of the deck"
        assert provider.documents == [b"%PDF-1.7 fake"]
        assert "ADDITIONAL CONTEXT FROM ANALYST:\nFocus on revenue" in provider.requests[0].prompt

    async def test_rate_limit_uses_default_wait(
        self, client: GenerationClient, provider: ScriptedProvider, sleep: RecordingSleep
    ) -> None:
        provider.script = [FakeStatusError(429, "rate limited"), "done"]

        assert await client.generate_from_document(b"%PDF", "system", "summarize") == "done"
        assert sleep.delays == [60.0]

    async def test_server_error_waits_linearly(
        self, client: GenerationClient, provider: ScriptedProvider, sleep: RecordingSleep
    ) -> None:
        provider.script = [FakeStatusError(500), FakeStatusError(500), "done"]

        assert await client.generate_from_document(b"%PDF", "system", "summarize") == "done"
        assert sleep.delays == [30.0, 60.0]


class TestResults:
    """Test the Ok/Err result helpers."""

    async def test_generate_result_ok(self, client: GenerationClient, provider: ScriptedProvider) -> None:
        provider.script = ["fine"]

        result = await client.generate_result("prompt")

        assert isinstance(result, Ok)
        assert result.ok is True
        assert result.value == "fine"

    async def test_generate_result_err(self, client: GenerationClient, provider: ScriptedProvider) -> None:
        provider.script = [FakeStatusError(400, "context length exceeded")]

        result = await client.generate_result("prompt")

        assert isinstance(result, Err)
        assert result.ok is False
        assert result.error.type is ErrorType.TOKEN_LIMIT

    async def test_as_result_lets_cancellation_through(self) -> None:
        async def cancelled() -> str:
            raise JobCancelledError("Job cancelled")

        with pytest.raises(JobCancelledError):
            await as_result(cancelled())


class TestUsageAndConfig:
    """Test usage tracking and construction."""

    async def test_successful_calls_recorded(
        self, client: GenerationClient, provider: ScriptedProvider
    ) -> None:
        provider.script = [FakeStatusError(500), "one", "two"]

        await client.generate("first")
        await client.generate("second")

        assert client.usage.calls == 2
        assert client.usage.total_input_tokens == 200
        assert client.usage.total_output_tokens == 100
        assert client.usage.total_cost_usd > 0

    async def test_usage_attributed_to_job_and_stage(
        self, client: GenerationClient, provider: ScriptedProvider
    ) -> None:
        with job_scope("job_usage", "eng-001"):
            set_stage("researching_company")
            await client.generate("research")
            set_stage("generating_narratives")
            await client.generate("narrative")
            await client.generate("conclusion")

        stages = client.usage.by_stage("job_usage")
        assert list(stages) == ["researching_company", "generating_narratives"]
        assert stages["generating_narratives"].calls == 2
        assert client.usage.for_job("job_usage").input_tokens == 300

    def test_defaults_from_settings(self, provider: ScriptedProvider, settings: Settings) -> None:
        client = GenerationClient(provider, settings=settings)

        assert client.model == settings.GENERATION_MODEL
        assert client.max_attempts == settings.MAX_GENERATION_ATTEMPTS
        assert client.timeout_seconds == settings.REQUEST_TIMEOUT_SECONDS

    def test_from_settings_requires_api_key(self, settings: Settings) -> None:
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            GenerationClient.from_settings(settings)

    def test_from_settings_rejects_non_anthropic_model(self) -> None:
        settings = Settings(_env_file=None, ANTHROPIC_API_KEY="sk-ant-test", GENERATION_MODEL="gpt-4o")

        with pytest.raises(ConfigurationError, match="Unsupported generation model"):
            GenerationClient.from_settings(settings)

    async def test_close_closes_provider(self, client: GenerationClient, provider: ScriptedProvider) -> None:
        await client.close()

        assert provider.closed is True
