"""
Pytest configuration and fixtures for valuation report tests.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from datetime import date
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Generator
from unittest.mock import patch

import orjson
import pytest

from valreport.config import Settings, clear_settings_cache
from valreport.llm.base import GenerationRequest, GenerationResponse
from valreport.llm.client import GenerationClient
from valreport.prompts import COMPANY_RESEARCH_SYSTEM_PROMPT, INDUSTRY_RESEARCH_SYSTEM_PROMPT
from valreport.types import Approach, Engagement, ParsedModel, ReportType, ValuationSummary

Responder = Callable[[GenerationRequest], Any]


class FakeStatusError(Exception):
    """Exception shaped like an SDK status error."""

    def __init__(self, status_code: int, message: str = "error", headers: dict | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = SimpleNamespace(headers=headers or {})


class ScriptedProvider:
    """Provider double.

    Each call takes the next scripted item: a string is returned as the
    response text, an exception is raised, and a callable is invoked with
    the request and its result handled the same way. With the script
    exhausted, the responder (or the default text) is used.
    """

    def __init__(
        self,
        script: list[Any] | None = None,
        responder: Responder | None = None,
        default: str = "Generated narrative text.",
    ) -> None:
        self.script = list(script or [])
        self.responder = responder
        self.default = default
        self.requests: list[GenerationRequest] = []
        self.documents: list[bytes] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    def _next(self, request: GenerationRequest) -> GenerationResponse:
        if self.script:
            item = self.script.pop(0)
        elif self.responder is not None:
            item = self.responder
        else:
            item = self.default

        if callable(item) and not isinstance(item, BaseException):
            item = item(request)
        if isinstance(item, BaseException):
            raise item
        return GenerationResponse(
            content=item, model=request.model, input_tokens=100, output_tokens=50
        )

    async def complete(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        return self._next(request)

    async def complete_document(
        self,
        request: GenerationRequest,
        document: bytes,
        media_type: str = "application/pdf",
    ) -> GenerationResponse:
        self.requests.append(request)
        self.documents.append(document)
        return self._next(request)

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    """Sleep replacement that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


LONG_DESCRIPTION = (
    "Acme Robotics designs and manufactures autonomous picking robots for "
    "warehouse fulfilment, selling hardware with a recurring software subscription."
)

COMPANY_JSON: dict[str, Any] = {
    "companyDescription": LONG_DESCRIPTION,
    "businessModel": "Hardware sales plus annual software subscriptions.",
    "products": ["PickBot", "FleetOS"],
    "industry": "Warehouse Automation",
    "confidence": "high",
}

LONG_OVERVIEW = "Warehouse automation covers robotics and software for fulfilment. " * 5

INDUSTRY_JSON: dict[str, Any] = {
    "industryName": "Warehouse Automation",
    "overview": LONG_OVERVIEW,
    "marketSize": "$23 billion",
    "growthRate": "a compound annual growth rate of 14%",
    "keyDrivers": ["Labor shortages", "E-commerce growth"],
    "majorPlayers": ["Symbotic", "Ocado", "AutoStore"],
    "citations": [
        {"text": "$23 billion", "source": "Industry Analysts 2025 Market Report"},
        {"text": "Labor shortages", "source": "Bureau of Labor Statistics"},
        {"text": "ignored", "source": ""},
    ],
}

CONCLUSION_MARKER = "Based on the valuation approaches analyzed"


def report_responder(
    failures: dict[str, BaseException] | None = None,
    company: dict[str, Any] | None = None,
) -> Responder:
    """Responder answering research and narrative prompts like a model would.

    Args:
        failures: Exceptions to raise, keyed by approach name, "conclusion",
            "company_research" or "industry_research".
        company: Replacement company research payload.
    """
    failures = failures or {}
    company = COMPANY_JSON if company is None else company

    def respond(request: GenerationRequest) -> Any:
        if request.system_prompt == COMPANY_RESEARCH_SYSTEM_PROMPT:
            return failures.get("company_research", orjson.dumps(company).decode())
        if request.system_prompt == INDUSTRY_RESEARCH_SYSTEM_PROMPT:
            return failures.get("industry_research", orjson.dumps(INDUSTRY_JSON).decode())
        if request.prompt.startswith(CONCLUSION_MARKER):
            return failures.get("conclusion", "The concluded value reflects the weighted approaches.")
        match = re.match(r"Write the (.+?) section", request.prompt)
        if match:
            name = match.group(1)
            return failures.get(name, f"Narrative for {name}.")
        return "Generated narrative text."

    return respond


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "ANTHROPIC_API_KEY": "sk-ant-REDACTED",
        "GENERATION_MODEL": "claude-test-model",
        "MAX_CONCURRENT_SECTIONS": "2",
        "DUPLICATE_JOB_POLICY": "reject",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str], temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide a Settings instance using temp_dir for data and output."""
    with patch.dict(
        os.environ,
        {
            "DATA_DIR": str(temp_dir / "data"),
            "OUTPUT_DIR": str(temp_dir / "output"),
        },
    ):
        clear_settings_cache()
        from valreport.config import get_settings

        settings = get_settings()
        settings.ensure_directories()
        yield settings
        clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Settings with defaults only, ignoring any .env file."""
    return Settings(_env_file=None, ANTHROPIC_API_KEY=None)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def client(provider: ScriptedProvider, sleep: RecordingSleep, settings: Settings) -> GenerationClient:
    """Generation client over the scripted provider with no real waiting."""
    return GenerationClient(provider, model="claude-test-model", sleep=sleep, settings=settings)


@pytest.fixture
def approaches() -> tuple[Approach, ...]:
    return (
        Approach("Guideline Public Company", indicated_value=10_000_000, weight=0.5),
        Approach("Income Approach (DCF)", indicated_value=12_000_000, weight=0.3),
        Approach("OPM Backsolve", indicated_value=9_000_000, weight=0.2),
    )


@pytest.fixture
def parsed_model(approaches: tuple[Approach, ...]) -> ParsedModel:
    return ParsedModel(
        company_name="Acme Robotics, Inc.",
        valuation_date=date(2025, 12, 31),
        summary=ValuationSummary(approaches=approaches, concluded_value=10_400_000),
        dlom=0.25,
    )


@pytest.fixture
def engagement() -> Engagement:
    return Engagement(
        id="eng-001",
        report_type=ReportType.FOUR09A,
        company_name="Acme Robotics, Inc.",
        valuation_date=date(2025, 12, 31),
        model_file_path="models/acme.xlsx",
        qualitative_context="Series B closed in October.",
    )


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
