"""
Company research.

Asks the generation client for structured company facts. Falls back to a
plain-text answer when the structured call fails; when that fails too the
classified error propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from valreport.cancellation import CancellationToken
from valreport.llm.base import GenerationError, GenerationOptions
from valreport.llm.client import GenerationClient
from valreport.logging import get_logger
from valreport.prompts import COMPANY_RESEARCH_SYSTEM_PROMPT, build_company_research_prompt
from valreport.research.base import NOT_AVAILABLE, ResearchConfidence, as_list, as_text

logger = get_logger(__name__)

FALLBACK_MAX_TOKENS = 2048
MIN_DESCRIPTION_LENGTH = 50
MIN_TEXT_DESCRIPTION_LENGTH = 100


@dataclass
class CompanyResearch:
    """Company facts used for the overview section and the industry lookup."""

    company_name: str
    description: str
    business_model: str = NOT_AVAILABLE
    products: list[str] = field(default_factory=list)
    revenue_streams: str = NOT_AVAILABLE
    target_market: str = NOT_AVAILABLE
    competitive_position: str = NOT_AVAILABLE
    recent_developments: str = NOT_AVAILABLE
    key_facts: list[str] = field(default_factory=list)
    industry: str | None = None
    confidence: ResearchConfidence = ResearchConfidence.MEDIUM
    limited_info: bool = False
    warnings: list[str] = field(default_factory=list)


def parse_company_research(company_name: str, data: dict[str, Any]) -> CompanyResearch:
    """Build a CompanyResearch from a structured response."""
    warnings: list[str] = []
    description = as_text(data.get("companyDescription"))
    lowered = description.lower()

    limited_info = (
        description == NOT_AVAILABLE
        or "information not available" in lowered
        or "limited information" in lowered
        or str(data.get("confidence", "")).lower() == "low"
    )

    if description == NOT_AVAILABLE or len(description) < MIN_DESCRIPTION_LENGTH:
        warnings.append("Limited company description available")
    if as_text(data.get("businessModel")) == NOT_AVAILABLE:
        warnings.append("Business model information not available")
    products = as_list(data.get("products"))
    if not products:
        warnings.append("Product/service information not available")

    confidence = ResearchConfidence.parse(data.get("confidence"))
    if limited_info:
        confidence = ResearchConfidence.LOW

    industry = as_text(data.get("industry"), default="")

    return CompanyResearch(
        company_name=company_name,
        description=description,
        business_model=as_text(data.get("businessModel")),
        products=products,
        revenue_streams=as_text(data.get("revenueStreams")),
        target_market=as_text(data.get("targetMarket")),
        competitive_position=as_text(data.get("competitivePosition")),
        recent_developments=as_text(data.get("recentDevelopments")),
        key_facts=as_list(data.get("keyFacts")),
        industry=industry or None,
        confidence=confidence,
        limited_info=limited_info,
        warnings=warnings,
    )


def _sentence_with(text: str, keywords: list[str]) -> str | None:
    lowered = text.lower()
    for keyword in keywords:
        index = lowered.find(keyword)
        if index == -1:
            continue
        start = text.rfind(".", 0, index) + 1
        end = text.find(".", index + len(keyword))
        if end != -1:
            return text[start : end + 1].strip()
    return None


def parse_text_research(company_name: str, text: str) -> CompanyResearch:
    """Best-effort CompanyResearch from an unstructured answer."""
    text = text.strip()
    return CompanyResearch(
        company_name=company_name,
        description=text if len(text) > MIN_TEXT_DESCRIPTION_LENGTH else NOT_AVAILABLE,
        business_model=_sentence_with(text, ["business model", "revenue model"]) or NOT_AVAILABLE,
        target_market=(
            _sentence_with(text, ["target market", "customers", "market segment"]) or NOT_AVAILABLE
        ),
        competitive_position=(
            _sentence_with(text, ["competitive", "market position", "competitors"])
            or NOT_AVAILABLE
        ),
        industry=None,
        confidence=ResearchConfidence.LOW,
        limited_info=True,
        warnings=["Research data was parsed from unstructured response - may need review"],
    )


async def research_company(
    client: GenerationClient,
    company_name: str,
    context: str | None = None,
    token: CancellationToken | None = None,
) -> CompanyResearch:
    """Research a company for the overview section.

    Args:
        client: Generation client.
        company_name: Name of the subject company.
        context: Analyst notes or transcript to ground the research.
        token: Cancellation token.

    Returns:
        CompanyResearch from the structured answer, or a low-confidence
        record parsed from a plain-text answer.

    Raises:
        GenerationError: If the plain-text fallback fails as well. The
            caller decides whether that fails the job.
    """
    prompt = build_company_research_prompt(company_name, context)

    try:
        data = await client.generate_structured(prompt, COMPANY_RESEARCH_SYSTEM_PROMPT, token=token)
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        return parse_company_research(company_name, data)
    except (GenerationError, TypeError) as e:
        logger.warning("Structured company research failed", company=company_name, error=str(e))

    try:
        text = await client.generate(
            prompt,
            GenerationOptions(
                system_prompt=COMPANY_RESEARCH_SYSTEM_PROMPT, max_tokens=FALLBACK_MAX_TOKENS
            ),
            token=token,
        )
    except GenerationError as e:
        logger.error(
            "Fallback company research failed",
            company=company_name,
            error_type=e.detail.type.value,
        )
        raise
    return parse_text_research(company_name, text)
