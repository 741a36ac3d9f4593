"""
Industry research.

Same fallback as company research: structured JSON, then a plain-text
overview. A failure of both propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from valreport.cancellation import CancellationToken
from valreport.llm.base import GenerationError, GenerationOptions
from valreport.llm.client import GenerationClient
from valreport.logging import get_logger
from valreport.prompts import (
    INDUSTRY_RESEARCH_SYSTEM_PROMPT,
    build_industry_overview_prompt,
    build_industry_research_prompt,
)
from valreport.research.base import ResearchConfidence, as_list, as_text
from valreport.types import Citation

logger = get_logger(__name__)

SEE_OVERVIEW = "See overview"
UNAVAILABLE = "Not available"
FALLBACK_MAX_TOKENS = 2048
MAX_LISTED_PLAYERS = 5


@dataclass
class IndustryResearch:
    """Industry facts rendered into the industry outlook section."""

    industry_name: str
    overview: str
    market_size: str = UNAVAILABLE
    growth_rate: str = UNAVAILABLE
    key_drivers: list[str] = field(default_factory=list)
    competitive_landscape: str = UNAVAILABLE
    regulatory_environment: str = UNAVAILABLE
    recent_trends: list[str] = field(default_factory=list)
    major_players: list[str] = field(default_factory=list)
    outlook: str = UNAVAILABLE
    citations: list[Citation] = field(default_factory=list)
    confidence: ResearchConfidence = ResearchConfidence.MEDIUM


def parse_industry_research(industry: str, data: dict[str, Any]) -> IndustryResearch:
    """Build IndustryResearch from a structured response.

    Citations are numbered 1..n in the order returned.
    """
    overview = as_text(data.get("overview"), default="")
    key_drivers = as_list(data.get("keyDrivers"))
    market_size = as_text(data.get("marketSize"), default="")

    citations = []
    raw_citations = data.get("citations")
    if isinstance(raw_citations, list):
        for item in raw_citations:
            if isinstance(item, dict) and item.get("source"):
                citations.append(
                    Citation(
                        text=str(item.get("text", "")),
                        source=str(item["source"]),
                        footnote_number=len(citations) + 1,
                    )
                )

    detailed = len(overview) > 200 and bool(market_size) and bool(key_drivers)
    if detailed and citations:
        confidence = ResearchConfidence.HIGH
    elif len(overview) < 100:
        confidence = ResearchConfidence.LOW
    else:
        confidence = ResearchConfidence.MEDIUM

    return IndustryResearch(
        industry_name=as_text(data.get("industryName"), default=industry),
        overview=overview or "Industry information not available",
        market_size=market_size or UNAVAILABLE,
        growth_rate=as_text(data.get("growthRate"), default=UNAVAILABLE),
        key_drivers=key_drivers,
        competitive_landscape=as_text(data.get("competitiveLandscape"), default=UNAVAILABLE),
        regulatory_environment=as_text(data.get("regulatoryEnvironment"), default=UNAVAILABLE),
        recent_trends=as_list(data.get("recentTrends")),
        major_players=as_list(data.get("majorPlayers")),
        outlook=as_text(data.get("outlook"), default=UNAVAILABLE),
        citations=citations,
        confidence=confidence,
    )


def minimal_industry_research(industry: str, overview: str) -> IndustryResearch:
    return IndustryResearch(
        industry_name=industry,
        overview=overview.strip(),
        market_size=SEE_OVERVIEW,
        growth_rate=SEE_OVERVIEW,
        competitive_landscape=SEE_OVERVIEW,
        regulatory_environment=SEE_OVERVIEW,
        outlook=SEE_OVERVIEW,
        confidence=ResearchConfidence.LOW,
    )


def _has(value: str) -> bool:
    return value not in (UNAVAILABLE, SEE_OVERVIEW)


def format_industry_with_citations(research: IndustryResearch) -> tuple[str, list[str]]:
    """Render research as report prose with bold sub-headings.

    Returns:
        Tuple of (content, footnotes) where footnotes are "n. source" lines.
    """
    parts = [f"**Industry Overview**\n\n{research.overview}"]

    if _has(research.market_size) or _has(research.growth_rate):
        sentences = []
        if _has(research.market_size):
            sentences.append(
                f"The {research.industry_name} market is valued at {research.market_size}."
            )
        if _has(research.growth_rate):
            sentences.append(f"The market has demonstrated {research.growth_rate}.")
        parts.append("**Market Size and Growth**\n\n" + " ".join(sentences))

    if research.key_drivers:
        bullets = "\n".join(f"• {driver}" for driver in research.key_drivers)
        parts.append(
            "**Key Growth Drivers**\n\n"
            "The primary factors driving growth in this industry include:\n" + bullets
        )

    if _has(research.competitive_landscape):
        parts.append(f"**Competitive Landscape**\n\n{research.competitive_landscape}")

    if research.major_players:
        players = ", ".join(research.major_players[:MAX_LISTED_PLAYERS])
        suffix = ", among others" if len(research.major_players) > MAX_LISTED_PLAYERS else ""
        parts.append(f"Key players in this market include {players}{suffix}.")

    if research.recent_trends:
        bullets = "\n".join(f"• {trend}" for trend in research.recent_trends)
        parts.append("**Recent Industry Trends**\n\n" + bullets)

    if _has(research.regulatory_environment):
        parts.append(f"**Regulatory Environment**\n\n{research.regulatory_environment}")

    if _has(research.outlook):
        parts.append(f"**Industry Outlook**\n\n{research.outlook}")

    footnotes = [f"{c.footnote_number}. {c.source}" for c in research.citations]
    return "\n\n".join(parts).strip(), footnotes


async def research_industry(
    client: GenerationClient,
    industry: str,
    company_context: str | None = None,
    token: CancellationToken | None = None,
) -> IndustryResearch:
    """Research an industry for the industry outlook section.

    Args:
        client: Generation client.
        industry: Industry name, usually from company research.
        company_context: Company description to focus the analysis.
        token: Cancellation token.

    Returns:
        IndustryResearch from the structured answer, or a low-confidence
        record wrapping a plain-text overview.

    Raises:
        GenerationError: If the plain-text fallback fails as well.
    """
    try:
        data = await client.generate_structured(
            build_industry_research_prompt(industry, company_context),
            INDUSTRY_RESEARCH_SYSTEM_PROMPT,
            token=token,
        )
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        return parse_industry_research(industry, data)
    except (GenerationError, TypeError) as e:
        logger.warning("Structured industry research failed", industry=industry, error=str(e))

    try:
        text = await client.generate(
            build_industry_overview_prompt(industry, company_context),
            GenerationOptions(
                system_prompt=INDUSTRY_RESEARCH_SYSTEM_PROMPT, max_tokens=FALLBACK_MAX_TOKENS
            ),
            token=token,
        )
    except GenerationError as e:
        logger.error(
            "Fallback industry research failed",
            industry=industry,
            error_type=e.detail.type.value,
        )
        raise
    return minimal_industry_research(industry, text)
