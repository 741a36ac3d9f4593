"""
Prompt templates for research and narrative generation.

Templates are module-level format strings; the build_* helpers fill them
from parsed model data and analyst context.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from valreport.types import Approach, ApproachType, ReportType

# =============================================================================
# Research
# =============================================================================

COMPANY_RESEARCH_SYSTEM_PROMPT = """You are an expert business analyst specializing in company research for valuation purposes. Your task is to provide comprehensive, accurate information about companies for use in formal valuation reports.

Guidelines:
- Provide factual, verifiable information only
- If you're uncertain about something, clearly indicate it
- Use professional, objective language suitable for valuation reports
- Focus on information relevant to business valuation
- If you have limited information about a company, clearly state this"""

COMPANY_RESEARCH_PROMPT = """Research the following company and provide comprehensive information for a business valuation report.

Company Name: {company_name}
{context_block}
Provide your response as a JSON object with the following structure:

{{
  "companyDescription": "A comprehensive 2-3 paragraph description of the company, its history, and what it does",
  "businessModel": "How the company generates revenue and operates its business",
  "products": ["Main", "products", "or", "services"],
  "revenueStreams": "The company's revenue sources",
  "targetMarket": "The company's target customers and market segments",
  "competitivePosition": "The company's position relative to competitors",
  "recentDevelopments": "Recent funding, acquisitions, or significant events (if known)",
  "keyFacts": ["Facts", "relevant", "to", "valuation"],
  "industry": "The primary industry or sector the company operates in",
  "confidence": "high, medium, or low - based on how much reliable information you have"
}}

Important:
- If this is a private company with limited public information, provide what you know and indicate uncertainty
- If you cannot find information for a field, use "Information not available" or an empty array
- Set confidence to "low" if you have very limited information about this company"""

INDUSTRY_RESEARCH_SYSTEM_PROMPT = """You are an expert industry analyst specializing in market research for business valuation purposes. Your task is to provide comprehensive, well-sourced industry analysis suitable for formal valuation reports.

Guidelines:
- Provide factual, data-driven information
- Include source attributions where possible
- Use professional, objective language suitable for valuation reports
- Focus on market size, growth and competitive dynamics"""

INDUSTRY_RESEARCH_PROMPT = """Provide a comprehensive industry analysis for the following industry, suitable for inclusion in a business valuation report.

Industry: {industry}
{context_block}
Provide your response as a JSON object with the following structure:

{{
  "industryName": "The formal name of the industry",
  "overview": "A 2-3 paragraph overview of the industry, its scope, and significance",
  "marketSize": "Current market size with specific figures if available",
  "growthRate": "Historical and projected growth rates",
  "keyDrivers": ["Key", "growth", "drivers"],
  "competitiveLandscape": "Competitive dynamics, concentration, and barriers to entry",
  "regulatoryEnvironment": "Regulatory factors affecting the industry",
  "recentTrends": ["Recent", "industry", "trends"],
  "majorPlayers": ["Major", "companies", "in", "the", "industry"],
  "outlook": "Outlook for the industry over the next 3-5 years",
  "citations": [
    {{"text": "Specific fact or statistic", "source": "Source attribution"}}
  ]
}}"""

INDUSTRY_OVERVIEW_PROMPT = """Write a professional industry overview for the "{industry}" industry suitable for inclusion in a business valuation report.
{context_block}
The overview should:
- Be 3-4 paragraphs (approximately 400-500 words)
- Describe the industry's scope and key characteristics
- Discuss market size and growth trends
- Address competitive dynamics
- Include source attributions where citing statistics"""


def _context_block(label: str, context: str | None) -> str:
    if not context:
        return ""
    return f"\n{label}:\n{context}\n"


def build_company_research_prompt(company_name: str, context: str | None = None) -> str:
    return COMPANY_RESEARCH_PROMPT.format(
        company_name=company_name,
        context_block=_context_block("Additional Context from Analyst", context),
    )


def build_industry_research_prompt(industry: str, company_context: str | None = None) -> str:
    return INDUSTRY_RESEARCH_PROMPT.format(
        industry=industry,
        context_block=_context_block("Company Context", company_context),
    )


def build_industry_overview_prompt(industry: str, company_context: str | None = None) -> str:
    return INDUSTRY_OVERVIEW_PROMPT.format(
        industry=industry,
        context_block=_context_block("Consider this company context", company_context),
    )


# =============================================================================
# Valuation narratives
# =============================================================================

VALUATION_NARRATIVE_SYSTEM_PROMPT = """You are an expert business valuation analyst writing narrative sections for formal valuation reports.

CRITICAL INSTRUCTIONS:
- You will be provided with SPECIFIC DATA extracted from the valuation model
- You MUST reference this specific data in your narrative
- Do NOT write generic explanations of what the methodology is
- Reference specific numbers and values exactly as provided
- Show the math where applicable: multiple x metric = value
- Use a professional, matter-of-fact tone
- Write in third person
- Approximately 200-400 words per section"""

APPROACH_PROMPT = """Write the {approach_name} section for a {report_label} report.

SUBJECT COMPANY DATA:
- Company Name: {company_name}
- Valuation Date: {valuation_date}
{industry_line}
INDICATED VALUE FROM THIS APPROACH: {indicated_value}
WEIGHT ASSIGNED: {weight}
{context_block}
{instructions}

DO NOT write generic explanations of the methodology. Reference the SPECIFIC data above."""

_APPROACH_INSTRUCTIONS: dict[ApproachType, str] = {
    ApproachType.GUIDELINE_PUBLIC_COMPANY: """Write a 2-4 paragraph narrative that:
1. Explains why the guideline companies are comparable to the Subject Company
2. Discusses the multiple ranges observed and the multiple selected
3. Shows the calculation: selected multiple x Subject Company metric = indicated value
4. Notes any size adjustments or other considerations""",
    ApproachType.GUIDELINE_TRANSACTION: """Write a 2-4 paragraph narrative that:
1. Discusses the transactions selected and their relevance
2. Addresses timing relevance (more recent = more relevant)
3. States the selected multiple and any adjustments
4. Shows the math: selected multiple x metric = indicated value""",
    ApproachType.INCOME_DCF: """Write 3-4 paragraphs covering:
1. The projection period and revenue trajectory
2. The discount rate and how it was built up
3. The terminal value methodology
4. The present values and the indicated value from this approach""",
    ApproachType.INCOME_CCF: """Write 2-3 paragraphs covering:
1. The normalized cash flow being capitalized
2. The capitalization rate and long-term growth assumption
3. The indicated value from this approach""",
    ApproachType.BACKSOLVE: """Write 2-3 paragraphs covering:
1. The recent transaction used and its terms
2. The equity allocation assumptions (volatility, time to liquidity)
3. The implied equity value""",
    ApproachType.OPM: """Write 2-3 paragraphs covering:
1. The option pricing model inputs
2. The breakpoints and allocation across share classes
3. The indicated value for common stock""",
}

_GENERIC_INSTRUCTIONS = """Write a 2-3 paragraph narrative that explains how this approach was applied to the Subject Company and how the indicated value was derived."""

CONCLUSION_PROMPT = """Based on the valuation approaches analyzed, write 1-2 paragraphs explaining the weighting and final conclusion.

SUBJECT COMPANY:
- Company Name: {company_name}
- Valuation Date: {valuation_date}

VALUATION APPROACHES AND WEIGHTING:
{approach_lines}

CONCLUDED VALUES:
- Concluded Value: {concluded_value}
{dlom_line}
{weighting_block}{context_block}
Explain why each approach received its weight and state the concluded value. Reference the specific figures above."""


def format_currency(value: float | None) -> str:
    """Render a dollar amount the way report prose expects."""
    if value is None:
        return "[Not Available]"
    if abs(value) >= 1_000_000:
        return f"${value / 1_000_000:.1f} million"
    if abs(value) >= 1000:
        return f"${value / 1000:.0f} thousand"
    return f"${value:,.0f}"


def format_percent(value: float | None) -> str:
    if value is None:
        return "[Not Specified]"
    if value > 1:
        return f"{value:.1f}%"
    return f"{value * 100:.1f}%"


def _date_text(value: date | None) -> str:
    return value.isoformat() if value else "[Valuation Date]"


def build_approach_prompt(
    approach: Approach,
    approach_type: ApproachType,
    report_type: ReportType,
    company_name: str | None,
    valuation_date: date | None,
    industry: str | None = None,
    qualitative_context: str | None = None,
) -> str:
    """Prompt for one approach narrative, specialised by approach type."""
    return APPROACH_PROMPT.format(
        approach_name=approach.name,
        report_label=report_type.label,
        company_name=company_name or "[Company Name]",
        valuation_date=_date_text(valuation_date),
        industry_line=f"- Industry: {industry}\n" if industry else "",
        indicated_value=format_currency(approach.indicated_value),
        weight=format_percent(approach.weight),
        context_block=_context_block("ANALYST QUALITATIVE CONTEXT", qualitative_context),
        instructions=_APPROACH_INSTRUCTIONS.get(approach_type, _GENERIC_INSTRUCTIONS),
    )


def build_conclusion_prompt(
    approaches: Sequence[Approach],
    company_name: str | None,
    valuation_date: date | None,
    concluded_value: float | None,
    dlom: float | None = None,
    weighting_rationale: str | None = None,
    qualitative_context: str | None = None,
) -> str:
    """Prompt for the conclusion, listing every approach in weighting order."""
    lines = []
    for i, approach in enumerate(approaches, 1):
        lines.append(
            f"{i}. {approach.name}\n"
            f"   - Indicated Value: {format_currency(approach.indicated_value)}\n"
            f"   - Weight: {format_percent(approach.weight)}\n"
            f"   - Weighted Value: {format_currency(approach.weighted_value)}"
        )

    return CONCLUSION_PROMPT.format(
        company_name=company_name or "[Company Name]",
        valuation_date=_date_text(valuation_date),
        approach_lines="\n".join(lines) if lines else "(none identified)",
        concluded_value=format_currency(concluded_value),
        dlom_line=f"- DLOM Applied: {format_percent(dlom)}" if dlom is not None else "",
        weighting_block=_context_block("WEIGHTING CONSIDERATIONS", weighting_rationale),
        context_block=_context_block("ANALYST QUALITATIVE CONTEXT", qualitative_context),
    )
