"""
Narrative assembler.

Builds one ReportContent per job from:
- the parsed valuation model (company, date, approaches, concluded value)
- the engagement (fallback company/date, selected approaches, analyst notes)
- the stored quarterly economic outlook (never generated)
- company and industry research
- one generated narrative per selected approach, plus the conclusion

Approach narratives and the conclusion run concurrently under a semaphore;
each returns a Result and the results are merged back in approach order.
A failed section, research included, becomes a manual placeholder when
skip_failed_sections is set; otherwise the first failure fails the job.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

from valreport.cancellation import CancellationToken
from valreport.config import Settings, get_settings
from valreport.llm.base import (
    GenerationError,
    GenerationErrorDetail,
    GenerationOptions,
    Ok,
    Result,
)
from valreport.llm.client import GenerationClient, as_result
from valreport.logging import get_logger, set_stage
from valreport.narrative.weighting import (
    analyze_weighting,
    identify_approach_type,
    months_between,
)
from valreport.prompts import (
    VALUATION_NARRATIVE_SYSTEM_PROMPT,
    build_approach_prompt,
    build_conclusion_prompt,
)
from valreport.research import (
    CompanyResearch,
    format_industry_with_citations,
    research_company,
    research_industry,
)
from valreport.storage import EconomicOutlookStore
from valreport.types import (
    Approach,
    Citation,
    ContentSource,
    Engagement,
    Flag,
    FlagType,
    JobStage,
    ParsedModel,
    ReportContent,
    SectionContent,
    quarter_of,
)

logger = get_logger(__name__)

REVIEW_CONFIDENCE = 0.6
AI_NARRATIVE_CONFIDENCE = 0.7
NARRATIVE_MAX_TOKENS = 1024
DEFAULT_INDUSTRY = "Technology"
CONCLUSION_SECTION = "conclusion"


class StageReporter(Protocol):
    """Receives stage transitions from the assembler."""

    def stage(self, stage: JobStage, progress: int, message: str) -> None:
        ...


@dataclass
class NarrativeOptions:
    skip_failed_sections: bool = True
    include_company_research: bool = True
    include_industry_research: bool = True
    max_concurrency: int = 3

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> NarrativeOptions:
        settings = settings or get_settings()
        return cls(
            skip_failed_sections=settings.SKIP_FAILED_SECTIONS,
            include_company_research=settings.INCLUDE_COMPANY_RESEARCH,
            include_industry_research=settings.INCLUDE_INDUSTRY_RESEARCH,
            max_concurrency=settings.MAX_CONCURRENT_SECTIONS,
        )


@dataclass
class ContentValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    missing_required: list[str] = field(default_factory=list)
    review_needed: list[str] = field(default_factory=list)


def select_approaches(
    approaches: Sequence[Approach],
    selected: Sequence[str] | None,
) -> tuple[list[Approach], list[str]]:
    """Filter approaches by the engagement's selection, keeping model order.

    A selection entry matches an approach by name or by approach type,
    case-insensitively. None selects everything.

    Returns:
        Tuple of (selected approaches, warnings).
    """
    if selected is None:
        return list(approaches), []

    wanted = [s.strip().lower() for s in selected if s.strip()]
    kept: list[Approach] = []
    matched: set[str] = set()
    for approach in approaches:
        keys = {approach.name.lower(), identify_approach_type(approach.name).value}
        hits = keys.intersection(wanted)
        if hits:
            kept.append(approach)
            matched.update(hits)

    warnings = [
        f"Selected approach not found in model: {s}" for s in wanted if s not in matched
    ]
    return kept, warnings


def unique_section_keys(approaches: Sequence[Approach]) -> list[str]:
    """Section keys for the valuation analysis, one per approach.

    A name repeated in the model gets a numeric suffix so each approach
    keeps its own narrative.
    """
    keys: list[str] = []
    seen: set[str] = set()
    for approach in approaches:
        key = approach.name
        n = 2
        while key in seen:
            key = f"{approach.name} ({n})"
            n += 1
        seen.add(key)
        keys.append(key)
    return keys


def validate_content(content: ReportContent) -> ContentValidation:
    """Summarise what a reviewer must complete or check."""
    errors: list[str] = []
    warnings: list[str] = []
    missing_required: list[str] = []
    review_needed: list[str] = []

    if not content.company_overview.content or content.company_overview.is_placeholder:
        missing_required.append("Company Overview")
    if not content.conclusion.content or content.conclusion.is_placeholder:
        missing_required.append("Conclusion")
    if not content.valuation_analysis:
        warnings.append("No valuation approach narratives generated")

    for flag in content.flags:
        if flag.type is FlagType.ERROR:
            errors.append(f"{flag.section}: {flag.message}")
        elif flag.type is FlagType.MISSING:
            if flag.section not in missing_required:
                missing_required.append(flag.section)
        else:
            review_needed.append(f"{flag.section}: {flag.message}")

    warnings.extend(content.warnings)

    return ContentValidation(
        is_valid=not errors and not missing_required,
        errors=errors,
        warnings=warnings,
        missing_required=missing_required,
        review_needed=review_needed,
    )


class NarrativeAssembler:
    """Builds ReportContent for one engagement."""

    def __init__(
        self,
        client: GenerationClient,
        outlooks: EconomicOutlookStore,
        options: NarrativeOptions | None = None,
    ) -> None:
        self.client = client
        self.outlooks = outlooks
        self.options = options or NarrativeOptions.from_settings()

    async def assemble(
        self,
        engagement: Engagement,
        model: ParsedModel,
        reporter: StageReporter | None = None,
        token: CancellationToken | None = None,
    ) -> ReportContent:
        """Assemble all report content.

        Args:
            engagement: The engagement being reported on.
            model: Parsed valuation model.
            reporter: Receives researching/generating stage transitions.
            token: Cancellation token, checked between stages.

        Returns:
            ReportContent with flags and warnings.

        Raises:
            GenerationError: In strict mode, the first failed section.
            JobCancelledError: If the token is cancelled.
        """
        start = time.monotonic()
        flags: list[Flag] = []
        warnings: list[str] = []

        company_name = model.company_name or engagement.company_name
        valuation_date = model.valuation_date or engagement.valuation_date
        if not company_name:
            flags.append(
                Flag("company_name", "Company name not found in model or engagement", FlagType.MISSING)
            )
        if not valuation_date:
            flags.append(
                Flag("valuation_date", "Valuation date not found in model or engagement", FlagType.MISSING)
            )

        # Company research
        self._report(reporter, JobStage.RESEARCHING_COMPANY, 20, "Researching company")
        self._check(token)
        company_overview, research = await self._company_section(
            engagement, company_name, flags, warnings, token
        )

        # Industry research
        self._report(reporter, JobStage.RESEARCHING_INDUSTRY, 35, "Researching industry")
        self._check(token)
        industry = research.industry if research and research.industry else None
        industry_outlook, citations, industry = await self._industry_section(
            industry, research, flags, warnings, token
        )

        economic_outlook = await self._economic_section(valuation_date, flags)

        # Narratives
        self._report(reporter, JobStage.GENERATING_NARRATIVES, 50, "Generating narratives")
        self._check(token)
        approaches, selection_warnings = select_approaches(
            model.approaches, engagement.selected_approaches
        )
        warnings.extend(selection_warnings)

        weighting = analyze_weighting(
            approaches,
            opm_age_months=months_between(engagement.opm_date, valuation_date),
            funding_age_months=months_between(engagement.last_funding_date, valuation_date),
            is_pre_revenue=engagement.is_pre_revenue,
        )
        warnings.extend(weighting.warnings)

        keys = unique_section_keys(approaches)
        labels = list(keys)
        narratives: list[Awaitable[str]] = [
            self._generate(
                build_approach_prompt(
                    approach,
                    identify_approach_type(approach.name),
                    engagement.report_type,
                    company_name,
                    valuation_date,
                    industry=industry,
                    qualitative_context=engagement.qualitative_context,
                ),
                token,
            )
            for approach in approaches
        ]
        if approaches:
            prompt = build_conclusion_prompt(
                approaches,
                company_name,
                valuation_date,
                model.concluded_value,
                dlom=model.dlom,
                weighting_rationale=weighting.rationale,
                qualitative_context=engagement.qualitative_context,
            )
            narratives.append(self._generate(prompt, token))
            labels.append(CONCLUSION_SECTION)

        results = await self._run_sections(labels, narratives)

        valuation_analysis: dict[str, SectionContent] = {
            key: self._merge_approach(key, result, flags, warnings)
            for key, result in zip(keys, results)
        }

        if approaches:
            conclusion = self._merge_conclusion(results[-1], flags, warnings)
        else:
            conclusion = SectionContent.placeholder(
                "No valuation approaches were identified in the model. Manual conclusion required."
            )
            flags.append(Flag("conclusion", "No valuation approaches to conclude on", FlagType.MISSING))

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Report content assembled",
            approaches=len(valuation_analysis),
            flags=len(flags),
            warnings=len(warnings),
            duration_ms=duration_ms,
        )

        return ReportContent(
            company_name=company_name,
            valuation_date=valuation_date,
            report_type=engagement.report_type,
            company_overview=company_overview,
            industry_outlook=industry_outlook,
            economic_outlook=economic_outlook,
            valuation_analysis=valuation_analysis,
            conclusion=conclusion,
            approaches=tuple(approaches),
            concluded_value=model.concluded_value,
            dlom=model.dlom,
            industry=industry,
            flags=flags,
            warnings=warnings,
            industry_citations=citations,
            generation_duration_ms=duration_ms,
        )

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    async def _company_section(
        self,
        engagement: Engagement,
        company_name: str | None,
        flags: list[Flag],
        warnings: list[str],
        token: CancellationToken | None,
    ) -> tuple[SectionContent, CompanyResearch | None]:
        reason = None
        if not self.options.include_company_research:
            reason = "Company research disabled - manual entry required"
        elif not company_name:
            reason = "Company research skipped: no company name"
        if reason is not None:
            flags.append(Flag("company_overview", reason, FlagType.MISSING))
            return SectionContent.placeholder("Company overview not generated"), None

        try:
            research = await research_company(
                self.client, company_name, engagement.qualitative_context, token=token
            )
        except GenerationError as e:
            placeholder = self._failed(
                "company_overview",
                "company overview",
                "COMPANY OVERVIEW GENERATION FAILED - Manual entry required",
                e.detail,
                flags,
                warnings,
            )
            return placeholder, None

        section = SectionContent(
            content=research.description,
            source=ContentSource.AI,
            confidence=research.confidence.score,
            warnings=list(research.warnings),
        )
        if research.limited_info or section.confidence < REVIEW_CONFIDENCE:
            flags.append(
                Flag(
                    "company_overview",
                    "Limited company information available - review required",
                    FlagType.REVIEW,
                )
            )
        return section, research

    async def _industry_section(
        self,
        industry: str | None,
        research: CompanyResearch | None,
        flags: list[Flag],
        warnings: list[str],
        token: CancellationToken | None,
    ) -> tuple[SectionContent, list[Citation], str | None]:
        if not self.options.include_industry_research:
            flags.append(
                Flag(
                    "industry_outlook",
                    "Industry research disabled - manual entry required",
                    FlagType.MISSING,
                )
            )
            return SectionContent.placeholder("Industry outlook not generated"), [], industry

        if industry is None:
            industry = DEFAULT_INDUSTRY
            flags.append(
                Flag(
                    "industry_outlook",
                    f"Industry not identified; researched {DEFAULT_INDUSTRY} as a default",
                    FlagType.UNCERTAIN,
                )
            )

        try:
            result = await research_industry(
                self.client,
                industry,
                research.description if research else None,
                token=token,
            )
        except GenerationError as e:
            placeholder = self._failed(
                "industry_outlook",
                "industry outlook",
                "INDUSTRY OUTLOOK GENERATION FAILED - Manual entry required",
                e.detail,
                flags,
                warnings,
            )
            return placeholder, [], industry

        content, _ = format_industry_with_citations(result)
        section = SectionContent(
            content=content, source=ContentSource.AI, confidence=result.confidence.score
        )
        if section.confidence < REVIEW_CONFIDENCE:
            flags.append(
                Flag(
                    "industry_outlook",
                    "Limited industry information available - review required",
                    FlagType.REVIEW,
                )
            )
        return section, list(result.citations), result.industry_name

    async def _economic_section(
        self, valuation_date: date | None, flags: list[Flag]
    ) -> SectionContent:
        if valuation_date is None:
            flags.append(
                Flag(
                    "economic_outlook",
                    "No valuation date; economic outlook could not be selected",
                    FlagType.MISSING,
                )
            )
            return SectionContent.placeholder("Economic outlook not loaded - manual entry required")

        quarter, year = quarter_of(valuation_date), valuation_date.year
        text = await self.outlooks.find(quarter, year)
        if text:
            return SectionContent.stored(text)

        flags.append(
            Flag(
                "economic_outlook",
                f"No economic outlook found for Q{quarter} {year}",
                FlagType.MISSING,
            )
        )
        return SectionContent.placeholder(f"Economic outlook for Q{quarter} {year} not available")

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _generate(self, prompt: str, token: CancellationToken | None) -> str:
        return await self.client.generate(
            prompt,
            GenerationOptions(
                system_prompt=VALUATION_NARRATIVE_SYSTEM_PROMPT,
                max_tokens=NARRATIVE_MAX_TOKENS,
                temperature=0.7,
            ),
            token=token,
        )

    async def _run_sections(
        self, labels: Sequence[str], calls: Sequence[Awaitable[str]]
    ) -> list[Result[str]]:
        semaphore = asyncio.Semaphore(max(1, self.options.max_concurrency))

        async def run_section(label: str, call: Awaitable[str]) -> Result[str]:
            async with semaphore:
                logger.debug("Generating section", section=label)
                return await as_result(call)

        results = await asyncio.gather(
            *[run_section(label, call) for label, call in zip(labels, calls)],
            return_exceptions=True,
        )

        # Cancellation and unexpected errors are not section-scoped
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    def _merge_approach(
        self, key: str, result: Result[str], flags: list[Flag], warnings: list[str]
    ) -> SectionContent:
        if isinstance(result, Ok):
            return SectionContent(
                content=result.value, source=ContentSource.AI, confidence=AI_NARRATIVE_CONFIDENCE
            )
        return self._failed(
            f"approach_{key}",
            f"narrative for {key}",
            f"NARRATIVE GENERATION FAILED - Manual entry required for {key}",
            result.error,
            flags,
            warnings,
        )

    def _merge_conclusion(
        self, result: Result[str], flags: list[Flag], warnings: list[str]
    ) -> SectionContent:
        if isinstance(result, Ok):
            return SectionContent(
                content=result.value, source=ContentSource.AI, confidence=AI_NARRATIVE_CONFIDENCE
            )
        return self._failed(
            CONCLUSION_SECTION,
            "conclusion",
            "CONCLUSION GENERATION FAILED - Manual entry required",
            result.error,
            flags,
            warnings,
        )

    def _failed(
        self,
        section_name: str,
        label: str,
        placeholder_text: str,
        error: GenerationErrorDetail,
        flags: list[Flag],
        warnings: list[str],
    ) -> SectionContent:
        """Apply the failure policy to one section.

        Strict mode re-raises the classified error. Otherwise the section
        becomes a placeholder with an ERROR flag and a job warning.
        """
        if not self.options.skip_failed_sections:
            logger.error("Section generation failed", section=section_name, error_type=error.type.value)
            raise GenerationError(error)

        message = f"Failed to generate {label}"
        logger.warning(message, section=section_name, error_type=error.type.value)
        warnings.append(message)
        flags.append(Flag(section_name, f"{message}: {error.user_message}", FlagType.ERROR))
        return SectionContent.placeholder(
            placeholder_text, warnings=[f"{error.type.value}: {error.message}"]
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _report(reporter: StageReporter | None, stage: JobStage, progress: int, message: str) -> None:
        set_stage(stage.value)
        if reporter is not None:
            reporter.stage(stage, progress, message)

    @staticmethod
    def _check(token: CancellationToken | None) -> None:
        if token is not None:
            token.raise_if_cancelled()
