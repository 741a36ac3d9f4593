"""
Document assembler.

Renders a Template plus ReportContent into a Markdown sections document:
- boilerplate sections pass through verbatim
- substitution sections have placeholder tokens replaced from the content
- generated sections are replaced with the matching SectionContent
- *VALUATIONSUMMARY renders the weighted summary table and cross-checks
  the recomputed total against the model's concluded value
- a closing "Flags & Review Notes" block lists every flag

Missing data never fails assembly; it is marked in the text and reported
through warnings and flags.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date

from valreport.logging import get_logger
from valreport.templates.base import (
    PLACEHOLDER_PATTERN,
    SUMMARY_TABLE_TOKEN,
    Placeholder,
    SectionType,
    Template,
    TemplateSection,
)
from valreport.types import (
    Citation,
    Flag,
    FlagType,
    ReportContent,
    SectionContent,
    quarter_of,
    utc_now,
)

logger = get_logger(__name__)

REVIEW_CONFIDENCE = 0.6
TOTAL_TOLERANCE_RATIO = 0.0001
MIN_TOTAL_TOLERANCE = 1.0

_FLAG_PREFIX = {
    FlagType.ERROR: "ERROR",
    FlagType.MISSING: "MISSING",
    FlagType.UNCERTAIN: "UNCERTAIN",
    FlagType.REVIEW: "REVIEW",
}


@dataclass
class AssembledDocument:
    """Rendered report text with everything a reviewer must look at."""

    text: str
    filename: str
    warnings: list[str] = field(default_factory=list)
    flags: list[Flag] = field(default_factory=list)

    @property
    def data(self) -> bytes:
        return self.text.encode("utf-8")


@dataclass
class SummaryTable:
    text: str
    total: float
    warnings: list[str] = field(default_factory=list)
    flags: list[Flag] = field(default_factory=list)


def format_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def format_money(value: float) -> str:
    return f"${value:,.0f}"


def plain_number(value: float) -> str:
    """Number without grouping separators or trailing zeros."""
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def report_filename(content: ReportContent) -> str:
    """<Company> - <409A|59-60> - <YYYY-MM-DD> - SECTIONS.md"""
    company = re.sub(r"[^A-Za-z0-9 ]", "", content.company_name or "").strip() or "Company"
    day = content.valuation_date or utc_now().date()
    return f"{company} - {content.report_type.short_label} - {day.isoformat()} - SECTIONS.md"


def add_footnotes(text: str, citations: list[Citation]) -> tuple[str, list[str]]:
    """Mark the first occurrence of each cited text and list the sources.

    Returns:
        Tuple of (marked text, "n. source" footnote lines).
    """
    footnotes: list[str] = []
    for index, citation in enumerate(citations, start=1):
        footnotes.append(f"{index}. {citation.source}")
        if citation.text and citation.text in text:
            text = text.replace(citation.text, f"{citation.text}[{index}]", 1)
    return text, footnotes


def build_summary_table(content: ReportContent) -> SummaryTable:
    """Render the weighted summary table and cross-check its total.

    Rows follow the approach order supplied. A row missing its indicated
    value or weight renders n/a and is left out of the total.
    """
    warnings: list[str] = []
    flags: list[Flag] = []
    lines = [
        "| Approach | Indicated Value | Weight | Weighted Value |",
        "|---|---:|---:|---:|",
    ]

    total = 0.0
    for approach in content.approaches:
        weighted = approach.weighted_value
        value_text = (
            format_money(approach.indicated_value) if approach.indicated_value is not None else "n/a"
        )
        weight_text = f"{approach.weight * 100:.1f}%" if approach.weight is not None else "n/a"
        if weighted is None:
            warnings.append(
                f"Approach {approach.name} is missing an indicated value or weight; "
                "excluded from the weighted total"
            )
            lines.append(f"| {approach.name} | {value_text} | {weight_text} | n/a |")
            continue
        total += weighted
        lines.append(
            f"| {approach.name} | {value_text} | {weight_text} | {format_money(weighted)} |"
        )

    lines.append(f"| **Total** | | | **{format_money(total)}** |")

    if content.dlom is not None:
        after_dlom = total * (1 - content.dlom)
        lines.append(f"| DLOM | | {content.dlom * 100:.1f}% | |")
        lines.append(f"| **Value after DLOM** | | | **{format_money(after_dlom)}** |")

    concluded = content.concluded_value
    if concluded is None:
        warnings.append("Concluded value not available; weighted total not cross-checked")
    else:
        tolerance = max(MIN_TOTAL_TOLERANCE, TOTAL_TOLERANCE_RATIO * abs(concluded))
        if abs(total - concluded) > tolerance:
            message = (
                f"Sum of weighted values ({plain_number(total)}) does not match "
                f"concluded value ({plain_number(concluded)})"
            )
            logger.warning(message)
            flags.append(Flag("valuation_summary", message, FlagType.REVIEW))

    return SummaryTable(text="\n".join(lines), total=total, warnings=warnings, flags=flags)


def _placeholder_values(content: ReportContent, summary: SummaryTable | None) -> dict[str, str | None]:
    valuation_date = content.valuation_date
    return {
        "company_name": content.company_name,
        "valuation_date": format_date(valuation_date) if valuation_date else None,
        "report_date": format_date(utc_now().date()),
        "concluded_value": (
            format_money(content.concluded_value) if content.concluded_value is not None else None
        ),
        "dlom": f"{content.dlom * 100:.1f}%" if content.dlom is not None else None,
        "industry": content.industry,
        "report_type": content.report_type.label,
        "quarter": f"Q{quarter_of(valuation_date)}" if valuation_date else None,
        "year": str(valuation_date.year) if valuation_date else None,
        "valuation_summary": summary.text if summary else None,
    }


class DocumentAssembler:
    """Fills a template from report content."""

    def assemble(self, template: Template, content: ReportContent) -> AssembledDocument:
        """Render the document.

        Args:
            template: Parsed template.
            content: Assembled report content.

        Returns:
            AssembledDocument; never raises for missing data.
        """
        warnings: list[str] = []
        flags: list[Flag] = list(content.flags)

        summary: SummaryTable | None = None
        if any(p.token == SUMMARY_TABLE_TOKEN for p in template.placeholders):
            summary = build_summary_table(content)
            warnings.extend(summary.warnings)
            flags.extend(summary.flags)

        values = _placeholder_values(content, summary)
        warned: set[str] = set()
        blocks: list[str] = []

        for section in template.sections:
            if section.type is SectionType.GENERATED:
                body = self._generated(section, content, warnings)
            elif section.type is SectionType.SUBSTITUTION:
                body = self._substitute(section.content, values, warnings, warned)
            else:
                body = section.content

            heading = self._heading(section)
            blocks.append("\n\n".join(part for part in (heading, body.strip()) if part))

        blocks.append(self._flags_block(flags))

        logger.info(
            "Document assembled",
            template_id=template.id,
            sections=len(template.sections),
            warnings=len(warnings),
            flags=len(flags),
        )

        return AssembledDocument(
            text="\n\n".join(b for b in blocks if b).rstrip() + "\n",
            filename=report_filename(content),
            warnings=warnings,
            flags=flags,
        )

    @staticmethod
    def _heading(section: TemplateSection) -> str:
        if not section.name:
            return ""
        return f"{'#' * max(1, section.heading_level)} {section.name}"

    @staticmethod
    def _substitute(
        text: str,
        values: dict[str, str | None],
        warnings: list[str],
        warned: set[str],
    ) -> str:
        def replace(match: re.Match[str]) -> str:
            placeholder = Placeholder.for_token(match.group(0))
            value = values.get(placeholder.data_key)
            if value:
                return value
            if placeholder.required and placeholder.token not in warned:
                warned.add(placeholder.token)
                warnings.append(
                    f"Missing required data for {placeholder.token}: {placeholder.data_key}"
                )
            return f"[MISSING: {placeholder.token}]"

        return PLACEHOLDER_PATTERN.sub(replace, text)

    def _generated(
        self, section: TemplateSection, content: ReportContent, warnings: list[str]
    ) -> str:
        key = section.content_key
        if key == "valuation_analysis":
            return self._valuation_analysis(section, content)

        section_content = content.section(key) if key else None
        if section_content is None:
            warnings.append(f"No content available for section {section.name}")
            return f"[MISSING: {section.name}]"

        if key == "industry_outlook" and not section_content.is_placeholder:
            text, footnotes = add_footnotes(section_content.content, content.industry_citations)
            rendered = self._render(section_content, text)
            if footnotes:
                rendered += "\n\nSources:\n" + "\n".join(footnotes)
            return rendered

        return self._render(section_content)

    def _valuation_analysis(self, section: TemplateSection, content: ReportContent) -> str:
        if not content.valuation_analysis:
            return "[Valuation approach narratives could not be generated - manual entry required]"

        level = "#" * min(6, max(1, section.heading_level) + 1)
        parts = [
            f"{level} {name}\n\n{self._render(narrative)}"
            for name, narrative in content.valuation_analysis.items()
        ]
        return "\n\n".join(parts)

    @staticmethod
    def _render(section: SectionContent, text: str | None = None) -> str:
        body = (text if text is not None else section.content).strip()
        if section.is_placeholder or section.confidence >= REVIEW_CONFIDENCE:
            return body
        return (
            f"> **[REVIEW: low confidence ({section.confidence:.1f}) - verify before use]**\n\n"
            f"{body}\n\n"
            "> **[END REVIEW]**"
        )

    @staticmethod
    def _flags_block(flags: list[Flag]) -> str:
        lines = ["## Flags & Review Notes", ""]
        if not flags:
            lines.append("No items flagged for review.")
        else:
            lines.append("The following items were flagged for review:")
            lines.append("")
            lines.extend(
                f"- [{_FLAG_PREFIX[f.type]}] {f.section}: {f.message}" for f in flags
            )
        return "\n".join(lines)
