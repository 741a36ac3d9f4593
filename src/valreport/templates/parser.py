"""
Template text parsing and validation.

Sections are split on heading heuristics (roman or arabic numbering,
ALL CAPS lines, lines ending in Overview/Analysis/Conclusion/Summary/
Methodology). A section is generated when its heading names a content
field, substitution when its body holds placeholders, and boilerplate
otherwise.
"""

from __future__ import annotations

import re

from valreport.templates.base import (
    GENERATED_SECTIONS,
    PLACEHOLDER_PATTERN,
    STANDARD_PLACEHOLDERS,
    Placeholder,
    SectionType,
    Template,
    TemplateSection,
    TemplateValidation,
)
from valreport.types import ReportType

MAX_HEADING_LENGTH = 100

_HEADING_PATTERNS = [
    re.compile(r"^[IVX]+\.\s+"),
    re.compile(r"^[0-9]+\.\s+"),
    re.compile(r"^[A-Z][A-Z\s&]+$"),
    re.compile(r"^(Section|Chapter|Part)\s+", re.I),
    re.compile(r"(Overview|Outlook|Analysis|Conclusion|Summary|Methodology)$", re.I),
]


def find_placeholders(text: str) -> list[Placeholder]:
    """Distinct placeholders in order of first appearance."""
    seen: dict[str, Placeholder] = {}
    for match in PLACEHOLDER_PATTERN.finditer(text):
        seen.setdefault(match.group(0), Placeholder.for_token(match.group(0)))
    return list(seen.values())


def is_heading(line: str) -> bool:
    if not line or len(line) > MAX_HEADING_LENGTH or line.startswith("*"):
        return False
    return any(p.search(line) for p in _HEADING_PATTERNS)


def heading_level(heading: str) -> int:
    if re.match(r"^[IVX]+\.", heading):
        return 1
    if re.match(r"^[0-9]+\.", heading):
        return 2
    if re.match(r"^[a-z]\.", heading):
        return 3
    if heading == heading.upper():
        return 1
    return 2


def content_key_for(heading: str) -> str | None:
    """ReportContent field a generated section heading refers to."""
    lowered = heading.lower()
    for key, keywords in GENERATED_SECTIONS.items():
        if any(k in lowered for k in keywords):
            return key
    return None


def _build_section(name: str, level: int, lines: list[str]) -> TemplateSection:
    body = "\n".join(lines).strip("\n")
    placeholders = tuple(find_placeholders(body))
    key = content_key_for(name) if name else None

    if key is not None:
        section_type = SectionType.GENERATED
    elif placeholders:
        section_type = SectionType.SUBSTITUTION
    else:
        section_type = SectionType.BOILERPLATE

    return TemplateSection(
        name=name,
        type=section_type,
        content=body,
        placeholders=placeholders,
        heading_level=level,
        content_key=key,
    )


def parse_template_text(
    template_id: str,
    text: str,
    name: str | None = None,
    report_type: ReportType = ReportType.FOUR09A,
) -> Template:
    """Split template text into typed sections.

    Text before the first heading becomes a preamble section with an
    empty name and heading level 0.
    """
    sections: list[TemplateSection] = []
    current_name = ""
    current_level = 0
    current_lines: list[str] = []

    for line in text.splitlines():
        stripped = line.strip()
        if is_heading(stripped):
            if current_name or any(l.strip() for l in current_lines):
                sections.append(_build_section(current_name, current_level, current_lines))
            current_name = stripped
            current_level = heading_level(stripped)
            current_lines = []
        else:
            current_lines.append(line)

    if current_name or any(l.strip() for l in current_lines):
        sections.append(_build_section(current_name, current_level, current_lines))

    return Template(
        id=template_id,
        name=name or template_id,
        report_type=report_type,
        sections=tuple(sections),
    )


def validate_template(template: Template, report_type: ReportType | None = None) -> TemplateValidation:
    """Check a template for missing required and unknown placeholders."""
    errors: list[str] = []
    warnings: list[str] = []

    if report_type is not None and template.report_type is not report_type:
        errors.append(
            f"Template type {template.report_type.value} does not match "
            f"expected type {report_type.value}"
        )

    found = {p.token for p in template.placeholders}
    missing = [
        token for token, d in STANDARD_PLACEHOLDERS.items() if d.required and token not in found
    ]
    for token in missing:
        warnings.append(f"Required placeholder {token} not found in template")

    unknown = [p.token for p in template.placeholders if not p.is_known]
    if unknown:
        warnings.append(f"Unknown placeholders found: {', '.join(unknown)}")

    if not any(s.content_key == "company_overview" for s in template.sections):
        warnings.append("No Company Overview section identified")

    return TemplateValidation(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        missing_placeholders=missing,
        unknown_placeholders=unknown,
    )
