"""
Template types.

A template is an ordered list of sections, each typed boilerplate,
substitution or generated, carrying the placeholders found in its body.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from valreport.types import ReportType

PLACEHOLDER_PATTERN = re.compile(r"\*[A-Z][A-Z0-9_]*(?![a-z])")
SUMMARY_TABLE_TOKEN = "*VALUATIONSUMMARY"


class SectionType(str, Enum):
    BOILERPLATE = "boilerplate"
    SUBSTITUTION = "substitution"
    GENERATED = "generated"


@dataclass(frozen=True)
class PlaceholderDef:
    data_key: str
    required: bool
    description: str


STANDARD_PLACEHOLDERS: dict[str, PlaceholderDef] = {
    "*COMPANY": PlaceholderDef("company_name", True, "Company name"),
    "*VALUATIONDATE": PlaceholderDef("valuation_date", True, "Valuation date"),
    "*REPORTDATE": PlaceholderDef("report_date", False, "Report date"),
    "*CONCLUDEDVALUE": PlaceholderDef("concluded_value", False, "Concluded value"),
    "*DLOM": PlaceholderDef("dlom", False, "DLOM percentage"),
    "*INDUSTRY": PlaceholderDef("industry", False, "Industry name"),
    "*REPORTTYPE": PlaceholderDef("report_type", False, "Report type"),
    "*QUARTER": PlaceholderDef("quarter", False, "Valuation quarter"),
    "*YEAR": PlaceholderDef("year", False, "Valuation year"),
    SUMMARY_TABLE_TOKEN: PlaceholderDef("valuation_summary", False, "Valuation summary table"),
}

# Heading keywords identifying generated sections, keyed by ReportContent field
GENERATED_SECTIONS: dict[str, tuple[str, ...]] = {
    "company_overview": ("company overview", "company background", "company description"),
    "industry_outlook": ("industry overview", "industry outlook", "industry analysis"),
    "economic_outlook": ("economic outlook", "economic environment", "economic conditions"),
    "valuation_analysis": ("valuation analysis", "valuation methodology", "approaches"),
    "conclusion": ("conclusion", "value conclusion", "summary of value"),
}


@dataclass(frozen=True)
class Placeholder:
    """A placeholder token and the content field it is filled from."""

    token: str
    data_key: str
    required: bool = False

    @classmethod
    def for_token(cls, token: str) -> Placeholder:
        definition = STANDARD_PLACEHOLDERS.get(token)
        if definition is None:
            return cls(token=token, data_key=token.lstrip("*").lower(), required=False)
        return cls(token=token, data_key=definition.data_key, required=definition.required)

    @property
    def is_known(self) -> bool:
        return self.token in STANDARD_PLACEHOLDERS


@dataclass(frozen=True)
class TemplateSection:
    """One section of a template.

    Attributes:
        name: Heading text; empty for the preamble before the first heading.
        type: How the section is rendered.
        content: Body text below the heading.
        placeholders: Distinct placeholders in the body, in order of appearance.
        heading_level: 1-3, or 0 for the preamble.
        content_key: ReportContent field for generated sections.
    """

    name: str
    type: SectionType
    content: str = ""
    placeholders: tuple[Placeholder, ...] = ()
    heading_level: int = 1
    content_key: str | None = None


@dataclass(frozen=True)
class Template:
    id: str
    name: str
    report_type: ReportType
    sections: tuple[TemplateSection, ...] = ()

    @property
    def placeholders(self) -> tuple[Placeholder, ...]:
        seen: dict[str, Placeholder] = {}
        for section in self.sections:
            for placeholder in section.placeholders:
                seen.setdefault(placeholder.token, placeholder)
        return tuple(seen.values())


@dataclass
class TemplateValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    missing_placeholders: list[str] = field(default_factory=list)
    unknown_placeholders: list[str] = field(default_factory=list)
