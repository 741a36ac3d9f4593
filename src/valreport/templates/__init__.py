"""Report templates: types, text parsing and loading."""

from valreport.templates.base import (
    GENERATED_SECTIONS,
    STANDARD_PLACEHOLDERS,
    SUMMARY_TABLE_TOKEN,
    Placeholder,
    SectionType,
    Template,
    TemplateSection,
    TemplateValidation,
)
from valreport.templates.loader import DirectoryTemplateLoader, TemplateLoader, default_template
from valreport.templates.parser import find_placeholders, parse_template_text, validate_template

__all__ = [
    "GENERATED_SECTIONS",
    "STANDARD_PLACEHOLDERS",
    "SUMMARY_TABLE_TOKEN",
    "DirectoryTemplateLoader",
    "Placeholder",
    "SectionType",
    "Template",
    "TemplateLoader",
    "TemplateSection",
    "TemplateValidation",
    "default_template",
    "find_placeholders",
    "parse_template_text",
    "validate_template",
]
