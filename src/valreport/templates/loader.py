"""Template loading."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from valreport.config import get_settings
from valreport.exceptions import TemplateError
from valreport.logging import get_logger
from valreport.templates.base import Template
from valreport.templates.parser import parse_template_text
from valreport.types import ReportType

logger = get_logger(__name__)

TEMPLATE_EXTENSIONS = (".md", ".txt")

DEFAULT_TEMPLATE_TEXT = """*COMPANY
*REPORTTYPE as of *VALUATIONDATE
Report date: *REPORTDATE

I. INTRODUCTION
We have been engaged to estimate the fair market value of the common stock of *COMPANY as of *VALUATIONDATE. This report sets out the analysis supporting that conclusion.

II. Company Overview

III. Industry Outlook

IV. Economic Outlook

V. Valuation Analysis

VI. VALUATION SUMMARY
*VALUATIONSUMMARY

VII. Conclusion

VIII. ASSUMPTIONS AND LIMITING CONDITIONS
This valuation reflects facts and conditions existing as of the valuation date. Subsequent events have not been considered. The analysis relies on financial information provided by management, which has not been audited or independently verified.
"""


class TemplateLoader(Protocol):
    def load(self, template_id: str, report_type: ReportType = ReportType.FOUR09A) -> Template:
        ...


def default_template(report_type: ReportType = ReportType.FOUR09A) -> Template:
    """Built-in layout used when an engagement names no template."""
    return parse_template_text(
        f"default-{report_type.value}",
        DEFAULT_TEMPLATE_TEXT,
        name=f"Default {report_type.short_label} template",
        report_type=report_type,
    )


class DirectoryTemplateLoader:
    """Loads templates stored as <directory>/<template_id>.md or .txt."""

    def __init__(self, directory: Path | str, max_bytes: int | None = None) -> None:
        self.directory = Path(directory)
        self.max_bytes = max_bytes or get_settings().MAX_UPLOAD_BYTES

    def _path_for(self, template_id: str) -> Path:
        if not template_id or Path(template_id).name != template_id:
            raise TemplateError("Invalid template id", {"template_id": template_id})
        for ext in TEMPLATE_EXTENSIONS:
            path = self.directory / f"{template_id}{ext}"
            if path.is_file():
                return path
        raise TemplateError(
            "Template not found",
            {"template_id": template_id, "directory": str(self.directory)},
        )

    def load(self, template_id: str, report_type: ReportType = ReportType.FOUR09A) -> Template:
        """Read and parse a template.

        Raises:
            TemplateError: If the template is missing, too large, or unreadable.
        """
        path = self._path_for(template_id)
        size = path.stat().st_size
        if size > self.max_bytes:
            raise TemplateError("Template too large", {"path": str(path), "size": size})

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateError(f"Failed to read template: {e}", {"path": str(path)}) from e

        template = parse_template_text(
            template_id, text, name=path.stem.replace("_", " "), report_type=report_type
        )
        logger.debug("Loaded template", template_id=template_id, sections=len(template.sections))
        return template
