"""
Valuation model workbook parser.

Reads an .xlsx valuation model with openpyxl and extracts:
- Company name and valuation date (labelled cells, or the legacy LEs!G819/G824)
- Exhibits: sheets between the "start" and "end" marker sheets
- Summary: approaches with indicated values and weights, concluded value
- DLOM from any sheet

Each extraction step records problems in ParsedModel.errors/warnings and
carries on; only an unreadable workbook raises ModelParseError.
"""

from __future__ import annotations

import io
import re
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any, Protocol

from openpyxl import load_workbook
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string
from openpyxl.utils.datetime import from_excel
from openpyxl.workbook.workbook import Workbook

from valreport.config import get_settings
from valreport.exceptions import ModelParseError
from valreport.logging import get_logger
from valreport.types import Approach, Exhibit, ParsedModel, ValuationSummary

logger = get_logger(__name__)

Rows = list[tuple[Any, ...]]

LES_SHEET_NAMES = ("LEs", "LE", "Les", "les", "Liquidation Events")
LES_COMPANY_CELL = "G819"
LES_DATE_CELL = "G824"
SUMMARY_SHEET_NAMES = ("Summary", "SUMMARY", "Valuation Summary", "Conclusion")
LABEL_SCAN_ROWS = 40
ADJACENT_COLUMNS = 4
NOTE_ROWS_BELOW = 9

APPROACH_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"guideline.*public.*compan|\bgpc\b", re.I), "Guideline Public Company"),
    (re.compile(r"guideline.*transaction|m&a|merger", re.I), "Guideline Transaction"),
    (re.compile(r"income|dcf|discount.*cash", re.I), "Income Approach (DCF)"),
    (re.compile(r"backsolve|option.*pricing|\bopm\b", re.I), "OPM Backsolve"),
    (re.compile(r"asset|cost", re.I), "Asset Approach"),
    (re.compile(r"market", re.I), "Market Approach"),
]
CONCLUDED_PATTERN = re.compile(r"concluded.*value|conclusion|final.*value|enterprise.*value", re.I)
DLOM_PATTERN = re.compile(r"dlom|discount.*lack.*marketability", re.I)
COMPANY_LABEL = re.compile(r"^\s*(company|company name|subject company)\s*:?\s*$", re.I)
DATE_LABEL = re.compile(r"^\s*valuation date\s*:?\s*$", re.I)


class ModelParser(Protocol):
    """Turns raw model bytes into a ParsedModel."""

    def parse(self, data: bytes) -> ParsedModel:
        ...


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_number(value) and value > 0:
        converted = from_excel(value)
        return converted.date() if isinstance(converted, datetime) else None
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _adjacent(row: tuple[Any, ...], col: int) -> Iterable[Any]:
    return row[col + 1 : col + 1 + ADJACENT_COLUMNS]


def _cell(rows: Rows, coordinate: str) -> Any:
    """Value at an A1-style coordinate within already-read rows."""
    column, row = coordinate_from_string(coordinate)
    r, c = row - 1, column_index_from_string(column) - 1
    if r >= len(rows) or c >= len(rows[r]):
        return None
    return rows[r][c]


class WorkbookModelParser:
    """ModelParser backed by openpyxl."""

    def __init__(self, max_bytes: int | None = None) -> None:
        self.max_bytes = max_bytes or get_settings().MAX_UPLOAD_BYTES

    def parse(self, data: bytes) -> ParsedModel:
        """Parse workbook bytes.

        Raises:
            ModelParseError: If the input is empty, too large, or not a workbook.
        """
        if not data:
            raise ModelParseError("Model file is empty")
        if len(data) > self.max_bytes:
            raise ModelParseError(
                "Model file too large",
                {"size": len(data), "max_bytes": self.max_bytes},
            )

        try:
            workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except Exception as e:
            raise ModelParseError(f"Failed to load workbook: {e}") from e

        try:
            return self._parse_workbook(workbook)
        finally:
            workbook.close()

    def _parse_workbook(self, workbook: Workbook) -> ParsedModel:
        errors: list[str] = []
        warnings: list[str] = []
        sheets: dict[str, Rows] = {
            ws.title: [tuple(r) for r in ws.iter_rows(values_only=True)]
            for ws in workbook.worksheets
        }

        company_name: str | None = None
        valuation_date: date | None = None
        try:
            company_name, valuation_date = self._company_info(sheets)
            if not company_name:
                warnings.append("Company name not found in expected location (LEs!G819)")
            if not valuation_date:
                warnings.append("Valuation date not found in expected location (LEs!G824)")
        except Exception as e:
            errors.append(f"Failed to extract company info: {e}")

        exhibits: tuple[Exhibit, ...] = ()
        try:
            exhibits = tuple(
                Exhibit(
                    sheet_name=name,
                    rows=tuple(sheets[name]),
                    notes=tuple(self._notes(sheets[name])),
                )
                for name in self._exhibit_names(list(sheets))
            )
            if not exhibits:
                warnings.append("No exhibits found in workbook")
        except Exception as e:
            errors.append(f"Failed to extract exhibits: {e}")

        summary: ValuationSummary | None = None
        try:
            summary = self._summary(sheets)
            if summary is None:
                warnings.append("Summary sheet not found or could not be parsed")
            else:
                if not summary.approaches:
                    warnings.append("No valuation approaches found in Summary")
                if summary.concluded_value is None:
                    warnings.append("Concluded value not found in Summary")
        except Exception as e:
            errors.append(f"Failed to extract summary data: {e}")

        dlom: float | None = None
        try:
            dlom = self._dlom(sheets)
            if dlom is None:
                warnings.append("DLOM not found in workbook")
        except Exception as e:
            warnings.append(f"Failed to extract DLOM: {e}")

        logger.info(
            "Parsed valuation model",
            sheets=len(sheets),
            exhibits=len(exhibits),
            approaches=len(summary.approaches) if summary else 0,
            errors=len(errors),
            warnings=len(warnings),
        )

        return ParsedModel(
            company_name=company_name,
            valuation_date=valuation_date,
            exhibits=exhibits,
            summary=summary,
            dlom=dlom,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )

    # ------------------------------------------------------------------
    # Extraction steps
    # ------------------------------------------------------------------

    def _company_info(self, sheets: dict[str, Rows]) -> tuple[str | None, date | None]:
        company_name: str | None = None
        valuation_date: date | None = None

        les = next((name for name in LES_SHEET_NAMES if name in sheets), None)
        if les is not None:
            raw_name = _cell(sheets[les], LES_COMPANY_CELL)
            if isinstance(raw_name, str) and raw_name.strip():
                company_name = raw_name.strip()
            valuation_date = _to_date(_cell(sheets[les], LES_DATE_CELL))

        if company_name and valuation_date:
            return company_name, valuation_date

        for rows in sheets.values():
            for row in rows[:LABEL_SCAN_ROWS]:
                for col, cell in enumerate(row):
                    if not isinstance(cell, str):
                        continue
                    if company_name is None and COMPANY_LABEL.match(cell):
                        company_name = next(
                            (v.strip() for v in _adjacent(row, col) if isinstance(v, str) and v.strip()),
                            None,
                        )
                    elif valuation_date is None and DATE_LABEL.match(cell):
                        valuation_date = next(
                            (d for d in map(_to_date, _adjacent(row, col)) if d is not None),
                            None,
                        )
            if company_name and valuation_date:
                break

        return company_name, valuation_date

    def _exhibit_names(self, names: list[str]) -> list[str]:
        lowered = [n.strip().lower() for n in names]
        if "start" not in lowered or "end" not in lowered:
            return names
        start, end = lowered.index("start"), lowered.index("end")
        return names[start + 1 : end]

    def _notes(self, rows: Rows) -> list[str]:
        notes: list[str] = []
        for r, row in enumerate(rows):
            for col, cell in enumerate(row):
                if not (isinstance(cell, str) and "note" in cell.lower()):
                    continue
                below = (
                    rows[i][col] if col < len(rows[i]) else None
                    for i in range(r + 1, min(r + 1 + NOTE_ROWS_BELOW, len(rows)))
                )
                for value in (*below, *_adjacent(row, col)):
                    if isinstance(value, str) and value.strip():
                        text = value.strip()
                        if text not in notes:
                            notes.append(text)
        return notes

    def _summary(self, sheets: dict[str, Rows]) -> ValuationSummary | None:
        name = next((n for n in SUMMARY_SHEET_NAMES if n in sheets), None)
        if name is None:
            return None

        approaches: list[Approach] = []
        concluded_value: float | None = None

        for row in sheets[name]:
            for col, cell in enumerate(row):
                if not isinstance(cell, str):
                    continue

                if CONCLUDED_PATTERN.search(cell):
                    value = next(
                        (v for v in _adjacent(row, col) if _is_number(v) and v > 1000), None
                    )
                    if value is not None:
                        concluded_value = float(value)
                    continue
                if DLOM_PATTERN.search(cell):
                    continue

                approach_name = next((n for p, n in APPROACH_PATTERNS if p.search(cell)), None)
                if approach_name is None or any(a.name == approach_name for a in approaches):
                    continue

                indicated: float | None = None
                weight: float | None = None
                for value in _adjacent(row, col):
                    if not _is_number(value):
                        continue
                    if indicated is None and value > 1000:
                        indicated = float(value)
                    elif weight is None and 0 <= value <= 1:
                        weight = float(value)
                approaches.append(Approach(name=approach_name, indicated_value=indicated, weight=weight))

        return ValuationSummary(approaches=tuple(approaches), concluded_value=concluded_value)

    def _dlom(self, sheets: dict[str, Rows]) -> float | None:
        for rows in sheets.values():
            for row in rows:
                for col, cell in enumerate(row):
                    if not (isinstance(cell, str) and DLOM_PATTERN.search(cell)):
                        continue
                    for value in _adjacent(row, col):
                        if not _is_number(value) or value <= 0:
                            continue
                        if value <= 0.5:
                            return float(value)
                        if value <= 50:
                            return float(value) / 100
        return None
