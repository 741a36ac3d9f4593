"""Valuation model parsing."""

from valreport.parsing.workbook import ModelParser, WorkbookModelParser

__all__ = ["ModelParser", "WorkbookModelParser"]
