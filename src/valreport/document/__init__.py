"""Template filling and rendering of the sections document."""

from valreport.document.assembler import (
    AssembledDocument,
    DocumentAssembler,
    add_footnotes,
    build_summary_table,
    plain_number,
    report_filename,
)

__all__ = [
    "AssembledDocument",
    "DocumentAssembler",
    "add_footnotes",
    "build_summary_table",
    "plain_number",
    "report_filename",
]
