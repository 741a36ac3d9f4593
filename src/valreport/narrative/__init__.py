"""Narrative content for a report: research, outlook and approach narratives."""

from valreport.narrative.assembler import (
    ContentValidation,
    NarrativeAssembler,
    NarrativeOptions,
    StageReporter,
    select_approaches,
    unique_section_keys,
    validate_content,
)
from valreport.narrative.weighting import (
    WeightingAnalysis,
    analyze_weighting,
    identify_approach_type,
    months_between,
)

__all__ = [
    "ContentValidation",
    "NarrativeAssembler",
    "NarrativeOptions",
    "StageReporter",
    "WeightingAnalysis",
    "analyze_weighting",
    "identify_approach_type",
    "months_between",
    "select_approaches",
    "unique_section_keys",
    "validate_content",
]
