"""
Core types for the report generation pipeline.

This module defines the fundamental data structures used throughout the system:
- Enums for job status, pipeline stages, content sources and flags
- Frozen dataclasses for immutable data (Job snapshots, ParsedModel, Approach)
- Mutable dataclasses for content assembled during a run (ReportContent)
- Engagement and generated-report records exchanged with the repository
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from uuid6 import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "job", "rpt")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def quarter_of(day: date) -> int:
    """Calendar quarter (1-4) of a date."""
    return (day.month - 1) // 3 + 1


class JobStatus(str, Enum):
    """Lifecycle status of a generation job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


class JobStage(str, Enum):
    """Stages of the generation pipeline, in execution order."""

    QUEUED = "queued"
    PARSING_MODEL = "parsing_model"
    LOADING_TEMPLATE = "loading_template"
    RESEARCHING_COMPANY = "researching_company"
    RESEARCHING_INDUSTRY = "researching_industry"
    GENERATING_NARRATIVES = "generating_narratives"
    ASSEMBLING_DOCUMENT = "assembling_document"
    SAVING_REPORT = "saving_report"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def order(self) -> int:
        """Position in the fixed execution order."""
        return _STAGE_ORDER[self]

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


_STAGE_ORDER: dict[JobStage, int] = {stage: i for i, stage in enumerate(JobStage)}


class ContentSource(str, Enum):
    """Where a report section's content came from."""

    AI = "ai"
    TEMPLATE = "template"
    STORED = "stored"
    MANUAL = "manual"


class FlagType(str, Enum):
    """Kinds of issues surfaced to the human reviewer."""

    MISSING = "missing"
    UNCERTAIN = "uncertain"
    REVIEW = "review"
    ERROR = "error"


class ReportType(str, Enum):
    """Report families the pipeline produces."""

    FOUR09A = "409a"
    FIFTY_NINE_SIXTY = "59-60"

    @property
    def label(self) -> str:
        if self is ReportType.FOUR09A:
            return "409A Valuation"
        return "Gift & Estate Valuation (59-60)"

    @property
    def short_label(self) -> str:
        return "409A" if self is ReportType.FOUR09A else "59-60"


class ApproachType(str, Enum):
    """Classification of a valuation approach by its name."""

    GUIDELINE_PUBLIC_COMPANY = "guideline_public_company"
    GUIDELINE_TRANSACTION = "guideline_transaction"
    INCOME_DCF = "income_dcf"
    INCOME_CCF = "income_ccf"
    BACKSOLVE = "backsolve"
    OPM = "opm"
    ASSET = "asset"
    OTHER = "other"


# =============================================================================
# Jobs
# =============================================================================


@dataclass(frozen=True)
class Job:
    """Immutable snapshot of a generation job.

    The registry replaces the whole snapshot on every update, so a reader
    always sees a consistent set of fields.
    """

    id: str
    engagement_id: str
    status: JobStatus = JobStatus.PENDING
    stage: JobStage = JobStage.QUEUED
    progress: int = 0
    message: str = "Job queued"
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "engagement_id": self.engagement_id,
            "status": self.status.value,
            "stage": self.stage.value,
            "progress": self.progress,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "warnings": list(self.warnings),
        }


# =============================================================================
# Parsed valuation model
# =============================================================================


@dataclass(frozen=True)
class Approach:
    """One valuation approach with its indicated value and weight."""

    name: str
    indicated_value: float | None = None
    weight: float | None = None

    @property
    def weighted_value(self) -> float | None:
        if self.indicated_value is None or self.weight is None:
            return None
        return self.indicated_value * self.weight


@dataclass(frozen=True)
class Exhibit:
    """A sheet of the valuation model, kept as raw rows."""

    sheet_name: str
    rows: tuple[tuple[Any, ...], ...] = ()
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValuationSummary:
    """Approaches in weighting order and the model's concluded value."""

    approaches: tuple[Approach, ...] = ()
    concluded_value: float | None = None


@dataclass(frozen=True)
class ParsedModel:
    """Structured data extracted from a valuation model workbook."""

    company_name: str | None = None
    valuation_date: date | None = None
    exhibits: tuple[Exhibit, ...] = ()
    summary: ValuationSummary | None = None
    dlom: float | None = None
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def approaches(self) -> tuple[Approach, ...]:
        return self.summary.approaches if self.summary else ()

    @property
    def concluded_value(self) -> float | None:
        return self.summary.concluded_value if self.summary else None


# =============================================================================
# Report content
# =============================================================================


@dataclass
class SectionContent:
    """Content of one report section with its provenance."""

    content: str
    source: ContentSource
    confidence: float
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @classmethod
    def stored(cls, content: str) -> SectionContent:
        return cls(content=content, source=ContentSource.STORED, confidence=1.0)

    @classmethod
    def template(cls, content: str) -> SectionContent:
        return cls(content=content, source=ContentSource.TEMPLATE, confidence=1.0)

    @classmethod
    def placeholder(cls, message: str, warnings: list[str] | None = None) -> SectionContent:
        """A section that must be completed manually."""
        return cls(
            content=f"[{message}]",
            source=ContentSource.MANUAL,
            confidence=0.0,
            warnings=list(warnings or []),
        )

    @property
    def is_placeholder(self) -> bool:
        return self.source is ContentSource.MANUAL and self.confidence == 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "source": self.source.value,
            "confidence": self.confidence,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class Flag:
    """A non-fatal issue for the human reviewer."""

    section: str
    message: str
    type: FlagType

    def to_dict(self) -> dict[str, str]:
        return {"section": self.section, "message": self.message, "type": self.type.value}


@dataclass(frozen=True)
class Citation:
    """A source citation attached to industry research."""

    text: str
    source: str
    footnote_number: int | None = None


@dataclass
class ReportContent:
    """All content for one report, built once by the narrative assembler."""

    company_name: str | None
    valuation_date: date | None
    report_type: ReportType
    company_overview: SectionContent
    industry_outlook: SectionContent
    economic_outlook: SectionContent
    valuation_analysis: dict[str, SectionContent]
    conclusion: SectionContent
    approaches: tuple[Approach, ...] = ()
    concluded_value: float | None = None
    dlom: float | None = None
    industry: str | None = None
    flags: list[Flag] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    industry_citations: list[Citation] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utc_now)
    generation_duration_ms: int = 0

    def section(self, key: str) -> SectionContent | None:
        """Look up a single-section field by its content key."""
        value = getattr(self, key, None)
        return value if isinstance(value, SectionContent) else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_name": self.company_name,
            "valuation_date": self.valuation_date.isoformat() if self.valuation_date else None,
            "report_type": self.report_type.value,
            "company_overview": self.company_overview.to_dict(),
            "industry_outlook": self.industry_outlook.to_dict(),
            "economic_outlook": self.economic_outlook.to_dict(),
            "valuation_analysis": {k: v.to_dict() for k, v in self.valuation_analysis.items()},
            "conclusion": self.conclusion.to_dict(),
            "concluded_value": self.concluded_value,
            "dlom": self.dlom,
            "flags": [f.to_dict() for f in self.flags],
            "warnings": list(self.warnings),
            "generated_at": self.generated_at.isoformat(),
            "generation_duration_ms": self.generation_duration_ms,
        }


# =============================================================================
# Engagement records
# =============================================================================


@dataclass(frozen=True)
class Engagement:
    """One valuation report request as stored by the repository."""

    id: str
    report_type: ReportType = ReportType.FOUR09A
    company_name: str | None = None
    valuation_date: date | None = None
    model_file_path: str | None = None
    template_id: str | None = None
    qualitative_context: str | None = None
    selected_approaches: tuple[str, ...] | None = None
    opm_date: date | None = None
    last_funding_date: date | None = None
    is_pre_revenue: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Engagement:
        valuation_date = data.get("valuation_date")
        selected = data.get("selected_approaches")
        opm_date = data.get("opm_date")
        last_funding_date = data.get("last_funding_date")
        return cls(
            id=str(data["id"]),
            report_type=ReportType(data.get("report_type", ReportType.FOUR09A.value)),
            company_name=data.get("company_name"),
            valuation_date=date.fromisoformat(valuation_date) if valuation_date else None,
            model_file_path=data.get("model_file_path"),
            template_id=data.get("template_id"),
            qualitative_context=data.get("qualitative_context"),
            selected_approaches=tuple(selected) if selected is not None else None,
            opm_date=date.fromisoformat(opm_date) if opm_date else None,
            last_funding_date=date.fromisoformat(last_funding_date) if last_funding_date else None,
            is_pre_revenue=bool(data.get("is_pre_revenue", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "report_type": self.report_type.value,
            "company_name": self.company_name,
            "valuation_date": self.valuation_date.isoformat() if self.valuation_date else None,
            "model_file_path": self.model_file_path,
            "template_id": self.template_id,
            "qualitative_context": self.qualitative_context,
            "selected_approaches": (
                list(self.selected_approaches) if self.selected_approaches is not None else None
            ),
            "opm_date": self.opm_date.isoformat() if self.opm_date else None,
            "last_funding_date": (
                self.last_funding_date.isoformat() if self.last_funding_date else None
            ),
            "is_pre_revenue": self.is_pre_revenue,
        }


@dataclass(frozen=True)
class GeneratedReport:
    """Record of a saved report artifact."""

    id: str
    engagement_id: str
    file_path: str
    version: int
    created_at: datetime
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "engagement_id": self.engagement_id,
            "file_path": self.file_path,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
