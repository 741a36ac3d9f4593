"""
Custom exception hierarchy for the report generation pipeline.

All exceptions inherit from ReportError, which provides optional context
for structured error handling and logging. Provider failures are raised as
``valreport.llm.base.GenerationError``, which also derives from ReportError.
"""

from __future__ import annotations

from typing import Any


class ReportError(Exception):
    """Base exception for all report pipeline errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(ReportError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing ANTHROPIC_API_KEY when a live client is requested
        - Unknown duplicate-job policy
    """

    pass


class PipelineError(ReportError):
    """Raised when a non-generation pipeline step fails.

    Context should include:
        - stage: The stage that failed
        - engagement_id: The engagement being processed
    """

    pass


class ModelParseError(PipelineError):
    """Raised when the valuation model cannot be read at all."""

    pass


class TemplateError(PipelineError):
    """Raised when a template cannot be found or parsed."""

    pass


class StorageError(PipelineError):
    """Raised when reading or writing engagement records or artifacts fails.

    Context should include:
        - path: The file path involved
        - size: Size in bytes, when a size cap was exceeded
    """

    pass


class JobNotFoundError(ReportError):
    """Raised when a job id is unknown to the registry."""

    pass


class DuplicateJobError(ReportError):
    """Raised when a job is submitted for an engagement that already has one in flight.

    Context should include:
        - engagement_id: The engagement
        - job_id: The in-flight job
    """

    pass


class JobCancelledError(ReportError):
    """Raised at a stage boundary or retry point once a job was cancelled."""

    pass
