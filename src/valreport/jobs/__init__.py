"""Job registry, progress channel, pipeline and orchestrator."""

from valreport.jobs.orchestrator import ReportOrchestrator
from valreport.jobs.pipeline import PipelineOutcome, ReportPipeline
from valreport.jobs.progress import ProgressReporter
from valreport.jobs.registry import JobRegistry, JobUpdate

__all__ = [
    "JobRegistry",
    "JobUpdate",
    "PipelineOutcome",
    "ProgressReporter",
    "ReportOrchestrator",
    "ReportPipeline",
]
