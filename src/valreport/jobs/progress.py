"""Progress channel from a running pipeline to the job registry."""

from __future__ import annotations

from valreport.jobs.registry import JobRegistry, JobUpdate
from valreport.logging import get_logger, set_stage
from valreport.types import Job, JobStage, JobStatus

logger = get_logger(__name__)


class ProgressReporter:
    """Posts JobUpdate messages for one job.

    The reporter holds only the job id and the warnings raised so far; the
    job itself stays owned by the registry.
    """

    def __init__(self, registry: JobRegistry, job_id: str) -> None:
        self._registry = registry
        self.job_id = job_id
        self._warnings: list[str] = []

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(self._warnings)

    def _post(self, **fields) -> Job | None:
        return self._registry.apply(JobUpdate(job_id=self.job_id, **fields))

    def start(self) -> None:
        set_stage(JobStage.PARSING_MODEL.value)
        self._post(
            status=JobStatus.RUNNING,
            stage=JobStage.PARSING_MODEL,
            progress=5,
            message="Starting report generation",
        )

    def stage(self, stage: JobStage, progress: int, message: str) -> None:
        set_stage(stage.value)
        logger.info(message, stage=stage.value, progress=progress)
        self._post(stage=stage, progress=progress, message=message)

    def warn(self, *messages: str) -> None:
        """Record non-fatal warnings on the job."""
        new = [m for m in messages if m]
        if not new:
            return
        self._warnings.extend(new)
        self._post(warnings=tuple(self._warnings))

    def complete(self, message: str = "Report generated successfully") -> None:
        set_stage(JobStage.COMPLETE.value)
        self._post(status=JobStatus.COMPLETE, message=message, warnings=tuple(self._warnings))

    def fail(self, error: str) -> None:
        set_stage(JobStage.FAILED.value)
        self._post(
            status=JobStatus.FAILED,
            message="Report generation failed",
            error=error,
            warnings=tuple(self._warnings),
        )
