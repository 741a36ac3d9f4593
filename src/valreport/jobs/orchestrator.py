"""
Job orchestrator.

submit() registers a job and schedules its pipeline on a separate asyncio
task, returning the job id immediately; callers poll status() or
status_by_engagement() for progress. Jobs for different engagements run
concurrently. A second submit for an engagement with a job in flight is
rejected or supersedes the running job, depending on DUPLICATE_JOB_POLICY.
"""

from __future__ import annotations

import asyncio
from typing import Literal

from valreport.cancellation import CancellationToken
from valreport.config import Settings, get_settings
from valreport.document import DocumentAssembler
from valreport.exceptions import (
    ConfigurationError,
    DuplicateJobError,
    JobNotFoundError,
    ReportError,
)
from valreport.jobs.pipeline import ReportPipeline
from valreport.jobs.progress import ProgressReporter
from valreport.jobs.registry import JobRegistry
from valreport.llm.client import GenerationClient
from valreport.logging import get_logger, job_scope
from valreport.narrative import NarrativeAssembler, NarrativeOptions
from valreport.parsing import WorkbookModelParser
from valreport.storage import FileSystemRepository
from valreport.templates import DirectoryTemplateLoader
from valreport.types import Job

logger = get_logger(__name__)

DuplicatePolicy = Literal["reject", "supersede"]


class ReportOrchestrator:
    """Owns the job registry and the tasks running each job."""

    def __init__(
        self,
        pipeline: ReportPipeline,
        registry: JobRegistry | None = None,
        duplicate_policy: DuplicatePolicy | None = None,
        retention_seconds: float | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.pipeline = pipeline
        self.registry = registry or JobRegistry()
        self.duplicate_policy = duplicate_policy or settings.DUPLICATE_JOB_POLICY
        if self.duplicate_policy not in ("reject", "supersede"):
            raise ConfigurationError(
                "Unknown duplicate job policy", {"policy": self.duplicate_policy}
            )
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else settings.JOB_RETENTION_SECONDS
        )
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._tokens: dict[str, CancellationToken] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        client: GenerationClient | None = None,
        repository: FileSystemRepository | None = None,
        options: NarrativeOptions | None = None,
    ) -> ReportOrchestrator:
        """Wire the file-system repository, workbook parser and Anthropic client."""
        settings = settings or get_settings()
        repository = repository or FileSystemRepository(
            settings.DATA_DIR, settings.OUTPUT_DIR, settings.MAX_UPLOAD_BYTES
        )
        client = client or GenerationClient.from_settings(settings)
        pipeline = ReportPipeline(
            repository=repository,
            parser=WorkbookModelParser(settings.MAX_UPLOAD_BYTES),
            narrative=NarrativeAssembler(
                client, repository, options or NarrativeOptions.from_settings(settings)
            ),
            documents=DocumentAssembler(),
            templates=DirectoryTemplateLoader(settings.DATA_DIR / "templates", settings.MAX_UPLOAD_BYTES),
        )
        return cls(pipeline, settings=settings)

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------

    def submit(self, engagement_id: str) -> str:
        """Create a job and start it in the background.

        Must be called from a running event loop.

        Returns:
            The new job id.

        Raises:
            DuplicateJobError: When the policy is reject and the engagement
                already has a pending or running job.
        """
        existing = self.registry.active_for_engagement(engagement_id)
        if existing is not None:
            if self.duplicate_policy == "reject":
                raise DuplicateJobError(
                    "Report generation already in progress",
                    {"engagement_id": engagement_id, "job_id": existing.id},
                )
            logger.info(
                "Superseding running job",
                engagement_id=engagement_id,
                superseded_job_id=existing.id,
            )
            self.cancel(existing.id, reason=f"Superseded by a newer job for {engagement_id}")

        job = self.registry.create(engagement_id)
        token = CancellationToken()
        self._tokens[job.id] = token

        # The task copies the logging context at creation
        with job_scope(job.id, engagement_id):
            task = asyncio.get_running_loop().create_task(
                self._execute(job.id, engagement_id, token), name=f"report-job-{job.id}"
            )
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

        logger.info("Job submitted", job_id=job.id, engagement_id=engagement_id)
        return job.id

    def status(self, job_id: str) -> Job | None:
        return self.registry.get(job_id)

    def status_by_engagement(self, engagement_id: str) -> Job | None:
        """Most recently created job for the engagement, if any."""
        return self.registry.latest_for_engagement(engagement_id)

    def active_jobs(self) -> list[Job]:
        return self.registry.active_jobs()

    def cancel(self, job_id: str, reason: str = "Job cancelled") -> bool:
        """Request cancellation of a job.

        The job stops at its next stage boundary or retry point; a provider
        call already in flight runs to completion.

        Returns:
            True if a cancellation was requested, False if the job had
            already finished.

        Raises:
            JobNotFoundError: If the job id is unknown.
        """
        job = self.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        token = self._tokens.get(job_id)
        if job.is_terminal or token is None:
            return False
        token.cancel(reason)
        logger.info("Job cancellation requested", job_id=job_id, reason=reason)
        return True

    async def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """Wait for a job to finish and return its final snapshot.

        Raises:
            JobNotFoundError: If the job id is unknown.
            asyncio.TimeoutError: If the job does not finish in time.
        """
        if self.registry.get(job_id) is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        job = self.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def sweep_stale(self, max_age_seconds: float | None = None) -> int:
        """Drop finished jobs older than max_age_seconds (default JOB_RETENTION_SECONDS)."""
        max_age = max_age_seconds if max_age_seconds is not None else self.retention_seconds
        return self.registry.sweep_stale(max_age)

    async def shutdown(self) -> None:
        """Cancel every running job and wait for the tasks to finish."""
        for job_id, token in list(self._tokens.items()):
            token.cancel("Orchestrator shutting down")
            logger.debug("Cancelling job for shutdown", job_id=job_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, job_id: str, engagement_id: str, token: CancellationToken) -> None:
        reporter = ProgressReporter(self.registry, job_id)
        try:
            token.raise_if_cancelled()
            reporter.start()
            outcome = await self.pipeline.run(engagement_id, reporter, token)
            reporter.complete(f"Report generated: version {outcome.report.version}")
            logger.info(
                "Job complete",
                report_id=outcome.report.id,
                warnings=len(outcome.warnings),
            )
        except asyncio.CancelledError:
            reporter.fail("Job task was cancelled")
            raise
        except ReportError as e:
            logger.error("Job failed", error=str(e), error_type=type(e).__name__)
            reporter.fail(str(e))
        except Exception as e:
            # Unclassified errors keep their text out of the job record
            logger.exception("Job failed with unexpected error", error_type=type(e).__name__)
            reporter.fail(f"Unexpected error: {type(e).__name__}")
        finally:
            self._tokens.pop(job_id, None)
