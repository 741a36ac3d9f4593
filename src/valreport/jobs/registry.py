"""
In-memory job registry.

The registry owns every Job. Jobs are frozen snapshots: an update builds a
new snapshot and swaps it in under a lock, so status readers never observe
a half-applied update. All mutation goes through apply(JobUpdate), which
enforces the lifecycle rules:
- nothing changes once a job is complete or failed
- status moves pending -> running -> complete | failed (pending may fail directly)
- stage only moves forward, except to failed
- progress never decreases

An update that breaks a rule is dropped with a warning log; it never raises
into the pipeline that sent it.

Jobs live only as long as the process.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from valreport.logging import get_logger
from valreport.types import Job, JobStage, JobStatus, generate_id, utc_now

logger = get_logger(__name__)

_ALLOWED_STATUS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PENDING, JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.RUNNING, JobStatus.COMPLETE, JobStatus.FAILED}),
    JobStatus.COMPLETE: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class JobUpdate:
    """A change to one job, posted by the task executing it.

    Fields left as None are not changed. ``warnings`` replaces the job's
    warning list.
    """

    job_id: str
    status: JobStatus | None = None
    stage: JobStage | None = None
    progress: int | None = None
    message: str | None = None
    error: str | None = None
    warnings: tuple[str, ...] | None = None


class JobRegistry:
    """Thread-safe map of job id to the latest Job snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}

    def create(self, engagement_id: str) -> Job:
        """Register a new pending job."""
        job = Job(id=generate_id("job"), engagement_id=engagement_id)
        with self._lock:
            self._jobs[job.id] = job
        logger.debug("Job created", job_id=job.id, engagement_id=engagement_id)
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def count(self) -> int:
        with self._lock:
            return len(self._jobs)

    def latest_for_engagement(self, engagement_id: str) -> Job | None:
        """Most recently created job for an engagement."""
        with self._lock:
            matches = [j for j in self._jobs.values() if j.engagement_id == engagement_id]
        # dict order is creation order
        return matches[-1] if matches else None

    def active_for_engagement(self, engagement_id: str) -> Job | None:
        """Most recently created pending or running job for an engagement."""
        with self._lock:
            matches = [
                j
                for j in self._jobs.values()
                if j.engagement_id == engagement_id and not j.is_terminal
            ]
        return matches[-1] if matches else None

    def active_jobs(self) -> list[Job]:
        with self._lock:
            return [j for j in self._jobs.values() if not j.is_terminal]

    def apply(self, update: JobUpdate) -> Job | None:
        """Apply an update atomically.

        Returns:
            The new snapshot, or None when the job is unknown or the update
            was rejected.
        """
        with self._lock:
            current = self._jobs.get(update.job_id)
            if current is None:
                logger.warning("Update for unknown job ignored", job_id=update.job_id)
                return None

            problem = self._check(current, update)
            if problem is not None:
                logger.warning(
                    "Job update rejected",
                    job_id=current.id,
                    reason=problem,
                    status=current.status.value,
                    stage=current.stage.value,
                )
                return None

            updated = self._merge(current, update)
            self._jobs[current.id] = updated
            return updated

    def sweep_stale(self, max_age: timedelta | float, now: datetime | None = None) -> int:
        """Remove finished jobs whose completion is older than max_age.

        Args:
            max_age: timedelta or seconds.
            now: Reference time, defaults to the current UTC time.

        Returns:
            Number of jobs removed.
        """
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)
        cutoff = (now or utc_now()) - max_age

        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.completed_at is not None and job.completed_at < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]

        if stale:
            logger.info("Swept stale jobs", count=len(stale))
        return len(stale)

    @staticmethod
    def _check(current: Job, update: JobUpdate) -> str | None:
        if current.is_terminal:
            return "job already finished"

        if update.status is not None and update.status not in _ALLOWED_STATUS[current.status]:
            return f"status {current.status.value} -> {update.status.value} not allowed"

        if (
            update.stage is not None
            and update.stage is not JobStage.FAILED
            and update.stage.order < current.stage.order
        ):
            return f"stage {current.stage.value} -> {update.stage.value} moves backwards"

        if update.progress is not None and update.progress < current.progress:
            return f"progress {current.progress} -> {update.progress} decreases"

        return None

    @staticmethod
    def _merge(current: Job, update: JobUpdate) -> Job:
        now = utc_now()
        changes: dict = {}

        if update.status is not None and update.status is not current.status:
            changes["status"] = update.status
            if update.status is JobStatus.RUNNING:
                changes["started_at"] = now
            elif update.status is JobStatus.COMPLETE:
                changes.update(stage=JobStage.COMPLETE, progress=100, completed_at=now)
            elif update.status is JobStatus.FAILED:
                changes.update(stage=JobStage.FAILED, completed_at=now)

        if update.stage is not None and "stage" not in changes:
            changes["stage"] = update.stage
        if update.progress is not None and "progress" not in changes:
            changes["progress"] = min(100, max(0, update.progress))
        if update.message is not None:
            changes["message"] = update.message
        if update.error is not None:
            changes["error"] = update.error
        if update.warnings is not None:
            changes["warnings"] = tuple(update.warnings)

        return replace(current, **changes)
