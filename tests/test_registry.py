"""
Tests for the job registry and progress reporter.
"""

from __future__ import annotations

import threading
from datetime import timedelta

from valreport.jobs import JobRegistry, JobUpdate, ProgressReporter
from valreport.types import JobStage, JobStatus, utc_now


class TestJobRegistry:
    """Test JobRegistry lifecycle rules."""

    def test_create_pending_job(self) -> None:
        registry = JobRegistry()

        job = registry.create("eng-001")

        assert job.id.startswith("job_")
        assert job.status is JobStatus.PENDING
        assert job.stage is JobStage.QUEUED
        assert job.progress == 0
        assert registry.get(job.id) == job
        assert registry.count() == 1

    def test_unknown_job(self) -> None:
        registry = JobRegistry()

        assert registry.get("job_missing") is None
        assert registry.apply(JobUpdate(job_id="job_missing", progress=10)) is None

    def test_running_sets_started_at(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")

        updated = registry.apply(
            JobUpdate(job.id, status=JobStatus.RUNNING, stage=JobStage.PARSING_MODEL, progress=5)
        )

        assert updated is not None
        assert updated.status is JobStatus.RUNNING
        assert updated.started_at is not None
        assert updated.completed_at is None

    def test_complete_forces_final_fields(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")
        registry.apply(JobUpdate(job.id, status=JobStatus.RUNNING, progress=40))

        done = registry.apply(JobUpdate(job.id, status=JobStatus.COMPLETE, message="done"))

        assert done is not None
        assert done.stage is JobStage.COMPLETE
        assert done.progress == 100
        assert done.completed_at is not None
        assert done.error is None

    def test_pending_cannot_complete(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")

        assert registry.apply(JobUpdate(job.id, status=JobStatus.COMPLETE)) is None
        assert registry.get(job.id).status is JobStatus.PENDING

    def test_pending_can_fail(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")

        failed = registry.apply(JobUpdate(job.id, status=JobStatus.FAILED, error="boom"))

        assert failed is not None
        assert failed.stage is JobStage.FAILED
        assert failed.error == "boom"

    def test_progress_never_decreases(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")
        registry.apply(JobUpdate(job.id, status=JobStatus.RUNNING, progress=50))

        assert registry.apply(JobUpdate(job.id, progress=30)) is None
        assert registry.get(job.id).progress == 50

    def test_progress_clamped(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")

        updated = registry.apply(JobUpdate(job.id, progress=150))

        assert updated.progress == 100

    def test_stage_never_moves_backwards(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")
        registry.apply(
            JobUpdate(job.id, status=JobStatus.RUNNING, stage=JobStage.GENERATING_NARRATIVES)
        )

        assert registry.apply(JobUpdate(job.id, stage=JobStage.PARSING_MODEL)) is None
        assert registry.get(job.id).stage is JobStage.GENERATING_NARRATIVES

    def test_terminal_jobs_are_immutable(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")
        registry.apply(JobUpdate(job.id, status=JobStatus.RUNNING))
        failed = registry.apply(JobUpdate(job.id, status=JobStatus.FAILED, error="boom"))

        assert registry.apply(JobUpdate(job.id, message="late update")) is None
        assert registry.apply(JobUpdate(job.id, status=JobStatus.COMPLETE)) is None
        assert registry.get(job.id) == failed

    def test_warnings_replaced(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")

        registry.apply(JobUpdate(job.id, warnings=("a",)))
        updated = registry.apply(JobUpdate(job.id, warnings=("a", "b")))

        assert updated.warnings == ("a", "b")

    def test_latest_and_active_for_engagement(self) -> None:
        registry = JobRegistry()
        first = registry.create("eng-001")
        registry.apply(JobUpdate(first.id, status=JobStatus.FAILED, error="x"))
        second = registry.create("eng-001")
        registry.create("eng-002")

        assert registry.latest_for_engagement("eng-001").id == second.id
        assert registry.active_for_engagement("eng-001").id == second.id
        assert registry.latest_for_engagement("eng-999") is None
        assert {j.engagement_id for j in registry.active_jobs()} == {"eng-001", "eng-002"}

    def test_sweep_stale_removes_old_finished_jobs(self) -> None:
        registry = JobRegistry()
        finished = registry.create("eng-001")
        registry.apply(JobUpdate(finished.id, status=JobStatus.FAILED, error="x"))
        running = registry.create("eng-002")
        registry.apply(JobUpdate(running.id, status=JobStatus.RUNNING))

        assert registry.sweep_stale(timedelta(hours=1)) == 0

        removed = registry.sweep_stale(timedelta(hours=1), now=utc_now() + timedelta(hours=2))

        assert removed == 1
        assert registry.get(finished.id) is None
        assert registry.get(running.id) is not None

    def test_concurrent_updates_keep_progress_monotonic(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")
        registry.apply(JobUpdate(job.id, status=JobStatus.RUNNING))

        def post(start: int) -> None:
            for progress in range(start, 100, 4):
                registry.apply(JobUpdate(job.id, progress=progress))

        threads = [threading.Thread(target=post, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert registry.get(job.id).progress >= 96


class TestProgressReporter:
    """Test ProgressReporter."""

    def test_lifecycle(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")
        reporter = ProgressReporter(registry, job.id)

        reporter.start()
        reporter.stage(JobStage.LOADING_TEMPLATE, 15, "Loading template")
        reporter.warn("DLOM not found in workbook", "")
        reporter.complete("Report generated: version 1")

        final = registry.get(job.id)
        assert final.status is JobStatus.COMPLETE
        assert final.progress == 100
        assert final.message == "Report generated: version 1"
        assert final.warnings == ("DLOM not found in workbook",)
        assert reporter.warnings == ("DLOM not found in workbook",)

    def test_fail_keeps_warnings(self) -> None:
        registry = JobRegistry()
        job = registry.create("eng-001")
        reporter = ProgressReporter(registry, job.id)

        reporter.start()
        reporter.warn("No valuation model attached to engagement")
        reporter.fail("Template not found")

        final = registry.get(job.id)
        assert final.status is JobStatus.FAILED
        assert final.stage is JobStage.FAILED
        assert final.error == "Template not found"
        assert final.message == "Report generation failed"
        assert final.warnings == ("No valuation model attached to engagement",)
