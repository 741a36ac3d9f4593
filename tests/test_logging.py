"""
Tests for job-scoped logging.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Generator

import orjson
import pytest

from valreport.logging import (
    ContextLogger,
    JSONFormatter,
    current_scope,
    get_job_id,
    get_logger,
    get_stage,
    job_scope,
    set_stage,
)


class ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def captured() -> Generator[tuple[ContextLogger, ListHandler], None, None]:
    logger = get_logger("valreport.tests.logging")
    handler = ListHandler()
    underlying = logging.getLogger(logger.name)
    underlying.addHandler(handler)
    underlying.setLevel(logging.DEBUG)
    yield logger, handler
    underlying.removeHandler(handler)


class TestJobScope:
    """Test the job scope context."""

    def test_scope_restored_on_exit(self) -> None:
        outer = current_scope()

        with job_scope("job_1", "eng-001") as scope:
            assert get_job_id() == "job_1"
            assert scope.engagement_id == "eng-001"

        assert current_scope() is outer

    def test_set_stage_restarts_clock(self) -> None:
        with job_scope("job_1"):
            set_stage("parsing_model")
            first = current_scope()
            set_stage("parsing_model")
            assert current_scope() is first

            set_stage("generating_narratives")
            assert get_stage() == "generating_narratives"
            assert current_scope().stage_started >= first.stage_started

    async def test_tasks_inherit_scope(self) -> None:
        async def observe() -> tuple[str | None, str | None]:
            set_stage("saving_report")
            return get_job_id(), get_stage()

        with job_scope("job_2", "eng-002"):
            task = asyncio.get_running_loop().create_task(observe())

        assert await task == ("job_2", "saving_report")
        # The task's stage change stays in its own copy of the context
        assert get_job_id() != "job_2"


class TestContextLogger:
    """Test records produced by ContextLogger."""

    def test_record_carries_job_and_fields(self, captured: tuple[ContextLogger, ListHandler]) -> None:
        logger, handler = captured

        with job_scope("job_1", "eng-001"):
            set_stage("parsing_model")
            logger.info("Parsed valuation model", approaches=3)

        record = handler.records[-1]
        assert record.fields == {"approaches": 3}
        assert record.job["id"] == "job_1"
        assert record.job["engagement_id"] == "eng-001"
        assert record.job["stage"] == "parsing_model"
        assert record.job["stage_elapsed_ms"] >= 0

    def test_bind_presets_fields(self, captured: tuple[ContextLogger, ListHandler]) -> None:
        logger, handler = captured

        logger.bind(engagement_id="eng-001").warning("Pipeline slow", seconds=12)

        assert handler.records[-1].fields == {"engagement_id": "eng-001", "seconds": 12}
        assert handler.records[-1].levelno == logging.WARNING

    def test_json_lines_nest_job(self, captured: tuple[ContextLogger, ListHandler]) -> None:
        logger, handler = captured

        with job_scope("job_9", "eng-009"):
            set_stage("saving_report")
            logger.error("Job failed", error_type="StorageError")

        entry = orjson.loads(JSONFormatter().format(handler.records[-1]))
        assert entry["message"] == "Job failed"
        assert entry["level"] == "ERROR"
        assert entry["job"]["id"] == "job_9"
        assert entry["job"]["stage"] == "saving_report"
        assert entry["fields"] == {"error_type": "StorageError"}
        assert "exception" not in entry

    def test_json_without_scope_omits_job(self, captured: tuple[ContextLogger, ListHandler]) -> None:
        logger, handler = captured

        logger.info("Loaded template", sections=7)

        entry = orjson.loads(JSONFormatter().format(handler.records[-1]))
        assert "id" not in entry.get("job", {})
        assert entry["fields"] == {"sections": 7}
