"""
Job-scoped structured logging.

Every record emitted while a report job runs carries that job's identity
and its current stage. The orchestrator opens the scope with job_scope()
when it starts a job's task; ProgressReporter moves the scope along with
set_stage(), which also restarts the stage clock so each record can say
how long the stage has been running.

Log files get one JSON object per line with a nested "job" object and the
call's keyword fields under "fields". The console shows a short
job/stage/elapsed prefix through rich.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "asyncio")


@dataclass(frozen=True)
class JobScope:
    """Identity and stage of the job the current task is working on."""

    job_id: str | None = None
    engagement_id: str | None = None
    stage: str | None = None
    stage_started: float = field(default_factory=time.monotonic)

    @property
    def stage_elapsed_ms(self) -> int:
        return int((time.monotonic() - self.stage_started) * 1000)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.job_id:
            data["id"] = self.job_id
        if self.engagement_id:
            data["engagement_id"] = self.engagement_id
        if self.stage:
            data["stage"] = self.stage
            data["stage_elapsed_ms"] = self.stage_elapsed_ms
        return data


# Tasks and worker threads started inside a scope inherit a copy of it
_scope: ContextVar[JobScope | None] = ContextVar("valreport_job_scope", default=None)


def current_scope() -> JobScope | None:
    return _scope.get()


def get_job_id() -> str | None:
    scope = _scope.get()
    return scope.job_id if scope else None


def get_stage() -> str | None:
    scope = _scope.get()
    return scope.stage if scope else None


def set_stage(stage: str | None) -> None:
    """Move the current scope to a new stage and restart the stage clock."""
    scope = _scope.get() or JobScope()
    if scope.stage == stage:
        return
    _scope.set(replace(scope, stage=stage, stage_started=time.monotonic()))


@contextmanager
def job_scope(job_id: str, engagement_id: str | None = None) -> Iterator[JobScope]:
    """Attach a job's identity to every record logged inside the block.

    Args:
        job_id: Job being run.
        engagement_id: Engagement the job reports on.

    Yields:
        The new scope.
    """
    scope = JobScope(job_id=job_id, engagement_id=engagement_id)
    token = _scope.set(scope)
    try:
        yield scope
    finally:
        _scope.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON Lines formatter for log files."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        job = getattr(record, "job", None)
        if job:
            entry["job"] = job
        fields = getattr(record, "fields", None)
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(entry, default=str).decode()


class JobRichHandler(RichHandler):
    """Console handler prefixing each line with the job, stage and stage time."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)
        job = getattr(record, "job", None)
        if not job:
            return level_text

        parts: list[str] = []
        if "id" in job:
            # Last 8 chars of the uuid7 are the random tail, distinct per job
            parts.append(f"[dim]{job['id'][-8:]}[/dim]")
        if "stage" in job:
            parts.append(f"[cyan]{job['stage']}[/cyan] [dim]+{job['stage_elapsed_ms'] / 1000:.1f}s[/dim]")
        if not parts:
            return level_text
        return Text.from_markup(f"{level_text} {' '.join(parts)}")


class ContextLogger:
    """Logger that stamps records with the job scope and keyword fields.

    Keyword arguments other than the standard logging ones become the
    record's fields; bind() presets fields for a group of calls.
    """

    def __init__(self, logger: logging.Logger, bound: dict[str, Any] | None = None) -> None:
        self._logger = logger
        self._bound = dict(bound or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **fields: Any) -> ContextLogger:
        """Logger that adds these fields to every call."""
        return ContextLogger(self._logger, {**self._bound, **fields})

    def _log(self, level: int, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = {**self._bound, **kwargs}
        scope = _scope.get()
        self._logger.log(
            level,
            msg,
            *args,
            exc_info=exc_info,
            extra={"fields": fields, "job": scope.to_dict() if scope else {}},
        )

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Configure the valreport logger tree.

    Args:
        log_level: Level for the console and the tree.
        log_file: JSON Lines file receiving everything down to DEBUG.
        console_output: Whether to log to stderr through rich.
    """
    global _setup_done

    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger("valreport")
    root_logger.setLevel(logging.DEBUG if log_file else level)
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = JobRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=True,
        )
        rich_handler.setLevel(level)
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Context-aware logger under the valreport tree."""
    if not _setup_done:
        setup_logging()

    if not name.startswith("valreport"):
        name = f"valreport.{name}"

    return ContextLogger(logging.getLogger(name))
