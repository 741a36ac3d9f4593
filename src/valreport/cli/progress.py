"""Rich progress display for a report generation job."""

from __future__ import annotations

import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from valreport.types import Job, JobStage, JobStatus

# Stages shown as rows, in execution order
DISPLAY_STAGES = (
    JobStage.PARSING_MODEL,
    JobStage.LOADING_TEMPLATE,
    JobStage.RESEARCHING_COMPANY,
    JobStage.RESEARCHING_INDUSTRY,
    JobStage.GENERATING_NARRATIVES,
    JobStage.ASSEMBLING_DOCUMENT,
    JobStage.SAVING_REPORT,
)


class JobProgress:
    """Live panel rendering the latest Job snapshot."""

    STATUS_ICONS = {
        "pending": "[dim]...[/dim]",
        "running": "[yellow]...[/yellow]",
        "complete": "[green]OK[/green]",
        "error": "[red]ERR[/red]",
    }

    def __init__(self, console: Console, title: str) -> None:
        self.console = console
        self.title = title
        self.started_at = time.time()
        self.job: Job | None = None
        self._failed_stage: JobStage | None = None
        self._live: Live | None = None

    def _stage_status(self, stage: JobStage) -> str:
        job = self.job
        if job is None:
            return "pending"
        if job.status is JobStatus.COMPLETE:
            return "complete"
        if job.status is JobStatus.FAILED:
            if stage is self._failed_stage:
                return "error"
            if self._failed_stage is not None and stage.order < self._failed_stage.order:
                return "complete"
            return "pending"
        if stage is job.stage:
            return "running"
        return "complete" if stage.order < job.stage.order else "pending"

    def _build_display(self) -> Panel:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Status", width=4)
        table.add_column("Stage", width=24)

        for stage in DISPLAY_STAGES:
            status = self._stage_status(stage)
            style = {"running": "bold yellow", "complete": "green", "error": "red"}.get(status, "dim")
            table.add_row(self.STATUS_ICONS[status], Text(stage.label, style=style))

        progress = self.job.progress if self.job else 0
        message = self.job.message if self.job else "Submitting job"

        footer = Text()
        footer.append(f"{progress:>3}%  ", style="cyan")
        footer.append(message[:60], style="dim")
        footer.append("  |  Elapsed: ", style="dim")
        footer.append(f"{time.time() - self.started_at:.0f}s", style="cyan")

        content = Group(table, Text(""), ProgressBar(total=100, completed=progress), footer)

        if self.job is not None and self.job.status is JobStatus.COMPLETE:
            title, border = f"[bold green]{self.title} complete[/bold green]", "green"
        elif self.job is not None and self.job.status is JobStatus.FAILED:
            title, border = f"[bold red]{self.title} failed[/bold red]", "red"
        else:
            title, border = f"[bold cyan]{self.title}...[/bold cyan]", "cyan"

        return Panel(content, title=title, border_style=border)

    def update(self, job: Job | None) -> None:
        """Refresh from the latest snapshot."""
        if job is None:
            return
        if (
            job.status is JobStatus.FAILED
            and self._failed_stage is None
            and self.job is not None
            and self.job.stage is not JobStage.FAILED
        ):
            self._failed_stage = self.job.stage
        self.job = job
        if self._live:
            self._live.update(self._build_display())

    def __enter__(self) -> JobProgress:
        self._live = Live(
            self._build_display(),
            console=self.console,
            refresh_per_second=4,
            transient=False,
            auto_refresh=True,
            get_renderable=self._build_display,
        )
        self._live.__enter__()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._live:
            self._live.update(self._build_display())
            self._live.__exit__(exc_type, exc_val, exc_tb)
            self._live = None
