"""
CLI for the valuation report generator.

Commands:
    valreport generate ENGAGEMENT_JSON - Generate a sections document for an engagement
    valreport config - Show current configuration
    valreport version - Print version
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Optional

import orjson
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from valreport import __version__
from valreport.cli.progress import JobProgress
from valreport.config import Settings, clear_settings_cache, get_settings
from valreport.exceptions import ReportError
from valreport.jobs import ReportOrchestrator
from valreport.llm.client import GenerationClient
from valreport.logging import setup_logging
from valreport.narrative import NarrativeOptions
from valreport.storage import FileSystemRepository
from valreport.templates import DirectoryTemplateLoader
from valreport.types import Engagement, Job, JobStatus
from valreport.usage import UsageTotals

app = typer.Typer(
    name="valreport",
    help="Valuation report generator - sections documents from valuation models",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

POLL_INTERVAL_SECONDS = 0.25


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _load_engagement(path: Path) -> Engagement:
    """Read an engagement JSON file; relative model paths resolve beside it."""
    try:
        engagement = Engagement.from_dict(orjson.loads(path.read_bytes()))
    except (OSError, orjson.JSONDecodeError, KeyError, ValueError) as e:
        raise typer.BadParameter(f"Cannot read engagement file {path}: {e}") from e

    model_path = engagement.model_file_path
    if model_path and not Path(model_path).is_absolute():
        engagement = replace(engagement, model_file_path=str((path.parent / model_path).resolve()))
    return engagement


def _usage_table(usage: dict[str, UsageTotals]) -> Table:
    """Per-stage token usage of one job, with a total row."""
    table = Table(title="Generation Usage", show_header=True)
    table.add_column("Stage", style="cyan")
    table.add_column("Calls", justify="right")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Est. Cost", justify="right", style="green")

    total = UsageTotals()
    for stage, totals in usage.items():
        table.add_row(
            stage,
            str(totals.calls),
            f"{totals.input_tokens:,}",
            f"{totals.output_tokens:,}",
            f"${totals.cost_usd:.4f}",
        )
        total.calls += totals.calls
        total.input_tokens += totals.input_tokens
        total.output_tokens += totals.output_tokens
        total.cost_usd += totals.cost_usd

    table.add_row(
        "[bold]Total[/bold]",
        str(total.calls),
        f"{total.input_tokens:,}",
        f"{total.output_tokens:,}",
        f"${total.cost_usd:.4f}",
    )
    return table


async def _generate(
    settings: Settings,
    engagement: Engagement,
    template: Path | None,
    options: NarrativeOptions,
) -> tuple[Job, list[str], dict[str, UsageTotals]]:
    repository = FileSystemRepository(settings.DATA_DIR, settings.OUTPUT_DIR, settings.MAX_UPLOAD_BYTES)
    await repository.save_engagement(engagement)

    client = GenerationClient.from_settings(settings)
    orchestrator = ReportOrchestrator.from_settings(
        settings, client=client, repository=repository, options=options
    )
    if template is not None:
        orchestrator.pipeline.templates = DirectoryTemplateLoader(template.parent, settings.MAX_UPLOAD_BYTES)

    try:
        job_id = orchestrator.submit(engagement.id)
        with JobProgress(console, engagement.company_name or engagement.id) as progress:
            while True:
                job = orchestrator.status(job_id)
                progress.update(job)
                if job is None or job.is_terminal:
                    break
                await asyncio.sleep(POLL_INTERVAL_SECONDS)
        job = await orchestrator.wait(job_id)
        reports = await repository.list_reports(engagement.id)
        return job, [r.file_path for r in reports], client.usage.by_stage(job_id)
    finally:
        await orchestrator.shutdown()
        await client.close()


@app.command()
def generate(
    engagement_file: Annotated[
        Path,
        typer.Argument(help="Engagement JSON (id, company_name, valuation_date, model_file_path, ...)"),
    ],
    template: Annotated[
        Optional[Path],
        typer.Option("--template", "-t", help="Template file (.md or .txt)"),
    ] = None,
    no_research: Annotated[
        bool,
        typer.Option("--no-research", help="Skip company and industry research"),
    ] = False,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail the job when any section fails to generate"),
    ] = False,
) -> None:
    """Generate a sections document for an engagement.

    The engagement is stored under DATA_DIR, the job runs through the
    orchestrator, and the rendered document is written under OUTPUT_DIR.
    """
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'valreport config' to see what's missing."
        )
        raise typer.Exit(1)

    setup_logging(settings.LOG_LEVEL, log_file=settings.OUTPUT_DIR / "valreport.log", console_output=False)
    settings.ensure_directories()

    engagement = _load_engagement(engagement_file)
    if template is not None:
        if not template.is_file():
            raise typer.BadParameter(f"Template not found: {template}")
        engagement = replace(engagement, template_id=template.stem)

    options = NarrativeOptions.from_settings(settings)
    if no_research:
        options.include_company_research = False
        options.include_industry_research = False
    if strict:
        options.skip_failed_sections = False

    console.print()
    console.print(
        Panel(
            f"[bold]Engagement:[/bold] {engagement.id}\n"
            f"[bold]Company:[/bold] {engagement.company_name or '[from model]'}\n"
            f"[bold]Report Type:[/bold] {engagement.report_type.label}\n"
            f"[bold]Model:[/bold] {settings.GENERATION_MODEL}\n"
            f"[bold]Research:[/bold] {'off' if no_research else 'on'}  "
            f"[bold]Strict:[/bold] {strict}",
            title="[bold cyan]Valuation Report Generation[/bold cyan]",
            border_style="cyan",
        )
    )

    try:
        job, paths, usage = asyncio.run(_generate(settings, engagement, template, options))
    except ReportError as e:
        error_console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if job.warnings:
        console.print()
        console.print(f"[yellow]{len(job.warnings)} warning(s):[/yellow]")
        for warning in job.warnings:
            console.print(f"  - {warning}")

    if usage:
        console.print()
        console.print(_usage_table(usage))

    if job.status is not JobStatus.COMPLETE:
        error_console.print(f"\n[red]Report generation failed:[/red] {job.error}")
        raise typer.Exit(1)

    if paths:
        console.print(f"\n[bold]Report saved to:[/bold] {paths[-1]}")
    console.print()


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with API keys redacted.
    """
    console.print()
    console.print("[bold]Valuation Report Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid or incomplete.[/red]")
        error_console.print()
        error_console.print("Check the environment variables and the .env file.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)

    console.print()
    if settings.ANTHROPIC_API_KEY is None:
        console.print("[yellow]ANTHROPIC_API_KEY is not set; generation will fail.[/yellow]")
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"valreport version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
