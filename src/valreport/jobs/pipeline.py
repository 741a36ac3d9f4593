"""
Report generation pipeline.

Runs the stages of one job strictly in order:
1. Parse model       - load engagement, read and parse the valuation model
2. Load template     - engagement template or the built-in default
3. Research          - company and industry research (narrative assembler)
4. Narratives        - approach narratives and conclusion (narrative assembler)
5. Assemble document - fill the template, cross-check the summary table
6. Save report       - persist the artifact through the repository

Each stage reports through the job's ProgressReporter. Blocking work (workbook
parsing, template files) runs in a worker thread. Exceptions propagate
to the orchestrator, which fails the job; nothing already saved is rolled back.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from valreport.cancellation import CancellationToken
from valreport.document import AssembledDocument, DocumentAssembler
from valreport.exceptions import TemplateError
from valreport.jobs.progress import ProgressReporter
from valreport.logging import get_logger
from valreport.narrative import NarrativeAssembler, validate_content
from valreport.parsing import ModelParser
from valreport.storage import EngagementRepository
from valreport.templates import Template, TemplateLoader, default_template, validate_template
from valreport.types import Engagement, Flag, GeneratedReport, JobStage, ParsedModel

logger = get_logger(__name__)


@dataclass
class PipelineOutcome:
    """Result of a successful pipeline run."""

    report: GeneratedReport
    document: AssembledDocument
    warnings: list[str] = field(default_factory=list)

    @property
    def flags(self) -> list[Flag]:
        return self.document.flags


class ReportPipeline:
    """Stage runner for a single report job."""

    def __init__(
        self,
        repository: EngagementRepository,
        parser: ModelParser,
        narrative: NarrativeAssembler,
        documents: DocumentAssembler | None = None,
        templates: TemplateLoader | None = None,
    ) -> None:
        self.repository = repository
        self.parser = parser
        self.narrative = narrative
        self.documents = documents or DocumentAssembler()
        self.templates = templates

    async def run(
        self,
        engagement_id: str,
        reporter: ProgressReporter,
        token: CancellationToken | None = None,
    ) -> PipelineOutcome:
        """Run every stage for an engagement.

        Args:
            engagement_id: Engagement to generate a report for.
            reporter: Progress channel for this job.
            token: Cancellation token checked between stages.

        Returns:
            PipelineOutcome with the saved report record.

        Raises:
            ReportError: Any unrecovered stage failure, including
                GenerationError and JobCancelledError.
        """
        token = token or CancellationToken()
        log = logger.bind(engagement_id=engagement_id)

        # ============== Parse model ==============
        reporter.stage(JobStage.PARSING_MODEL, 5, "Loading engagement")
        engagement = await self.repository.get_engagement(engagement_id)
        token.raise_if_cancelled()

        reporter.stage(JobStage.PARSING_MODEL, 10, "Parsing valuation model")
        model = await self._parse_model(engagement, reporter)
        token.raise_if_cancelled()

        # ============== Load template ==============
        reporter.stage(JobStage.LOADING_TEMPLATE, 15, "Loading report template")
        template = await self._load_template(engagement, reporter)
        token.raise_if_cancelled()

        # ============== Research and narratives ==============
        content = await self.narrative.assemble(engagement, model, reporter=reporter, token=token)
        reporter.warn(*content.warnings)

        reporter.stage(JobStage.GENERATING_NARRATIVES, 65, "Validating report content")
        validation = validate_content(content)
        if not validation.is_valid:
            log.info(
                "Report content needs manual completion",
                missing=validation.missing_required,
                errors=len(validation.errors),
            )
        token.raise_if_cancelled()

        # ============== Assemble document ==============
        reporter.stage(JobStage.ASSEMBLING_DOCUMENT, 75, "Assembling document")
        document = self.documents.assemble(template, content)
        reporter.warn(*document.warnings)
        token.raise_if_cancelled()

        # ============== Save report ==============
        reporter.stage(JobStage.SAVING_REPORT, 85, "Saving report")
        report = await self.repository.save_report(engagement, document.data, document.filename)
        reporter.stage(JobStage.SAVING_REPORT, 92, f"Saved report version {report.version}")

        log.info(
            "Pipeline completed",
            report_id=report.id,
            version=report.version,
            flags=len(document.flags),
            warnings=len(reporter.warnings),
        )
        return PipelineOutcome(report=report, document=document, warnings=list(reporter.warnings))

    async def _parse_model(self, engagement: Engagement, reporter: ProgressReporter) -> ParsedModel:
        if not engagement.model_file_path:
            reporter.warn("No valuation model attached to engagement")
            return ParsedModel()

        data = await self.repository.read_file(engagement.model_file_path)
        # openpyxl parsing is blocking; keep it off the event loop
        model = await asyncio.to_thread(self.parser.parse, data)
        reporter.warn(*model.warnings)
        reporter.warn(*(f"Parse error: {error}" for error in model.errors))

        logger.info(
            "Parsed valuation model",
            company=model.company_name,
            approaches=len(model.approaches),
            errors=len(model.errors),
            warnings=len(model.warnings),
        )
        return model

    async def _load_template(
        self, engagement: Engagement, reporter: ProgressReporter
    ) -> Template:
        if engagement.template_id is None:
            template = default_template(engagement.report_type)
        elif self.templates is None:
            raise TemplateError(
                "No template loader configured", {"template_id": engagement.template_id}
            )
        else:
            template = await asyncio.to_thread(
                self.templates.load, engagement.template_id, engagement.report_type
            )

        validation = validate_template(template, engagement.report_type)
        reporter.warn(*validation.errors, *validation.warnings)
        return template
