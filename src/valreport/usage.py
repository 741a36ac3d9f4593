"""
Token usage for generation calls, broken down by job and pipeline stage.

The client records each successful call with the job and stage taken from
the logging scope, so one tracker shared by concurrent jobs can still say
what a single report cost and which stage spent it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from valreport.logging import get_logger

logger = get_logger(__name__)

# Cost per million tokens: (input, output)
MODEL_COSTS: dict[str, tuple[float, float]] = {
    "claude-opus-4-5-20251101": (15.00, 75.00),
    "claude-sonnet-4-5-20250929": (3.00, 15.00),
    "claude-sonnet-4-20250514": (3.00, 15.00),
    "claude-opus-4-20250514": (15.00, 75.00),
    "claude-3-5-haiku-20241022": (0.80, 4.00),
}

DEFAULT_COST = (3.00, 15.00)
UNSCOPED = "unscoped"


def get_model_cost(model: str) -> tuple[float, float]:
    """Per-million (input, output) cost; dated model ids match by prefix."""
    if model in MODEL_COSTS:
        return MODEL_COSTS[model]
    for key, costs in MODEL_COSTS.items():
        if model.startswith(key) or key.startswith(model):
            return costs
    return DEFAULT_COST


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_per_m, output_per_m = get_model_cost(model)
    return input_tokens / 1_000_000 * input_per_m + output_tokens / 1_000_000 * output_per_m


@dataclass
class UsageTotals:
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, record: UsageRecord) -> None:
        self.calls += 1
        self.input_tokens += record.input_tokens
        self.output_tokens += record.output_tokens
        self.cost_usd += record.cost_usd

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(frozen=True)
class UsageRecord:
    """One successful generation call."""

    model: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    job_id: str | None = None
    stage: str | None = None


class UsageTracker:
    """Accumulates usage for every call made through one client.

    Sections of a job run concurrently and several jobs may share a
    client, so updates take a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[UsageRecord] = []
        self._total = UsageTotals()

    def record_usage(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        stage: str | None = None,
        job_id: str | None = None,
    ) -> float:
        """Record one call and return its estimated cost."""
        record = UsageRecord(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=calculate_cost(model, input_tokens, output_tokens),
            job_id=job_id,
            stage=stage,
        )
        with self._lock:
            self._records.append(record)
            self._total.add(record)

        logger.debug(
            "Recorded usage",
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=f"${record.cost_usd:.4f}",
        )
        return record.cost_usd

    @property
    def calls(self) -> int:
        return self._total.calls

    @property
    def total_input_tokens(self) -> int:
        return self._total.input_tokens

    @property
    def total_output_tokens(self) -> int:
        return self._total.output_tokens

    @property
    def total_tokens(self) -> int:
        return self._total.total_tokens

    @property
    def total_cost_usd(self) -> float:
        return self._total.cost_usd

    def records(self, job_id: str | None = None) -> list[UsageRecord]:
        with self._lock:
            return [r for r in self._records if job_id is None or r.job_id == job_id]

    def for_job(self, job_id: str) -> UsageTotals:
        totals = UsageTotals()
        for record in self.records(job_id):
            totals.add(record)
        return totals

    def by_stage(self, job_id: str | None = None) -> dict[str, UsageTotals]:
        """Totals per stage in the order stages first spent tokens.

        Args:
            job_id: Restrict to one job; None covers every job.
        """
        stages: dict[str, UsageTotals] = {}
        for record in self.records(job_id):
            stages.setdefault(record.stage or UNSCOPED, UsageTotals()).add(record)
        return stages

    def to_dict(self, job_id: str | None = None) -> dict[str, Any]:
        totals = self.for_job(job_id) if job_id is not None else self._total
        return {
            **totals.to_dict(),
            "by_stage": {stage: t.to_dict() for stage, t in self.by_stage(job_id).items()},
        }
