"""
Approach classification and weighting heuristics.

The heuristics are advisory: they produce suggested weights and warnings
for the reviewer and context for the conclusion prompt, and never change
the weights reported by the model.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from valreport.types import Approach, ApproachType

OPM_STALE_MONTHS = 12
RECENT_FUNDING_MONTHS = 6
OPM_STALE_WEIGHT_CAP = 0.1
BACKSOLVE_RECENT_FLOOR = 0.4
PRE_REVENUE_INCOME_CAP = 0.15
DAYS_PER_MONTH = 30


def identify_approach_type(name: str) -> ApproachType:
    """Classify an approach by keywords in its name."""
    lowered = name.lower()

    if "guideline" in lowered and "public" in lowered:
        return ApproachType.GUIDELINE_PUBLIC_COMPANY
    if "transaction" in lowered or "m&a" in lowered or "merger" in lowered:
        return ApproachType.GUIDELINE_TRANSACTION
    if "dcf" in lowered or "discounted cash" in lowered:
        return ApproachType.INCOME_DCF
    if "ccf" in lowered or "capitalized cash" in lowered:
        return ApproachType.INCOME_CCF
    if "backsolve" in lowered or "back-solve" in lowered:
        return ApproachType.BACKSOLVE
    if "opm" in lowered or "option pricing" in lowered:
        return ApproachType.OPM
    if "asset" in lowered or "nav" in lowered or "book" in lowered:
        return ApproachType.ASSET
    return ApproachType.OTHER


def months_between(earlier: date | None, later: date | None) -> float | None:
    """Age of an event in 30-day months, or None when either date is unknown."""
    if earlier is None or later is None:
        return None
    return (later - earlier).days / DAYS_PER_MONTH


@dataclass
class SuggestedWeight:
    approach_name: str
    weight: float
    rationale: str = ""


@dataclass
class WeightingAnalysis:
    suggested_weights: list[SuggestedWeight] = field(default_factory=list)
    rationale: str = ""
    warnings: list[str] = field(default_factory=list)
    applied_heuristics: list[str] = field(default_factory=list)


def analyze_weighting(
    approaches: Sequence[Approach],
    opm_age_months: float | None = None,
    funding_age_months: float | None = None,
    is_pre_revenue: bool = False,
) -> WeightingAnalysis:
    """Apply weighting heuristics to the model's approaches.

    Args:
        approaches: Approaches in weighting order.
        opm_age_months: Age of the OPM analysis, if known.
        funding_age_months: Months since the last financing round, if known.
        is_pre_revenue: Whether the subject company has no revenue yet.

    Returns:
        Suggested weights normalised to sum to 1, with warnings.
    """
    analysis = WeightingAnalysis(
        rationale=(
            "The concluded value was determined by weighting the indicated values "
            "from each approach based on their relevance and reliability. "
        )
    )

    for approach in approaches:
        approach_type = identify_approach_type(approach.name)
        weight = approach.weight or 0.0
        rationale = ""

        if (
            approach_type is ApproachType.OPM
            and opm_age_months is not None
            and opm_age_months > OPM_STALE_MONTHS
        ):
            weight = min(weight, OPM_STALE_WEIGHT_CAP)
            analysis.warnings.append(
                f"OPM is {round(opm_age_months)} months old - consider reducing weight"
            )
            analysis.applied_heuristics.append("OPM > 12 months: minimal weight")
            rationale = "Limited weight due to age of OPM analysis"

        if (
            approach_type is ApproachType.BACKSOLVE
            and funding_age_months is not None
            and funding_age_months < RECENT_FUNDING_MONTHS
        ):
            weight = max(weight, BACKSOLVE_RECENT_FLOOR)
            analysis.applied_heuristics.append(
                "Recent funding < 6 months: higher backsolve weight"
            )
            rationale = "Significant weight given recency of arm's-length transaction"

        if (
            approach_type in (ApproachType.INCOME_DCF, ApproachType.INCOME_CCF)
            and is_pre_revenue
        ):
            weight = min(weight, PRE_REVENUE_INCOME_CAP)
            analysis.warnings.append(
                "Pre-revenue company - income approach may be less reliable"
            )
            analysis.applied_heuristics.append("Pre-revenue: lower income approach weight")
            rationale = (
                "Limited weight due to uncertainty in projections for pre-revenue company"
            )

        analysis.suggested_weights.append(
            SuggestedWeight(approach_name=approach.name, weight=weight, rationale=rationale)
        )

    total = sum(w.weight for w in analysis.suggested_weights)
    if total > 0:
        for suggested in analysis.suggested_weights:
            suggested.weight = suggested.weight / total

    model_total = sum(a.weight for a in approaches if a.weight is not None)
    if approaches and model_total > 0 and abs(model_total - 1.0) > 0.001:
        analysis.warnings.append(f"Approach weights sum to {model_total:.3f}, not 1.0")

    if analysis.applied_heuristics:
        analysis.rationale += (
            "The weighting considered the following factors: "
            f"{'; '.join(analysis.applied_heuristics)}. "
        )

    return analysis
