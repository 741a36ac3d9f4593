"""Shared research types."""

from __future__ import annotations

from enum import Enum

NOT_AVAILABLE = "Information not available"


class ResearchConfidence(str, Enum):
    """Self-reported reliability of a research result."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def score(self) -> float:
        """Section confidence this level maps to."""
        return _SCORES[self]

    @classmethod
    def parse(cls, value: object, default: ResearchConfidence | None = None) -> ResearchConfidence:
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return default or cls.MEDIUM


_SCORES = {
    ResearchConfidence.HIGH: 0.9,
    ResearchConfidence.MEDIUM: 0.7,
    ResearchConfidence.LOW: 0.5,
}


def as_text(value: object, default: str = NOT_AVAILABLE) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def as_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]
