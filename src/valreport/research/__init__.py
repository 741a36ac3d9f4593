"""Company and industry research built on the generation client."""

from valreport.research.base import ResearchConfidence
from valreport.research.company import CompanyResearch, research_company
from valreport.research.industry import (
    IndustryResearch,
    format_industry_with_citations,
    research_industry,
)

__all__ = [
    "CompanyResearch",
    "IndustryResearch",
    "ResearchConfidence",
    "format_industry_with_citations",
    "research_company",
    "research_industry",
]
