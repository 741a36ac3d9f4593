"""Engagement, report and economic outlook persistence."""

from valreport.storage.repository import (
    EconomicOutlookStore,
    EngagementRepository,
    FileSystemRepository,
    InMemoryRepository,
    safe_filename,
)

__all__ = [
    "EconomicOutlookStore",
    "EngagementRepository",
    "FileSystemRepository",
    "InMemoryRepository",
    "safe_filename",
]
