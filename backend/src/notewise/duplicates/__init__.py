"""Duplicate note detection, reports and merging."""

from notewise.duplicates.detector import DuplicateDetector, pair_key
from notewise.duplicates.schemas import (
    DuplicateReport,
    DuplicateResult,
    ReportStatus,
    SimilarityType,
    SuggestedAction,
)
from notewise.duplicates.service import DuplicateService, ReportNotFoundError

__all__ = [
    "DuplicateDetector",
    "DuplicateReport",
    "DuplicateResult",
    "DuplicateService",
    "ReportNotFoundError",
    "ReportStatus",
    "SimilarityType",
    "SuggestedAction",
    "pair_key",
]
