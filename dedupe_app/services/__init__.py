# dedupe_app/services/__init__.py
"""
Service layer tying the dedupe engine to a record store
"""

from .dedupe_service import (
    CompareResult,
    DedupeService,
    MergePreview,
    MergeResult,
    ScanResult,
    UnmergeResult,
    filter_by_created_date,
)

__all__ = [
    "CompareResult",
    "DedupeService",
    "MergePreview",
    "MergeResult",
    "ScanResult",
    "UnmergeResult",
    "filter_by_created_date",
]
