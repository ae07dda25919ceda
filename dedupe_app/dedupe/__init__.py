"""Matching, grouping and merge resolution for duplicate records."""

from __future__ import annotations

from .batch import BulkMergeSummary, GroupOutcome, partition_groups, run_bulk_merge
from .candidates import CandidateSummary, find_duplicate_candidates
from .cross_table import CrossTableCandidate, find_common_fields, find_cross_table_duplicates, match_stats, score_record_similarity
from .field_match import composite_key, find_field_match_groups, score_record_completeness
from .errors import (
    ConfigurationError,
    DedupeError,
    ExternalIOError,
    MalformedHistoryError,
    NotFoundError,
    PreconditionError,
)
from .grouping import group_candidates
from .history import find_merge_entry, is_unmerged, parse_history, serialize_history
from .merge import (
    MergePayload,
    MergeSummary,
    apply_field_selections,
    build_merge_payload,
    compute_field_resolutions,
    has_unresolved_decisions,
    resolve_field_value,
    summarize_resolutions,
)
from .models import FieldInfo, FieldResolution, MatchCandidate, MatchTier, MergeGroup, Record, Schema, ScoredRecord
from .normalize import are_names_similar, normalize_address, normalize_email, normalize_name, normalize_phone, string_similarity
from .quality import score_record_quality
from .scoring import build_full_name, get_match_key, score_match
from .unmerge import RecreatedRecord, UnmergePayload, build_unmerge_payload

__all__ = [
    "BulkMergeSummary",
    "CandidateSummary",
    "ConfigurationError",
    "CrossTableCandidate",
    "DedupeError",
    "ExternalIOError",
    "FieldInfo",
    "FieldResolution",
    "GroupOutcome",
    "MalformedHistoryError",
    "MatchCandidate",
    "MatchTier",
    "MergeGroup",
    "MergePayload",
    "MergeSummary",
    "NotFoundError",
    "PreconditionError",
    "Record",
    "RecreatedRecord",
    "Schema",
    "ScoredRecord",
    "UnmergePayload",
    "apply_field_selections",
    "are_names_similar",
    "build_full_name",
    "build_merge_payload",
    "build_unmerge_payload",
    "composite_key",
    "compute_field_resolutions",
    "find_common_fields",
    "find_cross_table_duplicates",
    "find_duplicate_candidates",
    "find_field_match_groups",
    "find_merge_entry",
    "get_match_key",
    "group_candidates",
    "has_unresolved_decisions",
    "is_unmerged",
    "match_stats",
    "normalize_address",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "parse_history",
    "partition_groups",
    "resolve_field_value",
    "run_bulk_merge",
    "score_match",
    "score_record_completeness",
    "score_record_quality",
    "score_record_similarity",
    "serialize_history",
    "string_similarity",
    "summarize_resolutions",
]
