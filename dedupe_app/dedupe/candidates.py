"""
Duplicate candidate generation over an in-memory record set.

Two passes feed the scorer: exact match-key buckets (same canonical name) and
a fuzzy name index that recovers pairs whose keys differ through typos or
alternate spellings. Each unordered pair is scored at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from rapidfuzz import fuzz, process, utils

from config.matching import MatchingProfile
from dedupe_app.dedupe.errors import ConfigurationError
from dedupe_app.dedupe.models import MatchCandidate, MatchResult, Record, ScanProgress, ScoredRecord
from dedupe_app.dedupe.quality import score_record_quality
from dedupe_app.dedupe.scoring import build_full_name, get_match_key, score_match

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 100

ProgressCallback = Callable[[ScanProgress], None]


@dataclass
class CandidateSummary:
    records_considered: int = 0
    records_without_key: int = 0
    buckets: int = 0
    pairs_scored: int = 0
    bucket_candidates: int = 0
    fuzzy_candidates: int = 0
    conflicts: int = 0


def _pair_key(id_a: str, id_b: str) -> tuple[str, str]:
    return (id_a, id_b) if id_a <= id_b else (id_b, id_a)


def _keep(result: MatchResult, profile: MatchingProfile) -> bool:
    return result.confidence >= profile.min_confidence or result.is_conflict


def _notify(progress: ProgressCallback | None, phase: str, current: int, total: int, found: int) -> None:
    if progress is not None:
        progress(ScanProgress(phase=phase, current=current, total=total, candidates_found=found))


class _CandidateBuilder:
    """Collects kept pairs, electing a survivor by quality score."""

    def __init__(self, profile: MatchingProfile) -> None:
        self.profile = profile
        self.candidates: list[MatchCandidate] = []
        self._quality: dict[str, int] = {}

    def quality(self, record: Record) -> int:
        score = self._quality.get(record.id)
        if score is None:
            score = score_record_quality(record, profile=self.profile)
            self._quality[record.id] = score
        return score

    def add(self, first: Record, second: Record, result: MatchResult, match_key: str | None) -> None:
        score_first = self.quality(first)
        score_second = self.quality(second)
        if score_first >= score_second:
            survivor, merged = (first, score_first), (second, score_second)
        else:
            survivor, merged = (second, score_second), (first, score_first)

        self.candidates.append(
            MatchCandidate(
                id=f"match_{len(self.candidates)}",
                match_key=match_key,
                survivor=ScoredRecord(survivor[0], survivor[1], build_full_name(survivor[0].fields, self.profile)),
                merged=ScoredRecord(merged[0], merged[1], build_full_name(merged[0].fields, self.profile)),
                tier=result.tier,
                confidence=result.confidence,
                reasons=result.reasons,
                conflicts=result.conflicts,
                is_conflict=result.is_conflict,
            )
        )


def _bucket_records(records: Iterable[Record], profile: MatchingProfile, summary: CandidateSummary) -> dict[str, list[Record]]:
    buckets: dict[str, list[Record]] = {}
    for record in records:
        summary.records_considered += 1
        key = get_match_key(record, profile)
        if not key:
            summary.records_without_key += 1
            continue
        buckets.setdefault(key, []).append(record)
    summary.buckets = len(buckets)
    return buckets


def find_duplicate_candidates(
    records: Sequence[Record],
    profile: MatchingProfile,
    *,
    progress: ProgressCallback | None = None,
    summary: CandidateSummary | None = None,
) -> list[MatchCandidate]:
    """
    Find scored duplicate pairs in ``records``.

    Pairs are kept when their confidence reaches ``profile.min_confidence`` or
    when they carry conflicting identifiers. The result is sorted best tier
    first, then by confidence, and is identical for identical input. A profile
    without unique id or name fields raises ``ConfigurationError`` before
    any record is scored.
    """

    if not profile.unique_id_fields and not profile.name_fields:
        raise ConfigurationError(f"Matching profile {profile.key!r} has no unique id or name fields to match on.")

    summary = summary if summary is not None else CandidateSummary()
    builder = _CandidateBuilder(profile)
    processed: set[tuple[str, str]] = set()

    buckets = _bucket_records(records, profile, summary)
    total_buckets = len(buckets)
    for bucket_index, (key, members) in enumerate(buckets.items(), start=1):
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                pair = _pair_key(members[i].id, members[j].id)
                if pair in processed:
                    continue
                processed.add(pair)
                summary.pairs_scored += 1
                result = score_match(members[i], members[j], profile)
                if _keep(result, profile):
                    builder.add(members[i], members[j], result, key)
                    summary.bucket_candidates += 1
        if bucket_index % PROGRESS_INTERVAL == 0:
            _notify(progress, "matching", bucket_index, total_buckets, len(builder.candidates))
    _notify(progress, "matching", total_buckets, total_buckets, len(builder.candidates))

    indexed = [(record, build_full_name(record.fields, profile)) for record in records]
    indexed = [(record, name) for record, name in indexed if name]
    choices = [utils.default_process(name) for _, name in indexed]
    total_indexed = len(indexed)

    for index, (record, name) in enumerate(indexed):
        if index % PROGRESS_INTERVAL == 0:
            _notify(progress, "fuzzy", index, total_indexed, len(builder.candidates))

        query = choices[index]
        if not query:
            continue
        matches = process.extract(
            query,
            choices,
            scorer=fuzz.token_sort_ratio,
            score_cutoff=profile.fuzzy_threshold,
            limit=None,
        )
        for _choice, _score, match_index in sorted(matches, key=lambda item: (-item[1], item[2])):
            if match_index == index:
                continue
            other = indexed[match_index][0]
            if other.id == record.id:
                continue
            pair = _pair_key(record.id, other.id)
            if pair in processed:
                continue
            processed.add(pair)
            summary.pairs_scored += 1
            result = score_match(record, other, profile)
            if _keep(result, profile):
                builder.add(record, other, result, get_match_key(record, profile))
                summary.fuzzy_candidates += 1
    _notify(progress, "fuzzy", total_indexed, total_indexed, len(builder.candidates))

    candidates = sorted(builder.candidates, key=lambda candidate: (int(candidate.tier), -candidate.confidence))
    summary.conflicts = sum(1 for candidate in candidates if candidate.is_conflict)
    logger.info(
        "Duplicate scan complete",
        extra={
            "records": summary.records_considered,
            "buckets": summary.buckets,
            "pairs_scored": summary.pairs_scored,
            "candidates": len(candidates),
            "conflicts": summary.conflicts,
        },
    )
    return candidates


__all__ = ["CandidateSummary", "ProgressCallback", "find_duplicate_candidates"]
