"""
Duplicate detection across two tables with different layouts.

Only fields present in both schemas are compared. Table B is indexed by a
display name plus all of its text, and each table A record queries that
index before being scored field by field.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from rapidfuzz import fuzz, process, utils

from dedupe_app.dedupe.errors import ConfigurationError
from dedupe_app.dedupe.models import MatchTier, Record, ScanProgress, Schema, is_empty
from dedupe_app.dedupe.normalize import are_names_similar, normalize_email, normalize_phone, string_similarity

logger = logging.getLogger(__name__)

SEARCH_CUTOFF = 60
MIN_SCORE = 40
MIN_MATCHED_FIELDS = 2
PROGRESS_INTERVAL = 50

DISPLAY_NAME_FIELDS = (
    "Name",
    "name",
    "Client Name",
    "ClientName",
    "client_name",
    "Full Name",
    "FullName",
    "full_name",
    "First Name",
    "FirstName",
    "first_name",
    "Contact Name",
    "ContactName",
    "contact_name",
    "Company",
    "company",
    "Title",
    "title",
)
_FIRST_NAME_FIELDS = ("First Name", "FirstName", "first_name")
_LAST_NAME_FIELDS = ("Last Name", "LastName", "last_name", "Family Name", "FamilyName")

_TIER_CUTOFFS = (
    (95, MatchTier.DEFINITIVE),
    (80, MatchTier.STRONG),
    (60, MatchTier.POSSIBLE),
)


def tier_for_confidence(confidence: int) -> MatchTier:
    for cutoff, tier in _TIER_CUTOFFS:
        if confidence >= cutoff:
            return tier
    return MatchTier.INVESTIGATE


def tier_label(tier: MatchTier) -> str:
    return "Weak" if tier == MatchTier.INVESTIGATE else tier.label


@dataclass(frozen=True)
class CrossTableCandidate:
    id: str
    record_a: Record
    name_a: str
    record_b: Record
    name_b: str
    confidence: int
    tier: MatchTier
    matched_fields: int
    reasons: tuple[str, ...]
    search_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "record_a": {**self.record_a.to_dict(), "name": self.name_a},
            "record_b": {**self.record_b.to_dict(), "name": self.name_b},
            "confidence": self.confidence,
            "tier": tier_label(self.tier),
            "tier_rank": int(self.tier),
            "matched_fields": self.matched_fields,
            "reasons": list(self.reasons),
            "search_score": self.search_score,
        }


def extract_display_name(record: Record) -> str:
    fields = record.fields
    for name in DISPLAY_NAME_FIELDS:
        value = fields.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()

    first = next((fields[name] for name in _FIRST_NAME_FIELDS if isinstance(fields.get(name), str)), "")
    last = next((fields[name] for name in _LAST_NAME_FIELDS if isinstance(fields.get(name), str)), "")
    if first or last:
        return f"{first} {last}".strip()

    for value in fields.values():
        if isinstance(value, str) and value.strip():
            return value.strip()[:50]
    return f"Record {record.id}"


def extract_searchable_text(record: Record) -> str:
    return " ".join(value.strip() for value in record.fields.values() if isinstance(value, str) and value.strip())


def find_common_fields(schema_a: Schema, schema_b: Schema) -> list[str]:
    """Field names present in both schemas, in table A order."""

    return [name for name in schema_a.fields if name in schema_b.fields]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def score_record_similarity(
    record_a: Record,
    record_b: Record,
    common_fields: Sequence[str],
) -> tuple[int, int, list[str]]:
    """
    Average per-field score over the common fields that matched.

    Returns ``(score, matched_fields, reasons)``. List values are skipped.
    """

    total = 0
    matched = 0
    reasons: list[str] = []

    for name in common_fields:
        value_a = record_a.get(name)
        value_b = record_b.get(name)
        if is_empty(value_a) or is_empty(value_b):
            continue
        if isinstance(value_a, (list, tuple)) or isinstance(value_b, (list, tuple)):
            continue

        if isinstance(value_a, str) and isinstance(value_b, str):
            text_a = value_a.strip().lower()
            text_b = value_b.strip().lower()
            lowered = name.lower()

            if text_a == text_b:
                total += 100
                matched += 1
                reasons.append(f"{name}: exact match")
                continue

            if "name" in lowered:
                name_match = are_names_similar(text_a, text_b, 70)
                if name_match.match:
                    total += name_match.score
                    matched += 1
                    reasons.append(f"{name}: {name_match.score}% similar")
                    continue

            if "phone" in lowered:
                phone_a = normalize_phone(text_a)
                phone_b = normalize_phone(text_b)
                if phone_a and len(phone_a) >= 7 and phone_a == phone_b:
                    total += 100
                    matched += 1
                    reasons.append(f"{name}: phone match")
                    continue

            if "email" in lowered:
                email_a = normalize_email(text_a)
                if email_a and email_a == normalize_email(text_b):
                    total += 100
                    matched += 1
                    reasons.append(f"{name}: email match")
                    continue

            similarity = string_similarity(text_a, text_b)
            if similarity >= 80:
                total += similarity
                matched += 1
                reasons.append(f"{name}: {similarity}% similar")
            continue

        if _is_number(value_a) and _is_number(value_b) and value_a == value_b:
            total += 100
            matched += 1
            reasons.append(f"{name}: exact match")

    score = round(total / matched) if matched else 0
    return score, matched, reasons


def find_cross_table_duplicates(
    records_a: Sequence[Record],
    records_b: Sequence[Record],
    schema_a: Schema,
    schema_b: Schema,
    *,
    progress: Callable[[ScanProgress], None] | None = None,
) -> list[CrossTableCandidate]:
    """
    Compare every table A record with its closest table B records.

    Raises ``ConfigurationError`` when the schemas share no field names.
    """

    common_fields = find_common_fields(schema_a, schema_b)
    if not common_fields:
        raise ConfigurationError(
            f"Tables {schema_a.table_name!r} and {schema_b.table_name!r} have no fields in common"
        )

    names_b = [extract_display_name(record) for record in records_b]
    choices = [f"{name} {extract_searchable_text(record)}" for name, record in zip(names_b, records_b)]
    candidates: list[CrossTableCandidate] = []
    total = len(records_a)

    for index, record_a in enumerate(records_a):
        if progress is not None and index % PROGRESS_INTERVAL == 0:
            progress(ScanProgress("comparing", index, total, len(candidates)))

        name_a = extract_display_name(record_a)
        query = name_a or extract_searchable_text(record_a)
        matches = process.extract(
            query,
            choices,
            scorer=fuzz.WRatio,
            processor=utils.default_process,
            score_cutoff=SEARCH_CUTOFF,
            limit=None,
        )
        for _choice, search_score, match_index in sorted(matches, key=lambda item: (-item[1], item[2])):
            record_b = records_b[match_index]
            score, matched, reasons = score_record_similarity(record_a, record_b, common_fields)
            if score < MIN_SCORE and matched < MIN_MATCHED_FIELDS:
                continue
            confidence = min(100, score)
            candidates.append(
                CrossTableCandidate(
                    id=f"match_{len(candidates)}",
                    record_a=record_a,
                    name_a=name_a,
                    record_b=record_b,
                    name_b=names_b[match_index],
                    confidence=confidence,
                    tier=tier_for_confidence(confidence),
                    matched_fields=matched,
                    reasons=tuple(reasons),
                    search_score=round(float(search_score), 2),
                )
            )

    if progress is not None:
        progress(ScanProgress("comparing", total, total, len(candidates)))

    candidates.sort(key=lambda candidate: -candidate.confidence)
    logger.info(
        "Cross-table comparison complete",
        extra={
            "table_a": schema_a.table_name,
            "table_b": schema_b.table_name,
            "common_fields": len(common_fields),
            "candidates": len(candidates),
        },
    )
    return candidates


def match_stats(candidates: Sequence[CrossTableCandidate]) -> Mapping[str, Any]:
    by_tier = {int(tier): 0 for tier in MatchTier}
    for candidate in candidates:
        by_tier[int(candidate.tier)] += 1
    average = round(sum(candidate.confidence for candidate in candidates) / len(candidates)) if candidates else 0
    return {"total": len(candidates), "by_tier": by_tier, "avg_confidence": average}


__all__ = [
    "CrossTableCandidate",
    "extract_display_name",
    "extract_searchable_text",
    "find_common_fields",
    "find_cross_table_duplicates",
    "match_stats",
    "score_record_similarity",
    "tier_for_confidence",
    "tier_label",
]
