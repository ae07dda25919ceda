"""
Tiered confidence scoring for a pair of records.

Tier 1 (Definitive): exact match on a unique identifier.
Tier 2 (Strong): similar names backed by corroborating contact data.
Tier 3 (Possible): name similarity alone.
Tier 4 (Investigate): conflicting identifiers; never merged without review.
"""

from __future__ import annotations

from typing import Any, Mapping

from config.matching import MatchingProfile
from dedupe_app.dedupe.models import MatchResult, MatchTier, Record, is_empty
from dedupe_app.dedupe.normalize import (
    are_names_similar,
    normalize_address,
    normalize_email,
    normalize_name,
    normalize_phone,
    string_similarity,
)

PHONE_BONUS = 10
EMAIL_BONUS = 10
DOB_BONUS = 15
ADDRESS_BONUS = 5
ADDRESS_SIMILARITY_THRESHOLD = 80
MIN_PHONE_DIGITS = 10
CONFLICT_CONFIDENCE_FLOOR = 50


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def build_full_name(fields: Mapping[str, Any], profile: MatchingProfile) -> str:
    """Join first/middle/last when present, otherwise fall back to a full-name field."""

    parts = [
        _text(fields.get(name))
        for name in (profile.first_name_field, profile.middle_name_field, profile.last_name_field)
        if name
    ]
    parts = [part for part in parts if part]
    if parts:
        return " ".join(parts)

    for name in profile.full_name_fields:
        value = _text(fields.get(name))
        if value:
            return value
    return ""


def get_match_key(record: Record, profile: MatchingProfile) -> str | None:
    """Canonical name used to bucket records; ``None`` when the record has no name."""

    first = _text(record.get(profile.first_name_field)) if profile.first_name_field else ""
    last = _text(record.get(profile.last_name_field)) if profile.last_name_field else ""
    if first and last:
        return normalize_name(f"{first} {last}").canonical or None

    for name in profile.full_name_fields:
        value = _text(record.get(name))
        if value:
            return normalize_name(value).canonical or None
    return None


def _first_present(fields: Mapping[str, Any], names) -> Any:
    for name in names:
        value = fields.get(name)
        if not is_empty(value):
            return value
    return None


def _ids_equal(value_a: Any, value_b: Any) -> bool:
    if isinstance(value_a, str) and isinstance(value_b, str):
        return value_a.strip() == value_b.strip()
    return value_a == value_b


def score_match(record_a: Record, record_b: Record, profile: MatchingProfile) -> MatchResult:
    """
    Score two records that are already suspected to match.

    Conflicting unique identifiers short-circuit to the Investigate tier before
    any name comparison, so two different people sharing a common name are
    never promoted. Otherwise the name score is layered with capped bonuses
    for matching phone, email, DOB and address. Once invoked the scorer always
    yields at least a Possible match; deciding whether to score at all is the
    candidate finder's job.
    """

    fields_a = record_a.fields
    fields_b = record_b.fields
    reasons: list[str] = []
    conflicts: list[str] = []
    confidence = 0

    for id_field in profile.unique_id_fields:
        value_a = fields_a.get(id_field)
        value_b = fields_b.get(id_field)
        if is_empty(value_a) or is_empty(value_b):
            continue
        if _ids_equal(value_a, value_b):
            reasons.append(f"{id_field} exact match")
            confidence = max(confidence, 100)
        else:
            conflicts.append(f'{id_field} conflict: "{value_a}" vs "{value_b}"')

    if conflicts:
        return MatchResult(
            tier=MatchTier.INVESTIGATE,
            confidence=max(confidence, CONFLICT_CONFIDENCE_FLOOR),
            reasons=tuple(reasons),
            conflicts=tuple(conflicts),
            is_conflict=True,
        )

    if confidence >= 100:
        return MatchResult(tier=MatchTier.DEFINITIVE, confidence=100, reasons=tuple(reasons))

    name_a = build_full_name(fields_a, profile)
    name_b = build_full_name(fields_b, profile)
    if name_a and name_b:
        name_match = are_names_similar(name_a, name_b, profile.name_threshold)
        if name_match.match:
            reasons.append(f"Name: {name_match.score}% ({name_match.reason})")
            confidence = max(confidence, name_match.score)

    corroboration = 0

    if profile.phone_field:
        phone_a = normalize_phone(fields_a.get(profile.phone_field))
        phone_b = normalize_phone(fields_b.get(profile.phone_field))
        if phone_a and len(phone_a) >= MIN_PHONE_DIGITS and phone_a == phone_b:
            reasons.append("Phone exact match")
            corroboration += 1
            confidence = min(100, confidence + PHONE_BONUS)

    if profile.email_field:
        email_a = normalize_email(fields_a.get(profile.email_field))
        email_b = normalize_email(fields_b.get(profile.email_field))
        if email_a and email_a == email_b and not profile.is_placeholder_email(email_a):
            reasons.append("Email exact match")
            corroboration += 1
            confidence = min(100, confidence + EMAIL_BONUS)

    if profile.dob_field:
        dob_a = fields_a.get(profile.dob_field)
        dob_b = fields_b.get(profile.dob_field)
        if not is_empty(dob_a) and not is_empty(dob_b) and dob_a == dob_b:
            reasons.append("DOB exact match")
            corroboration += 1
            confidence = min(100, confidence + DOB_BONUS)

    address_a = normalize_address(_first_present(fields_a, profile.address_fields))
    address_b = normalize_address(_first_present(fields_b, profile.address_fields))
    if address_a and address_b:
        similarity = string_similarity(address_a, address_b)
        if similarity >= ADDRESS_SIMILARITY_THRESHOLD:
            reasons.append(f"Address: {similarity}% similar")
            corroboration += 1
            confidence = min(100, confidence + ADDRESS_BONUS)

    if confidence >= 100:
        tier = MatchTier.DEFINITIVE
    elif confidence >= 85 or (confidence >= 75 and corroboration >= 1):
        tier = MatchTier.STRONG
    elif confidence >= 70:
        tier = MatchTier.POSSIBLE
    else:
        tier = MatchTier.POSSIBLE
        confidence = max(confidence, 70)

    return MatchResult(tier=tier, confidence=round(confidence), reasons=tuple(reasons))


__all__ = ["build_full_name", "get_match_key", "score_match"]
