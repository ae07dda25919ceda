"""
Record completeness scoring used to elect merge survivors.

The exact point values are tuning, not correctness: they come from the
matching profile and only their relative order matters. Every weight is
non-negative, so adding data to a record never lowers its score.
"""

from __future__ import annotations

from typing import Any

from config.matching import DEFAULT_QUALITY_WEIGHTS, MatchingProfile, QualityWeights
from dedupe_app.dedupe.models import Record, is_empty


def _has_value(value: Any, profile: MatchingProfile | None) -> bool:
    if is_empty(value):
        return False
    if profile is not None and isinstance(value, str) and profile.is_placeholder_email(value.strip().lower()):
        return False
    return True


def score_record_quality(
    record: Record,
    weights: QualityWeights | None = None,
    *,
    profile: MatchingProfile | None = None,
) -> int:
    """Weighted count of populated identity/contact fields and linked records."""

    if weights is None:
        weights = profile.quality_weights if profile is not None else DEFAULT_QUALITY_WEIGHTS

    score = 0
    for field_name, points in weights.field_points.items():
        if _has_value(record.get(field_name), profile):
            score += points

    for field_name, points in weights.link_points.items():
        linked = record.get(field_name)
        if isinstance(linked, (list, tuple)):
            score += len(linked) * points

    return score


__all__ = ["score_record_quality"]
