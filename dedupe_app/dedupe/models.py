"""
Value types shared across the dedupe engine.

Records and schemas mirror what the backing store returns; the remaining
types are produced by the engine during a scan or merge and live only for the
duration of that session.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

COMPUTED_FIELD_TYPES = frozenset(
    {
        "formula",
        "rollup",
        "count",
        "lookup",
        "multipleLookupValues",
        "autoNumber",
        "createdTime",
        "lastModifiedTime",
        "createdBy",
        "lastModifiedBy",
        "button",
    }
)
LINK_FIELD_TYPE = "multipleRecordLinks"
TEXT_FIELD_TYPES = frozenset({"singleLineText", "multilineText", "richText"})


def is_empty(value: Any) -> bool:
    """Return True for None, blank strings and empty lists."""

    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class Record:
    """A store record: an opaque id plus its field map."""

    id: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "Record":
        return cls(id=str(payload["id"]), fields=dict(payload.get("fields") or {}))

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "fields": dict(self.fields)}


@dataclass(frozen=True)
class FieldInfo:
    type: str
    is_computed: bool = False
    field_id: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_link(self) -> bool:
        return self.type == LINK_FIELD_TYPE


@dataclass(frozen=True)
class Schema:
    """Table schema with field types and computed flags."""

    table_name: str
    fields: Mapping[str, FieldInfo] = field(default_factory=dict)
    table_id: str | None = None

    @classmethod
    def from_field_types(cls, table_name: str, field_types: Mapping[str, str], *, table_id: str | None = None) -> "Schema":
        """Build a schema from ``{name: type}``, deriving computed flags from the type."""

        return cls(
            table_name=table_name,
            fields={
                name: FieldInfo(type=field_type, is_computed=is_computed_field(name, field_type))
                for name, field_type in field_types.items()
            },
            table_id=table_id,
        )

    def is_computed(self, name: str) -> bool:
        info = self.fields.get(name)
        return bool(info and info.is_computed)

    def is_link(self, name: str) -> bool:
        info = self.fields.get(name)
        return bool(info and info.is_link and not info.is_computed)

    def field_type(self, name: str) -> str | None:
        info = self.fields.get(name)
        return info.type if info else None

    @property
    def computed_fields(self) -> tuple[str, ...]:
        return tuple(name for name, info in self.fields.items() if info.is_computed)

    @property
    def writable_fields(self) -> tuple[str, ...]:
        return tuple(name for name, info in self.fields.items() if not info.is_computed)

    @property
    def link_fields(self) -> tuple[str, ...]:
        return tuple(name for name, info in self.fields.items() if info.is_link and not info.is_computed)

    @property
    def text_fields(self) -> tuple[str, ...]:
        return tuple(
            name for name, info in self.fields.items() if not info.is_computed and not info.is_link
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "table_id": self.table_id,
            "fields": {
                name: {"type": info.type, "is_computed": info.is_computed} for name, info in self.fields.items()
            },
        }


def is_computed_field(name: str, field_type: str) -> bool:
    """Computed types plus lookup columns, which the store names ``"X (from Y)"``."""

    return field_type in COMPUTED_FIELD_TYPES or "(from" in name


class MatchTier(enum.IntEnum):
    """Ordinal confidence bucket; lower values are more confident."""

    DEFINITIVE = 1
    STRONG = 2
    POSSIBLE = 3
    INVESTIGATE = 4

    @property
    def label(self) -> str:
        return _TIER_LABELS[self]

    @property
    def min_confidence(self) -> int:
        return _TIER_MIN_CONFIDENCE[self]

    @classmethod
    def parse(cls, value: str | int) -> "MatchTier":
        if isinstance(value, int):
            return cls(value)
        token = str(value).strip().lower()
        if token.isdigit():
            return cls(int(token))
        if token == "weak":
            return cls.INVESTIGATE
        try:
            return cls[token.upper()]
        except KeyError:
            raise ValueError(f"Unknown match tier: {value!r}") from None


_TIER_LABELS = {
    MatchTier.DEFINITIVE: "Definitive",
    MatchTier.STRONG: "Strong",
    MatchTier.POSSIBLE: "Possible",
    MatchTier.INVESTIGATE: "Investigate",
}
_TIER_MIN_CONFIDENCE = {
    MatchTier.DEFINITIVE: 100,
    MatchTier.STRONG: 85,
    MatchTier.POSSIBLE: 70,
    MatchTier.INVESTIGATE: 0,
}


@dataclass(frozen=True)
class ScoredRecord:
    """A record paired with its quality score and display name."""

    record: Record
    score: float
    name: str

    @property
    def id(self) -> str:
        return self.record.id

    def to_dict(self) -> dict[str, Any]:
        return {"record": self.record.to_dict(), "score": self.score, "name": self.name}


@dataclass(frozen=True)
class MatchResult:
    tier: MatchTier
    confidence: int
    reasons: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    is_conflict: bool = False


@dataclass(frozen=True)
class MatchCandidate:
    """A scored pair of records with the survivor already elected."""

    id: str
    match_key: str | None
    survivor: ScoredRecord
    merged: ScoredRecord
    tier: MatchTier
    confidence: int
    reasons: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    is_conflict: bool = False

    @property
    def pair(self) -> tuple[str, str]:
        return tuple(sorted((self.survivor.id, self.merged.id)))  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "match_key": self.match_key,
            "tier": self.tier.label,
            "tier_rank": int(self.tier),
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "conflicts": list(self.conflicts),
            "is_conflict": self.is_conflict,
            "survivor": self.survivor.to_dict(),
            "merged": self.merged.to_dict(),
        }


@dataclass
class MergeGroup:
    """Transitively linked records that should collapse into one survivor."""

    id: str
    records: list[ScoredRecord]
    matches: list[MatchCandidate]
    best_tier: MatchTier
    highest_confidence: int
    survivor: ScoredRecord | None = None
    to_merge: list[ScoredRecord] = field(default_factory=list)
    match_key: str | None = None
    reasons: tuple[str, ...] = ()

    @property
    def record_ids(self) -> tuple[str, ...]:
        return tuple(member.id for member in self.records)

    @property
    def has_conflict(self) -> bool:
        return any(match.is_conflict for match in self.matches)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "best_tier": self.best_tier.label,
            "tier_rank": int(self.best_tier),
            "highest_confidence": self.highest_confidence,
            "has_conflict": self.has_conflict,
            "survivor": self.survivor.to_dict() if self.survivor else None,
            "to_merge": [member.to_dict() for member in self.to_merge],
            "match_ids": [match.id for match in self.matches],
            "match_key": self.match_key,
            "reasons": list(self.reasons),
        }


ResolutionStrategy = Literal[
    "auto",
    "keep_survivor",
    "keep_other",
    "concatenate",
    "merge_links",
    "append",
    "manual",
    "excluded",
    "computed",
]


@dataclass(frozen=True)
class FieldResolution:
    """How one field will be written on the survivor after a merge."""

    strategy: ResolutionStrategy
    value: Any = None
    include: bool = False
    needs_decision: bool = False
    survivor_value: Any = None
    merged_values: Sequence[Mapping[str, Any]] = ()
    all_values: Sequence[Any] = ()
    has_conflict: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "value": self.value,
            "include": self.include,
            "needs_decision": self.needs_decision,
            "survivor_value": self.survivor_value,
            "merged_values": [dict(item) for item in self.merged_values],
            "all_values": list(self.all_values),
            "has_conflict": self.has_conflict,
        }


@dataclass(frozen=True)
class ScanProgress:
    phase: str
    current: int
    total: int
    candidates_found: int


__all__ = [
    "COMPUTED_FIELD_TYPES",
    "FieldInfo",
    "FieldResolution",
    "LINK_FIELD_TYPE",
    "MatchCandidate",
    "MatchResult",
    "MatchTier",
    "MergeGroup",
    "Record",
    "ResolutionStrategy",
    "ScanProgress",
    "Schema",
    "ScoredRecord",
    "TEXT_FIELD_TYPES",
    "is_computed_field",
    "is_empty",
]
