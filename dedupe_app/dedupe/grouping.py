"""
Coalesce pairwise candidates into merge groups.

Group membership is a flat map from record id to a mutable group object.
When a candidate bridges two existing groups the smaller one is absorbed into
the larger and every absorbed member is re-pointed, so chains of any length
(A-B, B-C, C-D) end up in a single group.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from dedupe_app.dedupe.models import MatchCandidate, MatchTier, MergeGroup, ScoredRecord


@dataclass(eq=False)
class _GroupBuilder:
    id: str
    records: list[ScoredRecord] = field(default_factory=list)
    matches: list[MatchCandidate] = field(default_factory=list)
    best_tier: MatchTier = MatchTier.INVESTIGATE
    highest_confidence: int = 0

    def add_match(self, candidate: MatchCandidate) -> None:
        self.matches.append(candidate)
        self.best_tier = min(self.best_tier, candidate.tier)
        self.highest_confidence = max(self.highest_confidence, candidate.confidence)

    def absorb(self, other: "_GroupBuilder") -> None:
        self.records.extend(other.records)
        self.matches.extend(other.matches)
        self.best_tier = min(self.best_tier, other.best_tier)
        self.highest_confidence = max(self.highest_confidence, other.highest_confidence)

    def finalize(self) -> MergeGroup:
        unique: dict[str, ScoredRecord] = {}
        for member in self.records:
            unique.setdefault(member.id, member)
        ordered = sorted(unique.values(), key=lambda member: member.score, reverse=True)
        return MergeGroup(
            id=self.id,
            records=ordered,
            matches=list(self.matches),
            best_tier=self.best_tier,
            highest_confidence=self.highest_confidence,
            survivor=ordered[0] if ordered else None,
            to_merge=ordered[1:],
        )


def group_candidates(candidates: Iterable[MatchCandidate]) -> list[MergeGroup]:
    """
    Group candidates by transitive closure over shared record ids.

    Groups are returned in creation order. Within a group, members are sorted
    by quality score (highest first, stable on ties) and the first member is
    elected survivor.
    """

    membership: dict[str, _GroupBuilder] = {}
    builders: list[_GroupBuilder] = []
    created = 0

    for candidate in candidates:
        survivor_group = membership.get(candidate.survivor.id)
        merged_group = membership.get(candidate.merged.id)

        if survivor_group is None and merged_group is None:
            group = _GroupBuilder(id=f"group_{created}")
            created += 1
            group.records.extend([candidate.survivor, candidate.merged])
            group.add_match(candidate)
            builders.append(group)
            membership[candidate.survivor.id] = group
            membership[candidate.merged.id] = group
        elif survivor_group is None or merged_group is None:
            if survivor_group is None:
                group, outsider = merged_group, candidate.survivor
            else:
                group, outsider = survivor_group, candidate.merged
            group.records.append(outsider)
            group.add_match(candidate)
            membership[outsider.id] = group
        elif survivor_group is not merged_group:
            if len(survivor_group.records) >= len(merged_group.records):
                keeper, absorbed = survivor_group, merged_group
            else:
                keeper, absorbed = merged_group, survivor_group
            keeper.absorb(absorbed)
            keeper.add_match(candidate)
            for member in absorbed.records:
                membership[member.id] = keeper
            builders.remove(absorbed)
        else:
            survivor_group.add_match(candidate)

    return [builder.finalize() for builder in builders]


__all__ = ["group_candidates"]
