"""
Sequential bulk merge over many groups with partial-failure accounting.

Groups are processed one at a time. A store failure on one group is recorded
and the run moves on to the next group. Cancellation is honoured only between
groups, so a merge whose writes have started always runs to completion or
fails explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from config.matching import MatchingProfile
from dedupe_app.dedupe.errors import ExternalIOError
from dedupe_app.dedupe.merge import (
    apply_field_selections,
    build_merge_payload,
    compute_field_resolutions,
    unresolved_fields,
)
from dedupe_app.dedupe.models import FieldResolution, MergeGroup, Schema

if TYPE_CHECKING:  # pragma: no cover
    from dedupe_app.store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class GroupOutcome:
    group_id: str
    survivor_id: str | None
    status: str
    merge_id: str | None = None
    deleted_ids: tuple[str, ...] = ()
    pending_fields: tuple[str, ...] = ()
    partial: bool = False
    undeleted_ids: tuple[str, ...] = ()
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "survivor_id": self.survivor_id,
            "status": self.status,
            "merge_id": self.merge_id,
            "deleted_ids": list(self.deleted_ids),
            "pending_fields": list(self.pending_fields),
            "partial": self.partial,
            "undeleted_ids": list(self.undeleted_ids),
            "error": self.error,
        }


@dataclass
class BulkMergeSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    dry_run: bool = False
    outcomes: list[GroupOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def _group_resolutions(
    group: MergeGroup,
    schema: Schema,
    profile: MatchingProfile,
    conflict_policy: str,
) -> dict[str, FieldResolution]:
    if group.survivor is None:
        raise ValueError(f"Group {group.id} has no survivor")
    return compute_field_resolutions(
        group.survivor.record,
        [member.record for member in group.to_merge],
        schema,
        profile,
        conflict_policy=conflict_policy,
    )


def partition_groups(
    groups: Iterable[MergeGroup],
    schema: Schema,
    profile: MatchingProfile,
    *,
    conflict_policy: str = "manual",
) -> tuple[list[MergeGroup], list[MergeGroup]]:
    """Split groups into those that can merge unattended and those needing decisions."""

    ready: list[MergeGroup] = []
    needs_review: list[MergeGroup] = []
    for group in groups:
        if group.survivor is None or not group.to_merge:
            continue
        resolutions = _group_resolutions(group, schema, profile, conflict_policy)
        (needs_review if unresolved_fields(resolutions) else ready).append(group)
    return ready, needs_review


def _match_reasons(group: MergeGroup) -> list[str]:
    reasons: list[str] = list(group.reasons)
    for match in group.matches:
        for reason in match.reasons:
            if reason not in reasons:
                reasons.append(reason)
    return reasons


def run_bulk_merge(
    store: "RecordStore",
    table: str,
    groups: Sequence[MergeGroup],
    schema: Schema,
    profile: MatchingProfile,
    *,
    selections: Mapping[str, Mapping[str, Any]] | None = None,
    should_cancel: Callable[[], bool] | None = None,
    performed_by: str = "user",
    conflict_policy: str = "manual",
    dry_run: bool = False,
) -> BulkMergeSummary:
    """
    Merge each group in order: update the survivor, then delete the rest.

    Groups with open field decisions and no matching entry in ``selections``
    (keyed by group id) are skipped. Returns a summary with one outcome per
    group that was attempted.
    """

    selections = selections or {}
    summary = BulkMergeSummary(total=len(groups), dry_run=dry_run)

    for group in groups:
        if should_cancel is not None and should_cancel():
            summary.cancelled = True
            logger.info("Bulk merge cancelled", extra={"processed": len(summary.outcomes), "total": summary.total})
            break

        if group.survivor is None or not group.to_merge:
            summary.skipped += 1
            summary.outcomes.append(GroupOutcome(group.id, None, "skipped", error="Group has nothing to merge"))
            continue

        survivor = group.survivor.record
        resolutions = _group_resolutions(group, schema, profile, conflict_policy)
        if group.id in selections:
            resolutions = apply_field_selections(resolutions, selections[group.id])
        pending = unresolved_fields(resolutions)
        if pending:
            summary.skipped += 1
            summary.outcomes.append(GroupOutcome(group.id, survivor.id, "skipped", pending_fields=pending))
            continue

        payload = build_merge_payload(
            survivor,
            [member.record for member in group.to_merge],
            resolutions,
            schema,
            profile,
            performed_by=performed_by,
            notes=f"Bulk merge of {group.id}",
            confidence=group.highest_confidence,
            match_reasons=_match_reasons(group),
        )

        if dry_run:
            summary.successful += 1
            summary.outcomes.append(
                GroupOutcome(group.id, survivor.id, "planned", merge_id=payload.merge_id, deleted_ids=payload.records_to_delete)
            )
            continue

        try:
            store.update_record(table, survivor.id, dict(payload.update_fields))
        except ExternalIOError as exc:
            summary.failed += 1
            summary.outcomes.append(GroupOutcome(group.id, survivor.id, "failed", merge_id=payload.merge_id, error=str(exc)))
            logger.warning("Survivor update failed", extra={"group_id": group.id, "survivor_id": survivor.id, "error": str(exc)})
            continue

        try:
            store.delete_records(table, list(payload.records_to_delete))
        except ExternalIOError as exc:
            summary.failed += 1
            summary.outcomes.append(
                GroupOutcome(
                    group.id,
                    survivor.id,
                    "failed",
                    merge_id=payload.merge_id,
                    partial=True,
                    undeleted_ids=payload.records_to_delete,
                    error=str(exc),
                )
            )
            logger.error(
                "Survivor updated but duplicate deletion failed",
                extra={"group_id": group.id, "survivor_id": survivor.id, "undeleted": list(payload.records_to_delete)},
            )
            continue

        summary.successful += 1
        summary.outcomes.append(
            GroupOutcome(group.id, survivor.id, "merged", merge_id=payload.merge_id, deleted_ids=payload.records_to_delete)
        )

    logger.info(
        "Bulk merge finished",
        extra={
            "total": summary.total,
            "successful": summary.successful,
            "failed": summary.failed,
            "skipped": summary.skipped,
            "cancelled": summary.cancelled,
            "dry_run": dry_run,
        },
    )
    return summary


__all__ = ["BulkMergeSummary", "GroupOutcome", "partition_groups", "run_bulk_merge"]
