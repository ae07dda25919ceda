"""
Reverse a recorded merge from the survivor's history.

Only the subsumed records are reconstructed. Survivor fields that the merge
overwrote are left as they are; the history keeps the original ``merge``
entry untouched and gains a new ``unmerge`` entry referencing it. An unmerge
interrupted partway leaves a ``partial`` entry naming the records it already
recreated, and a later attempt only recreates the rest.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from config.matching import MatchingProfile
from dedupe_app.dedupe.errors import NotFoundError, PreconditionError
from dedupe_app.dedupe.history import (
    UNMERGE_ACTION,
    find_merge_entry,
    is_unmerged,
    new_unmerge_id,
    parse_history,
    restored_by_partial_unmerge,
    serialize_history,
    utc_timestamp,
)
from dedupe_app.dedupe.models import Record, Schema


@dataclass(frozen=True)
class RecreatedRecord:
    original_id: str
    fields: Mapping[str, Any]
    linked_records: Mapping[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_id": self.original_id,
            "fields": dict(self.fields),
            "linked_records": dict(self.linked_records),
        }


@dataclass(frozen=True)
class UnmergePayload:
    unmerge_id: str
    merge_event: Mapping[str, Any]
    records_to_create: tuple[RecreatedRecord, ...]
    survivor_updates: Mapping[str, Any]
    unmerge_history_entry: Mapping[str, Any]
    already_restored: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "unmerge_id": self.unmerge_id,
            "merge_event": dict(self.merge_event),
            "records_to_create": [record.to_dict() for record in self.records_to_create],
            "survivor_updates": dict(self.survivor_updates),
            "unmerge_history_entry": dict(self.unmerge_history_entry),
            "already_restored": list(self.already_restored),
        }


def build_unmerge_payload(
    survivor: Record,
    merge_id: str,
    schema: Schema,
    profile: MatchingProfile,
    *,
    performed_by: str = "user",
) -> UnmergePayload:
    """
    Build the records to recreate and the survivor history update for ``merge_id``.

    Snapshot fields that are computed in the current schema are dropped, since
    the table may have changed since the merge ran. Snapshots recreated by an
    earlier partial unmerge are skipped and listed in ``already_restored``.
    """

    history = parse_history(survivor.get(profile.history_field))
    merge_event = find_merge_entry(history, merge_id)
    if merge_event is None:
        raise NotFoundError(f"Merge event {merge_id} not found in history of record {survivor.id}")
    if is_unmerged(history, merge_id):
        raise PreconditionError(f"Merge event {merge_id} has already been unmerged")

    previously_restored = restored_by_partial_unmerge(history, merge_id)
    original_ids: list[str] = []
    already_restored: list[str] = []
    records_to_create = []
    for merged in merge_event.get("merged_records") or []:
        original_id = str(merged.get("original_record_id") or "")
        original_ids.append(original_id)
        if original_id and original_id in previously_restored:
            already_restored.append(original_id)
            continue
        snapshot = merged.get("field_snapshot") or {}
        records_to_create.append(
            RecreatedRecord(
                original_id=original_id,
                fields={name: value for name, value in snapshot.items() if not schema.is_computed(name)},
                linked_records=dict(merged.get("linked_records") or {}),
            )
        )

    unmerge_id = new_unmerge_id()
    unmerge_entry = {
        "merge_id": unmerge_id,
        "timestamp": utc_timestamp(),
        "action": UNMERGE_ACTION,
        "original_merge_id": merge_id,
        "survivor_record_id": survivor.id,
        "restored_records": original_ids,
        "performed_by": performed_by,
        "notes": f"Unmerge of {merge_id}",
    }

    return UnmergePayload(
        unmerge_id=unmerge_id,
        merge_event=merge_event,
        records_to_create=tuple(records_to_create),
        survivor_updates={profile.history_field: serialize_history([*history, unmerge_entry])},
        unmerge_history_entry=unmerge_entry,
        already_restored=tuple(already_restored),
    )


__all__ = ["RecreatedRecord", "UnmergePayload", "build_unmerge_payload"]
