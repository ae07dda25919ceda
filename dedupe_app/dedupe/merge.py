"""
Field-level merge resolution and payload construction.

``compute_field_resolutions`` decides, for every field on the survivor or any
subsumed record, how the survivor's value should be written after the merge.
``build_merge_payload`` turns settled resolutions into the update/delete
payload plus an append-only history entry that snapshots every subsumed
record so the merge can later be reversed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal, Mapping, Sequence

from config.matching import MatchingProfile
from dedupe_app.dedupe.errors import PreconditionError
from dedupe_app.dedupe.history import MERGE_ACTION, append_history_entry, new_merge_id, utc_timestamp
from dedupe_app.dedupe.models import TEXT_FIELD_TYPES, FieldResolution, Record, Schema, is_empty
from dedupe_app.dedupe.scoring import build_full_name

ConflictPolicy = Literal["manual", "keep_survivor", "force"]
CONFLICT_POLICIES: tuple[str, ...] = ("manual", "keep_survivor", "force")

_SKIPPED_STRATEGIES = frozenset({"computed", "excluded"})


@dataclass(frozen=True)
class MergePayload:
    merge_id: str
    survivor_id: str
    history_entry: Mapping[str, Any]
    update_fields: Mapping[str, Any]
    records_to_delete: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "merge_id": self.merge_id,
            "survivor_id": self.survivor_id,
            "history_entry": dict(self.history_entry),
            "update_fields": dict(self.update_fields),
            "records_to_delete": list(self.records_to_delete),
        }


@dataclass
class MergeSummary:
    fields_to_update: list[str] = field(default_factory=list)
    fields_kept: list[str] = field(default_factory=list)
    fields_skipped: list[str] = field(default_factory=list)
    links_added: int = 0
    values_concatenated: list[str] = field(default_factory=list)
    decisions_needed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields_to_update": list(self.fields_to_update),
            "fields_kept": list(self.fields_kept),
            "fields_skipped": list(self.fields_skipped),
            "links_added": self.links_added,
            "values_concatenated": list(self.values_concatenated),
            "decisions_needed": list(self.decisions_needed),
        }


def _fingerprint(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, sort_keys=True, default=str)


def _as_list(value: Any) -> list[Any]:
    if is_empty(value):
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _union_links(values: Iterable[Any]) -> list[Any]:
    merged: list[Any] = []
    for value in values:
        for item in _as_list(value):
            if item not in merged:
                merged.append(item)
    return merged


def _concatenate(values: Iterable[Any], delimiter: str) -> str:
    parts: list[str] = []
    for value in values:
        if is_empty(value):
            continue
        text = str(value).strip()
        if text not in parts:
            parts.append(text)
    return delimiter.join(parts)


def _append(current: str, addition: Any, delimiter: str) -> str:
    text = "" if is_empty(addition) else str(addition).strip()
    if not current:
        return text
    if not text or text in current:
        return current
    if current in text:
        return text
    return f"{current}{delimiter}{text}"


def _collect_field_names(records: Sequence[Record]) -> list[str]:
    names: dict[str, None] = {}
    for record in records:
        for name in record.fields:
            names.setdefault(name, None)
    return list(names)


def _is_excluded(name: str, profile: MatchingProfile) -> bool:
    return name == profile.history_field or name in profile.exclude_fields


def _is_link(name: str, schema: Schema, profile: MatchingProfile) -> bool:
    return name in profile.link_fields or schema.is_link(name)


def _is_text(name: str, schema: Schema, values: Sequence[Any]) -> bool:
    field_type = schema.field_type(name)
    if field_type is not None:
        return field_type in TEXT_FIELD_TYPES
    return all(isinstance(value, str) for value in values)


def _resolve_conflict(
    name: str,
    survivor_value: Any,
    sourced: Sequence[tuple[bool, Any]],
    schema: Schema,
    policy: str,
) -> tuple[str, Any]:
    """Pick a value for a conflicting field; ``sourced`` pairs (from_survivor, value)."""

    if policy == "keep_survivor":
        if not is_empty(survivor_value):
            return "keep_survivor", survivor_value
        return "keep_other", sourced[0][1]

    if _is_text(name, schema, [value for _, value in sourced]):
        best = sourced[0]
        for candidate in sourced[1:]:
            if len(str(candidate[1]).strip()) > len(str(best[1]).strip()):
                best = candidate
        return ("keep_survivor" if best[0] else "keep_other"), best[1]

    from_survivor, value = sourced[0]
    return ("keep_survivor" if from_survivor else "keep_other"), value


def compute_field_resolutions(
    survivor: Record,
    to_merge: Sequence[Record],
    schema: Schema,
    profile: MatchingProfile,
    *,
    conflict_policy: str = "manual",
) -> dict[str, FieldResolution]:
    """
    Resolve every field appearing on the survivor or a subsumed record.

    With the default ``"manual"`` policy, fields whose non-empty values
    disagree come back with ``needs_decision=True``. ``"keep_survivor"``
    prefers the survivor's value and ``"force"`` prefers the most complete
    one; neither leaves decisions open.
    """

    if conflict_policy not in CONFLICT_POLICIES:
        raise ValueError(f"Unknown conflict policy: {conflict_policy!r}")

    resolutions: dict[str, FieldResolution] = {}
    for name in _collect_field_names([survivor, *to_merge]):
        if schema.is_computed(name):
            resolutions[name] = FieldResolution(strategy="computed")
            continue
        if _is_excluded(name, profile):
            resolutions[name] = FieldResolution(strategy="excluded")
            continue

        survivor_value = survivor.get(name)
        other_values = [record.get(name) for record in to_merge]
        merged_values = tuple(
            {"record_id": record.id, "name": build_full_name(record.fields, profile), "value": record.get(name)}
            for record in to_merge
        )

        if _is_link(name, schema, profile):
            links = _union_links([survivor_value, *other_values])
            resolutions[name] = FieldResolution(
                strategy="merge_links",
                value=links or None,
                include=bool(links),
                survivor_value=survivor_value,
                merged_values=merged_values,
            )
            continue

        if name in profile.concatenate_fields:
            text = _concatenate([survivor_value, *other_values], profile.concatenate_delimiter)
            resolutions[name] = FieldResolution(
                strategy="concatenate",
                value=text or None,
                include=bool(text),
                survivor_value=survivor_value,
                merged_values=merged_values,
            )
            continue

        if name in profile.append_fields:
            text = ""
            for value in (survivor_value, *other_values):
                text = _append(text, value, profile.append_delimiter)
            resolutions[name] = FieldResolution(
                strategy="append",
                value=text or None,
                include=bool(text),
                survivor_value=survivor_value,
                merged_values=merged_values,
            )
            continue

        sourced = [(True, survivor_value)] + [(False, value) for value in other_values]
        sourced = [(from_survivor, value) for from_survivor, value in sourced if not is_empty(value)]
        if not sourced:
            resolutions[name] = FieldResolution(strategy="auto")
            continue

        distinct = {_fingerprint(value) for _, value in sourced}
        if len(distinct) == 1:
            resolutions[name] = FieldResolution(
                strategy="auto",
                value=sourced[0][1],
                include=True,
                survivor_value=survivor_value,
                merged_values=merged_values,
            )
            continue

        all_values = tuple(value for _, value in sourced)
        if conflict_policy == "manual":
            resolutions[name] = FieldResolution(
                strategy="manual",
                include=True,
                needs_decision=True,
                survivor_value=survivor_value,
                merged_values=merged_values,
                all_values=all_values,
                has_conflict=True,
            )
            continue

        strategy, value = _resolve_conflict(name, survivor_value, sourced, schema, conflict_policy)
        resolutions[name] = FieldResolution(
            strategy=strategy,  # type: ignore[arg-type]
            value=value,
            include=True,
            survivor_value=survivor_value,
            merged_values=merged_values,
            all_values=all_values,
            has_conflict=True,
        )

    return resolutions


def resolve_field_value(name: str, value_a: Any, value_b: Any, profile: MatchingProfile) -> FieldResolution:
    """Pairwise resolution of one field between a survivor value and one other value."""

    if _is_excluded(name, profile):
        return FieldResolution(strategy="excluded")
    if is_empty(value_a) and is_empty(value_b):
        return FieldResolution(strategy="auto")
    if not is_empty(value_a) and not is_empty(value_b) and _fingerprint(value_a) == _fingerprint(value_b):
        return FieldResolution(strategy="auto", value=value_a, include=True, survivor_value=value_a)
    if is_empty(value_a):
        return FieldResolution(strategy="keep_other", value=value_b, include=True, survivor_value=value_a)
    if is_empty(value_b):
        return FieldResolution(strategy="keep_survivor", value=value_a, include=True, survivor_value=value_a)
    if name in profile.link_fields:
        return FieldResolution(
            strategy="merge_links", value=_union_links([value_a, value_b]), include=True, survivor_value=value_a
        )
    if name in profile.concatenate_fields:
        return FieldResolution(
            strategy="concatenate",
            value=_concatenate([value_a, value_b], profile.concatenate_delimiter),
            include=True,
            survivor_value=value_a,
        )
    if name in profile.append_fields:
        return FieldResolution(
            strategy="append",
            value=_append(_append("", value_a, profile.append_delimiter), value_b, profile.append_delimiter),
            include=True,
            survivor_value=value_a,
        )
    return FieldResolution(
        strategy="manual",
        include=True,
        needs_decision=True,
        survivor_value=value_a,
        all_values=(value_a, value_b),
        has_conflict=True,
    )


def apply_field_selections(
    resolutions: Mapping[str, FieldResolution],
    selections: Mapping[str, Any],
) -> dict[str, FieldResolution]:
    """
    Return a copy of ``resolutions`` with user choices applied.

    A selection is either the chosen value or a mapping with ``value`` and
    optional ``strategy``/``include`` keys. Selections for unknown fields are
    ignored.
    """

    updated = dict(resolutions)
    for name, selection in selections.items():
        current = updated.get(name)
        if current is None:
            continue
        if isinstance(selection, Mapping):
            value = selection.get("value")
            include = selection.get("include", True) is not False
            strategy = selection.get("strategy")
        else:
            value, include, strategy = selection, True, None
        if strategy is None:
            survivor_match = not is_empty(current.survivor_value) and _fingerprint(current.survivor_value) == _fingerprint(value)
            strategy = "keep_survivor" if survivor_match else "keep_other"
        updated[name] = replace(current, strategy=strategy, value=value, include=include, needs_decision=False)
    return updated


def has_unresolved_decisions(resolutions: Mapping[str, FieldResolution]) -> bool:
    return any(resolution.needs_decision for resolution in resolutions.values())


def unresolved_fields(resolutions: Mapping[str, FieldResolution]) -> tuple[str, ...]:
    return tuple(name for name, resolution in resolutions.items() if resolution.needs_decision)


def summarize_resolutions(resolutions: Mapping[str, FieldResolution]) -> MergeSummary:
    summary = MergeSummary()
    for name, resolution in resolutions.items():
        if resolution.strategy in _SKIPPED_STRATEGIES:
            summary.fields_skipped.append(name)
        elif resolution.needs_decision:
            summary.decisions_needed.append(name)
        elif not resolution.include:
            summary.fields_skipped.append(name)
        elif resolution.strategy == "merge_links":
            before = len(_as_list(resolution.survivor_value))
            after = len(_as_list(resolution.value))
            if after > before:
                summary.links_added += after - before
                summary.fields_to_update.append(f"{name} (+{after - before} links)")
            else:
                summary.fields_kept.append(name)
        elif resolution.strategy in {"concatenate", "append"}:
            summary.values_concatenated.append(name)
            summary.fields_to_update.append(name)
        elif resolution.strategy == "keep_other":
            summary.fields_to_update.append(f"{name} (from merged record)")
        elif resolution.strategy in {"auto", "keep_survivor"}:
            if _fingerprint(resolution.value) == _fingerprint(resolution.survivor_value):
                summary.fields_kept.append(name)
            else:
                summary.fields_to_update.append(name)
        else:
            summary.fields_to_update.append(name)
    return summary


def _linked_records(fields: Mapping[str, Any], schema: Schema) -> dict[str, list[Any]]:
    linked: dict[str, list[Any]] = {}
    for name in schema.link_fields:
        value = fields.get(name)
        if isinstance(value, (list, tuple)) and value:
            linked[name] = list(value)
    return linked


def build_merge_payload(
    survivor: Record,
    to_merge: Sequence[Record],
    resolutions: Mapping[str, FieldResolution],
    schema: Schema,
    profile: MatchingProfile,
    *,
    performed_by: str = "user",
    notes: str = "",
    confidence: int | None = None,
    match_reasons: Sequence[str] = (),
) -> MergePayload:
    """
    Build the survivor update, delete list and history entry for a merge.

    Raises ``PreconditionError`` before doing anything else when any
    resolution still needs a decision.
    """

    pending = unresolved_fields(resolutions)
    if pending:
        raise PreconditionError(
            f"Merge has unresolved field decisions: {', '.join(pending)}",
            fields=pending,
        )

    merge_id = new_merge_id()
    history_entry: dict[str, Any] = {
        "merge_id": merge_id,
        "timestamp": utc_timestamp(),
        "action": MERGE_ACTION,
        "confidence": confidence,
        "match_reasons": list(match_reasons),
        "survivor_record_id": survivor.id,
        "merged_records": [
            {
                "original_record_id": record.id,
                "field_snapshot": dict(record.fields),
                "linked_records": _linked_records(record.fields, schema),
            }
            for record in to_merge
        ],
        "field_decisions": {
            name: {"strategy": resolution.strategy, "value": resolution.value, "include": resolution.include}
            for name, resolution in resolutions.items()
        },
        "performed_by": performed_by,
        "notes": notes,
    }

    update_fields: dict[str, Any] = {}
    for name, resolution in resolutions.items():
        if not resolution.include or resolution.strategy in _SKIPPED_STRATEGIES:
            continue
        if schema.is_computed(name) or _is_excluded(name, profile):
            continue
        update_fields[name] = resolution.value

    _, serialized = append_history_entry(survivor.get(profile.history_field), history_entry)
    update_fields[profile.history_field] = serialized

    return MergePayload(
        merge_id=merge_id,
        survivor_id=survivor.id,
        history_entry=history_entry,
        update_fields=update_fields,
        records_to_delete=tuple(record.id for record in to_merge),
    )


__all__ = [
    "CONFLICT_POLICIES",
    "ConflictPolicy",
    "MergePayload",
    "MergeSummary",
    "apply_field_selections",
    "build_merge_payload",
    "compute_field_resolutions",
    "has_unresolved_decisions",
    "resolve_field_value",
    "summarize_resolutions",
    "unresolved_fields",
]
