"""
Dedupe service tying the record store to the matching and merge engine.

Routes and CLI commands go through this class so that every store read and
write for a scan, merge or unmerge happens in one place. Engine functions stay
pure; this layer fetches their inputs and applies their payloads.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Iterable, Mapping, Sequence

from config.matching import MatchingProfile
from dedupe_app.dedupe.batch import BulkMergeSummary, run_bulk_merge
from dedupe_app.dedupe.candidates import CandidateSummary, find_duplicate_candidates
from dedupe_app.dedupe.cross_table import CrossTableCandidate, find_common_fields, find_cross_table_duplicates, match_stats
from dedupe_app.dedupe.errors import ConfigurationError, ExternalIOError
from dedupe_app.dedupe.field_match import clean_match_fields, find_field_match_groups
from dedupe_app.dedupe.grouping import group_candidates
from dedupe_app.dedupe.history import PARTIAL_STATUS, parse_history, serialize_history
from dedupe_app.dedupe.merge import (
    MergePayload,
    MergeSummary,
    apply_field_selections,
    build_merge_payload,
    compute_field_resolutions,
    summarize_resolutions,
)
from dedupe_app.dedupe.models import (
    FieldResolution,
    MatchCandidate,
    MatchTier,
    MergeGroup,
    Record,
    ScanProgress,
    Schema,
)
from dedupe_app.dedupe.unmerge import build_unmerge_payload
from dedupe_app.store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Outcome of a full-table duplicate scan."""

    records: list[Record]
    candidates: list[MatchCandidate]
    groups: list[MergeGroup]
    stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self, *, include_records: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "stats": dict(self.stats),
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "groups": [group.to_dict() for group in self.groups],
        }
        if include_records:
            payload["records"] = [record.to_dict() for record in self.records]
        return payload


@dataclass
class MergePreview:
    survivor: Record
    to_merge: list[Record]
    resolutions: dict[str, FieldResolution]
    summary: MergeSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "survivor": self.survivor.to_dict(),
            "to_merge": [record.to_dict() for record in self.to_merge],
            "resolutions": {name: resolution.to_dict() for name, resolution in self.resolutions.items()},
            "summary": self.summary.to_dict(),
        }


@dataclass
class MergeResult:
    merge_id: str
    survivor: Record
    deleted_ids: list[str]
    history_entry: Mapping[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "merge_id": self.merge_id,
            "survivor": self.survivor.to_dict(),
            "deleted_ids": list(self.deleted_ids),
            "history_entry": dict(self.history_entry),
        }


@dataclass
class UnmergeResult:
    unmerge_id: str
    original_merge_id: str
    survivor_id: str
    restored_records: list[Record]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unmerge_id": self.unmerge_id,
            "original_merge_id": self.original_merge_id,
            "survivor_id": self.survivor_id,
            "restored_records": [record.to_dict() for record in self.restored_records],
        }


@dataclass
class CompareResult:
    table_a: str
    table_b: str
    common_fields: list[str]
    candidates: list[CrossTableCandidate]
    stats: Mapping[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_a": self.table_a,
            "table_b": self.table_b,
            "common_fields": list(self.common_fields),
            "stats": dict(self.stats),
            "candidates": [candidate.to_dict() for candidate in self.candidates],
        }


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None


def filter_by_created_date(
    records: Iterable[Record],
    start: Any = None,
    end: Any = None,
    date_field: str = "Created",
) -> list[Record]:
    """
    Keep records whose ``date_field`` date falls within ``[start, end]``, both inclusive.

    Records without a parseable date are dropped once either bound is set.
    """

    start_date = _parse_date(start)
    end_date = _parse_date(end)
    records = list(records)
    if start_date is None and end_date is None:
        return records

    kept: list[Record] = []
    for record in records:
        created = _parse_date(record.get(date_field))
        if created is None:
            continue
        if start_date is not None and created < start_date:
            continue
        if end_date is not None and created > end_date:
            continue
        kept.append(record)
    return kept


class DedupeService:
    """Run scans, merges and unmerges for one table."""

    def __init__(
        self,
        store: RecordStore,
        table: str,
        profile: MatchingProfile,
        *,
        performed_by: str = "user",
    ) -> None:
        if not table:
            raise ConfigurationError("A table name is required.")
        self.store = store
        self.table = table
        self.profile = profile
        self.performed_by = performed_by
        self._schema: Schema | None = None

    def load_schema(self, *, refresh: bool = False) -> Schema:
        if self._schema is None or refresh:
            self._schema = self.store.fetch_schema(self.table)
        return self._schema

    # Scanning -------------------------------------------------------------------

    def scan(
        self,
        progress: Callable[[ScanProgress], None] | None = None,
        *,
        min_tier: MatchTier | None = None,
        created_start: Any = None,
        created_end: Any = None,
    ) -> ScanResult:
        """
        Fetch every record, find candidates and group them.

        ``min_tier`` keeps candidates at that tier or better; conflict
        candidates are always kept so they can be reviewed.
        """

        self.load_schema()
        records = self.store.fetch_all_records(self.table)
        records = filter_by_created_date(records, created_start, created_end, self.profile.created_field)

        summary = CandidateSummary()
        candidates = find_duplicate_candidates(records, self.profile, progress=progress, summary=summary)
        if min_tier is not None:
            candidates = [
                candidate for candidate in candidates if candidate.tier <= min_tier or candidate.is_conflict
            ]
        groups = group_candidates(candidates)

        tiers = Counter(candidate.tier.label for candidate in candidates)
        stats = {
            "table": self.table,
            "records": len(records),
            "candidates": len(candidates),
            "groups": len(groups),
            "conflicts": sum(1 for candidate in candidates if candidate.is_conflict),
            "by_tier": {tier.label: tiers.get(tier.label, 0) for tier in MatchTier},
            "pairs_scored": summary.pairs_scored,
            "records_without_key": summary.records_without_key,
        }
        logger.info("Scan finished", extra=stats)
        return ScanResult(records=records, candidates=candidates, groups=groups, stats=stats)

    def scan_field_matches(
        self,
        match_fields: Sequence[str],
        *,
        created_start: Any = None,
        created_end: Any = None,
    ) -> ScanResult:
        """
        Group records that share exact values in ``match_fields``.

        An empty ``match_fields`` raises ``ConfigurationError`` before any
        record is fetched.
        """

        fields = clean_match_fields(match_fields)
        if not fields:
            raise ConfigurationError("Select at least one field to match on.")
        self.load_schema()
        records = self.store.fetch_all_records(self.table)
        records = filter_by_created_date(records, created_start, created_end, self.profile.created_field)
        groups = find_field_match_groups(records, fields)

        stats = {
            "table": self.table,
            "records": len(records),
            "match_fields": fields,
            "groups": len(groups),
            "records_to_merge": sum(len(group.to_merge) for group in groups),
        }
        logger.info("Field match scan finished", extra=stats)
        return ScanResult(records=records, candidates=[], groups=groups, stats=stats)

    # Merging --------------------------------------------------------------------

    def _load_merge_records(self, survivor_id: str, other_ids: Sequence[str]) -> tuple[Record, list[Record]]:
        other_ids = [record_id for record_id in dict.fromkeys(other_ids) if record_id]
        if not survivor_id:
            raise ConfigurationError("A survivor record id is required.")
        if not other_ids:
            raise ConfigurationError("At least one record to merge is required.")
        if survivor_id in other_ids:
            raise ConfigurationError("The survivor cannot also be merged into itself.")
        survivor = self.store.get_record(self.table, survivor_id)
        return survivor, [self.store.get_record(self.table, record_id) for record_id in other_ids]

    def preview_merge(
        self,
        survivor_id: str,
        other_ids: Sequence[str],
        conflict_policy: str = "manual",
    ) -> MergePreview:
        schema = self.load_schema()
        survivor, to_merge = self._load_merge_records(survivor_id, other_ids)
        resolutions = compute_field_resolutions(survivor, to_merge, schema, self.profile, conflict_policy=conflict_policy)
        return MergePreview(
            survivor=survivor,
            to_merge=to_merge,
            resolutions=resolutions,
            summary=summarize_resolutions(resolutions),
        )

    def merge(
        self,
        survivor_id: str,
        other_ids: Sequence[str],
        *,
        selections: Mapping[str, Any] | None = None,
        conflict_policy: str = "manual",
        notes: str = "",
        performed_by: str | None = None,
        confidence: int | None = None,
        match_reasons: Sequence[str] = (),
    ) -> MergeResult:
        """
        Merge ``other_ids`` into ``survivor_id``.

        The survivor is updated first and the subsumed records deleted after.
        If the delete fails the raised ``ExternalIOError`` names the records
        that were left behind.
        """

        schema = self.load_schema()
        survivor, to_merge = self._load_merge_records(survivor_id, other_ids)
        resolutions = compute_field_resolutions(survivor, to_merge, schema, self.profile, conflict_policy=conflict_policy)
        if selections:
            resolutions = apply_field_selections(resolutions, selections)

        payload: MergePayload = build_merge_payload(
            survivor,
            to_merge,
            resolutions,
            schema,
            self.profile,
            performed_by=performed_by or self.performed_by,
            notes=notes,
            confidence=confidence,
            match_reasons=match_reasons,
        )

        updated = self.store.update_record(self.table, survivor.id, dict(payload.update_fields))
        try:
            self.store.delete_records(self.table, list(payload.records_to_delete))
        except ExternalIOError as exc:
            logger.error(
                "Survivor updated but duplicate deletion failed",
                extra={"merge_id": payload.merge_id, "survivor_id": survivor.id, "undeleted": list(payload.records_to_delete)},
            )
            raise ExternalIOError(
                f"Merge {payload.merge_id} updated {survivor.id} but failed to delete "
                f"{', '.join(payload.records_to_delete)}: {exc}",
                status_code=exc.status_code,
            ) from exc

        logger.info(
            "Merge applied",
            extra={"merge_id": payload.merge_id, "survivor_id": survivor.id, "merged": list(payload.records_to_delete)},
        )
        return MergeResult(
            merge_id=payload.merge_id,
            survivor=updated,
            deleted_ids=list(payload.records_to_delete),
            history_entry=payload.history_entry,
        )

    def bulk_merge(
        self,
        groups: Sequence[MergeGroup] | None = None,
        *,
        match_fields: Sequence[str] | None = None,
        min_tier: MatchTier = MatchTier.STRONG,
        selections: Mapping[str, Mapping[str, Any]] | None = None,
        should_cancel: Callable[[], bool] | None = None,
        conflict_policy: str = "manual",
        performed_by: str | None = None,
        dry_run: bool = False,
    ) -> BulkMergeSummary:
        """
        Merge every eligible group sequentially.

        When ``groups`` is omitted a fresh scan supplies them: a field match
        scan over ``match_fields`` when given, otherwise a duplicate scan.
        Groups holding a conflicting pair or whose best tier is worse than
        ``min_tier`` are never merged unattended.
        """

        schema = self.load_schema()
        if groups is None:
            groups = self.scan_field_matches(match_fields).groups if match_fields else self.scan().groups
        eligible = [group for group in groups if group.best_tier <= min_tier and not group.has_conflict]
        return run_bulk_merge(
            self.store,
            self.table,
            eligible,
            schema,
            self.profile,
            selections=selections,
            should_cancel=should_cancel,
            performed_by=performed_by or self.performed_by,
            conflict_policy=conflict_policy,
            dry_run=dry_run,
        )

    # Unmerge and history --------------------------------------------------------

    def unmerge(
        self,
        record_id: str,
        merge_id: str,
        *,
        performed_by: str | None = None,
        notes: str | None = None,
    ) -> UnmergeResult:
        """
        Recreate the records subsumed by ``merge_id``, then update the survivor history.

        When a record cannot be recreated, the ones already created are logged
        on the survivor as a ``partial`` unmerge so a retry only recreates the
        rest, and the raised ``ExternalIOError`` names them.
        """

        schema = self.load_schema()
        survivor = self.store.get_record(self.table, record_id)
        payload = build_unmerge_payload(
            survivor,
            merge_id,
            schema,
            self.profile,
            performed_by=performed_by or self.performed_by,
        )
        unmerge_entry = dict(payload.unmerge_history_entry)
        if notes:
            unmerge_entry["notes"] = notes

        history_field = self.profile.history_field
        restored: list[Record] = []
        restored_originals: list[str] = []
        for recreated in payload.records_to_create:
            fields = dict(recreated.fields)
            if not schema.is_computed(history_field):
                history = parse_history(fields.get(history_field))
                history.append(unmerge_entry)
                fields[history_field] = serialize_history(history)
            try:
                restored.append(self.store.create_record(self.table, fields))
            except ExternalIOError as exc:
                if restored:
                    self._record_partial_unmerge(survivor, unmerge_entry, restored_originals, restored)
                raise self._unmerge_failure(merge_id, restored, exc) from exc
            restored_originals.append(recreated.original_id)

        survivor_updates = dict(payload.survivor_updates)
        if notes:
            history = parse_history(survivor_updates[history_field])
            history[-1] = unmerge_entry
            survivor_updates[history_field] = serialize_history(history)
        try:
            self.store.update_record(self.table, survivor.id, survivor_updates)
        except ExternalIOError as exc:
            raise self._unmerge_failure(merge_id, restored, exc) from exc

        logger.info(
            "Unmerge applied",
            extra={
                "unmerge_id": payload.unmerge_id,
                "merge_id": merge_id,
                "survivor_id": survivor.id,
                "restored": [record.id for record in restored],
            },
        )
        return UnmergeResult(
            unmerge_id=payload.unmerge_id,
            original_merge_id=merge_id,
            survivor_id=survivor.id,
            restored_records=restored,
        )

    def _record_partial_unmerge(
        self,
        survivor: Record,
        unmerge_entry: Mapping[str, Any],
        restored_originals: Sequence[str],
        restored: Sequence[Record],
    ) -> None:
        history_field = self.profile.history_field
        partial_entry = dict(
            unmerge_entry,
            status=PARTIAL_STATUS,
            restored_records=list(restored_originals),
            created_record_ids=[record.id for record in restored],
        )
        history = parse_history(survivor.get(history_field))
        history.append(partial_entry)
        try:
            self.store.update_record(self.table, survivor.id, {history_field: serialize_history(history)})
        except ExternalIOError as exc:
            logger.error(
                "Could not record partial unmerge on survivor",
                extra={
                    "survivor_id": survivor.id,
                    "merge_id": unmerge_entry.get("original_merge_id"),
                    "created": [record.id for record in restored],
                    "error": str(exc),
                },
            )

    @staticmethod
    def _unmerge_failure(merge_id: str, restored: Sequence[Record], exc: ExternalIOError) -> ExternalIOError:
        created = ", ".join(record.id for record in restored) or "no records"
        logger.error("Unmerge interrupted", extra={"merge_id": merge_id, "created": [record.id for record in restored]})
        return ExternalIOError(
            f"Unmerge of {merge_id} failed after recreating {created}: {exc}",
            status_code=exc.status_code,
        )

    def history(self, record_id: str) -> list[dict[str, Any]]:
        record = self.store.get_record(self.table, record_id)
        return parse_history(record.get(self.profile.history_field))

    # Cross-table ----------------------------------------------------------------

    def compare_tables(
        self,
        other_table: str,
        progress: Callable[[ScanProgress], None] | None = None,
    ) -> CompareResult:
        if not other_table:
            raise ConfigurationError("A table to compare against is required.")
        schema_a = self.load_schema()
        schema_b = self.store.fetch_schema(other_table)
        common = find_common_fields(schema_a, schema_b)
        if not common:
            raise ConfigurationError(f"Tables {self.table!r} and {other_table!r} have no fields in common")

        records_a = self.store.fetch_all_records(self.table)
        records_b = self.store.fetch_all_records(other_table)
        candidates = find_cross_table_duplicates(records_a, records_b, schema_a, schema_b, progress=progress)
        return CompareResult(
            table_a=self.table,
            table_b=other_table,
            common_fields=common,
            candidates=candidates,
            stats=match_stats(candidates),
        )


__all__ = [
    "CompareResult",
    "DedupeService",
    "MergePreview",
    "MergeResult",
    "ScanResult",
    "UnmergeResult",
    "filter_by_created_date",
]
