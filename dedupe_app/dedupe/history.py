"""
Append-only merge history stored as JSON text on the survivor record.

The canonical layout is a JSON array of entry objects. Two object wrappers
are also accepted on read: ``{"dedupe_history": [...]}`` and the legacy
``{"_merge_history": [...]}``. Writes always produce the array form.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from dedupe_app.dedupe.errors import MalformedHistoryError

logger = logging.getLogger(__name__)

MERGE_ACTION = "merge"
UNMERGE_ACTION = "unmerge"
PARTIAL_STATUS = "partial"
_WRAPPER_KEYS = ("dedupe_history", "_merge_history")


def new_merge_id() -> str:
    return f"mrg_{uuid.uuid4().hex}"


def new_unmerge_id() -> str:
    return f"unmrg_{uuid.uuid4().hex}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _reject(message: str, *, strict: bool) -> list[dict[str, Any]]:
    if strict:
        raise MalformedHistoryError(message)
    logger.warning("Ignoring unreadable merge history: %s", message)
    return []


def _entries(items: Iterable[Any], *, strict: bool) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for item in items:
        if not isinstance(item, Mapping):
            return _reject("history entries must be objects", strict=strict)
        entries.append(dict(item))
    return entries


def parse_history(raw: Any, *, strict: bool = False) -> list[dict[str, Any]]:
    """
    Decode a history field value into a list of entries.

    Empty values yield an empty list. Invalid JSON or an unrecognized shape
    raises ``MalformedHistoryError`` when ``strict``; otherwise a warning is
    logged and an empty history is returned so a corrupt field never blocks
    a scan.
    """

    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return _entries(raw, strict=strict)
    if isinstance(raw, Mapping):
        data: Any = raw
    elif isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            return _reject(f"invalid JSON ({exc.msg})", strict=strict)
    else:
        return _reject(f"unsupported value type {type(raw).__name__}", strict=strict)

    if isinstance(data, list):
        return _entries(data, strict=strict)
    if isinstance(data, Mapping):
        for key in _WRAPPER_KEYS:
            wrapped = data.get(key)
            if isinstance(wrapped, list):
                return _entries(wrapped, strict=strict)
    return _reject("expected a JSON array of history entries", strict=strict)


def serialize_history(entries: Iterable[Mapping[str, Any]]) -> str:
    return json.dumps([dict(entry) for entry in entries], indent=2)


def append_history_entry(raw: Any, entry: Mapping[str, Any]) -> tuple[list[dict[str, Any]], str]:
    """Return the extended entry list and its serialized form."""

    entries = parse_history(raw)
    entries.append(dict(entry))
    return entries, serialize_history(entries)


def find_merge_entry(entries: Iterable[Mapping[str, Any]], merge_id: str) -> dict[str, Any] | None:
    for entry in entries:
        if entry.get("merge_id") == merge_id and entry.get("action", MERGE_ACTION) == MERGE_ACTION:
            return dict(entry)
    return None


def _unmerges_of(entries: Iterable[Mapping[str, Any]], merge_id: str) -> Iterable[Mapping[str, Any]]:
    return (
        entry
        for entry in entries
        if entry.get("action") == UNMERGE_ACTION and entry.get("original_merge_id") == merge_id
    )


def is_unmerged(entries: Iterable[Mapping[str, Any]], merge_id: str) -> bool:
    """True once a completed unmerge of ``merge_id`` is recorded; partial unmerges don't count."""

    return any(entry.get("status") != PARTIAL_STATUS for entry in _unmerges_of(entries, merge_id))


def restored_by_partial_unmerge(entries: Iterable[Mapping[str, Any]], merge_id: str) -> set[str]:
    """Original record ids already recreated by interrupted unmerges of ``merge_id``."""

    restored: set[str] = set()
    for entry in _unmerges_of(entries, merge_id):
        if entry.get("status") == PARTIAL_STATUS:
            restored.update(str(record_id) for record_id in entry.get("restored_records") or [])
    return restored


__all__ = [
    "MERGE_ACTION",
    "PARTIAL_STATUS",
    "UNMERGE_ACTION",
    "append_history_entry",
    "find_merge_entry",
    "is_unmerged",
    "new_merge_id",
    "new_unmerge_id",
    "parse_history",
    "restored_by_partial_unmerge",
    "serialize_history",
    "utc_timestamp",
]
