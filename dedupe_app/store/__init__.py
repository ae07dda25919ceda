"""Record store boundary consumed by the dedupe service."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from dedupe_app.dedupe.models import Record, Schema


class RecordStore(Protocol):
    """
    Minimal table API the engine needs.

    Implementations return every matching record from ``fetch_all_records``
    and raise ``ExternalIOError`` for read or write failures.
    """

    def fetch_schema(self, table: str) -> Schema: ...

    def fetch_all_records(
        self,
        table: str,
        *,
        fields: Sequence[str] | None = None,
        filter_formula: str | None = None,
    ) -> list[Record]: ...

    def get_record(self, table: str, record_id: str) -> Record: ...

    def update_record(self, table: str, record_id: str, fields: Mapping[str, Any]) -> Record: ...

    def create_record(self, table: str, fields: Mapping[str, Any]) -> Record: ...

    def delete_records(self, table: str, record_ids: Sequence[str]) -> list[str]: ...


__all__ = ["RecordStore"]
