"""
Airtable REST implementation of the record store.

Requests share one ``requests.Session``. Rate limiting is handled in two
ways: an adaptive delay between pages that grows after a 429 and relaxes on
success, and per-request retries driven by tenacity with exponential backoff
that honours the ``Retry-After`` header.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator, List, Mapping, Sequence
from urllib.parse import quote

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from dedupe_app.dedupe.errors import ConfigurationError, ExternalIOError, NotFoundError
from dedupe_app.dedupe.models import FieldInfo, Record, Schema, is_computed_field

DEFAULT_API_URL = "https://api.airtable.com/v0"
PAGE_SIZE = 100
DELETE_CHUNK_SIZE = 10
INITIAL_DELAY = 0.2
MAX_DELAY = 1.0
MAX_RETRIES = 5
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 32.0

_backoff = wait_exponential(multiplier=INITIAL_BACKOFF, min=INITIAL_BACKOFF, max=MAX_BACKOFF)


class _RateLimited(Exception):
    """A 429 response; carries the server's ``Retry-After`` hint when it sent one."""

    def __init__(self, retry_after: float | None) -> None:
        super().__init__("Airtable rate limited")
        self.retry_after = retry_after


def chunk_ids(record_ids: Sequence[str], chunk_size: int) -> Iterator[List[str]]:
    for start in range(0, len(record_ids), chunk_size):
        yield list(record_ids[start : start + chunk_size])


def _retry_after_seconds(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _wait_for_retry(retry_state: RetryCallState) -> float:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, _RateLimited) and exc.retry_after is not None:
        return exc.retry_after
    return _backoff(retry_state)


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"Airtable API error: {response.status_code}"
    error = payload.get("error") if isinstance(payload, Mapping) else None
    if isinstance(error, Mapping) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return f"Airtable API error: {response.status_code}"


class AirtableStore:
    """Read and write Airtable records and schema for one base."""

    def __init__(
        self,
        *,
        api_key: str,
        base_id: str,
        api_url: str = DEFAULT_API_URL,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        sleep_fn: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        if not api_key or not base_id:
            raise ConfigurationError("Airtable API key and base id are required.")
        self.api_key = api_key
        self.base_id = base_id
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)
        self.current_delay = INITIAL_DELAY

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **kwargs: Any) -> "AirtableStore":
        return cls(
            api_key=config.get("AIRTABLE_API_KEY") or "",
            base_id=config.get("AIRTABLE_BASE_ID") or "",
            api_url=config.get("AIRTABLE_API_URL") or DEFAULT_API_URL,
            timeout=float(config.get("AIRTABLE_TIMEOUT_SECONDS") or 30.0),
            **kwargs,
        )

    # Public API -----------------------------------------------------------------

    def fetch_schema(self, table: str) -> Schema:
        payload = self._request("GET", f"{self.api_url}/meta/bases/{self.base_id}/tables")
        for entry in payload.get("tables") or []:
            if entry.get("name") == table or entry.get("id") == table:
                fields = {}
                for raw in entry.get("fields") or []:
                    name = raw.get("name")
                    field_type = raw.get("type") or ""
                    fields[name] = FieldInfo(
                        type=field_type,
                        is_computed=is_computed_field(name, field_type),
                        field_id=raw.get("id"),
                        options=raw.get("options") or {},
                    )
                return Schema(table_name=entry.get("name") or table, fields=fields, table_id=entry.get("id"))
        raise NotFoundError(f'Table "{table}" not found')

    def fetch_all_records(
        self,
        table: str,
        *,
        fields: Sequence[str] | None = None,
        filter_formula: str | None = None,
    ) -> list[Record]:
        records: list[Record] = []
        offset: str | None = None
        page = 0
        while True:
            params: list[tuple[str, str]] = [("fields[]", name) for name in fields or ()]
            if filter_formula:
                params.append(("filterByFormula", filter_formula))
            if offset:
                params.append(("offset", offset))
            params.append(("pageSize", str(PAGE_SIZE)))

            payload = self._request("GET", self._table_url(table), params=params)
            records.extend(Record.from_api(item) for item in payload.get("records") or [])
            offset = payload.get("offset")
            page += 1
            self.logger.debug(
                "Fetched Airtable page",
                extra={"table": table, "page": page, "total": len(records), "has_more": bool(offset)},
            )
            if not offset:
                break
            self.sleep(self.current_delay)

        self.logger.info("Fetched Airtable records", extra={"table": table, "pages": page, "records": len(records)})
        return records

    def get_record(self, table: str, record_id: str) -> Record:
        try:
            payload = self._request("GET", f"{self._table_url(table)}/{record_id}")
        except ExternalIOError as exc:
            if exc.status_code == 404:
                raise NotFoundError(f"Record {record_id} not found in {table}") from exc
            raise
        return Record.from_api(payload)

    def update_record(self, table: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        payload = self._request("PATCH", f"{self._table_url(table)}/{record_id}", json={"fields": dict(fields)})
        return Record.from_api(payload)

    def create_record(self, table: str, fields: Mapping[str, Any]) -> Record:
        payload = self._request("POST", self._table_url(table), json={"fields": dict(fields)})
        return Record.from_api(payload)

    def delete_records(self, table: str, record_ids: Sequence[str]) -> list[str]:
        deleted: list[str] = []
        chunks = list(chunk_ids(list(record_ids), DELETE_CHUNK_SIZE))
        for index, chunk in enumerate(chunks):
            payload = self._request(
                "DELETE",
                self._table_url(table),
                params=[("records[]", record_id) for record_id in chunk],
            )
            deleted.extend(item.get("id") for item in payload.get("records") or [] if item.get("deleted", True))
            if index < len(chunks) - 1:
                self.sleep(INITIAL_DELAY)
        return deleted

    # Internal helpers -----------------------------------------------------------

    def _table_url(self, table: str) -> str:
        return f"{self.api_url}/{self.base_id}/{quote(table, safe='')}"

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def _retrying(self, method: str) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(MAX_RETRIES + 1),
            wait=_wait_for_retry,
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, _RateLimited)),
            sleep=self.sleep,
            before_sleep=lambda retry_state: self._log_retry(method, retry_state),
            reraise=True,
        )

    def _log_retry(self, method: str, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else None
        extra = {"method": method, "attempt": retry_state.attempt_number, "wait_seconds": wait}
        if isinstance(exc, _RateLimited):
            self.logger.warning("Airtable rate limited; retrying", extra=extra)
        else:
            self.logger.warning("Airtable network error; retrying", extra={**extra, "error": str(exc)})

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        response = self.session.request(method, url, headers=self._headers, timeout=self.timeout, **kwargs)
        if response.status_code == 429:
            self.current_delay = min(self.current_delay * 1.5, MAX_DELAY)
            raise _RateLimited(_retry_after_seconds(response))
        return response

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._retrying(method)(self._send, method, url, **kwargs)
        except _RateLimited as exc:
            raise ExternalIOError("Airtable rate limit exceeded after maximum retries", status_code=429) from exc
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise ExternalIOError(f"Airtable request failed after {MAX_RETRIES} retries: {exc}") from exc

        if self.current_delay > INITIAL_DELAY:
            self.current_delay = max(self.current_delay * 0.9, INITIAL_DELAY)

        if not response.ok:
            message = _error_message(response)
            self.logger.error(
                "Airtable request failed",
                extra={"method": method, "status_code": response.status_code, "error": message},
            )
            raise ExternalIOError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalIOError("Airtable returned a non-JSON response", status_code=response.status_code) from exc


__all__ = ["AirtableStore", "DEFAULT_API_URL", "chunk_ids"]
