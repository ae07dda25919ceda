"""
``flask dedupe`` commands for running scans and merges from a terminal.

Every command prints a JSON payload so the output can be piped into other
tools. Engine errors are reported as click errors with a non-zero exit code.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import click
from flask.cli import ScriptInfo

from dedupe_app.dedupe.errors import DedupeError
from dedupe_app.dedupe.merge import CONFLICT_POLICIES
from dedupe_app.dedupe.models import MatchTier

TIER_CHOICES = ("definitive", "strong", "possible", "investigate", "1", "2", "3", "4")


def _load_service(ctx: click.Context, table: Optional[str]):
    from dedupe_app import get_dedupe_service, is_dedupe_enabled

    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_dedupe_enabled(app):
        raise click.ClickException("Dedupe is disabled via DEDUPE_ENABLED=false.")
    try:
        return app, get_dedupe_service(app, table)
    except DedupeError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


@click.group(name="dedupe")
def dedupe_cli():
    """Duplicate detection and merge commands."""


def get_disabled_dedupe_group() -> click.Group:
    """
    Return a minimal command group that informs the operator dedupe is disabled.
    """

    @click.group(name="dedupe", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Dedupe commands are unavailable because DEDUPE_ENABLED=false.")

    return disabled_group


@dedupe_cli.command("scan")
@click.option("--table", help="Table to scan (defaults to AIRTABLE_TABLE_NAME).")
@click.option(
    "--min-tier",
    type=click.Choice(TIER_CHOICES, case_sensitive=False),
    help="Only report candidates at this tier or better (conflicts are always reported).",
)
@click.option("--created-start", help="Only scan records created on or after this date (YYYY-MM-DD).")
@click.option("--created-end", help="Only scan records created on or before this date (YYYY-MM-DD).")
@click.option("--candidates/--no-candidates", default=True, help="Include the candidate list in the output.")
@click.pass_context
def dedupe_scan(
    ctx,
    table: Optional[str],
    min_tier: Optional[str],
    created_start: Optional[str],
    created_end: Optional[str],
    candidates: bool,
):
    """Scan a table and print duplicate candidates and groups."""
    app, service = _load_service(ctx, table)
    try:
        result = service.scan(
            min_tier=MatchTier.parse(min_tier) if min_tier else None,
            created_start=created_start,
            created_end=created_end,
        )
    except DedupeError as exc:
        raise click.ClickException(f"Scan failed: {exc}") from exc

    payload = result.to_dict()
    if not candidates:
        payload.pop("candidates", None)
    app.logger.info("Dedupe scan run via CLI", extra={"dedupe_table": service.table, "dedupe_candidates": len(result.candidates)})
    _echo(payload)


@dedupe_cli.command("field-matches")
@click.option("--field", "fields", multiple=True, help="Field to match on; repeat for a composite key.")
@click.option("--table", help="Table to scan (defaults to AIRTABLE_TABLE_NAME).")
@click.option("--created-start", help="Only scan records created on or after this date (YYYY-MM-DD).")
@click.option("--created-end", help="Only scan records created on or before this date (YYYY-MM-DD).")
@click.pass_context
def dedupe_field_matches(
    ctx,
    fields: tuple[str, ...],
    table: Optional[str],
    created_start: Optional[str],
    created_end: Optional[str],
):
    """Group records with identical values in every --field."""
    app, service = _load_service(ctx, table)
    try:
        result = service.scan_field_matches(fields, created_start=created_start, created_end=created_end)
    except DedupeError as exc:
        raise click.ClickException(f"Field match scan failed: {exc}") from exc

    app.logger.info(
        "Field match scan run via CLI",
        extra={"dedupe_table": service.table, "dedupe_groups": len(result.groups)},
    )
    _echo(result.to_dict())


@dedupe_cli.command("merge-all")
@click.option("--table", help="Table to merge (defaults to AIRTABLE_TABLE_NAME).")
@click.option(
    "--min-tier",
    type=click.Choice(TIER_CHOICES, case_sensitive=False),
    default="strong",
    show_default=True,
    help="Merge groups whose best match is at this tier or better.",
)
@click.option("--dry-run", is_flag=True, help="Plan merges without writing to the store.")
@click.option(
    "--conflict-policy",
    type=click.Choice(CONFLICT_POLICIES),
    default="manual",
    show_default=True,
    help="How conflicting field values are resolved; 'manual' skips groups that need decisions.",
)
@click.option(
    "--match-field",
    "match_fields",
    multiple=True,
    help="Merge exact field match groups over these fields instead of a duplicate scan.",
)
@click.pass_context
def dedupe_merge_all(
    ctx,
    table: Optional[str],
    min_tier: str,
    dry_run: bool,
    conflict_policy: str,
    match_fields: tuple[str, ...],
):
    """Merge every eligible duplicate group sequentially."""
    app, service = _load_service(ctx, table)
    try:
        summary = service.bulk_merge(
            match_fields=match_fields or None,
            min_tier=MatchTier.parse(min_tier),
            conflict_policy=conflict_policy,
            dry_run=dry_run,
            performed_by="cli",
        )
    except DedupeError as exc:
        raise click.ClickException(f"Bulk merge failed: {exc}") from exc

    app.logger.info(
        "Bulk merge run via CLI",
        extra={
            "dedupe_table": service.table,
            "dedupe_successful": summary.successful,
            "dedupe_failed": summary.failed,
            "dedupe_skipped": summary.skipped,
            "dedupe_dry_run": dry_run,
        },
    )
    _echo(summary.to_dict())
    if summary.failed:
        ctx.exit(1)


@dedupe_cli.command("unmerge")
@click.argument("record_id")
@click.argument("merge_id")
@click.option("--table", help="Table holding the survivor (defaults to AIRTABLE_TABLE_NAME).")
@click.option("--notes", help="Note stored on the unmerge history entry.")
@click.pass_context
def dedupe_unmerge(ctx, record_id: str, merge_id: str, table: Optional[str], notes: Optional[str]):
    """Recreate the records absorbed by MERGE_ID on survivor RECORD_ID."""
    _, service = _load_service(ctx, table)
    try:
        result = service.unmerge(record_id, merge_id, performed_by="cli", notes=notes)
    except DedupeError as exc:
        raise click.ClickException(f"Unmerge failed: {exc}") from exc
    _echo(result.to_dict())


@dedupe_cli.command("history")
@click.argument("record_id")
@click.option("--table", help="Table holding the record (defaults to AIRTABLE_TABLE_NAME).")
@click.pass_context
def dedupe_history(ctx, record_id: str, table: Optional[str]):
    """Print the merge history stored on RECORD_ID."""
    _, service = _load_service(ctx, table)
    try:
        entries = service.history(record_id)
    except DedupeError as exc:
        raise click.ClickException(f"Could not load history: {exc}") from exc
    _echo({"record_id": record_id, "history": entries})


@dedupe_cli.command("compare")
@click.argument("other_table")
@click.option("--table", help="Base table (defaults to AIRTABLE_TABLE_NAME).")
@click.pass_context
def dedupe_compare(ctx, other_table: str, table: Optional[str]):
    """Find likely duplicates between the base table and OTHER_TABLE."""
    _, service = _load_service(ctx, table)
    try:
        result = service.compare_tables(other_table)
    except DedupeError as exc:
        raise click.ClickException(f"Compare failed: {exc}") from exc
    _echo(result.to_dict())


__all__ = ["dedupe_cli", "get_disabled_dedupe_group"]
