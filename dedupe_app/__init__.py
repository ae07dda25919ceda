"""
Dedupe feature package.

Mounts the JSON API and ``flask dedupe`` CLI, loads the matching profile and
keeps the shared record store on ``app.extensions['dedupe']``.
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, current_app

from config.matching import load_profile

from .cli import dedupe_cli, get_disabled_dedupe_group
from .dedupe.errors import ConfigurationError
from .services.dedupe_service import DedupeService
from .store import RecordStore

DEDUPE_EXTENSION_KEY = "dedupe"

__all__ = [
    "DEDUPE_EXTENSION_KEY",
    "get_dedupe_service",
    "get_record_store",
    "init_dedupe",
    "is_dedupe_enabled",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        DEDUPE_EXTENSION_KEY,
        {
            "enabled": False,
            "profile": None,
            "store": None,
        },
    )


def is_dedupe_enabled(app: Flask | None = None) -> bool:
    config = (app or current_app).config
    return bool(config.get("DEDUPE_ENABLED", True))


def _set_cli(app: Flask, enabled: bool) -> None:
    command_name = dedupe_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)
    app.cli.add_command(dedupe_cli if enabled else get_disabled_dedupe_group())


def init_dedupe(app: Flask) -> None:
    """
    Load the matching profile and register routes and CLI commands.

    The profile path is read from ``DEDUPE_MATCHING_PROFILE_PATH`` in the app
    config, falling back to the process environment.
    """
    from .routes import init_routes

    state = _ensure_extension_state(app)
    enabled = is_dedupe_enabled(app)
    state["enabled"] = enabled

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Dedupe disabled via DEDUPE_ENABLED flag; skipping registration.")
        return

    profile_path = app.config.get("DEDUPE_MATCHING_PROFILE_PATH") or os.environ.get("DEDUPE_MATCHING_PROFILE_PATH")
    env = {"DEDUPE_MATCHING_PROFILE_PATH": profile_path} if profile_path else {}
    state["profile"] = load_profile(env)

    if "dedupe_scan" not in app.view_functions:
        init_routes(app)
    _set_cli(app, enabled=True)
    app.logger.info("Dedupe enabled with matching profile '%s'", state["profile"].key)


def get_record_store(app: Flask | None = None) -> RecordStore:
    """Return the shared store, creating an Airtable client from config on first use."""
    from .store.airtable import AirtableStore

    app = app or current_app._get_current_object()
    state = _ensure_extension_state(app)
    if state.get("store") is None:
        state["store"] = AirtableStore.from_config(app.config)
    return state["store"]


def get_dedupe_service(app: Flask | None = None, table: str | None = None) -> DedupeService:
    app = app or current_app._get_current_object()
    state = _ensure_extension_state(app)
    if not state.get("enabled"):
        raise ConfigurationError("Dedupe is disabled via DEDUPE_ENABLED=false.")
    table_name = table or app.config.get("AIRTABLE_TABLE_NAME")
    if not table_name:
        raise ConfigurationError("No table configured; set AIRTABLE_TABLE_NAME or pass a table name.")
    return DedupeService(
        get_record_store(app),
        table_name,
        state["profile"],
        performed_by=app.config.get("DEDUPE_PERFORMED_BY") or "user",
    )
