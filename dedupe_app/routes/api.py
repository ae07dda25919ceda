# dedupe_app/routes/api.py

"""
JSON endpoints for scanning, merging and unmerging duplicate records
"""

from flask import current_app, jsonify, request

from dedupe_app import get_dedupe_service
from dedupe_app.dedupe.errors import (
    ConfigurationError,
    DedupeError,
    ExternalIOError,
    NotFoundError,
    PreconditionError,
)
from dedupe_app.dedupe.models import MatchTier

ERROR_STATUS = (
    (ConfigurationError, 400),
    (NotFoundError, 404),
    (PreconditionError, 409),
    (ExternalIOError, 502),
)


def _error_response(exc):
    status = 500
    for error_type, error_status in ERROR_STATUS:
        if isinstance(exc, error_type):
            status = error_status
            break
    body = {"success": False, "error": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, PreconditionError) and exc.fields:
        body["fields"] = list(exc.fields)
    return jsonify(body), status


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Request body must be a JSON object")
    return data


def _parse_tier(value, default=None):
    if value is None or value == "":
        return default
    try:
        return MatchTier.parse(value)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def _id_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigurationError("Record ids must be a list")
    return [str(item) for item in value if item]


def _selections(value):
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError("Selections must be an object keyed by field name")
    return value


def _reason_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        raise ConfigurationError("Match reasons must be a list of strings")
    return [str(item) for item in value if item]


def _field_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigurationError("Match fields must be a list")
    return [str(item) for item in value if item]


def register_dedupe_api_routes(app):
    """Register dedupe API routes"""

    @app.route("/api/dedupe/scan", methods=["POST"])
    def dedupe_scan():
        """
        Scan a table for duplicates.
        Returns candidates, merge groups and summary stats.
        """
        try:
            data = _json_body()
            service = get_dedupe_service(table=data.get("table"))
            result = service.scan(
                min_tier=_parse_tier(data.get("min_tier")),
                created_start=data.get("created_start"),
                created_end=data.get("created_end"),
            )
            current_app.logger.info(
                f"Dedupe scan of '{service.table}' found {len(result.candidates)} candidates "
                f"in {len(result.groups)} groups"
            )
            payload = result.to_dict(include_records=bool(data.get("include_records")))
            return jsonify({"success": True, **payload})
        except DedupeError as e:
            current_app.logger.warning(f"Dedupe scan rejected: {e}")
            return _error_response(e)
        except Exception as e:
            current_app.logger.error(f"Error in dedupe scan API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred while scanning for duplicates"}), 500

    @app.route("/api/dedupe/field-matches", methods=["POST"])
    def dedupe_field_matches():
        """
        Group records sharing exact values in the chosen match fields.
        Responds 400 when no match field is given.
        """
        try:
            data = _json_body()
            service = get_dedupe_service(table=data.get("table"))
            result = service.scan_field_matches(
                _field_list(data.get("match_fields")),
                created_start=data.get("created_start"),
                created_end=data.get("created_end"),
            )
            current_app.logger.info(
                f"Field match scan of '{service.table}' found {len(result.groups)} groups"
            )
            payload = result.to_dict(include_records=bool(data.get("include_records")))
            return jsonify({"success": True, **payload})
        except DedupeError as e:
            current_app.logger.warning(f"Field match scan rejected: {e}")
            return _error_response(e)
        except Exception as e:
            current_app.logger.error(f"Error in field match API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred while matching records"}), 500

    @app.route("/api/dedupe/merge/preview", methods=["POST"])
    def dedupe_merge_preview():
        """Show how each field would be resolved without writing anything."""
        try:
            data = _json_body()
            service = get_dedupe_service(table=data.get("table"))
            preview = service.preview_merge(
                data.get("survivor_id") or "",
                _id_list(data.get("merge_ids")),
                data.get("conflict_policy") or "manual",
            )
            return jsonify({"success": True, **preview.to_dict()})
        except DedupeError as e:
            return _error_response(e)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        except Exception as e:
            current_app.logger.error(f"Error in merge preview API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred while previewing the merge"}), 500

    @app.route("/api/dedupe/merge", methods=["POST"])
    def dedupe_merge():
        """
        Merge records into a survivor.
        Responds 409 with the open fields when decisions are still required.
        """
        try:
            data = _json_body()
            service = get_dedupe_service(table=data.get("table"))
            result = service.merge(
                data.get("survivor_id") or "",
                _id_list(data.get("merge_ids")),
                selections=_selections(data.get("selections")),
                conflict_policy=data.get("conflict_policy") or "manual",
                notes=data.get("notes") or "",
                performed_by=data.get("performed_by"),
                confidence=data.get("confidence"),
                match_reasons=_reason_list(data.get("match_reasons")),
            )
            current_app.logger.info(
                f"Merge {result.merge_id} applied to {result.survivor.id}; deleted {len(result.deleted_ids)} records"
            )
            return jsonify({"success": True, **result.to_dict()})
        except DedupeError as e:
            current_app.logger.warning(f"Merge rejected: {e}")
            return _error_response(e)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        except Exception as e:
            current_app.logger.error(f"Error in merge API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred while merging records"}), 500

    @app.route("/api/dedupe/bulk-merge", methods=["POST"])
    def dedupe_bulk_merge():
        """Scan and merge every eligible group, one group at a time."""
        try:
            data = _json_body()
            service = get_dedupe_service(table=data.get("table"))
            summary = service.bulk_merge(
                match_fields=_field_list(data.get("match_fields")) or None,
                min_tier=_parse_tier(data.get("min_tier"), MatchTier.STRONG),
                selections=_selections(data.get("selections")),
                conflict_policy=data.get("conflict_policy") or "manual",
                performed_by=data.get("performed_by"),
                dry_run=bool(data.get("dry_run")),
            )
            current_app.logger.info(
                f"Bulk merge finished: {summary.successful} merged, {summary.failed} failed, "
                f"{summary.skipped} skipped"
            )
            return jsonify({"success": summary.failed == 0, **summary.to_dict()})
        except DedupeError as e:
            return _error_response(e)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        except Exception as e:
            current_app.logger.error(f"Error in bulk merge API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred during bulk merge"}), 500

    @app.route("/api/dedupe/unmerge", methods=["POST"])
    def dedupe_unmerge():
        """Recreate the records absorbed by a recorded merge."""
        try:
            data = _json_body()
            record_id = data.get("record_id")
            merge_id = data.get("merge_id")
            if not record_id or not merge_id:
                return jsonify({"success": False, "error": "record_id and merge_id are required"}), 400
            service = get_dedupe_service(table=data.get("table"))
            result = service.unmerge(
                record_id,
                merge_id,
                performed_by=data.get("performed_by"),
                notes=data.get("notes"),
            )
            current_app.logger.info(f"Unmerge {result.unmerge_id} restored {len(result.restored_records)} records")
            return jsonify({"success": True, **result.to_dict()})
        except DedupeError as e:
            current_app.logger.warning(f"Unmerge rejected: {e}")
            return _error_response(e)
        except Exception as e:
            current_app.logger.error(f"Error in unmerge API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred while unmerging"}), 500

    @app.route("/api/dedupe/records/<record_id>/history", methods=["GET"])
    def dedupe_record_history(record_id):
        """Return the parsed merge history of a record."""
        try:
            service = get_dedupe_service(table=request.args.get("table"))
            entries = service.history(record_id)
            return jsonify({"success": True, "record_id": record_id, "history": entries})
        except DedupeError as e:
            return _error_response(e)
        except Exception as e:
            current_app.logger.error(f"Error in history API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred while loading history"}), 500

    @app.route("/api/dedupe/compare", methods=["POST"])
    def dedupe_compare():
        """Find likely duplicates between the configured table and another table."""
        try:
            data = _json_body()
            service = get_dedupe_service(table=data.get("table"))
            result = service.compare_tables(data.get("other_table") or "")
            return jsonify({"success": True, **result.to_dict()})
        except DedupeError as e:
            return _error_response(e)
        except Exception as e:
            current_app.logger.error(f"Error in compare API: {str(e)}", exc_info=True)
            return jsonify({"success": False, "error": "An error occurred while comparing tables"}), 500
