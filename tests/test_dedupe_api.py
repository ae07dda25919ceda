import json

import pytest

from dedupe_app.dedupe.errors import ExternalIOError
from dedupe_app.dedupe.models import Record


@pytest.fixture
def seeded(fake_store):
    fake_store.add_table(
        "Clients",
        records=[
            Record("rec1", {"Name": "Bob Smith", "Phone": "6155550100", "Notes": "first visit"}),
            Record("rec2", {"Name": "Bob Smith", "Phone": "6155550100", "Email": "bob@example.com", "Notes": "intake"}),
            Record("rec3", {"Name": "Jane Doe", "SSN": "123-45-6789"}),
            Record("rec4", {"Name": "Jane Doe", "SSN": "987-65-4321"}),
        ],
    )
    return fake_store


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_unknown_route_returns_json_404(client):
    response = client.get("/api/dedupe/nope")

    assert response.status_code == 404
    assert response.get_json()["success"] is False


def test_scan(client, seeded):
    response = client.post("/api/dedupe/scan", json={})

    assert response.status_code == 200
    data = response.get_json()
    assert data["success"] is True
    assert data["stats"]["candidates"] == 2
    assert data["stats"]["conflicts"] == 1
    assert data["candidates"][0]["tier"] == "Definitive"
    assert "records" not in data


def test_scan_can_include_records(client, seeded):
    response = client.post("/api/dedupe/scan", json={"include_records": True})

    assert len(response.get_json()["records"]) == 4


def test_scan_rejects_unknown_tier(client, seeded):
    response = client.post("/api/dedupe/scan", json={"min_tier": "excellent"})

    assert response.status_code == 400
    assert response.get_json()["error_type"] == "ConfigurationError"


def test_scan_unknown_table_is_404(client, seeded):
    response = client.post("/api/dedupe/scan", json={"table": "Missing"})

    assert response.status_code == 404


def test_scan_store_failure_is_502(client, seeded):
    seeded.fail_on("fetch_all_records", ExternalIOError("upstream unavailable", status_code=503))

    response = client.post("/api/dedupe/scan", json={})

    assert response.status_code == 502
    assert response.get_json()["error"] == "upstream unavailable"


def test_merge_preview(client, seeded):
    response = client.post("/api/dedupe/merge/preview", json={"survivor_id": "rec2", "merge_ids": ["rec1"]})

    assert response.status_code == 200
    data = response.get_json()
    assert data["resolutions"]["Notes"]["strategy"] == "concatenate"
    assert data["resolutions"]["Notes"]["value"] == "intake | first visit"
    assert data["summary"]["decisions_needed"] == []
    assert seeded.calls_to("update_record") == []


def test_merge_preview_requires_ids(client, seeded):
    response = client.post("/api/dedupe/merge/preview", json={"survivor_id": "rec2"})

    assert response.status_code == 400


def test_merge_and_history(client, seeded):
    response = client.post(
        "/api/dedupe/merge",
        json={"survivor_id": "rec2", "merge_ids": ["rec1"], "notes": "phone and name match", "performed_by": "api-user"},
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["deleted_ids"] == ["rec1"]
    assert "rec1" not in seeded.tables["Clients"]

    history = client.get("/api/dedupe/records/rec2/history").get_json()
    assert history["history"][0]["merge_id"] == data["merge_id"]
    assert history["history"][0]["performed_by"] == "api-user"


def test_merge_with_open_decisions_is_409(client, seeded):
    response = client.post("/api/dedupe/merge", json={"survivor_id": "rec3", "merge_ids": ["rec4"]})

    assert response.status_code == 409
    data = response.get_json()
    assert data["fields"] == ["SSN"]
    assert "rec4" in seeded.tables["Clients"]


def test_merge_with_selection(client, seeded):
    response = client.post(
        "/api/dedupe/merge",
        json={"survivor_id": "rec3", "merge_ids": ["rec4"], "selections": {"SSN": "987-65-4321"}},
    )

    assert response.status_code == 200
    assert seeded.tables["Clients"]["rec3"]["SSN"] == "987-65-4321"


def test_merge_unknown_record_is_404(client, seeded):
    response = client.post("/api/dedupe/merge", json={"survivor_id": "rec2", "merge_ids": ["recMissing"]})

    assert response.status_code == 404


def test_non_object_body_is_rejected(client, seeded):
    response = client.post("/api/dedupe/merge", data=json.dumps(["rec1"]), content_type="application/json")

    assert response.status_code == 400


def test_bulk_merge(client, seeded):
    response = client.post("/api/dedupe/bulk-merge", json={})

    assert response.status_code == 200
    data = response.get_json()
    assert data["success"] is True
    assert data["successful"] == 1
    assert "rec4" in seeded.tables["Clients"]


def test_bulk_merge_dry_run(client, seeded):
    response = client.post("/api/dedupe/bulk-merge", json={"dry_run": True})

    data = response.get_json()
    assert data["dry_run"] is True
    assert data["outcomes"][0]["status"] == "planned"
    assert "rec1" in seeded.tables["Clients"]


def test_unmerge_requires_ids(client, seeded):
    response = client.post("/api/dedupe/unmerge", json={"record_id": "rec2"})

    assert response.status_code == 400


def test_unmerge_round_trip(client, seeded):
    merge = client.post("/api/dedupe/merge", json={"survivor_id": "rec2", "merge_ids": ["rec1"]}).get_json()

    response = client.post("/api/dedupe/unmerge", json={"record_id": "rec2", "merge_id": merge["merge_id"]})

    assert response.status_code == 200
    data = response.get_json()
    assert data["original_merge_id"] == merge["merge_id"]
    assert data["restored_records"][0]["fields"]["Notes"] == "first visit"

    again = client.post("/api/dedupe/unmerge", json={"record_id": "rec2", "merge_id": merge["merge_id"]})
    assert again.status_code == 409


def test_unmerge_unknown_merge_is_404(client, seeded):
    response = client.post("/api/dedupe/unmerge", json={"record_id": "rec2", "merge_id": "mrg_missing"})

    assert response.status_code == 404


def test_history_of_unknown_record_is_404(client, seeded):
    response = client.get("/api/dedupe/records/recMissing/history")

    assert response.status_code == 404


def test_compare(client, seeded):
    seeded.add_table(
        "Intake",
        {"Name": "singleLineText", "Phone": "phoneNumber"},
        records=[Record("recI1", {"Name": "Jane Doe"})],
    )

    response = client.post("/api/dedupe/compare", json={"other_table": "Intake"})

    assert response.status_code == 200
    data = response.get_json()
    assert data["common_fields"] == ["Name", "Phone"]
    assert data["stats"]["total"] == 2


def test_compare_without_other_table_is_400(client, seeded):
    response = client.post("/api/dedupe/compare", json={})

    assert response.status_code == 400


def test_disabled_dedupe_is_rejected(app, client, seeded):
    app.extensions["dedupe"]["enabled"] = False

    response = client.post("/api/dedupe/scan", json={})

    assert response.status_code == 400


def test_field_matches(client, seeded):
    response = client.post("/api/dedupe/field-matches", json={"match_fields": ["Name", "Phone"]})

    assert response.status_code == 200
    data = response.get_json()
    assert data["stats"]["groups"] == 1
    assert data["stats"]["match_fields"] == ["Name", "Phone"]
    group = data["groups"][0]
    assert group["match_key"] == "bob smith|6155550100"
    assert group["survivor"]["record"]["id"] == "rec2"
    assert group["reasons"] == ["Matching fields: Name, Phone"]


def test_field_matches_accepts_a_single_field_name(client, seeded):
    response = client.post("/api/dedupe/field-matches", json={"match_fields": "Name"})

    assert response.status_code == 200
    assert response.get_json()["stats"]["groups"] == 2


@pytest.mark.parametrize("body", [{}, {"match_fields": []}, {"match_fields": ["", None]}])
def test_field_matches_without_fields_is_400(client, seeded, body):
    response = client.post("/api/dedupe/field-matches", json=body)

    assert response.status_code == 400
    assert response.get_json()["error_type"] == "ConfigurationError"
    assert seeded.calls_to("fetch_all_records") == []


def test_field_matches_rejects_non_list_fields(client, seeded):
    response = client.post("/api/dedupe/field-matches", json={"match_fields": {"Name": True}})

    assert response.status_code == 400


def test_bulk_merge_over_match_fields(client, seeded):
    response = client.post("/api/dedupe/bulk-merge", json={"match_fields": ["Name"], "dry_run": True})

    assert response.status_code == 200
    data = response.get_json()
    assert data["total"] == 2
    assert [outcome["status"] for outcome in data["outcomes"]] == ["planned", "skipped"]
    assert data["outcomes"][1]["pending_fields"] == ["SSN"]


def test_merge_rejects_non_object_selections(client, seeded):
    response = client.post(
        "/api/dedupe/merge",
        json={"survivor_id": "rec3", "merge_ids": ["rec4"], "selections": ["987-65-4321"]},
    )

    assert response.status_code == 400
    assert response.get_json()["error_type"] == "ConfigurationError"
    assert "rec4" in seeded.tables["Clients"]


def test_bulk_merge_rejects_non_object_selections(client, seeded):
    response = client.post("/api/dedupe/bulk-merge", json={"selections": "keep_survivor"})

    assert response.status_code == 400
    assert "rec1" in seeded.tables["Clients"]


def test_merge_with_single_match_reason(client, seeded):
    response = client.post(
        "/api/dedupe/merge",
        json={"survivor_id": "rec2", "merge_ids": ["rec1"], "match_reasons": "same phone"},
    )

    assert response.status_code == 200
    assert response.get_json()["history_entry"]["match_reasons"] == ["same phone"]


def test_merge_rejects_non_list_match_reasons(client, seeded):
    response = client.post(
        "/api/dedupe/merge",
        json={"survivor_id": "rec2", "merge_ids": ["rec1"], "match_reasons": {"phone": True}},
    )

    assert response.status_code == 400
    assert "rec1" in seeded.tables["Clients"]
