import json
from dataclasses import replace

import pytest

from config.matching import DEFAULT_PROFILE
from dedupe_app.dedupe.errors import PreconditionError
from dedupe_app.dedupe.merge import (
    apply_field_selections,
    build_merge_payload,
    compute_field_resolutions,
    has_unresolved_decisions,
    resolve_field_value,
    summarize_resolutions,
)
from dedupe_app.dedupe.models import Record


def test_concatenate_field_joins_values(contact_schema, profile):
    survivor = Record("rec1", {"Notes": "Called once"})
    other = Record("rec2", {"Notes": "Called twice"})

    resolution = compute_field_resolutions(survivor, [other], contact_schema, profile)["Notes"]

    assert resolution.strategy == "concatenate"
    assert resolution.value == "Called once | Called twice"
    assert resolution.include is True


def test_empty_survivor_field_is_filled_from_other(contact_schema, profile):
    survivor = Record("rec1", {"Name": "Jane Doe", "Email": ""})
    other = Record("rec2", {"Name": "Jane Doe", "Email": "a@b.com"})

    resolution = compute_field_resolutions(survivor, [other], contact_schema, profile)["Email"]

    assert resolution.strategy == "auto"
    assert resolution.value == "a@b.com"
    assert resolution.include is True
    assert resolution.needs_decision is False


def test_identical_values_resolve_automatically(contact_schema, profile):
    survivor = Record("rec1", {"Phone": "6155550100"})
    other = Record("rec2", {"Phone": " 6155550100 "})

    resolution = compute_field_resolutions(survivor, [other], contact_schema, profile)["Phone"]

    assert resolution.strategy == "auto"
    assert resolution.value == "6155550100"


def test_conflicting_values_need_a_decision(contact_schema, profile):
    survivor = Record("rec1", {"Phone": "6155550100"})
    other = Record("rec2", {"Phone": "6155550199", "First Name": "Jane", "Last Name": "Doe"})

    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile)
    phone = resolutions["Phone"]

    assert phone.strategy == "manual"
    assert phone.needs_decision is True
    assert phone.has_conflict is True
    assert list(phone.all_values) == ["6155550100", "6155550199"]
    assert phone.merged_values[0] == {"record_id": "rec2", "name": "Jane Doe", "value": "6155550199"}
    assert has_unresolved_decisions(resolutions) is True


def test_payload_refuses_open_decisions(contact_schema, profile):
    survivor = Record("rec1", {"Phone": "6155550100"})
    other = Record("rec2", {"Phone": "6155550199"})
    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile)

    with pytest.raises(PreconditionError) as excinfo:
        build_merge_payload(survivor, [other], resolutions, contact_schema, profile)

    assert excinfo.value.fields == ("Phone",)


def test_keep_survivor_policy(contact_schema, profile):
    survivor = Record("rec1", {"Phone": "6155550100", "Address": ""})
    other = Record("rec2", {"Phone": "6155550199", "Address": "1 Main St"})

    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile, conflict_policy="keep_survivor")

    assert resolutions["Phone"].strategy == "keep_survivor"
    assert resolutions["Phone"].value == "6155550100"
    assert resolutions["Address"].value == "1 Main St"
    assert has_unresolved_decisions(resolutions) is False


def test_force_policy_prefers_longer_text(contact_schema, profile):
    survivor = Record("rec1", {"Address": "1 Main St", "Phone": "6155550100"})
    other = Record("rec2", {"Address": "1 Main Street Apt 2", "Phone": "6155550199"})

    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile, conflict_policy="force")

    assert resolutions["Address"].strategy == "keep_other"
    assert resolutions["Address"].value == "1 Main Street Apt 2"
    assert resolutions["Phone"].strategy == "keep_survivor"


def test_unknown_policy_is_rejected(contact_schema, profile):
    with pytest.raises(ValueError):
        compute_field_resolutions(Record("rec1", {}), [Record("rec2", {})], contact_schema, profile, conflict_policy="newest")


def test_computed_and_history_fields_are_never_written(contact_schema, profile):
    survivor = Record("rec1", {"Created": "2024-01-01", "Case Count": 2, "dedupe_history": "[]", "Name": "Jane"})
    other = Record("rec2", {"Created": "2024-02-01", "Case Count": 1, "Name": "Jane"})

    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile)
    payload = build_merge_payload(survivor, [other], resolutions, contact_schema, profile)

    assert resolutions["Created"].strategy == "computed"
    assert resolutions["Case Count"].strategy == "computed"
    assert resolutions["dedupe_history"].strategy == "excluded"
    assert "Created" not in payload.update_fields
    assert "Case Count" not in payload.update_fields
    assert json.loads(payload.update_fields["dedupe_history"])[0]["merge_id"] == payload.merge_id


def test_link_fields_are_unioned(contact_schema, profile):
    survivor = Record("rec1", {"Cases": ["recA"]})
    others = [Record("rec2", {"Cases": ["recA", "recB"]}), Record("rec3", {"Cases": ["recC"]})]

    resolution = compute_field_resolutions(survivor, others, contact_schema, profile)["Cases"]

    assert resolution.strategy == "merge_links"
    assert resolution.value == ["recA", "recB", "recC"]


def test_append_field_skips_contained_text(contact_schema, profile):
    survivor = Record("rec1", {"Case Notes": "Intake done"})
    others = [Record("rec2", {"Case Notes": "Intake done"}), Record("rec3", {"Case Notes": "Follow-up"})]

    resolution = compute_field_resolutions(survivor, others, contact_schema, profile)["Case Notes"]

    assert resolution.strategy == "append"
    assert resolution.value == "Intake done\n---\nFollow-up"


def test_concatenate_across_several_records(contact_schema, profile):
    survivor = Record("rec1", {"Notes": "a"})
    others = [Record("rec2", {"Notes": "b"}), Record("rec3", {"Notes": "a"}), Record("rec4", {})]

    resolution = compute_field_resolutions(survivor, others, contact_schema, profile)["Notes"]

    assert resolution.value == "a | b"


def test_selection_settles_a_conflict(contact_schema, profile):
    survivor = Record("rec1", {"Phone": "6155550100"})
    other = Record("rec2", {"Phone": "6155550199"})
    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile)

    settled = apply_field_selections(resolutions, {"Phone": "6155550199", "Unknown": "x"})
    payload = build_merge_payload(survivor, [other], settled, contact_schema, profile)

    assert settled["Phone"].strategy == "keep_other"
    assert settled["Phone"].needs_decision is False
    assert "Unknown" not in settled
    assert payload.update_fields["Phone"] == "6155550199"


def test_selection_can_exclude_a_field(contact_schema, profile):
    survivor = Record("rec1", {"Phone": "6155550100"})
    other = Record("rec2", {"Phone": "6155550199"})
    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile)

    settled = apply_field_selections(resolutions, {"Phone": {"value": None, "include": False}})
    payload = build_merge_payload(survivor, [other], settled, contact_schema, profile)

    assert "Phone" not in payload.update_fields


def test_selection_matching_survivor_keeps_survivor(contact_schema, profile):
    survivor = Record("rec1", {"Phone": "6155550100"})
    other = Record("rec2", {"Phone": "6155550199"})
    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile)

    settled = apply_field_selections(resolutions, {"Phone": {"value": "6155550100"}})

    assert settled["Phone"].strategy == "keep_survivor"


def test_payload_snapshots_subsumed_records(contact_schema, profile):
    prior = [{"merge_id": "mrg_old", "action": "merge", "merged_records": []}]
    survivor = Record("rec1", {"Name": "Jane Doe", "Cases": ["recA"], "dedupe_history": json.dumps(prior)})
    other = Record("rec2", {"Name": "Jane Doe", "Email": "jane@example.com", "Cases": ["recB"]})
    resolutions = compute_field_resolutions(survivor, [other], contact_schema, profile)

    payload = build_merge_payload(
        survivor,
        [other],
        resolutions,
        contact_schema,
        profile,
        performed_by="tester",
        notes="dupe intake",
        confidence=95,
        match_reasons=["Name: 100% (exact_canonical)"],
    )

    entry = payload.history_entry
    assert payload.records_to_delete == ("rec2",)
    assert payload.survivor_id == "rec1"
    assert entry["action"] == "merge"
    assert entry["survivor_record_id"] == "rec1"
    assert entry["performed_by"] == "tester"
    assert entry["confidence"] == 95
    assert entry["merged_records"] == [
        {
            "original_record_id": "rec2",
            "field_snapshot": {"Name": "Jane Doe", "Email": "jane@example.com", "Cases": ["recB"]},
            "linked_records": {"Cases": ["recB"]},
        }
    ]
    assert entry["field_decisions"]["Email"] == {"strategy": "auto", "value": "jane@example.com", "include": True}
    assert payload.update_fields["Email"] == "jane@example.com"
    assert payload.update_fields["Cases"] == ["recA", "recB"]

    history = json.loads(payload.update_fields["dedupe_history"])
    assert [item["merge_id"] for item in history] == ["mrg_old", payload.merge_id]


def test_summary_describes_the_merge(contact_schema, profile):
    survivor = Record("rec1", {"Name": "Jane", "Cases": ["recA"], "Notes": "a"})
    other = Record("rec2", {"Name": "Jane", "Cases": ["recB"], "Notes": "b", "Email": "j@x.com", "Phone": "1"})
    resolutions = compute_field_resolutions(
        Record("rec1", {**survivor.fields, "Phone": "2"}), [other], contact_schema, profile
    )

    summary = summarize_resolutions(resolutions)

    assert summary.links_added == 1
    assert "Cases (+1 links)" in summary.fields_to_update
    assert summary.values_concatenated == ["Notes"]
    assert "Email" in summary.fields_to_update
    assert "Name" in summary.fields_kept
    assert summary.decisions_needed == ["Phone"]


def test_pairwise_resolution():
    profile = replace(DEFAULT_PROFILE, concatenate_fields=("Notes",), link_fields=("Cases",))

    assert resolve_field_value("Email", "", "a@b.com", profile).strategy == "keep_other"
    assert resolve_field_value("Email", "a@b.com", None, profile).strategy == "keep_survivor"
    assert resolve_field_value("Notes", "a", "b", profile).value == "a | b"
    assert resolve_field_value("Cases", ["r1"], ["r2"], profile).value == ["r1", "r2"]
    assert resolve_field_value("dedupe_history", "[]", "[]", profile).strategy == "excluded"
    assert resolve_field_value("Phone", "1", "2", profile).needs_decision is True
