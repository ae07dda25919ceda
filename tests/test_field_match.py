from dataclasses import replace

import pytest

from dedupe_app.dedupe.candidates import find_duplicate_candidates
from dedupe_app.dedupe.errors import ConfigurationError
from dedupe_app.dedupe.field_match import (
    clean_match_fields,
    composite_key,
    find_field_match_groups,
    score_record_completeness,
)
from dedupe_app.dedupe.models import MatchTier, Record

MATCH_FIELDS = ["Case Number", "Client"]


def _cases():
    return [
        Record("recA", {"Case Number": "C-1", "Client": "Bob", "Notes": "x" * 50}),
        Record("recB", {"Case Number": "c-1 ", "Client": "bob", "Cases": ["recCase1", "recCase2"]}),
        Record("recC", {"Case Number": "C-2", "Client": "Bob"}),
        Record("recD", {"Notes": "no case fields"}),
        Record("recE", {"Case Number": "", "Client": None}),
    ]


class TestCompleteness:
    def test_links_text_and_scalars(self):
        record = Record("rec1", {"Cases": ["a", "b"], "Notes": "x" * 1000, "Count": 3, "Blank": " "})
        assert score_record_completeness(record) == 10.0

    def test_short_text_counts_by_length(self):
        assert score_record_completeness(Record("rec1", {"Name": "x" * 25})) == 0.25

    def test_empty_record(self):
        assert score_record_completeness(Record("rec1", {})) == 0.0


def test_clean_match_fields_drops_blanks_and_repeats():
    assert clean_match_fields([" Client ", "", None, "Client", "Case Number"]) == ["Client", "Case Number"]


def test_composite_key_ignores_case_and_whitespace():
    assert composite_key(_cases()[1], MATCH_FIELDS) == "c-1|bob"
    assert composite_key(_cases()[4], MATCH_FIELDS) is None


def test_groups_records_sharing_every_match_field():
    groups = find_field_match_groups(_cases(), MATCH_FIELDS)

    assert len(groups) == 1
    group = groups[0]
    assert group.id == "dup_0"
    assert group.match_key == "c-1|bob"
    assert group.best_tier == MatchTier.DEFINITIVE
    assert group.highest_confidence == 100
    assert group.has_conflict is False
    assert group.reasons == ("Matching fields: Case Number, Client",)


def test_most_complete_record_survives():
    group = find_field_match_groups(_cases(), MATCH_FIELDS)[0]

    assert group.survivor.id == "recB"
    assert [member.id for member in group.to_merge] == ["recA"]
    assert group.to_dict()["survivor"]["score"] == 4.07


def test_ties_keep_input_order():
    records = [Record("rec1", {"Client": "Ann"}), Record("rec2", {"Client": "ann"})]

    group = find_field_match_groups(records, ["Client"])[0]

    assert group.survivor.id == "rec1"


def test_records_without_match_values_are_skipped():
    records = [Record("rec1", {"Client": ""}), Record("rec2", {}), Record("rec3", {"Client": None})]

    assert find_field_match_groups(records, ["Client"]) == []


@pytest.mark.parametrize("match_fields", [[], None, ["", "  "]])
def test_no_match_fields_is_a_configuration_error(match_fields):
    with pytest.raises(ConfigurationError, match="at least one field"):
        find_field_match_groups(_cases(), match_fields)


def test_profile_without_match_fields_is_a_configuration_error(profile):
    bare = replace(
        profile,
        unique_id_fields=(),
        first_name_field=None,
        middle_name_field=None,
        last_name_field=None,
        full_name_fields=(),
    )

    with pytest.raises(ConfigurationError, match="no unique id or name fields"):
        find_duplicate_candidates(_cases(), bare)


def test_profile_with_only_unique_ids_still_scans(profile):
    ids_only = replace(
        profile,
        first_name_field=None,
        middle_name_field=None,
        last_name_field=None,
        full_name_fields=(),
    )

    assert find_duplicate_candidates(_cases(), ids_only) == []
