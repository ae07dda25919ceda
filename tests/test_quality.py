from config.matching import QualityWeights
from dedupe_app.dedupe.models import Record
from dedupe_app.dedupe.quality import score_record_quality


def test_more_complete_record_scores_higher(profile):
    sparse = Record("rec1", {"Name": "Jane Doe", "Phone": "6155550100"})
    complete = Record("rec2", {"Name": "Jane Doe", "Phone": "6155550100", "Email": "jane@example.com", "DOB": "1990-01-01"})

    assert score_record_quality(sparse, profile=profile) == 15
    assert score_record_quality(complete, profile=profile) == 60


def test_linked_records_weigh_per_link(profile):
    record = Record("rec1", {"Cases": ["recA", "recB"]})
    assert score_record_quality(record, profile=profile) == 40


def test_placeholder_email_only_ignored_with_profile(profile):
    record = Record("rec1", {"Email": "null@blank"})

    assert score_record_quality(record, profile=profile) == 0
    assert score_record_quality(record, profile.quality_weights) == 15


def test_blank_values_score_nothing(profile):
    record = Record("rec1", {"Phone": "  ", "Email": "", "Cases": []})
    assert score_record_quality(record, profile=profile) == 0


def test_adding_data_never_lowers_the_score(profile):
    fields = {}
    previous = score_record_quality(Record("rec1", fields), profile=profile)
    for name, value in [("Phone", "6155550100"), ("Email", "a@b.com"), ("Cases", ["recA"]), ("Notes", "x")]:
        fields[name] = value
        current = score_record_quality(Record("rec1", dict(fields)), profile=profile)
        assert current >= previous
        previous = current


def test_explicit_weights_override_profile(profile):
    weights = QualityWeights(field_points={"Notes": 7})
    record = Record("rec1", {"Notes": "hello", "Phone": "6155550100"})

    assert score_record_quality(record, weights, profile=profile) == 7
