import pytest

from dedupe_app.dedupe.normalize import (
    are_names_similar,
    levenshtein_distance,
    normalize_address,
    normalize_email,
    normalize_name,
    normalize_phone,
    phonetic_code,
    remove_accents,
    string_similarity,
)


def test_remove_accents_strips_diacritics():
    assert remove_accents("García Peña") == "Garcia Pena"
    assert remove_accents(None) == ""


def test_comma_form_and_natural_order_share_canonical():
    assert normalize_name("Smith, John").canonical == "john smith"
    assert normalize_name("John Smith").canonical == "john smith"


def test_honorifics_and_suffixes_are_separated():
    result = normalize_name("Dr. John Smith Jr.")

    assert result.canonical == "john smith"
    assert result.honorifics == ("dr",)
    assert result.suffixes == ("jr",)
    assert result.parts == ("john", "smith")


@pytest.mark.parametrize("raw", ["Smith, John", "García, María", "Dr. Bob O'Neil III", "  jane   DOE "])
def test_canonical_form_is_stable(raw):
    canonical = normalize_name(raw).canonical
    assert normalize_name(canonical).canonical == canonical


def test_empty_names_have_no_variants():
    assert normalize_name("").canonical == ""
    assert normalize_name(None).variants == frozenset()
    assert normalize_name("   ").parts == ()


def test_variants_include_single_nickname_substitutions():
    variants = normalize_name("Bob Smith").variants

    assert "bob smith" in variants
    assert "robert smith" in variants
    assert "robert bobby" not in variants


def test_nickname_variant_match():
    result = are_names_similar("Bob Smith", "Robert Smith")

    assert result.match is True
    assert result.score == 95
    assert result.reason == "nickname_variant"


@pytest.mark.parametrize(
    "first,second",
    [
        ("Bob Smith", "Robert Smith"),
        ("Jon Smith", "John Smith"),
        ("John Michael Smith", "John Smith"),
        ("John Smith", "Mary Jones"),
    ],
)
def test_name_similarity_is_symmetric(first, second):
    assert are_names_similar(first, second) == are_names_similar(second, first)


def test_exact_canonical_match_ignores_order():
    result = are_names_similar("Smith, John", "john smith")
    assert (result.match, result.score, result.reason) == (True, 100, "exact_canonical")


def test_fuzzy_match_reports_similarity():
    result = are_names_similar("Jon Smith", "John Smith")

    assert result.match is True
    assert result.reason == "fuzzy_match"
    assert result.score == 90


def test_shared_parts_match_with_middle_name():
    result = are_names_similar("John Michael Smith", "John Smith")
    assert (result.match, result.score, result.reason) == (True, 85, "shared_parts")


def test_unrelated_names_do_not_match():
    result = are_names_similar("John Smith", "Mary Jones")

    assert result.match is False
    assert result.reason == "no_match"
    assert 0 <= result.score < 80


def test_string_similarity_edges():
    assert string_similarity("abc", "ABC") == 100
    assert string_similarity("", "") == 100
    assert string_similarity("abc", "") == 0
    assert levenshtein_distance("kitten", "sitting") == 3


def test_phonetic_code():
    assert phonetic_code("Robert") == "R163"
    assert phonetic_code("Rupert") == "R163"
    assert phonetic_code("Lee") == "L000"
    assert phonetic_code("") == ""


def test_normalize_phone_strips_formatting_and_us_prefix():
    assert normalize_phone("(615) 555-0100") == "6155550100"
    assert normalize_phone("615-555-0100") == "6155550100"
    assert normalize_phone("+1 615 555 0100") == "6155550100"
    assert normalize_phone(None) == ""
    assert normalize_phone(6155550100) == "6155550100"


def test_normalize_email():
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
    assert normalize_email(None) == ""


def test_normalize_address_abbreviates_street_words():
    assert normalize_address("123 North Main Street, Apt. 4") == "123 n main st apt 4"
    assert normalize_address("123 N. Main St #4") == "123 n main st 4"
    assert normalize_address("   ") == ""
