"""
Name, phone, email and address normalization for duplicate detection.

Everything here is a pure function over plain values. The lookup tables are
module constants built once at import time and never mutated.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Literal

from rapidfuzz.distance import Levenshtein

# First name -> common nicknames. The reverse index below makes lookups bidirectional.
NICKNAMES: dict[str, tuple[str, ...]] = {
    "robert": ("bob", "bobby", "rob", "robbie", "bert"),
    "bob": ("robert", "bobby", "rob"),
    "bobby": ("robert", "bob", "rob"),
    "william": ("bill", "billy", "will", "willy", "liam"),
    "bill": ("william", "billy", "will"),
    "billy": ("william", "bill", "will"),
    "richard": ("rick", "ricky", "rich", "dick", "dickie"),
    "rick": ("richard", "ricky", "rich"),
    "james": ("jim", "jimmy", "jamie"),
    "jim": ("james", "jimmy", "jamie"),
    "jimmy": ("james", "jim", "jamie"),
    "michael": ("mike", "mikey", "mick", "mickey"),
    "mike": ("michael", "mikey", "mick"),
    "elizabeth": ("liz", "lizzy", "beth", "betty", "eliza", "lisa"),
    "liz": ("elizabeth", "lizzy", "beth"),
    "beth": ("elizabeth", "liz", "betty"),
    "jennifer": ("jen", "jenny", "jenn"),
    "jen": ("jennifer", "jenny"),
    "jenny": ("jennifer", "jen"),
    "katherine": ("kate", "katie", "kathy", "cathy", "kit"),
    "catherine": ("kate", "katie", "kathy", "cathy", "kit"),
    "kate": ("katherine", "catherine", "katie"),
    "margaret": ("maggie", "meg", "peggy", "marge", "margie"),
    "maggie": ("margaret", "meg"),
    "charles": ("charlie", "chuck", "chas"),
    "charlie": ("charles", "chuck"),
    "joseph": ("joe", "joey", "jo"),
    "joe": ("joseph", "joey"),
    "thomas": ("tom", "tommy", "thom"),
    "tom": ("thomas", "tommy"),
    "christopher": ("chris", "topher", "kit"),
    "chris": ("christopher", "christine", "christina"),
    "patricia": ("pat", "patty", "trish", "tricia"),
    "pat": ("patricia", "patrick"),
    "patrick": ("pat", "paddy", "rick"),
    "daniel": ("dan", "danny", "dannie"),
    "dan": ("daniel", "danny"),
    "anthony": ("tony", "ant"),
    "tony": ("anthony",),
    "samuel": ("sam", "sammy"),
    "sam": ("samuel", "samantha", "sammy"),
    "jose": ("pepe", "chepe", "joe"),
    "francisco": ("paco", "pancho", "frank", "frankie"),
    "guadalupe": ("lupe", "lupita"),
    "maria": ("mary", "mari"),
    "jesus": ("chuy", "chucho"),
    "alejandro": ("alex", "alejo"),
    "alejandra": ("alex", "aleja"),
    "miguel": ("mike", "michael"),
    "guillermo": ("memo", "william", "bill"),
    "enrique": ("henry", "kike"),
    "roberto": ("robert", "bob", "beto"),
    "eduardo": ("eddie", "edward", "lalo"),
    "fernando": ("fernie", "nando"),
    "ricardo": ("richard", "rick", "ricky"),
}


def _build_reverse_index(mapping: dict[str, tuple[str, ...]]) -> dict[str, tuple[str, ...]]:
    reverse: dict[str, list[str]] = {}
    for name, nicknames in mapping.items():
        for nickname in nicknames:
            targets = reverse.setdefault(nickname, [])
            if name not in targets:
                targets.append(name)
    return {nickname: tuple(names) for nickname, names in reverse.items()}


NICKNAMES_REVERSE = _build_reverse_index(NICKNAMES)

# Punctuation has already been stripped when these are compared, so dotted forms are not listed.
HONORIFICS = frozenset(
    {
        "dr", "doctor", "mr", "mister", "mrs", "missus", "ms", "miss",
        "prof", "professor", "rev", "reverend", "hon", "honorable",
        "sr", "senor", "sra", "senora",
    }
)
SUFFIXES = frozenset(
    {
        "jr", "junior", "sr", "senior", "i", "ii", "iii", "iv", "v",
        "1st", "2nd", "3rd", "4th", "esq", "esquire", "phd", "md",
    }
)

STREET_ABBREVIATIONS: tuple[tuple[str, str], ...] = (
    ("street", "st"),
    ("avenue", "ave"),
    ("drive", "dr"),
    ("boulevard", "blvd"),
    ("road", "rd"),
    ("court", "ct"),
    ("lane", "ln"),
    ("apartment", "apt"),
    ("suite", "ste"),
    ("north", "n"),
    ("south", "s"),
    ("east", "e"),
    ("west", "w"),
)
_STREET_PATTERNS = tuple((re.compile(rf"\b{word}\b"), abbreviation) for word, abbreviation in STREET_ABBREVIATIONS)

SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}

_NAME_PUNCTUATION = re.compile(r"[.'\"()]")
_NAME_SPLIT = re.compile(r"[\s,]+")
_WHITESPACE = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D")
_NON_LETTERS = re.compile(r"[^a-z]")
_ADDRESS_PUNCTUATION = re.compile(r"[.,#]")

NameMatchReason = Literal["exact_canonical", "nickname_variant", "fuzzy_match", "shared_parts", "no_match"]


@dataclass(frozen=True)
class NormalizedName:
    canonical: str = ""
    variants: frozenset[str] = field(default_factory=frozenset)
    honorifics: tuple[str, ...] = ()
    suffixes: tuple[str, ...] = ()
    parts: tuple[str, ...] = ()
    original: str = ""


@dataclass(frozen=True)
class NameMatch:
    match: bool
    score: int
    reason: NameMatchReason


def remove_accents(value: str | None) -> str:
    """Strip diacritical marks, e.g. ``"García"`` -> ``"Garcia"``."""

    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _clean_name_text(value: str) -> str:
    text = remove_accents(value).lower()
    text = _NAME_PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def _strip_titles(tokens: list[str], honorifics: list[str], suffixes: list[str]) -> list[str]:
    kept: list[str] = []
    for token in tokens:
        if token in HONORIFICS:
            if token not in honorifics:
                honorifics.append(token)
        elif token in SUFFIXES:
            if token not in suffixes:
                suffixes.append(token)
        else:
            kept.append(token)
    return kept


def _tokens(text: str) -> list[str]:
    return [token for token in _NAME_SPLIT.split(text) if token]


def normalize_name(full_name: object | None) -> NormalizedName:
    """
    Split a free-form name into comparable parts.

    ``canonical`` is the sorted token string, so "Smith, John" and "John Smith"
    share a canonical form. ``variants`` holds the canonical form plus every
    single-token nickname substitution; substitutions are never combined.
    """

    if not isinstance(full_name, str) or not full_name.strip():
        original = full_name if isinstance(full_name, str) else ""
        return NormalizedName(original=original)

    text = _clean_name_text(full_name)
    honorifics: list[str] = []
    suffixes: list[str] = []

    comma_parts = [part.strip() for part in text.split(",")]
    parts: list[str] = []
    if len(comma_parts) == 2:
        last = _strip_titles(_tokens(comma_parts[0]), honorifics, suffixes)
        first_middle = _strip_titles(_tokens(comma_parts[1]), honorifics, suffixes)
        if last and first_middle:
            parts = first_middle + last
    if not parts:
        honorifics.clear()
        suffixes.clear()
        parts = _strip_titles(_tokens(text), honorifics, suffixes)

    canonical = " ".join(sorted(parts))
    variants = {canonical}
    for index, part in enumerate(parts):
        for variant in NICKNAMES.get(part, ()) + NICKNAMES_REVERSE.get(part, ()):
            substituted = list(parts)
            substituted[index] = variant
            variants.add(" ".join(sorted(substituted)))

    return NormalizedName(
        canonical=canonical,
        variants=frozenset(variants) if canonical else frozenset(),
        honorifics=tuple(honorifics),
        suffixes=tuple(suffixes),
        parts=tuple(parts),
        original=full_name,
    )


def levenshtein_distance(a: str | None, b: str | None) -> int:
    """Classic edit distance. Case folding is the caller's job."""

    return Levenshtein.distance(a or "", b or "")


def string_similarity(a: str | None, b: str | None) -> int:
    """Case-insensitive edit-distance similarity on a 0..100 scale."""

    if not a and not b:
        return 100
    if not a or not b:
        return 0
    distance = levenshtein_distance(a.lower(), b.lower())
    max_len = max(len(a), len(b))
    return round((1 - distance / max_len) * 100)


def _as_normalized(name: str | NormalizedName | None) -> NormalizedName:
    if isinstance(name, NormalizedName):
        return name
    return normalize_name(name)


def are_names_similar(
    name1: str | NormalizedName | None,
    name2: str | NormalizedName | None,
    threshold: int = 80,
) -> NameMatch:
    """
    Decide whether two names plausibly refer to the same person.

    Checks run strongest first: canonical equality, nickname variants, fuzzy
    similarity of the canonical forms, then shared tokens. A failed match still
    reports the fuzzy score for diagnostics.
    """

    norm1 = _as_normalized(name1)
    norm2 = _as_normalized(name2)

    if norm1.canonical == norm2.canonical:
        return NameMatch(True, 100, "exact_canonical")

    if norm1.variants & norm2.variants:
        return NameMatch(True, 95, "nickname_variant")

    similarity = string_similarity(norm1.canonical, norm2.canonical)
    if similarity >= threshold:
        return NameMatch(True, similarity, "fuzzy_match")

    shared = [part for part in norm1.parts if part in norm2.parts]
    if len(shared) >= 2 and len(shared) >= min(len(norm1.parts), len(norm2.parts)):
        return NameMatch(True, 85, "shared_parts")

    return NameMatch(False, similarity, "no_match")


def phonetic_code(value: str | None) -> str:
    """Four character Soundex-style code: first letter plus up to three digits."""

    cleaned = _NON_LETTERS.sub("", remove_accents(value or "").lower())
    if not cleaned:
        return ""

    result = cleaned[0].upper()
    previous = SOUNDEX_CODES.get(cleaned[0], "")
    for char in cleaned[1:]:
        if len(result) >= 4:
            break
        code = SOUNDEX_CODES.get(char)
        if code and code != previous:
            result += code
            previous = code
        elif not code:
            previous = ""
    return result.ljust(4, "0")


def normalize_phone(value: object | None) -> str:
    """Digits only, with a leading US country code dropped from 11-digit numbers."""

    if value is None:
        return ""
    digits = _NON_DIGITS.sub("", str(value))
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def normalize_email(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_address(value: object | None) -> str:
    """Lowercase, accent-free address with common street words abbreviated."""

    if value is None:
        return ""
    text = remove_accents(str(value)).lower().strip()
    if not text:
        return ""
    for pattern, abbreviation in _STREET_PATTERNS:
        text = pattern.sub(abbreviation, text)
    text = _ADDRESS_PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


__all__ = [
    "HONORIFICS",
    "NICKNAMES",
    "NICKNAMES_REVERSE",
    "NameMatch",
    "NormalizedName",
    "SUFFIXES",
    "are_names_similar",
    "levenshtein_distance",
    "normalize_address",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "phonetic_code",
    "remove_accents",
    "string_similarity",
]
