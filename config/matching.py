"""
Matching profile configuration for duplicate detection and merge resolution.

The dedupe engine loads this module to learn which fields carry unique
identifiers, how a person's name is assembled, which fields corroborate a
match, and how each field should be combined when two records are merged.

Configuration is file-backed so a table layout can be described without code
changes. Operators can override the defaults by pointing the
``DEDUPE_MATCHING_PROFILE_PATH`` environment variable at a JSON or YAML file.
The helpers exposed here handle loading and validating those overrides.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

import yaml


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QualityWeights:
    """
    Point values used to rank how complete a record is.

    Attributes:
        field_points: Points awarded when the named field holds a non-empty
            value. Identity fields normally carry the most weight.
        link_points: Points awarded per linked record id held in the named
            list field. Records with real downstream activity should win the
            survivor election, so these are usually the heaviest weights.
    """

    field_points: Mapping[str, int] = field(default_factory=dict)
    link_points: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class MatchingProfile:
    """
    Field layout and tuning knobs for a deduplication run.

    The scorer reads the identity/corroboration fields, the candidate finder
    reads the thresholds, and the merge resolver reads the merge rules.
    """

    key: str
    label: str
    unique_id_fields: Sequence[str] = ()
    first_name_field: str | None = "First Name"
    middle_name_field: str | None = "Middle Name"
    last_name_field: str | None = "Last Name"
    full_name_fields: Sequence[str] = ("Name", "Full Name")
    phone_field: str | None = "Phone"
    email_field: str | None = "Email"
    dob_field: str | None = "DOB"
    address_fields: Sequence[str] = ("Address", "Address Line 1")
    placeholder_emails: Sequence[str] = ("null@blank",)
    name_threshold: int = 75
    min_confidence: int = 70
    fuzzy_threshold: int = 70
    exclude_fields: Sequence[str] = ()
    concatenate_fields: Sequence[str] = ()
    concatenate_delimiter: str = " | "
    append_fields: Sequence[str] = ()
    append_delimiter: str = "\n---\n"
    link_fields: Sequence[str] = ()
    history_field: str = "dedupe_history"
    created_field: str = "Created"
    quality_weights: QualityWeights = field(default_factory=QualityWeights)

    @property
    def corroborating_fields(self) -> tuple[str, ...]:
        fields = [self.phone_field, self.email_field, self.dob_field, *self.address_fields]
        return tuple(name for name in fields if name)

    @property
    def name_fields(self) -> tuple[str, ...]:
        fields = [self.first_name_field, self.middle_name_field, self.last_name_field, *self.full_name_fields]
        return tuple(name for name in fields if name)

    def is_placeholder_email(self, value: str) -> bool:
        return any(marker in value for marker in self.placeholder_emails)


# ---------------------------------------------------------------------------
# Default profile
# ---------------------------------------------------------------------------

DEFAULT_QUALITY_WEIGHTS = QualityWeights(
    field_points={
        "DOB": 30,
        "Phone": 15,
        "Email": 15,
        "Address": 10,
        "Address Line 1": 10,
        "City": 5,
        "State": 5,
        "Zip": 5,
        "First Name": 5,
        "Middle Name": 3,
        "Last Name": 5,
        "Created": 10,
    },
    link_points={},
)

DEFAULT_PROFILE = MatchingProfile(
    key="default",
    label="Default contacts",
    quality_weights=DEFAULT_QUALITY_WEIGHTS,
)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


class MatchingProfileError(RuntimeError):
    """Raised when a matching profile override cannot be parsed."""


_STRING_SEQUENCE_KEYS = (
    "unique_id_fields",
    "full_name_fields",
    "address_fields",
    "placeholder_emails",
    "exclude_fields",
    "concatenate_fields",
    "append_fields",
    "link_fields",
)
_OPTIONAL_STRING_KEYS = (
    "first_name_field",
    "middle_name_field",
    "last_name_field",
    "phone_field",
    "email_field",
    "dob_field",
)
_THRESHOLD_KEYS = ("name_threshold", "min_confidence", "fuzzy_threshold")
_STRING_KEYS = ("concatenate_delimiter", "append_delimiter", "history_field", "created_field")


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise MatchingProfileError(f"Matching profile file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise MatchingProfileError(f"Unable to read matching profile file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise MatchingProfileError(f"Matching profile file {path} is not valid: {exc}") from exc

    if not isinstance(data, Mapping):
        raise MatchingProfileError("Matching profile must be a JSON/YAML object.")
    return dict(data)


def _coerce_string_sequence(value: object | None, *, item_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, Sequence):
        return tuple(str(item).strip() for item in value if str(item).strip())
    raise MatchingProfileError(f"Expected sequence for {item_name}, got {type(value).__name__}.")


def _coerce_threshold(value: object, *, item_name: str) -> int:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise MatchingProfileError(f"{item_name} must be an integer.") from exc
    if number < 0 or number > 100:
        raise MatchingProfileError(f"{item_name} must be between 0 and 100.")
    return number


def _coerce_points(raw: object | None, *, item_name: str) -> dict[str, int]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise MatchingProfileError(f"{item_name} must be a mapping of field name to points.")
    points: dict[str, int] = {}
    for name, value in raw.items():
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise MatchingProfileError(f"{item_name}.{name} must be an integer.") from exc
        if number < 0:
            raise MatchingProfileError(f"{item_name}.{name} must not be negative.")
        points[str(name)] = number
    return points


def _coerce_quality_weights(raw: object | None) -> QualityWeights:
    if raw is None:
        return DEFAULT_QUALITY_WEIGHTS
    if not isinstance(raw, Mapping):
        raise MatchingProfileError("quality_weights must be an object.")
    return QualityWeights(
        field_points=_coerce_points(raw.get("field_points"), item_name="quality_weights.field_points"),
        link_points=_coerce_points(raw.get("link_points"), item_name="quality_weights.link_points"),
    )


def coerce_profile(raw: Mapping[str, Any]) -> MatchingProfile:
    """Build a validated profile from a decoded JSON/YAML mapping."""

    options: dict[str, Any] = {
        "key": str(raw.get("key") or DEFAULT_PROFILE.key).strip() or DEFAULT_PROFILE.key,
        "label": str(raw.get("label") or DEFAULT_PROFILE.label).strip() or DEFAULT_PROFILE.label,
    }
    for key in _STRING_SEQUENCE_KEYS:
        if key in raw:
            options[key] = _coerce_string_sequence(raw[key], item_name=key)
    for key in _OPTIONAL_STRING_KEYS:
        if key in raw:
            value = raw[key]
            options[key] = str(value).strip() or None if value is not None else None
    for key in _THRESHOLD_KEYS:
        if key in raw:
            options[key] = _coerce_threshold(raw[key], item_name=key)
    for key in _STRING_KEYS:
        if key in raw:
            options[key] = str(raw[key])
    if not options.get("history_field", DEFAULT_PROFILE.history_field).strip():
        raise MatchingProfileError("history_field must not be empty.")
    options["quality_weights"] = _coerce_quality_weights(raw.get("quality_weights"))
    return MatchingProfile(**options)


def load_profile(env: Mapping[str, str] | None = None) -> MatchingProfile:
    """
    Load the active matching profile.

    If the ``DEDUPE_MATCHING_PROFILE_PATH`` environment variable is set, its
    JSON/YAML content is parsed to override the default profile. Otherwise
    the built-in defaults are used.
    """

    env_map = env or {}
    override_path = env_map.get("DEDUPE_MATCHING_PROFILE_PATH")
    if not override_path:
        return DEFAULT_PROFILE
    return coerce_profile(_load_override(Path(override_path)))


__all__ = [
    "DEFAULT_PROFILE",
    "DEFAULT_QUALITY_WEIGHTS",
    "MatchingProfile",
    "MatchingProfileError",
    "QualityWeights",
    "coerce_profile",
    "load_profile",
]
