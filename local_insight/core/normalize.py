# local_insight/core/normalize.py
"""
NORMALIZE MODULE - Turn messy upstream JSON into canonical values

Purpose:
    1. Read human text out of linked-data wrappers ({"_value": ..., "_lang": "en"})
    2. Pick a label, an identifier, coordinates and an authority from records
       whose field names differ between endpoints (and between records)
    3. Find the items list inside the many envelope shapes EA publishes

Why this matters:
    - The bathing-water list returns items under result.items on one day and
      result.primaryTopic.items on another
    - A site name can be "Bamburgh", {"_value": "Bamburgh"} or
      {"name": {"_value": "Bamburgh"}}
    - Coordinates arrive as numbers, numeric strings or nested under "geo"

Every function here is total: malformed input degrades to "", None or [],
never to an exception. Each canonical field is an ordered tuple of rules;
the first rule that produces a usable value wins.
"""

import math
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from local_insight.core.schemas import Coordinates, NormalizedRecord

Rule = Callable[[Any], Any]

DEFAULT_PLACEHOLDER = "Untitled"


def field(*path: str) -> Rule:
    """
    Build a rule that walks ``path`` through nested mappings.

    Example:
        field("geo", "lat")({"geo": {"lat": 55.6}}) → 55.6
        field("geo", "lat")({"geo": "n/a"})         → None
    """

    def rule(record: Any) -> Any:
        current = record
        for part in path:
            if not isinstance(current, Mapping):
                return None
            current = current.get(part)
        return current

    rule.__name__ = "field_" + "_".join(path)
    return rule


# ============================================================================
# EXTRACTION RULES (order matters: first usable value wins)
# ============================================================================

LABEL_RULES: Tuple[Rule, ...] = (
    field("label"),
    field("name"),
    field("title"),
    field("rdfs:label"),
    field("dc:title"),
    field("dct:title"),
)

IDENTIFIER_RULES: Tuple[Rule, ...] = (
    field("_about"),
    field("about"),
    field("@id"),
    field("id"),
    field("uri"),
    field("url"),
)

LATITUDE_RULES: Tuple[Rule, ...] = (
    field("lat"),
    field("latitude"),
    field("geo", "lat"),
    field("geo", "latitude"),
)

LONGITUDE_RULES: Tuple[Rule, ...] = (
    field("long"),
    field("lng"),
    field("longitude"),
    field("geo", "long"),
    field("geo", "lng"),
    field("geo", "longitude"),
)

AUTHORITY_RULES: Tuple[Rule, ...] = (
    field("localAuthorityName"),
    field("district"),
    field("region"),
    field("ea:localAuthorityName"),
    field("localAuthority"),
    field("localAuthority", "name"),
    field("district", "name"),
    field("region", "name"),
)

ITEMS_CONTAINER_RULES: Tuple[Rule, ...] = (
    field("items"),
    field("result", "items"),
    field("result", "primaryTopic", "items"),
    field("result", "primaryTopic", "contains"),
    field("primaryTopic", "items"),
    field("primaryTopic", "contains"),
    field("contains"),
)

# Linked-data scalar wrappers, probed in this order inside a mapping
_TEXT_WRAPPER_KEYS = ("_value", "@value", "value")


# ============================================================================
# SCALARS
# ============================================================================


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def canonical_text(value: Any) -> str:
    """
    Best human-readable text for any JSON value.

    Examples:
        "Bamburgh"                              → "Bamburgh"
        {"_value": "Bamburgh", "_lang": "en"}   → "Bamburgh"
        {"name": {"_value": "Northumberland"}}  → "Northumberland"
        [{"_value": "a"}, None, "b"]            → "a, b"
        {"_about": "http://..."}                → ""  (objects are never dumped)
    """
    if value is None:
        return ""

    if isinstance(value, (list, tuple)):
        parts = [canonical_text(item) for item in value]
        return ", ".join(part for part in parts if part)

    if isinstance(value, Mapping):
        for wrapper in _TEXT_WRAPPER_KEYS:
            if wrapper in value:
                return canonical_text(value[wrapper])
        if "name" in value:
            return canonical_text(value["name"])
        if isinstance(value.get("label"), str):
            return value["label"]
        return ""

    return _scalar_text(value)


def pick_number(value: Any) -> Optional[float]:
    """
    Coerce numbers and numeric-looking strings to a finite float.

    Examples:
        55.6     → 55.6
        "-1.71"  → -1.71
        ""       → None
        "north"  → None
        True     → None
    """
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)) or (isinstance(value, str) and not value.strip()):
        return None
    try:
        # Integers past the float range overflow
        number = float(value.strip() if isinstance(value, str) else value)
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _first_text(record: Any, rules: Sequence[Rule]) -> Optional[str]:
    for rule in rules:
        text = canonical_text(rule(record)).strip()
        if text:
            return text
    return None


def _first_number(record: Any, rules: Sequence[Rule]) -> Optional[float]:
    for rule in rules:
        number = pick_number(rule(record))
        if number is not None:
            return number
    return None


# ============================================================================
# CANONICAL FIELDS
# ============================================================================


def pick_label(record: Any, placeholder: str = DEFAULT_PLACEHOLDER) -> str:
    """
    Human title for a record, or ``placeholder`` when nothing usable exists.
    """
    return _first_text(record, LABEL_RULES) or placeholder


def pick_identifier(record: Any) -> Optional[str]:
    """
    Identifier (usually a linked-data URL) able to drive a detail fetch.

    Examples:
        {"_about": "X", "name": {"_value": "Y"}} → "X"
        {"@id": "Z"}                             → "Z"
        {"name": "no id here"}                   → None
    """
    for rule in IDENTIFIER_RULES:
        value = rule(record)
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def pick_coordinates(record: Any) -> Optional[Coordinates]:
    """Latitude/longitude pair, or None unless both axes are finite numbers."""
    lat = _first_number(record, LATITUDE_RULES)
    lng = _first_number(record, LONGITUDE_RULES)
    if lat is None or lng is None:
        return None
    return Coordinates(lat=lat, lng=lng)


def pick_authority(record: Any) -> Optional[str]:
    """Local authority / district / region name, flat or nested under "name"."""
    return _first_text(record, AUTHORITY_RULES)


def pick_value(record: Any) -> Optional[str]:
    """
    Display text for an observation-like record.

    Tries "observation", then "value", then the first string or number field.
    """
    if record is None:
        return None
    if isinstance(record, (str, int, float)) and not isinstance(record, bool):
        return str(record)
    if not isinstance(record, Mapping):
        return None

    for key in ("observation", "value"):
        if record.get(key) is not None:
            text = canonical_text(record[key])
            if text:
                return text

    for value in record.values():
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return str(value)
    return None


# ============================================================================
# ENVELOPES AND METADATA
# ============================================================================


def extract_items_container(envelope: Any) -> List[Any]:
    """
    Find the items list inside a response envelope.

    The first container path that is present wins, even when it is empty.

    Example:
        {"result": {"primaryTopic": {"items": [{"_about": "u1"}]}}}
            → [{"_about": "u1"}]
    """
    for rule in ITEMS_CONTAINER_RULES:
        container = rule(envelope)
        if container is None:
            continue
        return list(container) if isinstance(container, list) else []
    return []


def extract_metadata_pairs(record: Any) -> Optional[List[Tuple[str, Any]]]:
    """
    Ordered (key, value) pairs under record["metadata"], None values dropped.

    Returns None when there is no metadata mapping or nothing survives.
    """
    metadata = field("metadata")(record)
    if not isinstance(metadata, Mapping):
        return None
    pairs = [(str(key), value) for key, value in metadata.items() if value is not None]
    return pairs or None


def normalize_record(record: Any, placeholder: str = DEFAULT_PLACEHOLDER) -> NormalizedRecord:
    """Build the canonical record for any upstream item."""
    return NormalizedRecord(
        label=pick_label(record, placeholder),
        identifier=pick_identifier(record),
        coordinates=pick_coordinates(record),
        authority=pick_authority(record),
        metadata=extract_metadata_pairs(record) or [],
    )
