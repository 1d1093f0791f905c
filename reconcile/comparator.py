"""
Field-level cue comparator.

Only content fields are compared, and each has an equivalence rule that
absorbs differences between how source files and QLab spell the same value:

    armed, flagged     never differ (operational state, not content)
    duration           "0" == ""
    type               case-insensitive ("Audio" == "audio")
    fileTarget         basename only
    colorName          "" == "none"
    cueTargetNumber    exact

fileTarget and cueTargetNumber are compared only when both cues define them;
QLab omits them for cue types that do not support them.
"""

import os
from typing import Any, Dict, Optional

from reconcile.cue import Cue, format_float

COMPARED_FIELDS = (
    "name",
    "type",
    "fileTarget",
    "duration",
    "cueTargetNumber",
    "armed",
    "colorName",
    "flagged",
    "notes",
)
PRESENCE_REQUIRED_FIELDS = frozenset({"fileTarget", "cueTargetNumber"})
OPERATIONAL_FIELDS = frozenset({"armed", "flagged"})


def normalize_property(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return format_float(value)
    if isinstance(value, int):
        return "%d" % value
    return str(value)


def fields_equivalent(field: str, left: str, right: str) -> bool:
    """Equality of two normalized values under ``field``'s rule."""
    if field in OPERATIONAL_FIELDS:
        return True
    if left == right:
        return True
    if field == "duration":
        return left in ("", "0") and right in ("", "0")
    if field == "type":
        return left.lower() == right.lower()
    if field == "fileTarget":
        if not left or not right:
            return False
        return os.path.basename(left) == os.path.basename(right)
    if field == "colorName":
        return left in ("", "none") and right in ("", "none")
    return False


def compare_field(field: str, left: Optional[Cue], right: Optional[Cue]) -> Optional[str]:
    """``"'old' -> 'new'"`` when ``field`` differs, else None."""
    if left is None or right is None:
        return None
    if field in PRESENCE_REQUIRED_FIELDS and not (left.has(field) and right.has(field)):
        return None
    old = normalize_property(left.get(field))
    new = normalize_property(right.get(field))
    if old == "" and new == "":
        return None
    if fields_equivalent(field, old, new):
        return None
    return f"'{old}' -> '{new}'"


def compare_detailed(left: Cue, right: Cue) -> Dict[str, str]:
    """Map of differing field name -> ``"'old' -> 'new'"``."""
    differences: Dict[str, str] = {}
    for field in COMPARED_FIELDS:
        change = compare_field(field, left, right)
        if change is not None:
            differences[field] = change
    return differences


def compare_boolean(left: Cue, right: Cue) -> bool:
    """True when the two cues have no content differences."""
    return not compare_detailed(left, right)


def strip_diff_prefix(name: str) -> str:
    """Field name from a diff key ("source_vs_cache_name" -> "name")."""
    for prefix in ("source_vs_cache_", "cache_vs_current_"):
        if name.startswith(prefix):
            return name[len(prefix):]
    return name
