"""
Cue record and identity keys.

A cue arrives as a loosely typed dict (source file, snapshot or QLab query).
``Cue`` gives the well-known properties fixed attributes and keeps everything
else in ``extra`` so nothing QLab sends is lost on the way back out.

Identity keys correlate the same logical cue across source, cache and live
state:

  numbered cue    "1.0", or "<parent>.<n>" for relative child numbers
  unnumbered cue  "<parent>@<index>[<type>:<name>]"

Positional keys are best-effort: reordering or renaming unnumbered siblings
changes them.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# wire key -> attribute
WIRE_FIELDS = {
    "type": "type",
    "name": "name",
    "number": "number",
    "uniqueID": "unique_id",
    "fileTarget": "file_target",
    "duration": "duration",
    "preWait": "pre_wait",
    "postWait": "post_wait",
    "cueTargetNumber": "cue_target_number",
    "cueTargetID": "cue_target_id",
    "armed": "armed",
    "flagged": "flagged",
    "colorName": "color_name",
    "notes": "notes",
    "mode": "mode",
    "infiniteLoop": "infinite_loop",
    "text": "text",
}
CHILDREN_KEY = "cues"


@dataclass
class Cue:
    type: Optional[str] = None
    name: Optional[str] = None
    number: Any = None
    unique_id: Optional[str] = None
    file_target: Optional[str] = None
    duration: Any = None
    pre_wait: Any = None
    post_wait: Any = None
    cue_target_number: Any = None
    cue_target_id: Optional[str] = None
    armed: Any = None
    flagged: Any = None
    color_name: Optional[str] = None
    notes: Optional[str] = None
    mode: Any = None
    infinite_loop: Any = None
    text: Optional[str] = None
    children: Optional[List["Cue"]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cue":
        cue = cls()
        for key, value in data.items():
            if key == CHILDREN_KEY:
                if isinstance(value, list):
                    cue.children = [cls.from_dict(child) for child in value if isinstance(child, dict)]
                else:
                    cue.extra[key] = value
            elif key in WIRE_FIELDS:
                setattr(cue, WIRE_FIELDS[key], value)
            else:
                cue.extra[key] = value
        return cue

    def to_dict(self, include_children: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for key, attr in WIRE_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        data.update(self.extra)
        if include_children and self.children is not None:
            data[CHILDREN_KEY] = [child.to_dict() for child in self.children]
        return data

    def has(self, key: str) -> bool:
        """True when the property is present (None counts as absent)."""
        if key in WIRE_FIELDS:
            return getattr(self, WIRE_FIELDS[key]) is not None
        return self.extra.get(key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        if key in WIRE_FIELDS:
            value = getattr(self, WIRE_FIELDS[key])
        else:
            value = self.extra.get(key)
        return default if value is None else value

    def get_str(self, key: str) -> str:
        """String property or "" when absent or not a string."""
        value = self.get(key)
        return value if isinstance(value, str) else ""

    @property
    def lowered_type(self) -> str:
        return self.get_str("type").lower()

    @property
    def is_list(self) -> bool:
        return self.lowered_type in ("list", "cuelist", "cue list")


def normalize_number(value: Any) -> str:
    """Canonical string form of a cue number.

    Whole floats in [0, 999] keep one decimal ("1.0"), other floats use the
    shortest round-trip form, ints have no decimal point ("3").
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        if value.is_integer() and 0 <= value <= 999:
            return "%.1f" % value
        return format_float(value)
    if isinstance(value, int):
        return "%d" % value
    return str(value)


def format_float(value: float) -> str:
    """Shortest round-trip form, switching to exponent notation outside
    [1e-4, 1e6): 5.0 -> "5", 0.25 -> "0.25", 1234567.0 -> "1.234567e+06".
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    sign = "-" if math.copysign(1.0, value) < 0 else ""
    if value == 0:
        return sign + "0"

    text = repr(abs(value))
    exponent = 0
    if "e" in text:
        text, exp_text = text.split("e")
        exponent = int(exp_text)
    int_part, _, frac_part = text.partition(".")
    all_digits = int_part + frac_part
    digits = all_digits.lstrip("0")
    point = len(int_part) - (len(all_digits) - len(digits)) + exponent
    digits = digits.rstrip("0") or "0"

    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = digits[0]
        if len(digits) > 1:
            mantissa += "." + digits[1:]
        return f"{sign}{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return sign + digits + "0" * (point - len(digits))
    return f"{sign}{digits[:point]}.{digits[point:]}"


def full_number(parent_number: str, cue_number: str) -> str:
    """Child numbers without a "." are relative to the parent's number."""
    if parent_number and cue_number:
        if "." in cue_number:
            return cue_number
        return f"{parent_number}.{cue_number}"
    return cue_number


def position_key(parent_number: str, index: int, cue_type: str, name: str) -> str:
    base = f"@{index}[{cue_type.lower()}:{name}]"
    if parent_number:
        return parent_number + base
    return base


def raw_identity(raw: Dict[str, Any], parent_number: str, index: int) -> Tuple[str, str]:
    """``(identity_key, full_number)`` for a cue still in dict form."""
    number = full_number(parent_number, normalize_number(raw.get("number")))
    if number:
        return number, number
    cue_type = raw.get("type") if isinstance(raw.get("type"), str) else ""
    name = raw.get("name") if isinstance(raw.get("name"), str) else ""
    return position_key(parent_number, index, cue_type, name), number


def cue_full_number(cue: Cue, parent_number: str) -> str:
    return full_number(parent_number, normalize_number(cue.number))


def identity_key(cue: Cue, parent_number: str, index: int) -> str:
    """Identity key for ``cue`` at ``index`` under a parent with ``parent_number``."""
    number = cue_full_number(cue, parent_number)
    if number:
        return number
    return position_key(parent_number, index, cue.get_str("type"), cue.get_str("name"))
