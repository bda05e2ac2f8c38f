"""
Version parsing and engine-constraint ranges.

Handles the constraint grammar n8n publishes in ``engines.node``:

    >=18.17 <21
    >=16 <=18.x
    >=20.19 <= 24.x

Only a lower bound (``>=`` or ``>``) and an upper bound (``<=`` or ``<``,
optionally with a trailing ``.x`` wildcard) are recognised. A side that is
not found is unbounded; the parser never raises.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional, Tuple, Union


class Version(NamedTuple):
    """Numeric (major, minor, patch) version, ordered as a tuple."""
    major: int
    minor: int = 0
    patch: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def parse_version(text: str) -> Version:
    """
    Parse a dotted numeric version string.

    A leading ``v`` is stripped. Missing minor/patch components are 0.

    Raises:
        ValueError: If the string is not 1-3 dot-separated integers
    """
    v = text.strip()
    if v[:1] in ("v", "V"):
        v = v[1:]
    parts = v.split(".")
    if not 1 <= len(parts) <= 3 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid version: {text!r}")
    return Version(*(int(p) for p in parts))


def try_parse_version(text: Optional[str]) -> Optional[Version]:
    """Parse a version string, returning None instead of raising."""
    if not text:
        return None
    try:
        return parse_version(text)
    except ValueError:
        return None


# =============================================================================
# Bounds
# =============================================================================

class Unbounded(Enum):
    """Marker for a range side with no bound."""
    UNBOUNDED = "unbounded"

    def __repr__(self) -> str:
        return "UNBOUNDED"


UNBOUNDED = Unbounded.UNBOUNDED


@dataclass(frozen=True)
class BoundValue:
    """A present bound: a version and whether it is inclusive."""
    version: Version
    inclusive: bool


Bound = Union[Unbounded, BoundValue]


@dataclass(frozen=True)
class VersionRange:
    """
    An open/closed numeric interval parsed from an engine constraint.

    ``warnings`` lists bound clauses that were present in the source string
    but could not be read; those sides are still treated as unbounded.
    """
    lower: Bound = UNBOUNDED
    upper: Bound = UNBOUNDED
    source: str = ""
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def satisfies_lower(self, version: Version) -> bool:
        if self.lower is UNBOUNDED:
            return True
        if self.lower.inclusive:
            return version >= self.lower.version
        return version > self.lower.version

    def satisfies_upper(self, version: Version) -> bool:
        if self.upper is UNBOUNDED:
            return True
        if self.upper.inclusive:
            return version <= self.upper.version
        return version < self.upper.version

    def contains(self, version: Version) -> bool:
        return self.satisfies_lower(version) and self.satisfies_upper(version)

    def describe(self) -> str:
        """Human-readable form, e.g. ``>=18.17.0 <21.0.0``."""
        parts = []
        if self.lower is not UNBOUNDED:
            op = ">=" if self.lower.inclusive else ">"
            parts.append(f"{op}{self.lower.version}")
        if self.upper is not UNBOUNDED:
            op = "<=" if self.upper.inclusive else "<"
            parts.append(f"{op}{self.upper.version}")
        return " ".join(parts) if parts else "*"


# =============================================================================
# Constraint Parser
# =============================================================================

_LOWER_RE = re.compile(r"(>=|>)\s*(\d+(?:\.\d+)*)")
_UPPER_RE = re.compile(r"(<=|<)\s*(\d+(?:\.\d+)*)(\.[xX*])?")
_LOWER_OP_RE = re.compile(r">")
_UPPER_OP_RE = re.compile(r"<")

WILDCARD_FILL = 99


def _expand_wildcard(number: str) -> str:
    """Fill the components replaced by ``.x`` with 99 (``18`` -> ``18.99.99``)."""
    parts = number.split(".")
    while len(parts) < 3:
        parts.append(str(WILDCARD_FILL))
    return ".".join(parts)


def parse_constraint(constraint: Optional[str]) -> VersionRange:
    """
    Parse an engine constraint string into a VersionRange.

    Never raises. A side that is missing, or present but unreadable, is
    unbounded; the unreadable case is recorded in ``warnings``.
    """
    text = constraint or ""
    warnings = []

    lower: Bound = UNBOUNDED
    match = _LOWER_RE.search(text)
    if match:
        version = try_parse_version(match.group(2))
        if version is None:
            warnings.append(f"unreadable lower bound: {match.group(0)!r}")
        else:
            lower = BoundValue(version, inclusive=match.group(1) == ">=")
    elif _LOWER_OP_RE.search(text):
        warnings.append("lower bound operator without a version")

    upper: Bound = UNBOUNDED
    match = _UPPER_RE.search(text)
    if match:
        number = match.group(2)
        wildcard = match.group(3) is not None
        if wildcard:
            number = _expand_wildcard(number)
        version = try_parse_version(number)
        if version is None:
            warnings.append(f"unreadable upper bound: {match.group(0)!r}")
        else:
            # A wildcard ceiling always includes the filled-in version
            inclusive = wildcard or match.group(1) == "<="
            upper = BoundValue(version, inclusive=inclusive)
    elif _UPPER_OP_RE.search(text):
        warnings.append("upper bound operator without a version")

    return VersionRange(lower=lower, upper=upper, source=text, warnings=tuple(warnings))
