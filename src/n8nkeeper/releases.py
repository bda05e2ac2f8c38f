"""
Node.js release index filtering and selection.

Release descriptors come from the nodejs.org ``index.json`` document, where
each entry looks like::

    {"version": "v20.11.1", "lts": "Iron", "files": ["win-x64-msi", ...]}

``lts`` is the LTS codename, or ``false`` for Current releases.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from .versioning import Version, VersionRange, try_parse_version


# 64-bit Windows installer artifact identifier in the release index
WINDOWS_X64_MSI = "win-x64-msi"


@dataclass(frozen=True)
class ReleaseDescriptor:
    """A published Node.js release."""
    version_string: str
    version: Optional[Version]
    lts: bool = False
    lts_name: Optional[str] = None
    files: FrozenSet[str] = field(default_factory=frozenset)
    prerelease: bool = False

    @property
    def display_version(self) -> str:
        """Version without the leading ``v``."""
        return self.version_string.lstrip("vV")

    @property
    def looks_prerelease(self) -> bool:
        """Structured flag, or a pre-release tag in the version text."""
        return self.prerelease or "-" in self.version_string

    @classmethod
    def from_index_entry(cls, entry: Dict[str, Any]) -> "ReleaseDescriptor":
        """Build a descriptor from a nodejs.org index.json entry."""
        version_string = str(entry.get("version", ""))
        lts_value = entry.get("lts")
        lts = bool(lts_value)
        lts_name = lts_value if isinstance(lts_value, str) else None
        files = frozenset(str(f) for f in entry.get("files") or [])

        # Pre-release tags (e.g. -rc.1) make the numeric parse fail
        version = try_parse_version(version_string)

        return cls(
            version_string=version_string,
            version=version,
            lts=lts,
            lts_name=lts_name,
            files=files,
            prerelease=bool(entry.get("prerelease", False)),
        )


def parse_release_index(entries: Iterable[Dict[str, Any]]) -> List[ReleaseDescriptor]:
    """Convert raw index.json entries, skipping anything that is not a mapping."""
    return [ReleaseDescriptor.from_index_entry(e) for e in entries if isinstance(e, dict)]


def is_candidate(release: ReleaseDescriptor, version_range: VersionRange,
                 artifact: str = WINDOWS_X64_MSI) -> bool:
    """Apply the release filter, checks in short-circuit order."""
    if release.looks_prerelease:
        return False
    if artifact not in release.files:
        return False
    if release.version is None:
        return False
    if not version_range.satisfies_lower(release.version):
        return False
    if not version_range.satisfies_upper(release.version):
        return False
    return True


def filter_releases(releases: Iterable[ReleaseDescriptor], version_range: VersionRange,
                    artifact: str = WINDOWS_X64_MSI) -> List[ReleaseDescriptor]:
    """Return releases that pass the filter, newest first."""
    survivors = [r for r in releases if is_candidate(r, version_range, artifact)]
    return sorted(survivors, key=lambda r: r.version, reverse=True)


def select_release(releases: Iterable[ReleaseDescriptor], version_range: VersionRange,
                   artifact: str = WINDOWS_X64_MSI) -> Optional[ReleaseDescriptor]:
    """
    Pick the best release inside the range.

    Prefers LTS releases when any LTS release survives the filter, then
    takes the highest version. Returns None when nothing survives.
    """
    survivors = filter_releases(releases, version_range, artifact)
    if not survivors:
        return None

    lts_survivors = [r for r in survivors if r.lts]
    pool = lts_survivors or survivors
    return max(pool, key=lambda r: r.version)
