"""
Tests for release index filtering and selection.
"""

import pytest

from n8nkeeper.releases import (
    WINDOWS_X64_MSI,
    ReleaseDescriptor,
    filter_releases,
    is_candidate,
    parse_release_index,
    select_release,
)
from n8nkeeper.versioning import Version, parse_constraint


def entry(version, lts=False, files=(WINDOWS_X64_MSI, "win-x64-zip", "linux-x64")):
    """Build a nodejs.org index.json entry."""
    return {"version": version, "lts": lts, "files": list(files)}


@pytest.fixture
def sample_releases():
    """Release list used by the selection properties."""
    return parse_release_index([
        entry("v17.9.1"),
        entry("v18.17.0", lts="Hydrogen"),
        entry("v18.20.0", lts="Hydrogen"),
        entry("v20.1.0"),
    ])


class TestReleaseDescriptor:
    """Test building descriptors from index entries."""

    def test_from_index_entry(self):
        release = ReleaseDescriptor.from_index_entry(entry("v20.11.1", lts="Iron"))
        assert release.version == Version(20, 11, 1)
        assert release.lts is True
        assert release.lts_name == "Iron"
        assert WINDOWS_X64_MSI in release.files
        assert release.display_version == "20.11.1"

    def test_lts_false(self):
        release = ReleaseDescriptor.from_index_entry(entry("v21.0.0", lts=False))
        assert release.lts is False
        assert release.lts_name is None

    def test_prerelease_text_marker(self):
        release = ReleaseDescriptor.from_index_entry(entry("v21.0.0-rc.1"))
        assert release.prerelease is False
        assert release.looks_prerelease is True
        assert release.version is None

    def test_missing_files(self):
        release = ReleaseDescriptor.from_index_entry({"version": "v20.0.0", "lts": False})
        assert release.files == frozenset()

    def test_parse_release_index_skips_non_mappings(self):
        releases = parse_release_index([entry("v20.0.0"), "junk", None])
        assert len(releases) == 1


class TestSelectRelease:
    """Test LTS-preferring newest-in-range selection."""

    def test_prefers_newest_lts_in_range(self, sample_releases):
        release = select_release(sample_releases, parse_constraint(">=16 <21"))
        assert release.display_version == "18.20.0"

    def test_falls_back_to_newest_non_lts(self, sample_releases):
        release = select_release(sample_releases, parse_constraint(">=19 <21"))
        assert release.display_version == "20.1.0"

    def test_no_candidate_returns_none(self, sample_releases):
        assert select_release(sample_releases, parse_constraint(">=22 <23")) is None

    def test_empty_list(self):
        assert select_release([], parse_constraint(">=16")) is None

    def test_unbounded_upper_never_rejects(self, sample_releases):
        release = select_release(sample_releases, parse_constraint(">=19"))
        assert release.display_version == "20.1.0"

    def test_prerelease_excluded_even_in_range(self):
        releases = parse_release_index([entry("v21.0.0-rc1"), entry("v20.9.0")])
        release = select_release(releases, parse_constraint(">=20 <22"))
        assert release.display_version == "20.9.0"

    def test_structured_prerelease_flag(self):
        raw = entry("v20.10.0")
        raw["prerelease"] = True
        releases = parse_release_index([raw, entry("v20.9.0")])
        assert select_release(releases, parse_constraint(">=20")).display_version == "20.9.0"

    def test_missing_platform_artifact_excluded(self):
        releases = parse_release_index([
            entry("v20.10.0", files=("linux-x64",)),
            entry("v20.9.0"),
        ])
        assert select_release(releases, parse_constraint(">=20")).display_version == "20.9.0"

    def test_malformed_version_skipped(self):
        releases = parse_release_index([entry("vX.Y"), entry("v20.9.0")])
        assert select_release(releases, parse_constraint(">=20")).display_version == "20.9.0"

    def test_inclusive_and_exclusive_bounds(self, sample_releases):
        exact = select_release(sample_releases, parse_constraint(">=18.20.0 <=18.20.0"))
        assert exact.display_version == "18.20.0"
        assert select_release(sample_releases, parse_constraint(">18.20.0 <20.1.0")) is None

    def test_wildcard_ceiling(self, sample_releases):
        release = select_release(sample_releases, parse_constraint(">=16 <=18.x"))
        assert release.display_version == "18.20.0"

    def test_order_of_input_does_not_matter(self, sample_releases):
        reversed_releases = list(reversed(sample_releases))
        release = select_release(reversed_releases, parse_constraint(">=16 <21"))
        assert release.display_version == "18.20.0"


class TestFilterReleases:
    """Test filter_releases and is_candidate."""

    def test_sorted_newest_first(self, sample_releases):
        survivors = filter_releases(sample_releases, parse_constraint(">=16 <21"))
        assert [r.display_version for r in survivors] == ["20.1.0", "18.20.0", "18.17.0", "17.9.1"]

    def test_is_candidate_artifact(self):
        release = ReleaseDescriptor.from_index_entry(entry("v20.0.0"))
        assert is_candidate(release, parse_constraint(""), WINDOWS_X64_MSI)
        assert not is_candidate(release, parse_constraint(""), "win-arm64-msi")
