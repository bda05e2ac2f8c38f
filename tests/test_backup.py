"""
Tests for data snapshots, export and import.
"""

import io
import json
import tarfile
from datetime import datetime

import pytest

from n8nkeeper import backup
from n8nkeeper.errors import BackupError


def archive_names(path):
    with tarfile.open(path, "r:gz") as tar:
        return sorted(tar.getnames())


def write_archive(path, metadata, members):
    """Write a hand-made archive for import edge cases."""
    with tarfile.open(path, "w:gz") as tar:
        for name, content in [(backup.METADATA_NAME, json.dumps(metadata))] + list(members.items()):
            data = content.encode()
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tar.addfile(info, fileobj=io.BytesIO(data))
    return path


class TestCreateArchive:
    """Test archive creation."""

    def test_contains_metadata_and_data(self, host):
        host.write_data({"config": "{}", "nodes/custom.js": "x"})
        archive = backup.create_archive(host.base_path / "out.tar.gz", reason="manual")

        assert archive_names(archive) == [
            backup.METADATA_NAME,
            "data/config",
            "data/nodes/custom.js",
        ]
        metadata = backup.read_metadata(archive)
        assert metadata["backup_version"] == backup.BACKUP_SCHEMA_VERSION
        assert metadata["reason"] == "manual"
        assert metadata["data_dir"] == str(host.data_dir)

    def test_extra_metadata(self, host):
        host.write_data()
        archive = backup.create_archive(
            host.base_path / "out.tar.gz", extra_metadata={"node_version": "v18.20.0"}
        )
        assert backup.read_metadata(archive)["node_version"] == "v18.20.0"

    def test_missing_data_dir(self, host):
        with pytest.raises(BackupError, match="not found"):
            backup.create_archive(host.base_path / "out.tar.gz")
        assert not (host.base_path / "out.tar.gz").exists()


class TestSnapshots:
    """Test timestamped snapshots."""

    def test_snapshot_in_backup_dir(self, host):
        host.write_data()
        snapshot = backup.create_snapshot(reason="pre-install")
        assert snapshot.parent == host.backup_dir
        assert backup.SNAPSHOT_RE.match(snapshot.name)

    def test_same_second_gets_suffix(self, host):
        host.backup_dir.mkdir(parents=True)
        stamp = datetime(2024, 1, 31, 14, 25, 1)
        first = backup.get_snapshot_path(stamp)
        assert first.name == "n8n-data-20240131-142501.tar.gz"
        first.touch()
        second = backup.get_snapshot_path(stamp)
        assert second.name == "n8n-data-20240131-142501-1.tar.gz"

    def test_list_newest_first(self, host):
        host.write_data()
        host.backup_dir.mkdir(parents=True)
        for stamp in ("20240101-000000", "20240301-000000", "20240201-000000"):
            backup.create_archive(host.backup_dir / f"n8n-data-{stamp}.tar.gz", reason=stamp)
        (host.backup_dir / "unrelated.tar.gz").write_text("x")

        snapshots = backup.list_snapshots()

        assert [s["stamp"] for s in snapshots] == [
            "20240301-000000", "20240201-000000", "20240101-000000",
        ]
        assert snapshots[0]["reason"] == "20240301-000000"

    def test_list_unreadable_snapshot(self, host):
        host.backup_dir.mkdir(parents=True)
        (host.backup_dir / "n8n-data-20240101-000000.tar.gz").write_text("not a tarball")
        snapshots = backup.list_snapshots()
        assert len(snapshots) == 1
        assert snapshots[0]["reason"] == "unknown"

    def test_list_without_backup_dir(self, host):
        assert backup.list_snapshots() == []

    def test_cleanup_keeps_newest(self, host):
        host.backup_dir.mkdir(parents=True)
        for day in range(1, 5):
            (host.backup_dir / f"n8n-data-2024010{day}-000000.tar.gz").write_text("x")

        would_delete = backup.cleanup_old_snapshots(keep=2, dry_run=True)
        assert [p.name for p in would_delete] == [
            "n8n-data-20240102-000000.tar.gz",
            "n8n-data-20240101-000000.tar.gz",
        ]
        assert all(p.exists() for p in would_delete)

        deleted = backup.cleanup_old_snapshots(keep=2)
        assert not any(p.exists() for p in deleted)
        assert len(backup.list_snapshots()) == 2


class TestExportImport:
    """Test export and import."""

    def test_export_then_import_into_empty_host(self, host):
        host.write_data({"config": "original", "nodes/a.js": "a"})
        archive = backup.export_data(host.base_path / "export.tar.gz")
        assert backup.read_metadata(archive)["reason"] == "export"

        target = host.base_path / "restore" / ".n8n"
        snapshot = backup.import_data(archive, data_dir=target)

        assert snapshot is None
        assert (target / "config").read_text() == "original"
        assert (target / "nodes" / "a.js").read_text() == "a"

    def test_import_snapshots_existing_data(self, host):
        host.write_data({"config": "new"})
        archive = backup.export_data(host.base_path / "export.tar.gz")
        (host.data_dir / "config").write_text("current")

        snapshot = backup.import_data(archive)

        assert snapshot is not None
        assert backup.read_metadata(snapshot)["reason"] == "pre-import"
        assert (host.data_dir / "config").read_text() == "new"

    def test_merge_keeps_extra_files(self, host):
        host.write_data({"config": "x"})
        archive = backup.export_data(host.base_path / "export.tar.gz")
        (host.data_dir / "local-only").write_text("keep me")

        backup.import_data(archive)
        assert (host.data_dir / "local-only").exists()

    def test_replace_removes_extra_files(self, host):
        host.write_data({"config": "x"})
        archive = backup.export_data(host.base_path / "export.tar.gz")
        (host.data_dir / "local-only").write_text("drop me")

        backup.import_data(archive, replace=True)
        assert not (host.data_dir / "local-only").exists()
        assert (host.data_dir / "config").read_text() == "x"

    def test_rejects_newer_schema(self, host):
        archive = write_archive(
            host.base_path / "future.tar.gz",
            {"backup_version": backup.BACKUP_SCHEMA_VERSION + 1},
            {"data/config": "x"},
        )
        with pytest.raises(BackupError, match="newer"):
            backup.import_data(archive)

    def test_rejects_path_traversal(self, host):
        archive = write_archive(
            host.base_path / "evil.tar.gz",
            {"backup_version": 1},
            {"data/../../escape": "x"},
        )
        with pytest.raises(BackupError, match="Unsafe"):
            backup.import_data(archive)
        assert not (host.base_path / "escape").exists()

    def test_missing_metadata(self, host):
        path = host.base_path / "plain.tar.gz"
        with tarfile.open(path, "w:gz") as tar:
            info = tarfile.TarInfo(name="data/config")
            tar.addfile(info, fileobj=io.BytesIO(b""))
        with pytest.raises(BackupError, match="missing metadata"):
            backup.read_metadata(path)

    def test_missing_archive(self, host):
        with pytest.raises(BackupError, match="not found"):
            backup.import_data(host.base_path / "nope.tar.gz")
