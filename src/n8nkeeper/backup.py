"""
Snapshot, export and import of the n8n data directory.

Provides:
- Automatic snapshot before any destructive action (install, uninstall, import)
- Manual export to a chosen path
- Import (restore) of an exported archive
- Snapshot listing and cleanup

Archive layout:
    backup-metadata.json     - schema version, reason, timestamps, versions
    data/...                 - contents of the .n8n directory

Snapshot naming convention:
    n8n-data-20240131-142501.tar.gz
    n8n-data-20240131-142501-1.tar.gz   (second snapshot in the same second)
"""

import io
import json
import re
import shutil
import tarfile
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

from . import paths
from .__version__ import __version__
from .errors import BackupError


# Backup metadata schema version
BACKUP_SCHEMA_VERSION = 1

METADATA_NAME = "backup-metadata.json"
DATA_PREFIX = "data"
SNAPSHOT_PREFIX = "n8n-data-"
SNAPSHOT_RE = re.compile(r"^n8n-data-(\d{8}-\d{6})(?:-(\d+))?\.tar\.gz$")


def get_snapshot_path(timestamp: Optional[datetime] = None) -> Path:
    """
    Get a free path for a new snapshot.

    Adds a numeric suffix when a snapshot with the same timestamp exists.
    """
    stamp = (timestamp or datetime.now()).strftime("%Y%m%d-%H%M%S")
    backup_dir = paths.get_backup_dir()
    candidate = backup_dir / f"{SNAPSHOT_PREFIX}{stamp}.tar.gz"
    suffix = 1
    while candidate.exists():
        candidate = backup_dir / f"{SNAPSHOT_PREFIX}{stamp}-{suffix}.tar.gz"
        suffix += 1
    return candidate


def create_archive(
    output_path: Path,
    data_dir: Optional[Path] = None,
    reason: str = "manual",
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """
    Write a tar.gz archive of the data directory.

    Args:
        output_path: Archive path to write
        data_dir: Directory to archive (default: n8n data dir)
        reason: Why the archive was made ("manual", "pre-install", ...)
        extra_metadata: Additional metadata to include

    Returns:
        Path to created archive

    Raises:
        BackupError: If the data directory is missing or the write fails
    """
    data_dir = data_dir or paths.get_data_dir()
    if not data_dir.is_dir():
        raise BackupError(f"Data directory not found: {data_dir}")

    metadata = {
        "backup_version": BACKUP_SCHEMA_VERSION,
        "created_at": datetime.now().isoformat(),
        "tool_version": __version__,
        "reason": reason,
        "data_dir": str(data_dir),
    }
    if extra_metadata:
        metadata.update(extra_metadata)

    output_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(output_path, "w:gz") as tar:
            metadata_json = json.dumps(metadata, indent=2).encode()
            meta_info = tarfile.TarInfo(name=METADATA_NAME)
            meta_info.size = len(metadata_json)
            meta_info.mtime = int(datetime.now().timestamp())
            tar.addfile(meta_info, fileobj=io.BytesIO(metadata_json))

            for item in sorted(data_dir.rglob("*")):
                if item.is_file():
                    arcname = f"{DATA_PREFIX}/{item.relative_to(data_dir).as_posix()}"
                    tar.add(item, arcname=arcname)
    except (OSError, tarfile.TarError) as e:
        # Don't leave a truncated archive behind
        output_path.unlink(missing_ok=True)
        raise BackupError(f"Failed to write archive {output_path}: {e}") from e

    return output_path


def create_snapshot(reason: str = "manual", data_dir: Optional[Path] = None,
                    extra_metadata: Optional[Dict[str, Any]] = None) -> Path:
    """Create a timestamped snapshot in the backup directory."""
    paths.ensure_backup_dir()
    return create_archive(
        get_snapshot_path(),
        data_dir=data_dir,
        reason=reason,
        extra_metadata=extra_metadata,
    )


def export_data(output_path: Path, data_dir: Optional[Path] = None) -> Path:
    """Export the data directory to a user-chosen archive path."""
    return create_archive(output_path, data_dir=data_dir, reason="export")


def read_metadata(archive_path: Path) -> Dict[str, Any]:
    """
    Read the metadata document from an archive.

    Raises:
        BackupError: If the archive is unreadable or has no metadata
    """
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            meta_file = tar.extractfile(METADATA_NAME)
            if meta_file is None:
                raise BackupError(f"Archive missing metadata: {archive_path}")
            return json.loads(meta_file.read().decode())
    except KeyError as e:
        raise BackupError(f"Archive missing metadata: {archive_path}") from e
    except (tarfile.TarError, OSError, json.JSONDecodeError) as e:
        raise BackupError(f"Cannot read archive {archive_path}: {e}") from e


def _member_destination(member_name: str, data_dir: Path) -> Optional[Path]:
    """Map an archive member to its restore path, or None to skip it."""
    parts = PurePosixPath(member_name).parts
    if len(parts) < 2 or parts[0] != DATA_PREFIX:
        return None
    relative = parts[1:]
    if any(p in ("..", "") for p in relative) or PurePosixPath(member_name).is_absolute():
        raise BackupError(f"Unsafe path in archive: {member_name}")
    return data_dir.joinpath(*relative)


def import_data(archive_path: Path, data_dir: Optional[Path] = None,
                replace: bool = False) -> Optional[Path]:
    """
    Restore an exported archive into the data directory.

    The current data directory is snapshotted first when it exists.

    Args:
        archive_path: Archive to restore
        data_dir: Restore target (default: n8n data dir)
        replace: Remove existing files before restoring instead of merging

    Returns:
        Path of the pre-import snapshot, or None if there was nothing to save

    Raises:
        BackupError: If the archive is invalid or unsafe
    """
    if not archive_path.exists():
        raise BackupError(f"Archive not found: {archive_path}")

    data_dir = data_dir or paths.get_data_dir()
    metadata = read_metadata(archive_path)
    if metadata.get("backup_version", 0) > BACKUP_SCHEMA_VERSION:
        raise BackupError(
            f"Archive schema v{metadata.get('backup_version')} is newer than "
            f"supported (v{BACKUP_SCHEMA_VERSION})"
        )

    snapshot = None
    if data_dir.is_dir() and any(data_dir.iterdir()):
        snapshot = create_snapshot(reason="pre-import", data_dir=data_dir)

    with tarfile.open(archive_path, "r:gz") as tar:
        members = [(m, _member_destination(m.name, data_dir)) for m in tar.getmembers()]

        if replace and data_dir.exists():
            shutil.rmtree(data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)

        for member, dest in members:
            if dest is None or not member.isfile():
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            with tar.extractfile(member) as src:
                if src:
                    dest.write_bytes(src.read())

    return snapshot


def list_snapshots() -> List[Dict[str, Any]]:
    """
    List snapshots in the backup directory with metadata.

    Returns:
        List of snapshot info dicts, newest first
    """
    backup_dir = paths.get_backup_dir()
    if not backup_dir.exists():
        return []

    snapshots = []
    for archive in backup_dir.glob(f"{SNAPSHOT_PREFIX}*.tar.gz"):
        match = SNAPSHOT_RE.match(archive.name)
        if not match:
            continue

        try:
            metadata = read_metadata(archive)
        except BackupError:
            metadata = None

        snapshots.append({
            "path": archive,
            "filename": archive.name,
            "stamp": match.group(1),
            "suffix": int(match.group(2)) if match.group(2) else 0,
            "size": archive.stat().st_size,
            "created_at": metadata.get("created_at") if metadata else None,
            "reason": metadata.get("reason", "unknown") if metadata else "unknown",
            "metadata": metadata,
        })

    return sorted(snapshots, key=lambda s: (s["stamp"], s["suffix"]), reverse=True)


def cleanup_old_snapshots(keep: int = 5, dry_run: bool = False) -> List[Path]:
    """
    Remove old snapshots, keeping the newest ``keep``.

    Returns:
        List of snapshot paths that were (or would be) deleted
    """
    to_delete = [s["path"] for s in list_snapshots()[keep:]]
    if not dry_run:
        for path in to_delete:
            path.unlink()
    return to_delete
