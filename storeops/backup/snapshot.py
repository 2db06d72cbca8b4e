"""Full-file snapshots of the primary database."""

from __future__ import annotations

import logging
import pathlib
import shutil
from dataclasses import dataclass
from datetime import datetime

from storeops.utils.dates import snapshot_stamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "store"
DEFAULT_SUFFIX = ".db"
BACKUP_DIRNAME = "backups"


class SnapshotIntegrityError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class SnapshotRecord:
    artifact_path: pathlib.Path
    size_bytes: int
    created_at: datetime


def default_backup_dir(source_path: pathlib.Path) -> pathlib.Path:
    return source_path.parent / BACKUP_DIRNAME


def snapshot_marker(prefix: str) -> str:
    return f"{prefix}_backup_"


def is_snapshot_name(name: str, *, prefix: str = DEFAULT_PREFIX, suffix: str = DEFAULT_SUFFIX) -> bool:
    return name.startswith(snapshot_marker(prefix)) and name.endswith(suffix)


def create_snapshot(
    source_path: pathlib.Path,
    backup_dir: pathlib.Path | None = None,
    *,
    prefix: str = DEFAULT_PREFIX,
    now: datetime | None = None,
) -> SnapshotRecord | None:
    """Copy ``source_path`` into the backup directory.

    Returns ``None`` when there is nothing to back up. Raises
    :class:`SnapshotIntegrityError` when the copy does not match the source size;
    the partial artifact is removed in that case.
    """
    source_path = pathlib.Path(source_path)
    if not source_path.is_file():
        logger.warning("Database file %s not found, nothing to back up", source_path)
        return None

    created_at = now or utc_now()
    target_dir = pathlib.Path(backup_dir) if backup_dir else default_backup_dir(source_path)
    target_dir.mkdir(parents=True, exist_ok=True)
    destination = _unique_destination(target_dir, prefix, snapshot_stamp(created_at), source_path.suffix or DEFAULT_SUFFIX)

    source_size = source_path.stat().st_size
    shutil.copyfile(source_path, destination)
    copied_size = destination.stat().st_size
    if copied_size != source_size:
        _discard(destination)
        raise SnapshotIntegrityError(
            f"Snapshot size mismatch for {destination.name}: source {source_size} bytes, copy {copied_size} bytes"
        )

    logger.info("Snapshot written to %s (%.1f KB)", destination, copied_size / 1024)
    return SnapshotRecord(artifact_path=destination, size_bytes=copied_size, created_at=created_at)


def _unique_destination(directory: pathlib.Path, prefix: str, stamp: str, suffix: str) -> pathlib.Path:
    base = f"{snapshot_marker(prefix)}{stamp}"
    candidate = directory / f"{base}{suffix}"
    counter = 1
    while candidate.exists():
        candidate = directory / f"{base}-{counter}{suffix}"
        counter += 1
    return candidate


def check_restorable(artifact_path: pathlib.Path, target_path: pathlib.Path, *, prefix: str = DEFAULT_PREFIX) -> None:
    suffix = pathlib.Path(target_path).suffix or DEFAULT_SUFFIX
    if not is_snapshot_name(artifact_path.name, prefix=prefix, suffix=suffix):
        raise ValueError(f"{artifact_path.name} is not a {snapshot_marker(prefix)}*{suffix} snapshot")
    if not artifact_path.is_file():
        raise FileNotFoundError(f"Snapshot {artifact_path} does not exist")


def restore_snapshot(
    artifact_path: pathlib.Path,
    target_path: pathlib.Path,
    *,
    prefix: str = DEFAULT_PREFIX,
    now: datetime | None = None,
) -> SnapshotRecord:
    """Copy a snapshot back over ``target_path``.

    Only files named like snapshots are accepted. The copy is staged next to
    the target and moved into place once its size matches the snapshot, so a
    failed restore leaves the live file untouched.
    """
    artifact_path = pathlib.Path(artifact_path)
    target_path = pathlib.Path(target_path)
    check_restorable(artifact_path, target_path, prefix=prefix)

    expected_size = artifact_path.stat().st_size
    target_path.parent.mkdir(parents=True, exist_ok=True)
    staging = target_path.with_name(f"{target_path.name}.restoring")
    shutil.copyfile(artifact_path, staging)
    copied_size = staging.stat().st_size
    if copied_size != expected_size:
        _discard(staging)
        raise SnapshotIntegrityError(
            f"Restore size mismatch for {artifact_path.name}: snapshot {expected_size} bytes, copy {copied_size} bytes"
        )
    staging.replace(target_path)
    logger.info("Restored %s over %s (%.1f KB)", artifact_path.name, target_path, copied_size / 1024)
    return SnapshotRecord(artifact_path=target_path, size_bytes=copied_size, created_at=now or utc_now())


def _discard(path: pathlib.Path) -> None:
    try:
        path.unlink()
    except OSError as exc:
        logger.warning("Could not remove invalid copy %s: %s", path, exc)
