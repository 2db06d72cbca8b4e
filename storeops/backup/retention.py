"""Retention window for database snapshots."""

from __future__ import annotations

import logging
import pathlib
from dataclasses import dataclass, field

from storeops.backup.snapshot import DEFAULT_PREFIX, DEFAULT_SUFFIX, is_snapshot_name

logger = logging.getLogger(__name__)

DEFAULT_KEEP = 10


@dataclass(slots=True)
class PruneResult:
    deleted_names: list[str] = field(default_factory=list)
    kept_names: list[str] = field(default_factory=list)
    failed_names: list[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted_names)


def list_snapshots(
    backup_dir: pathlib.Path,
    *,
    prefix: str = DEFAULT_PREFIX,
    suffix: str = DEFAULT_SUFFIX,
) -> list[pathlib.Path]:
    """Snapshots in ``backup_dir``, most recent first."""
    backup_dir = pathlib.Path(backup_dir)
    if not backup_dir.is_dir():
        return []
    candidates = [
        entry
        for entry in backup_dir.iterdir()
        if entry.is_file() and is_snapshot_name(entry.name, prefix=prefix, suffix=suffix)
    ]
    # Names embed a sortable timestamp, which settles equal mtimes.
    candidates.sort(key=lambda entry: (entry.stat().st_mtime, entry.name), reverse=True)
    return candidates


def prune(
    backup_dir: pathlib.Path,
    keep: int = DEFAULT_KEEP,
    *,
    prefix: str = DEFAULT_PREFIX,
    suffix: str = DEFAULT_SUFFIX,
) -> PruneResult:
    if keep < 1:
        raise ValueError(f"Retention window must keep at least one snapshot, got {keep}")
    snapshots = list_snapshots(backup_dir, prefix=prefix, suffix=suffix)
    result = PruneResult(kept_names=[entry.name for entry in snapshots[:keep]])
    for stale in snapshots[keep:]:
        try:
            stale.unlink()
        except OSError as exc:
            logger.warning("Could not delete old snapshot %s: %s", stale.name, exc)
            result.failed_names.append(stale.name)
            continue
        logger.info("Deleted old snapshot %s", stale.name)
        result.deleted_names.append(stale.name)
    if result.deleted_names:
        logger.info("Pruned %s snapshots, keeping %s", result.deleted_count, len(result.kept_names))
    return result
