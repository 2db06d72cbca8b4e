"""Pre-deploy backup job: snapshot, prune, notify.

Also lists the snapshots on disk and restores one of them over the database
file.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import pathlib
import sys
from dataclasses import dataclass
from typing import Sequence

from dotenv import load_dotenv

from storeops.backup.retention import DEFAULT_KEEP, PruneResult, list_snapshots, prune
from storeops.backup.snapshot import (
    DEFAULT_PREFIX,
    DEFAULT_SUFFIX,
    SnapshotIntegrityError,
    SnapshotRecord,
    check_restorable,
    create_snapshot,
    default_backup_dir,
    restore_snapshot,
)
from storeops.db.session import database_path
from storeops.utils.dates import format_timestamp, from_timestamp
from storeops.utils.logs import configure_logging
from storeops.utils.notify import Notifier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BackupSettings:
    source_path: pathlib.Path
    backup_dir: pathlib.Path
    keep: int = DEFAULT_KEEP
    prefix: str = DEFAULT_PREFIX
    notify_timeout: float = 10.0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.keep < 1:
            raise ValueError(f"BACKUP_KEEP must be at least 1, got {self.keep}")

    @property
    def suffix(self) -> str:
        return self.source_path.suffix or DEFAULT_SUFFIX

    @classmethod
    def from_env(cls) -> "BackupSettings":
        source = database_path()
        backup_dir = os.environ.get("BACKUP_DIR")
        return cls(
            source_path=source,
            backup_dir=pathlib.Path(backup_dir) if backup_dir else default_backup_dir(source),
            keep=int(os.environ.get("BACKUP_KEEP", DEFAULT_KEEP)),
            prefix=os.environ.get("BACKUP_PREFIX", DEFAULT_PREFIX),
            notify_timeout=float(os.environ.get("NOTIFY_TIMEOUT", "10")),
        )


@dataclass(slots=True)
class BackupOutcome:
    snapshot: SnapshotRecord | None
    pruned: PruneResult | None = None
    notified: bool = False

    @property
    def skipped(self) -> bool:
        return self.snapshot is None


@dataclass(slots=True)
class RestoreOutcome:
    restored: SnapshotRecord
    safety_snapshot: SnapshotRecord | None = None


async def run_backup(settings: BackupSettings, notifier: Notifier | None = None) -> BackupOutcome:
    """Run one backup cycle.

    Raises :class:`SnapshotIntegrityError` when the snapshot is invalid; in that
    case no existing snapshot is pruned.
    """
    settings.validate()
    logger.info("Starting backup of %s", settings.source_path)
    snapshot = create_snapshot(settings.source_path, settings.backup_dir, prefix=settings.prefix)
    if snapshot is None:
        logger.info("Backup skipped")
        return BackupOutcome(snapshot=None)

    outcome = BackupOutcome(snapshot=snapshot)
    try:
        outcome.pruned = prune(settings.backup_dir, settings.keep, prefix=settings.prefix, suffix=settings.suffix)
    except OSError as exc:
        logger.warning("Could not prune old snapshots in %s: %s", settings.backup_dir, exc)
    outcome.notified = await _notify(notifier or Notifier(), snapshot, settings.notify_timeout)
    logger.info("Backup complete: %s", snapshot.artifact_path.name)
    return outcome


async def _notify(notifier: Notifier, snapshot: SnapshotRecord, timeout: float) -> bool:
    message = (
        "Database backup complete\n"
        f"Time: {format_timestamp(snapshot.created_at)}\n"
        f"Size: {round(snapshot.size_bytes / 1024)} KB\n"
        f"File: {snapshot.artifact_path.name}"
    )
    try:
        await asyncio.wait_for(notifier.send(message), timeout=timeout)
    except Exception as exc:
        logger.warning("Backup notification failed: %s", exc)
        return False
    return True


def resolve_snapshot(settings: BackupSettings, name: str) -> pathlib.Path:
    """A bare file name is looked up in the backup directory."""
    candidate = pathlib.Path(name)
    if candidate.name == name:
        return settings.backup_dir / name
    return candidate


def restore_backup(
    settings: BackupSettings,
    name: str,
    target: pathlib.Path | None = None,
) -> RestoreOutcome:
    """Restore snapshot ``name`` over ``target`` (the database file by default).

    The current target, when present, is snapshotted first so the restore can
    itself be undone.
    """
    artifact = resolve_snapshot(settings, name)
    target_path = pathlib.Path(target) if target else settings.source_path
    check_restorable(artifact, target_path, prefix=settings.prefix)
    safety = create_snapshot(target_path, settings.backup_dir, prefix=settings.prefix)
    if safety is not None:
        logger.info("Saved current %s as %s", target_path, safety.artifact_path.name)
    restored = restore_snapshot(artifact, target_path, prefix=settings.prefix)
    return RestoreOutcome(restored=restored, safety_snapshot=safety)


def describe_snapshots(settings: BackupSettings) -> list[str]:
    snapshots = list_snapshots(settings.backup_dir, prefix=settings.prefix, suffix=settings.suffix)
    lines = []
    for position, path in enumerate(snapshots, start=1):
        stat = path.stat()
        modified = format_timestamp(from_timestamp(stat.st_mtime))
        lines.append(f"{position}. {path.name} ({stat.st_size} bytes, {modified})")
    return lines


def _run(settings: BackupSettings) -> None:
    try:
        outcome = asyncio.run(run_backup(settings))
    except (SnapshotIntegrityError, OSError) as exc:
        print(f"Backup failed: {exc}", file=sys.stderr)
        sys.exit(1)
    if outcome.skipped:
        print(f"Backup skipped: {settings.source_path} does not exist")
    else:
        print(f"Backup written to {outcome.snapshot.artifact_path}")


def _list(settings: BackupSettings) -> None:
    try:
        lines = describe_snapshots(settings)
    except OSError as exc:
        print(f"Cannot list snapshots: {exc}", file=sys.stderr)
        sys.exit(1)
    if not lines:
        print(f"No snapshots in {settings.backup_dir}")
    for line in lines:
        print(line)


def _restore(settings: BackupSettings, name: str, target: pathlib.Path | None) -> None:
    try:
        outcome = restore_backup(settings, name, target)
    except (SnapshotIntegrityError, OSError, ValueError) as exc:
        print(f"Restore failed: {exc}", file=sys.stderr)
        sys.exit(1)
    if outcome.safety_snapshot is not None:
        print(f"Previous database saved as {outcome.safety_snapshot.artifact_path}")
    print(f"Restored {name} to {outcome.restored.artifact_path}")


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Snapshot the store database and manage its backups")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("run", help="Take a snapshot, prune old ones and notify (default)")
    commands.add_parser("list", help="List snapshots, most recent first")
    restore = commands.add_parser("restore", help="Copy a snapshot back over the database file")
    restore.add_argument("snapshot", help="Snapshot file name in the backup directory, or a path to one")
    restore.add_argument("--target", type=pathlib.Path, help="File to restore into (default: DATABASE_PATH)")
    args = parser.parse_args(argv)
    configure_logging()
    try:
        settings = BackupSettings.from_env()
    except ValueError as exc:
        print(f"Invalid backup settings: {exc}", file=sys.stderr)
        sys.exit(2)
    if args.command == "list":
        _list(settings)
    elif args.command == "restore":
        _restore(settings, args.snapshot, args.target)
    else:
        _run(settings)


if __name__ == "__main__":
    main()
