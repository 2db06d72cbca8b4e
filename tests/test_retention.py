import os
import pathlib

import pytest

from storeops.backup.retention import list_snapshots, prune


def make_snapshots(directory, count, *, start=1_700_000_000):
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for idx in range(count):
        path = directory / f"store_backup_2025-01-{idx + 1:02d}T00-00-00.db"
        path.write_bytes(b"db")
        mtime = start + idx * 60
        os.utime(path, (mtime, mtime))
        paths.append(path)
    return paths


@pytest.mark.parametrize("existing, keep", [(0, 10), (3, 10), (9, 10), (10, 10), (14, 10), (5, 1), (6, 3)])
def test_prune_keeps_most_recent(tmp_path, existing, keep):
    backup_dir = tmp_path / "backups"
    created = make_snapshots(backup_dir, existing + 1)
    result = prune(backup_dir, keep)
    remaining = sorted(p.name for p in backup_dir.iterdir())
    assert len(remaining) == min(existing + 1, keep)
    assert remaining == sorted(p.name for p in created[-keep:])
    assert result.deleted_count == max(0, existing + 1 - keep)


def test_prune_ignores_unrelated_files(tmp_path):
    backup_dir = tmp_path / "backups"
    make_snapshots(backup_dir, 4)
    (backup_dir / "README.txt").write_text("keep me")
    (backup_dir / "other_backup_2020-01-01T00-00-00.db").write_bytes(b"db")
    result = prune(backup_dir, 2)
    assert result.deleted_count == 2
    assert (backup_dir / "README.txt").exists()
    assert (backup_dir / "other_backup_2020-01-01T00-00-00.db").exists()


def test_prune_is_idempotent(tmp_path):
    backup_dir = tmp_path / "backups"
    make_snapshots(backup_dir, 12)
    first = prune(backup_dir, 10)
    second = prune(backup_dir, 10)
    assert first.deleted_count == 2
    assert second.deleted_count == 0
    assert second.deleted_names == []


def test_prune_missing_directory(tmp_path):
    result = prune(tmp_path / "nowhere", 10)
    assert result.deleted_count == 0


def test_delete_failure_does_not_abort(tmp_path, monkeypatch):
    backup_dir = tmp_path / "backups"
    paths = make_snapshots(backup_dir, 5)
    stuck = paths[0]
    original_unlink = pathlib.Path.unlink

    def flaky_unlink(self, *args, **kwargs):
        if self == stuck:
            raise PermissionError("locked")
        return original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(pathlib.Path, "unlink", flaky_unlink)
    result = prune(backup_dir, 2)
    assert result.failed_names == [stuck.name]
    assert sorted(result.deleted_names) == sorted(p.name for p in paths[1:3])
    assert stuck.exists()


def test_list_snapshots_orders_by_mtime(tmp_path):
    backup_dir = tmp_path / "backups"
    paths = make_snapshots(backup_dir, 3)
    os.utime(paths[0], (1_800_000_000, 1_800_000_000))
    assert list_snapshots(backup_dir) == [paths[0], paths[2], paths[1]]


def test_keep_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        prune(tmp_path, 0)
