"""Tests for backup creation, retention and validation."""

import os

import pytest

from module_store_mcp.core.backup import BackupRotator
from module_store_mcp.core.codec import RecordCodec
from module_store_mcp.core.errors import BackupError
from module_store_mcp.core.models import Module


class TestBackupRotator:
    """Copy-then-checksum backups with count-based retention"""

    @pytest.fixture
    def source(self, temp_root):
        module = Module.create("UserService", "class")
        path = temp_root / "modules.yaml"
        path.write_text(RecordCodec().encode_modules({module.id: module}), encoding="utf-8")
        return path

    @pytest.fixture
    def rotator(self, temp_root):
        return BackupRotator(temp_root / "backups", max_backups=3)

    def test_create_backup_copies_and_checksums(self, rotator, source):
        info = rotator.create_backup(source, "modules")

        backup_path = rotator.backup_dir / info.filename
        assert backup_path.read_bytes() == source.read_bytes()
        assert info.filename.startswith("modules_")
        assert info.filename.endswith(".yaml")
        assert len(info.checksum) == 64
        assert info.modules_count == 1
        assert info.id == backup_path.stem

    def test_missing_source_raises(self, rotator, temp_root):
        with pytest.raises(BackupError):
            rotator.create_backup(temp_root / "absent.yaml", "absent")

    def test_retention_keeps_newest(self, rotator, source):
        created = []
        for i in range(5):
            info = rotator.create_backup(source, "modules")
            # distinct, increasing modification times
            os.utime(info.path, (1_000_000 + i, 1_000_000 + i))
            created.append(info.filename)
            rotator.prune("modules")

        remaining = [p.name for p in rotator.backup_paths("modules")]
        assert remaining == created[-3:]

    def test_retention_is_per_collection(self, rotator, source):
        for _ in range(3):
            rotator.create_backup(source, "modules")
        rotator.create_backup(source, "other")
        assert len(rotator.backup_paths("modules")) == 3
        assert len(rotator.backup_paths("other")) == 1

    def test_unpruned_backup_can_be_discarded(self, rotator, source):
        for _ in range(3):
            rotator.create_backup(source, "modules")
        before = rotator.backup_paths("modules")

        info = rotator.create_backup(source, "modules", prune=False)
        assert len(rotator.backup_paths("modules")) == 4

        rotator.discard(info)
        assert rotator.backup_paths("modules") == before

    def test_unrelated_files_are_ignored(self, rotator, source):
        rotator.backup_dir.mkdir(parents=True, exist_ok=True)
        (rotator.backup_dir / "pre-repair_modules_2024.yaml").write_text("x")
        (rotator.backup_dir / "modules_notes.txt").write_text("x")
        rotator.create_backup(source, "modules")
        assert len(rotator.list_backups("modules")) == 1

    def test_prune_failure_is_logged_not_raised(self, rotator, source, monkeypatch):
        for _ in range(3):
            rotator.create_backup(source, "modules")

        def refuse(self, *args, **kwargs):
            raise PermissionError("read-only")

        monkeypatch.setattr("pathlib.Path.unlink", refuse)
        info = rotator.create_backup(source, "modules")
        assert info.filename
        assert len(rotator.backup_paths("modules")) == 4

    def test_find_backup_by_id_or_filename(self, rotator, source):
        info = rotator.create_backup(source, "modules")
        assert rotator.find_backup("modules", info.id).name == info.filename
        assert rotator.find_backup("modules", info.filename).name == info.filename
        assert rotator.find_backup("modules", "nope") is None

    def test_validate_good_backup(self, rotator, source):
        info = rotator.create_backup(source, "modules")
        result = rotator.validate_backup(info.path)
        assert result.is_valid
        assert result.can_restore
        assert result.modules_count == 1

    def test_validate_broken_backups(self, rotator, temp_root):
        empty = temp_root / "empty.yaml"
        empty.write_text("")
        assert not rotator.validate_backup(empty).can_restore

        broken = temp_root / "broken.yaml"
        broken.write_text("metadata: [\n")
        result = rotator.validate_backup(broken)
        assert not result.can_restore
        assert result.issues

        assert not rotator.validate_backup(temp_root / "missing.yaml").is_valid
