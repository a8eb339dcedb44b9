"""Tests for store configuration."""

from pathlib import Path

import pytest

from module_store_mcp.config import StoreConfig, get_store_config, reset_config


class TestStoreConfig:
    """Defaults, environment overrides and validation"""

    def test_defaults(self):
        config = StoreConfig()
        assert config.root_path == Path("./data")
        assert config.backup_path == Path("./data") / "backups"
        assert config.backup_enabled is True
        assert config.max_backups == 10
        assert config.max_nesting_depth == 5
        assert config.lease_timeout_seconds == 300
        assert config.collection == "modules"
        assert config.auto_backup

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MODULE_STORE_ROOT_PATH", str(tmp_path))
        monkeypatch.setenv("MODULE_STORE_MAX_BACKUPS", "20")
        monkeypatch.setenv("MODULE_STORE_BACKUP_ENABLED", "false")
        monkeypatch.setenv("MODULE_STORE_STRICT_MODE", "yes")
        monkeypatch.setenv("MODULE_STORE_LOG_LEVEL", "debug")

        config = StoreConfig()
        assert config.root_path == tmp_path
        assert config.backup_path == tmp_path / "backups"
        assert config.max_backups == 20
        assert config.backup_enabled is False
        assert not config.auto_backup
        assert config.strict_mode is True
        assert config.log_level == "DEBUG"

    def test_invalid_environment_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("MODULE_STORE_MAX_BACKUPS", "many")
        monkeypatch.setenv("MODULE_STORE_BACKUP_ENABLED", "perhaps")
        config = StoreConfig()
        assert config.max_backups == 10
        assert config.backup_enabled is True

    def test_keyword_overrides_win(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MODULE_STORE_MAX_BACKUPS", "20")
        config = StoreConfig(root_path=tmp_path, max_backups=0, backup_path=tmp_path / "b")
        assert config.max_backups == 0
        assert config.backup_path == tmp_path / "b"
        assert not config.auto_backup

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_backups": -1},
            {"max_nesting_depth": 0},
            {"lease_timeout_seconds": 0},
            {"log_level": "LOUD"},
        ],
    )
    def test_validation(self, overrides):
        with pytest.raises(ValueError):
            StoreConfig(**overrides)

    def test_unknown_keys(self):
        with pytest.raises(TypeError):
            StoreConfig(colour="red")

    def test_global_instance(self):
        first = get_store_config()
        assert get_store_config() is first
        reset_config()
        assert get_store_config() is not first
