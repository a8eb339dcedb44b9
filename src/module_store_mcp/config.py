"""
Configuration Management for Module Store MCP

Sensible defaults with optional environment variable overrides.
Keyword arguments win over environment variables, which win over defaults.
"""

import os
from pathlib import Path
from typing import Any, Optional


class StoreConfig:
    """Module store configuration"""

    # Default values
    DEFAULT_ROOT_PATH = "./data"
    DEFAULT_BACKUP_ENABLED = True
    DEFAULT_BACKUP_INTERVAL_SECONDS = 0  # 0 = back up before every save
    DEFAULT_MAX_BACKUPS = 10
    DEFAULT_STRICT_MODE = False
    DEFAULT_MAX_NESTING_DEPTH = 5
    DEFAULT_MAX_NAME_LENGTH = 100
    DEFAULT_LEASE_TIMEOUT_SECONDS = 300  # 5 minutes
    DEFAULT_CHECKSUM_CACHE_TTL_SECONDS = 300
    DEFAULT_COLLECTION = "modules"
    DEFAULT_LOG_LEVEL = "ERROR"

    def __init__(self, **overrides: Any):
        self.root_path = Path(
            overrides.pop("root_path", None)
            or os.environ.get("MODULE_STORE_ROOT_PATH")
            or self.DEFAULT_ROOT_PATH
        )
        backup_path = overrides.pop("backup_path", None) or os.environ.get(
            "MODULE_STORE_BACKUP_PATH"
        )
        self.backup_path = Path(backup_path) if backup_path else self.root_path / "backups"

        self.backup_enabled = self._pick(
            overrides, "backup_enabled", self._get_bool_env(
                "MODULE_STORE_BACKUP_ENABLED", self.DEFAULT_BACKUP_ENABLED
            )
        )
        self.backup_interval_seconds = self._pick(
            overrides, "backup_interval_seconds", self._get_int_env(
                "MODULE_STORE_BACKUP_INTERVAL_SECONDS", self.DEFAULT_BACKUP_INTERVAL_SECONDS
            )
        )
        self.max_backups = self._pick(
            overrides, "max_backups", self._get_int_env(
                "MODULE_STORE_MAX_BACKUPS", self.DEFAULT_MAX_BACKUPS
            )
        )
        self.strict_mode = self._pick(
            overrides, "strict_mode", self._get_bool_env(
                "MODULE_STORE_STRICT_MODE", self.DEFAULT_STRICT_MODE
            )
        )
        self.max_nesting_depth = self._pick(
            overrides, "max_nesting_depth", self._get_int_env(
                "MODULE_STORE_MAX_NESTING_DEPTH", self.DEFAULT_MAX_NESTING_DEPTH
            )
        )
        self.max_name_length = self._pick(
            overrides, "max_name_length", self._get_int_env(
                "MODULE_STORE_MAX_NAME_LENGTH", self.DEFAULT_MAX_NAME_LENGTH
            )
        )
        self.lease_timeout_seconds = self._pick(
            overrides, "lease_timeout_seconds", self._get_float_env(
                "MODULE_STORE_LEASE_TIMEOUT_SECONDS", self.DEFAULT_LEASE_TIMEOUT_SECONDS
            )
        )
        self.checksum_cache_ttl_seconds = self._pick(
            overrides, "checksum_cache_ttl_seconds", self._get_float_env(
                "MODULE_STORE_CHECKSUM_CACHE_TTL_SECONDS",
                self.DEFAULT_CHECKSUM_CACHE_TTL_SECONDS,
            )
        )
        self.collection = self._pick(
            overrides, "collection",
            os.environ.get("MODULE_STORE_COLLECTION") or self.DEFAULT_COLLECTION,
        )
        self.log_level = self._pick(
            overrides, "log_level",
            (os.environ.get("MODULE_STORE_LOG_LEVEL") or self.DEFAULT_LOG_LEVEL).upper(),
        )

        if overrides:
            raise TypeError(f"Unknown configuration keys: {', '.join(sorted(overrides))}")

        # Validate configuration
        self._validate_config()

    @property
    def auto_backup(self) -> bool:
        """Back up the previous collection file before every save"""
        return self.backup_enabled and self.max_backups > 0

    @staticmethod
    def _pick(overrides: dict, key: str, fallback: Any) -> Any:
        value = overrides.pop(key, None)
        return fallback if value is None else value

    def _get_int_env(self, key: str, default: int) -> int:
        """Get integer from environment variable with fallback"""
        try:
            value = os.environ.get(key)
            if value is not None:
                return int(value)
        except (ValueError, TypeError):
            pass
        return default

    def _get_float_env(self, key: str, default: float) -> float:
        """Get float from environment variable with fallback"""
        try:
            value = os.environ.get(key)
            if value is not None:
                return float(value)
        except (ValueError, TypeError):
            pass
        return default

    def _get_bool_env(self, key: str, default: bool) -> bool:
        """Get boolean from environment variable with fallback"""
        value = os.environ.get(key)
        if value is None:
            return default
        value = value.strip().lower()
        if value in ("1", "true", "yes", "on"):
            return True
        if value in ("0", "false", "no", "off"):
            return False
        return default

    def _validate_config(self):
        """Validate configuration values"""
        if self.max_backups < 0:
            raise ValueError("max_backups must not be negative")
        if self.backup_interval_seconds < 0:
            raise ValueError("backup_interval_seconds must not be negative")
        if not 1 <= self.max_nesting_depth <= 32:
            raise ValueError("max_nesting_depth must be between 1 and 32")
        if self.max_name_length <= 0:
            raise ValueError("max_name_length must be positive")
        if self.lease_timeout_seconds <= 0:
            raise ValueError("lease_timeout_seconds must be positive")
        if self.checksum_cache_ttl_seconds < 0:
            raise ValueError("checksum_cache_ttl_seconds must not be negative")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {self.log_level}")

    def __repr__(self) -> str:
        return (
            f"StoreConfig("
            f"root_path={str(self.root_path)!r}, "
            f"backup_path={str(self.backup_path)!r}, "
            f"backup_enabled={self.backup_enabled}, "
            f"max_backups={self.max_backups}, "
            f"strict_mode={self.strict_mode}, "
            f"max_nesting_depth={self.max_nesting_depth}, "
            f"lease_timeout_seconds={self.lease_timeout_seconds})"
        )


# Global configuration instance, used by the server entry point only
_config: Optional[StoreConfig] = None


def get_store_config() -> StoreConfig:
    """Get global store configuration instance"""
    global _config
    if _config is None:
        _config = StoreConfig()
    return _config


def reset_config():
    """Reset configuration (mainly for testing)"""
    global _config
    _config = None


# Environment documentation
CONFIG_DOCS = """
Module Store Configuration Environment Variables:

- MODULE_STORE_ROOT_PATH: Directory holding collection files (default: ./data)
- MODULE_STORE_BACKUP_PATH: Backup directory (default: <root>/backups)
- MODULE_STORE_BACKUP_ENABLED: Back up before each save (default: true)
- MODULE_STORE_BACKUP_INTERVAL_SECONDS: Minimum seconds between automatic backups (default: 0)
- MODULE_STORE_MAX_BACKUPS: Backups retained per collection (default: 10)
- MODULE_STORE_STRICT_MODE: Validate every record on load (default: false)
- MODULE_STORE_MAX_NESTING_DEPTH: Maximum hierarchical name segments (default: 5)
- MODULE_STORE_MAX_NAME_LENGTH: Maximum identifier length (default: 100)
- MODULE_STORE_LEASE_TIMEOUT_SECONDS: Advisory lease expiry (default: 300)
- MODULE_STORE_CHECKSUM_CACHE_TTL_SECONDS: File checksum cache TTL (default: 300)
- MODULE_STORE_COLLECTION: Collection served by the MCP server (default: modules)
- MODULE_STORE_LOG_LEVEL: Logging level written to stderr (default: ERROR)

Example usage:
    export MODULE_STORE_ROOT_PATH=/var/lib/module-store
    export MODULE_STORE_MAX_BACKUPS=20
"""
