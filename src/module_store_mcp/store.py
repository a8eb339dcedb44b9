"""
Store wiring

Builds the storage engine and module manager for one configuration and keeps
the process-wide instance used by the tool layer.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import StoreConfig, get_store_config
from .core.backup import BackupRotator
from .core.codec import RecordCodec
from .core.integrity import ChecksumCache, IntegrityChecker
from .core.lease import LeaseManager
from .core.manager import ModuleManager
from .core.naming import NameResolver
from .core.storage import StorageEngine

logger = logging.getLogger(__name__)


@dataclass
class ModuleStore:
    config: StoreConfig
    storage: StorageEngine
    manager: ModuleManager


def create_store(config: Optional[StoreConfig] = None) -> ModuleStore:
    """Wire every component explicitly; nothing is shared between stores"""
    config = config or StoreConfig()
    codec = RecordCodec()
    resolver = NameResolver(config.max_nesting_depth, config.max_name_length)
    checksum_cache = ChecksumCache(config.checksum_cache_ttl_seconds)
    checker = IntegrityChecker(resolver, checksum_cache)
    storage = StorageEngine(
        config,
        codec=codec,
        leases=LeaseManager(config.lease_timeout_seconds),
        checksum_cache=checksum_cache,
        checker=checker,
        rotator=BackupRotator(config.backup_path, config.max_backups, codec),
    )
    manager = ModuleManager(storage, resolver, checker, config.collection)
    return ModuleStore(config=config, storage=storage, manager=manager)


# Global store instance
_store: Optional[ModuleStore] = None


def get_store() -> ModuleStore:
    """Get the global store, creating it from the environment on first use"""
    global _store
    if _store is None:
        _store = create_store(get_store_config())
        result = _store.storage.initialize()
        if not result.success:
            logger.error("Storage initialization failed: %s", result.error.message)
    return _store


def set_store(store: ModuleStore) -> ModuleStore:
    global _store
    _store = store
    return store


def reset_store():
    """Reset global store (mainly for testing)"""
    global _store
    _store = None
