"""Pytest configuration and shared fixtures.

Every store lives in its own temporary directory; nothing touches the
process-wide store unless a test installs one explicitly.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from module_store_mcp.config import StoreConfig, reset_config
from module_store_mcp.store import create_store, reset_store, set_store


@pytest.fixture
def temp_root():
    """Create an empty temporary storage root."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def store_config(temp_root):
    """Configuration pointing at the temporary root."""
    return StoreConfig(root_path=temp_root, max_backups=3)


@pytest.fixture
def store(store_config):
    """A fully wired store with initialized directories."""
    store = create_store(store_config)
    assert store.storage.initialize().success
    return store


@pytest.fixture
def storage(store):
    return store.storage


@pytest.fixture
def manager(store):
    return store.manager


@pytest.fixture
def global_store(store):
    """Install the store as the process-wide instance used by the tools."""
    set_store(store)
    yield store
    reset_store()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep MODULE_STORE_* variables from leaking into tests."""
    for key in list(os.environ):
        if key.startswith("MODULE_STORE_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def add_module(manager):
    """Add a module and fail the test if the store refuses it."""

    def _add(name, type="class", parent=None, **fields):
        data = {"name": name, "type": type, **fields}
        if parent:
            data["parent_module"] = parent
        result = manager.add(data)
        assert result.success, result.error
        return result.data

    return _add


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location/name."""
    for item in items:
        if "test_manager" in item.nodeid or "test_tools" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
