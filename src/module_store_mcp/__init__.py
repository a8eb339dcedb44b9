"""Module Store MCP

Persistent, hierarchically named records of source-code structure.
"""

from .config import StoreConfig
from .store import ModuleStore, create_store

__version__ = "0.1.0"

__all__ = ["ModuleStore", "StoreConfig", "create_store", "__version__"]
