"""
Core module store - storage, naming, integrity and the module manager.
"""

from .errors import ModuleStoreError
from .integrity import ChecksumCache, IntegrityChecker
from .lease import LeaseManager
from .manager import ModuleManager
from .models import Module, ModuleType, SearchCriteria
from .naming import NameResolver
from .result import OperationResult
from .storage import StorageEngine

__all__ = [
    "ChecksumCache",
    "IntegrityChecker",
    "LeaseManager",
    "Module",
    "ModuleManager",
    "ModuleStoreError",
    "ModuleType",
    "NameResolver",
    "OperationResult",
    "SearchCriteria",
    "StorageEngine",
]
