"""
Module store error taxonomy

Raised inside the core, converted to OperationResult at every public
boundary (see result.returns_result). Each class carries a stable code.
"""

from typing import Any, Optional


class ModuleStoreError(Exception):
    """Base class for module store errors"""

    code = "STORE_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ModuleStoreError):
    """Raised when a record, field or identifier has the wrong shape"""

    code = "VALIDATION_ERROR"


class NotFoundError(ModuleStoreError):
    """Raised when a module or its parent does not exist"""

    code = "NOT_FOUND"


class DuplicateError(ModuleStoreError):
    """Raised when a hierarchical name is already taken"""

    code = "DUPLICATE_MODULE"


class CircularReferenceError(ModuleStoreError):
    """Raised when a mutation would close a parent/dependency cycle"""

    code = "CIRCULAR_REFERENCE"


class HasChildrenError(ModuleStoreError):
    """Raised when deleting a module that still has children"""

    code = "HAS_CHILDREN"


class LockError(ModuleStoreError):
    """Raised when an advisory lease cannot be granted"""

    code = "LOCK_ERROR"


class ParseError(ModuleStoreError):
    """Raised when a collection file is not well-formed YAML"""

    code = "PARSE_ERROR"


class WriteError(ModuleStoreError):
    """Raised when a collection file cannot be written"""

    code = "WRITE_ERROR"


class ReadError(ModuleStoreError):
    """Raised when a collection file exists but cannot be read"""

    code = "READ_ERROR"


class InitializationError(ModuleStoreError):
    """Raised when storage directories cannot be created"""

    code = "INITIALIZATION_ERROR"


class BackupError(ModuleStoreError):
    """Raised when a backup cannot be created or restored"""

    code = "BACKUP_ERROR"


ERROR_CLASSES = {
    cls.code: cls
    for cls in (
        ModuleStoreError,
        ValidationError,
        NotFoundError,
        DuplicateError,
        CircularReferenceError,
        HasChildrenError,
        LockError,
        ParseError,
        WriteError,
        ReadError,
        InitializationError,
        BackupError,
    )
}


def error_from_code(code: str, message: str, details: Optional[Any] = None) -> ModuleStoreError:
    """Rebuild the exception behind a failed result so it can be re-raised"""
    error = ERROR_CLASSES.get(code, ModuleStoreError)(message, details)
    if error.code != code:
        error.code = code
    return error
