"""
Typed operation results

Every public core operation returns an OperationResult instead of raising.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

from .errors import ModuleStoreError, error_from_code

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string"""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ErrorInfo:
    code: str
    message: str
    details: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class OperationResult:
    success: bool
    operation: str
    data: Any = None
    error: Optional[ErrorInfo] = None
    warnings: list = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now)

    @classmethod
    def ok(cls, operation: str, data: Any = None, warnings: Optional[list] = None) -> "OperationResult":
        return cls(success=True, operation=operation, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(
        cls, operation: str, code: str, message: str, details: Optional[Any] = None
    ) -> "OperationResult":
        return cls(
            success=False,
            operation=operation,
            error=ErrorInfo(code=code, message=message, details=details),
        )

    @classmethod
    def from_error(cls, operation: str, error: ModuleStoreError) -> "OperationResult":
        return cls.fail(operation, error.code, error.message, error.details)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    def unwrap(self) -> Any:
        """Return data, or re-raise the failure as its ModuleStoreError"""
        if self.success:
            return self.data
        raise error_from_code(self.error.code, self.error.message, self.error.details)

    def to_dict(self) -> Dict[str, Any]:
        data = self.data
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        elif isinstance(data, dict):
            data = {k: v.to_dict() if hasattr(v, "to_dict") else v for k, v in data.items()}
        elif isinstance(data, list):
            data = [v.to_dict() if hasattr(v, "to_dict") else v for v in data]

        payload: Dict[str, Any] = {
            "success": self.success,
            "operation": self.operation,
            "timestamp": self.timestamp,
        }
        if self.success:
            payload["data"] = data
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


def returns_result(operation: str, fallback_code: str = ModuleStoreError.code) -> Callable:
    """
    Convert the wrapped call into an OperationResult.

    ModuleStoreError keeps its own code; any other exception is reported with
    fallback_code. If the bound instance defines _observe_result, it is
    called with (method_name, call_args, result) after every call.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> OperationResult:
            try:
                value = func(*args, **kwargs)
            except ModuleStoreError as e:
                logger.debug("%s failed: [%s] %s", func.__name__, e.code, e.message)
                result = OperationResult.from_error(operation, e)
            except Exception as e:
                logger.exception("%s failed unexpectedly", func.__name__)
                result = OperationResult.fail(operation, fallback_code, str(e))
            else:
                if isinstance(value, OperationResult):
                    result = value
                else:
                    result = OperationResult.ok(operation, value)

            observer = getattr(args[0], "_observe_result", None) if args else None
            if observer is not None:
                observer(func.__name__, args[1:], result)
            return result

        return wrapper

    return decorator
