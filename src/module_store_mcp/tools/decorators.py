"""Tool error handling"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, cast

logger = logging.getLogger(__name__)


def handle_mcp_errors(func: Callable) -> Callable:
    """
    Standardise tool responses.

    Every response is a dict carrying a success flag; anything that escapes
    the core is turned into an error response naming the tool.
    """

    @wraps(func)
    def wrapper(*args, **kwargs) -> Dict[str, Any]:
        try:
            result = func(*args, **kwargs)
            if isinstance(result, dict) and "success" not in result:
                result["success"] = True
            return cast(Dict[str, Any], result)
        except Exception as e:
            logger.exception("Tool %s failed", func.__name__)
            return {"success": False, "error": str(e), "function": func.__name__}

    return wrapper
