"""
Tools - MCP-independent tool collection

Each tool wraps one core operation and returns a plain dict.
"""

from .registry import execute_tool, get_tool_registry

__all__ = [
    'execute_tool',
    'get_tool_registry'
]
