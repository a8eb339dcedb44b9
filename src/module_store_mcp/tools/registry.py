"""
Tool Registry

Maps tool names to the tool functions in module_tools.
"""

from typing import Any, Callable, Dict

from . import module_tools


def get_tool_registry() -> Dict[str, Callable]:
    return {name: getattr(module_tools, f"tool_{name}") for name in module_tools.TOOL_NAMES}


def execute_tool(tool_name: str, **kwargs) -> Dict[str, Any]:
    """Single entry point for every tool"""
    tool_func = get_tool_registry().get(tool_name)

    if not tool_func:
        return {"success": False, "error": f"Unknown tool: {tool_name}"}

    try:
        return tool_func(**kwargs)
    except Exception as e:
        return {"success": False, "error": f"Tool execution failed: {str(e)}"}
