"""
Module Store MCP Server

Registers one FastMCP tool per store operation; every tool forwards to
execute_tool and returns its dict unchanged.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .config import CONFIG_DOCS, get_store_config
from .store import ModuleStore, create_store, reset_store, set_store
from .tools import execute_tool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def store_lifespan(_server: FastMCP) -> AsyncIterator[ModuleStore]:
    store = set_store(create_store(get_store_config()))
    result = store.storage.initialize()
    if not result.success:
        logger.error("Storage initialization failed: %s", result.error.message)
    try:
        yield store
    finally:
        reset_store()


mcp = FastMCP("ModuleStore", lifespan=store_lifespan)


@mcp.resource("config://module-store")
def get_config() -> str:
    return f"{get_store_config()!r}\n{CONFIG_DOCS}"


# ----- module tools -----


@mcp.tool()
def add_module(module_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a module record.

    module_data needs name and type (class, function, variable, file,
    function_group); parent_module, file_path, access_modifier, description,
    dependencies and the fields of its type are optional.
    """
    return execute_tool("add_module", module_data=module_data)


@mcp.tool()
def update_module(hierarchical_name: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Update editable fields of a module; identity and hierarchy fields are rejected."""
    return execute_tool("update_module", hierarchical_name=hierarchical_name, updates=updates)


@mcp.tool()
def delete_module(hierarchical_name: str) -> Dict[str, Any]:
    """Delete a module that has no children."""
    return execute_tool("delete_module", hierarchical_name=hierarchical_name)


@mcp.tool()
def get_module(hierarchical_name: str) -> Dict[str, Any]:
    """Get one module by hierarchical name."""
    return execute_tool("get_module", hierarchical_name=hierarchical_name)


@mcp.tool()
def list_modules(module_type: Optional[str] = None) -> Dict[str, Any]:
    """List all modules, optionally of one type."""
    return execute_tool("list_modules", module_type=module_type)


@mcp.tool()
def search_modules(
    name: Optional[str] = None,
    type: Optional[str] = None,
    parent_module: Optional[str] = None,
    file_path: Optional[str] = None,
    access_modifier: Optional[str] = None,
    description: Optional[str] = None,
    keyword: Optional[str] = None,
    fuzzy: bool = False,
    sort_by: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Search modules with case-insensitive substring filters.

    sort_by may be name, updated_at or relevance; results are paginated by
    limit and offset.
    """
    return execute_tool(
        "search_modules",
        name=name,
        type=type,
        parent_module=parent_module,
        file_path=file_path,
        access_modifier=access_modifier,
        description=description,
        keyword=keyword,
        fuzzy=fuzzy,
        sort_by=sort_by,
        limit=limit,
        offset=offset,
    )


@mcp.tool()
def get_type_structure(type_name: str) -> Dict[str, Any]:
    """Ancestors, descendants and modules referencing a type."""
    return execute_tool("get_type_structure", type_name=type_name)


@mcp.tool()
def get_module_types() -> Dict[str, Any]:
    """Supported module types."""
    return execute_tool("get_module_types")


@mcp.tool()
def check_module_integrity(auto_repair: bool = False) -> Dict[str, Any]:
    """Check references, cycles and records; optionally repair dangling references."""
    return execute_tool("check_module_integrity", auto_repair=auto_repair)


# ----- storage tools -----


@mcp.tool()
def backup_collection(description: Optional[str] = None) -> Dict[str, Any]:
    """Back up the collection file now."""
    return execute_tool("backup_collection", description=description)


@mcp.tool()
def list_backups() -> Dict[str, Any]:
    """List backups of the collection, oldest first."""
    return execute_tool("list_backups")


@mcp.tool()
def restore_backup(backup_id: str) -> Dict[str, Any]:
    """Replace the collection with a validated backup."""
    return execute_tool("restore_backup", backup_id=backup_id)


@mcp.tool()
def check_storage_integrity() -> Dict[str, Any]:
    """Check every collection file for parse, structure and checksum errors."""
    return execute_tool("check_storage_integrity")


@mcp.tool()
def get_storage_stats() -> Dict[str, Any]:
    """Collection file and backup statistics."""
    return execute_tool("get_storage_stats")


@mcp.tool()
def get_storage_events(limit: int = 100) -> Dict[str, Any]:
    """Recent storage events."""
    return execute_tool("get_storage_events", limit=limit)


def main():
    config = get_store_config()
    logging.basicConfig(level=config.log_level, stream=sys.stderr)
    mcp.run()


if __name__ == '__main__':
    main()
