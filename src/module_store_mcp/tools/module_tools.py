"""
Module Tools

Transport-free tool functions over the global store. Each returns the
OperationResult of one core call as a plain dict.
"""

from typing import Any, Dict, List, Optional

from ..store import get_store
from .decorators import handle_mcp_errors


# ----- module tools -----


@handle_mcp_errors
def tool_add_module(module_data: Dict[str, Any]) -> Dict[str, Any]:
    return get_store().manager.add(module_data).to_dict()


@handle_mcp_errors
def tool_update_module(hierarchical_name: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    return get_store().manager.update(hierarchical_name, updates).to_dict()


@handle_mcp_errors
def tool_delete_module(hierarchical_name: str) -> Dict[str, Any]:
    return get_store().manager.delete(hierarchical_name).to_dict()


@handle_mcp_errors
def tool_get_module(hierarchical_name: str) -> Dict[str, Any]:
    return get_store().manager.get(hierarchical_name).to_dict()


@handle_mcp_errors
def tool_list_modules(module_type: Optional[str] = None) -> Dict[str, Any]:
    return get_store().manager.list_modules(module_type).to_dict()


@handle_mcp_errors
def tool_search_modules(
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
    criteria = {
        "name": name,
        "type": type,
        "parent_module": parent_module,
        "file_path": file_path,
        "access_modifier": access_modifier,
        "description": description,
        "keyword": keyword,
        "fuzzy": fuzzy,
        "sort_by": sort_by,
        "limit": limit,
        "offset": offset,
    }
    return get_store().manager.search(criteria).to_dict()


@handle_mcp_errors
def tool_get_type_structure(type_name: str) -> Dict[str, Any]:
    return get_store().manager.get_type_structure(type_name).to_dict()


@handle_mcp_errors
def tool_get_module_types() -> Dict[str, Any]:
    return get_store().manager.module_types().to_dict()


@handle_mcp_errors
def tool_check_module_integrity(auto_repair: bool = False) -> Dict[str, Any]:
    return get_store().manager.check_integrity(auto_repair=auto_repair).to_dict()


# ----- storage tools -----


def _collection() -> str:
    return get_store().manager.collection


@handle_mcp_errors
def tool_backup_collection(description: Optional[str] = None) -> Dict[str, Any]:
    return get_store().storage.backup(_collection(), description).to_dict()


@handle_mcp_errors
def tool_list_backups() -> Dict[str, Any]:
    return get_store().storage.list_backups(_collection()).to_dict()


@handle_mcp_errors
def tool_restore_backup(backup_id: str) -> Dict[str, Any]:
    return get_store().storage.restore(_collection(), backup_id).to_dict()


@handle_mcp_errors
def tool_check_storage_integrity() -> Dict[str, Any]:
    return get_store().storage.check_integrity().to_dict()


@handle_mcp_errors
def tool_get_storage_stats() -> Dict[str, Any]:
    return get_store().storage.get_stats().to_dict()


@handle_mcp_errors
def tool_get_storage_events(limit: int = 100) -> Dict[str, Any]:
    return get_store().storage.get_events(limit).to_dict()


TOOL_NAMES: List[str] = [
    "add_module",
    "update_module",
    "delete_module",
    "get_module",
    "list_modules",
    "search_modules",
    "get_type_structure",
    "get_module_types",
    "check_module_integrity",
    "backup_collection",
    "list_backups",
    "restore_backup",
    "check_storage_integrity",
    "get_storage_stats",
    "get_storage_events",
]
