"""Module store data structures."""

import copy
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .result import utc_now

SCHEMA_VERSION = "1.0.0"


class ModuleType(str, Enum):
    """Kinds of documented source structure"""

    CLASS = "class"
    FUNCTION = "function"
    VARIABLE = "variable"
    FILE = "file"
    FUNCTION_GROUP = "function_group"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def normalize(cls, value: Any) -> Any:
        """Map legacy spellings onto current values; leave anything else alone"""
        if isinstance(value, Enum):
            value = value.value
        if value in ("functionGroup", "function-group"):
            return cls.FUNCTION_GROUP.value
        return value


class AccessModifier(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


# Fields that only make sense for one module type
TYPE_FIELDS: Dict[str, tuple] = {
    ModuleType.CLASS.value: ("inheritance", "interfaces"),
    ModuleType.FUNCTION.value: ("parameters", "return_type", "is_async"),
    ModuleType.VARIABLE.value: ("data_type", "initial_value", "is_constant"),
    ModuleType.FILE.value: ("exports", "imports"),
    ModuleType.FUNCTION_GROUP.value: ("functions",),
}

TYPE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    ModuleType.CLASS.value: {"inheritance": list, "interfaces": list},
    ModuleType.FUNCTION.value: {"parameters": list, "is_async": lambda: False},
    ModuleType.VARIABLE.value: {"data_type": lambda: "any", "is_constant": lambda: False},
    ModuleType.FILE.value: {"exports": list, "imports": list},
    ModuleType.FUNCTION_GROUP.value: {"functions": list},
}

BASE_FIELDS = (
    "id",
    "name",
    "hierarchical_name",
    "type",
    "parent_module",
    "file_path",
    "access_modifier",
    "description",
    "children",
    "dependencies",
    "created_at",
    "updated_at",
)

ALL_TYPE_FIELDS = tuple(sorted({name for names in TYPE_FIELDS.values() for name in names}))


def _timestamp(value: Any) -> Any:
    # YAML loaders turn unquoted ISO strings into datetime objects
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _string_list(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return value


@dataclass
class Parameter:
    name: str
    data_type: str = "any"
    default_value: Optional[str] = None
    is_required: bool = True
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Parameter":
        if isinstance(data, Parameter):
            return data
        if isinstance(data, str):
            return cls(name=data)
        return cls(
            name=data.get("name", ""),
            data_type=data.get("data_type", "any"),
            default_value=data.get("default_value"),
            is_required=data.get("is_required", True),
            description=data.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Module:
    """
    One documented unit of source structure.

    Base fields are shared by every type; type-specific fields stay None for
    types they do not belong to. Keys read from disk that the store does not
    know about are kept in ``extra`` and written back unchanged.
    """

    id: str
    name: str
    hierarchical_name: str
    type: str
    file_path: str = ""
    parent_module: Optional[str] = None
    access_modifier: str = AccessModifier.PUBLIC.value
    description: str = ""
    children: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    # class
    inheritance: Optional[List[str]] = None
    interfaces: Optional[List[str]] = None
    # function
    parameters: Optional[List[Parameter]] = None
    return_type: Optional[str] = None
    is_async: Optional[bool] = None
    # variable
    data_type: Optional[str] = None
    initial_value: Optional[str] = None
    is_constant: Optional[bool] = None
    # file
    exports: Optional[List[str]] = None
    imports: Optional[List[str]] = None
    # function_group
    functions: Optional[List[str]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        name: str,
        type: str,
        hierarchical_name: Optional[str] = None,
        parent_module: Optional[str] = None,
        **attrs: Any,
    ) -> "Module":
        """Build a new module with a fresh id, timestamps and type defaults"""
        now = utc_now()
        if hierarchical_name is None:
            hierarchical_name = f"{parent_module}.{name}" if parent_module else name
        module = cls(
            id=attrs.pop("id", None) or uuid.uuid4().hex,
            name=name,
            hierarchical_name=hierarchical_name,
            type=ModuleType.normalize(type),
            parent_module=parent_module,
            created_at=attrs.pop("created_at", None) or now,
            updated_at=attrs.pop("updated_at", None) or now,
        )
        for key, value in attrs.items():
            module.set_field(key, value)
        module.apply_type_defaults()
        return module

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Module":
        """Build a module from a stored mapping without validating it"""
        known = {f.name for f in fields(cls)} - {"extra"}
        parameters = data.get("parameters")
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") if data.get("name") is not None else "",
            hierarchical_name=data.get("hierarchical_name") or "",
            type=ModuleType.normalize(data.get("type") or ""),
            file_path=data.get("file_path") or "",
            parent_module=data.get("parent_module") or None,
            access_modifier=data.get("access_modifier") or AccessModifier.PUBLIC.value,
            description=data.get("description") or "",
            children=_string_list(data.get("children")) or [],
            dependencies=_string_list(data.get("dependencies")) or [],
            created_at=_timestamp(data.get("created_at")) or "",
            updated_at=_timestamp(data.get("updated_at")) or "",
            inheritance=_string_list(data.get("inheritance")),
            interfaces=_string_list(data.get("interfaces")),
            parameters=(
                [Parameter.from_dict(p) for p in parameters]
                if isinstance(parameters, list)
                else None
            ),
            return_type=data.get("return_type"),
            is_async=data.get("is_async"),
            data_type=data.get("data_type"),
            initial_value=data.get("initial_value"),
            is_constant=data.get("is_constant"),
            exports=_string_list(data.get("exports")),
            imports=_string_list(data.get("imports")),
            functions=_string_list(data.get("functions")),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Stored representation: base fields, this type's fields, then extras"""
        data: Dict[str, Any] = {name: getattr(self, name) for name in BASE_FIELDS}
        data["children"] = list(self.children)
        data["dependencies"] = list(self.dependencies)
        for name in TYPE_FIELDS.get(self.type, ()):
            value = getattr(self, name)
            if name == "parameters" and value is not None:
                value = [p.to_dict() for p in value]
            elif isinstance(value, list):
                value = list(value)
            data[name] = value
        for key, value in self.extra.items():
            data.setdefault(key, copy.deepcopy(value))
        return data

    def set_field(self, key: str, value: Any) -> None:
        if key == "parameters" and value is not None:
            value = [Parameter.from_dict(p) for p in value]
        elif key in ("children", "dependencies"):
            value = _string_list(value) or []
        setattr(self, key, value)

    def apply_type_defaults(self) -> None:
        for name, factory in TYPE_DEFAULTS.get(self.type, {}).items():
            if getattr(self, name) is None:
                setattr(self, name, factory())

    def copy(self) -> "Module":
        return copy.deepcopy(self)


@dataclass
class CollectionMetadata:
    version: str = SCHEMA_VERSION
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    total_modules: int = 0
    checksum: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionMetadata":
        return cls(
            version=str(data.get("version") or SCHEMA_VERSION),
            created_at=_timestamp(data.get("created_at")) or utc_now(),
            updated_at=_timestamp(data.get("updated_at")) or utc_now(),
            total_modules=int(data.get("total_modules") or 0),
            checksum=data.get("checksum") or data.get("file_hash"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.checksum is None:
            del data["checksum"]
        return data


@dataclass
class Collection:
    metadata: CollectionMetadata = field(default_factory=CollectionMetadata)
    modules: Dict[str, Module] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "modules": {key: module.to_dict() for key, module in self.modules.items()},
        }


@dataclass
class BackupInfo:
    id: str
    filename: str
    path: str
    size: int
    created_at: str
    modules_count: int
    checksum: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FileStats:
    modules_count: int
    size: int
    last_modified: str


@dataclass
class StorageStats:
    total_files: int = 0
    total_modules: int = 0
    total_size: int = 0
    last_modified: Optional[str] = None
    backup_count: int = 0
    last_backup: Optional[str] = None
    file_distribution: Dict[str, FileStats] = field(default_factory=dict)
    unreadable_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FileIntegrityError:
    file_path: str
    error_type: str  # missing_file | corrupted_data | schema_violation | checksum_mismatch
    message: str
    severity: str  # low | medium | high | critical


@dataclass
class FileIntegrityWarning:
    file_path: str
    warning_type: str  # deprecated_format | performance_issue | best_practice
    message: str


@dataclass
class IntegritySummary:
    total_files: int = 0
    valid_files: int = 0
    corrupted_files: int = 0
    missing_files: int = 0


@dataclass
class IntegrityCheckResult:
    is_valid: bool = True
    errors: List[FileIntegrityError] = field(default_factory=list)
    warnings: List[FileIntegrityWarning] = field(default_factory=list)
    summary: IntegritySummary = field(default_factory=IntegritySummary)
    checksums: Dict[str, str] = field(default_factory=dict)
    checked_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StorageEvent:
    type: str  # file_created | file_read | file_updated | backup_created | backup_restored | integrity_check
    operation: str
    success: bool
    file_path: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchCriteria:
    name: Optional[str] = None
    type: Optional[str] = None
    parent_module: Optional[str] = None
    file_path: Optional[str] = None
    access_modifier: Optional[str] = None
    description: Optional[str] = None
    keyword: Optional[str] = None
    fuzzy: bool = False
    sort_by: Optional[str] = None  # name | updated_at | relevance
    limit: int = 50
    offset: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchCriteria":
        if isinstance(data, SearchCriteria):
            return data
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown search criteria: {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class SearchResult:
    modules: List[Module]
    total: int
    query: SearchCriteria

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modules": [m.to_dict() for m in self.modules],
            "total": self.total,
            "query": self.query.to_dict(),
        }


@dataclass
class ModuleRelationship:
    source: str
    target: str
    relationship_type: str  # parent-child | inheritance | interface | dependency | reference
    description: Optional[str] = None


@dataclass
class TypeStructure:
    type_name: str
    hierarchy: List[str] = field(default_factory=list)
    descendants: List[str] = field(default_factory=list)
    related_modules: List[Module] = field(default_factory=list)
    relationships: List[ModuleRelationship] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type_name": self.type_name,
            "hierarchy": list(self.hierarchy),
            "descendants": list(self.descendants),
            "related_modules": [m.to_dict() for m in self.related_modules],
            "relationships": [asdict(r) for r in self.relationships],
        }
