"""
Module Manager

CRUD, search and type-structure queries over one collection. Names are
resolved by the NameResolver, graph rules are checked by the
IntegrityChecker on the proposed in-memory collection, and only then is the
collection handed to the StorageEngine.
"""

import difflib
import logging
import threading
from collections import deque
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple

from .errors import (
    CircularReferenceError,
    DuplicateError,
    HasChildrenError,
    NotFoundError,
    ValidationError,
)
from .integrity import FILE_PATH_PATTERN, IntegrityChecker
from .models import (
    ALL_TYPE_FIELDS,
    AccessModifier,
    Module,
    ModuleRelationship,
    ModuleType,
    SearchCriteria,
    SearchResult,
    TYPE_FIELDS,
    TypeStructure,
)
from .naming import NameResolver
from .result import OperationResult, returns_result, utc_now
from .storage import StorageEngine

logger = logging.getLogger(__name__)

# Set on creation, never changed by update
IMMUTABLE_FIELDS = (
    "id",
    "type",
    "hierarchical_name",
    "name",
    "parent_module",
    "children",
    "created_at",
    "updated_at",
)
EDITABLE_FIELDS = ("file_path", "access_modifier", "description", "dependencies")
SORT_KEYS = ("name", "updated_at", "relevance")
FUZZY_THRESHOLD = 0.6
MAX_SEARCH_LIMIT = 1000


class ModuleManager:
    """Facade over one collection of modules"""

    def __init__(
        self,
        storage: StorageEngine,
        resolver: Optional[NameResolver] = None,
        checker: Optional[IntegrityChecker] = None,
        collection: Optional[str] = None,
    ):
        self.storage = storage
        self.resolver = resolver or NameResolver(
            storage.config.max_nesting_depth, storage.config.max_name_length
        )
        self.checker = checker or storage.checker
        self.collection = collection or storage.config.collection
        self._lock = threading.RLock()

    # ----- helpers -----

    def _load(self) -> Dict[str, Module]:
        return self.storage.load(self.collection).unwrap()

    def _save(self, modules: Dict[str, Module]) -> None:
        self.storage.save(self.collection, modules).unwrap()

    @staticmethod
    def _index(modules: Dict[str, Module]) -> Dict[str, Module]:
        return {m.hierarchical_name: m for m in modules.values()}

    def _find(self, modules: Dict[str, Module], hierarchical_name: str) -> Module:
        if not isinstance(hierarchical_name, str) or not hierarchical_name:
            raise ValidationError("hierarchical_name must be a non-empty string")
        for module in modules.values():
            if module.hierarchical_name == hierarchical_name:
                return module
        raise NotFoundError(f"Module not found: {hierarchical_name}")

    @staticmethod
    def _check_field_names(module_type: str, keys, allowed) -> None:
        own = TYPE_FIELDS.get(module_type, ())
        foreign = [k for k in keys if k in ALL_TYPE_FIELDS and k not in own]
        if foreign:
            raise ValidationError(
                f"Fields not valid for a {module_type} module: {', '.join(sorted(foreign))}"
            )
        unknown = [k for k in keys if k not in allowed and k not in own]
        if unknown:
            raise ValidationError(f"Unknown module fields: {', '.join(sorted(unknown))}")

    @staticmethod
    def _check_common_fields(data: Dict[str, Any]) -> None:
        file_path = data.get("file_path")
        if file_path is not None:
            if not isinstance(file_path, str):
                raise ValidationError("file_path must be a string")
            if file_path and not FILE_PATH_PATTERN.match(file_path):
                raise ValidationError(f"Invalid characters in file path: {file_path!r}")
        access = data.get("access_modifier")
        if access is not None and access not in AccessModifier.values():
            raise ValidationError(
                f"Invalid access modifier {access!r}; expected one of "
                f"{', '.join(AccessModifier.values())}"
            )
        dependencies = data.get("dependencies")
        if dependencies is not None and (
            not isinstance(dependencies, list)
            or not all(isinstance(d, str) and d for d in dependencies)
        ):
            raise ValidationError("dependencies must be a list of hierarchical names")

    def _check_record(self, module: Module) -> None:
        check = self.checker.validate_structure({module.id: module})
        if check.errors:
            raise ValidationError("Invalid module data", details=check.errors)

    @staticmethod
    def _missing_dependencies(module: Module, index: Dict[str, Module]) -> List[str]:
        warnings = []
        for dependency in module.dependencies:
            if dependency not in index:
                logger.warning(
                    "Module %s depends on unknown module %s", module.hierarchical_name, dependency
                )
                warnings.append(f"Dependency {dependency!r} does not exist")
        return warnings

    def _check_cycles(self, candidate: Dict[str, Module], hierarchical_name: str) -> List[str]:
        warnings = []
        for cycle in self.checker.find_cycles(candidate):
            if hierarchical_name in cycle:
                raise CircularReferenceError(
                    f"Change to {hierarchical_name} would create a circular reference: "
                    f"{' -> '.join(cycle)}",
                    details=cycle,
                )
            logger.warning("Existing circular reference: %s", " -> ".join(cycle))
            warnings.append(f"Existing circular reference: {' -> '.join(cycle)}")
        return warnings

    # ----- mutations -----

    @returns_result("add_module")
    def add(self, data: Dict[str, Any]) -> OperationResult:
        """
        Create a module.

        Errors: VALIDATION_ERROR, DUPLICATE_MODULE, NOT_FOUND (parent),
        CIRCULAR_REFERENCE.
        """
        if not isinstance(data, dict):
            raise ValidationError("Module data must be a mapping")
        data = dict(data)

        name = data.pop("name", None)
        reason = self.resolver.name_error(name)
        if reason:
            raise ValidationError(reason)

        module_type = ModuleType.normalize(data.pop("type", None))
        if module_type not in ModuleType.values():
            raise ValidationError(
                f"Invalid module type {module_type!r}; expected one of "
                f"{', '.join(ModuleType.values())}"
            )

        parent_name = data.pop("parent_module", None) or None
        if parent_name is not None:
            reason = self.resolver.hierarchical_name_error(parent_name)
            if reason:
                raise ValidationError(f"Invalid parent module: {reason}")

        hierarchical_name = self.resolver.generate_hierarchical_name(name, parent_name)
        requested = data.pop("hierarchical_name", None)
        if requested is not None and requested != hierarchical_name:
            raise ValidationError(
                f"hierarchical_name {requested!r} does not match parent and name "
                f"({hierarchical_name!r})"
            )
        reason = self.resolver.hierarchical_name_error(hierarchical_name)
        if reason:
            raise ValidationError(reason)

        self._check_field_names(module_type, data.keys(), EDITABLE_FIELDS)
        self._check_common_fields(data)

        with self._lock:
            modules = self._load()
            index = self._index(modules)
            if hierarchical_name in index:
                raise DuplicateError(f"Module already exists: {hierarchical_name}")
            parent = None
            if parent_name is not None:
                parent = index.get(parent_name)
                if parent is None:
                    raise NotFoundError(f"Parent module not found: {parent_name}")

            module = Module.create(name, module_type, hierarchical_name, parent_name, **data)
            self._check_record(module)
            warnings = self._missing_dependencies(module, index)

            candidate = dict(modules)
            candidate[module.id] = module
            if parent is not None:
                parent = parent.copy()
                if hierarchical_name not in parent.children:
                    parent.children.append(hierarchical_name)
                parent.updated_at = module.updated_at
                candidate[parent.id] = parent

            warnings += self._check_cycles(candidate, hierarchical_name)
            self._save(candidate)

        logger.info("Added module %s (%s)", hierarchical_name, module_type)
        return OperationResult.ok("add_module", module, warnings)

    @returns_result("update_module")
    def update(self, hierarchical_name: str, patch: Dict[str, Any]) -> OperationResult:
        """Apply a partial update; identity and hierarchy fields are immutable"""
        if not isinstance(patch, dict) or not patch:
            raise ValidationError("Update data must be a non-empty mapping")

        immutable = sorted(k for k in patch if k in IMMUTABLE_FIELDS)
        if immutable:
            raise ValidationError(f"Fields cannot be changed: {', '.join(immutable)}")

        with self._lock:
            modules = self._load()
            current = self._find(modules, hierarchical_name)
            self._check_field_names(current.type, patch.keys(), EDITABLE_FIELDS)
            self._check_common_fields(patch)

            updated = current.copy()
            for key, value in patch.items():
                updated.set_field(key, value)
            updated.updated_at = utc_now()
            self._check_record(updated)

            warnings = self._missing_dependencies(updated, self._index(modules))
            candidate = dict(modules)
            candidate[updated.id] = updated
            warnings += self._check_cycles(candidate, hierarchical_name)
            self._save(candidate)

        logger.info("Updated module %s (%s)", hierarchical_name, ", ".join(sorted(patch)))
        return OperationResult.ok("update_module", updated, warnings)

    @returns_result("delete_module")
    def delete(self, hierarchical_name: str) -> OperationResult:
        """Delete a childless module and unlink it from its parent"""
        with self._lock:
            modules = self._load()
            target = self._find(modules, hierarchical_name)

            children = [
                m.hierarchical_name for m in modules.values()
                if m.parent_module == hierarchical_name
            ]
            index = self._index(modules)
            children += [c for c in target.children if c in index and c not in children]
            if children:
                raise HasChildrenError(
                    f"Module {hierarchical_name} still has {len(children)} child module(s)",
                    details=children,
                )

            candidate = {key: m for key, m in modules.items() if key != target.id}
            if target.parent_module:
                parent = index.get(target.parent_module)
                if parent is not None and hierarchical_name in parent.children:
                    parent = parent.copy()
                    parent.children = [c for c in parent.children if c != hierarchical_name]
                    parent.updated_at = utc_now()
                    candidate[parent.id] = parent

            warnings = []
            for module in candidate.values():
                if hierarchical_name in module.dependencies:
                    logger.warning(
                        "Module %s still depends on deleted module %s",
                        module.hierarchical_name, hierarchical_name,
                    )
                    warnings.append(f"{module.hierarchical_name} depends on the deleted module")
            self._save(candidate)

        logger.info("Deleted module %s", hierarchical_name)
        return OperationResult.ok("delete_module", target, warnings)

    # ----- queries -----

    @returns_result("get_module")
    def get(self, hierarchical_name: str) -> Module:
        return self._find(self._load(), hierarchical_name)

    @returns_result("list_modules")
    def list_modules(self, module_type: Optional[str] = None) -> List[Module]:
        modules = list(self._load().values())
        if module_type is not None:
            module_type = ModuleType.normalize(module_type)
            modules = [m for m in modules if m.type == module_type]
        return modules

    @returns_result("count_modules")
    def count(self) -> int:
        return len(self._load())

    @returns_result("module_types")
    def module_types(self) -> List[str]:
        return ModuleType.values()

    @staticmethod
    def _contains(value: Optional[str], needle: str) -> bool:
        return bool(value) and needle in value.lower()

    def _score(self, module: Module, criteria: SearchCriteria) -> Optional[float]:
        """Relevance of a module, or None when a filter excludes it"""
        score = 0.0
        if criteria.name:
            needle = criteria.name.lower()
            name = module.name.lower()
            if name == needle:
                score += 100
            elif name.startswith(needle):
                score += 75
            elif needle in name:
                score += 50
            elif criteria.fuzzy:
                ratio = difflib.SequenceMatcher(None, needle, name).ratio()
                if ratio < FUZZY_THRESHOLD:
                    return None
                score += ratio * 40
            else:
                return None

        if criteria.type and module.type != ModuleType.normalize(criteria.type):
            return None
        if criteria.access_modifier and module.access_modifier != criteria.access_modifier:
            return None
        if criteria.parent_module and not self._contains(
            module.parent_module, criteria.parent_module.lower()
        ):
            return None
        if criteria.file_path and not self._contains(module.file_path, criteria.file_path.lower()):
            return None
        if criteria.description and not self._contains(
            module.description, criteria.description.lower()
        ):
            return None
        if criteria.keyword:
            needle = criteria.keyword.lower()
            fields = (module.hierarchical_name, module.description, module.file_path)
            if not any(self._contains(value, needle) for value in fields):
                return None
            score += 10
        return score

    @returns_result("search_modules")
    def search(self, criteria: Optional[Any] = None) -> SearchResult:
        """Filter, optionally sort, then paginate; insertion order by default"""
        try:
            criteria = SearchCriteria.from_dict(criteria)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from e
        if not isinstance(criteria.limit, int) or not 0 < criteria.limit <= MAX_SEARCH_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_SEARCH_LIMIT}")
        if not isinstance(criteria.offset, int) or criteria.offset < 0:
            raise ValidationError("offset must not be negative")
        if criteria.sort_by is not None and criteria.sort_by not in SORT_KEYS:
            raise ValidationError(f"sort_by must be one of {', '.join(SORT_KEYS)}")

        matches: List[Tuple[float, Module]] = []
        for module in self._load().values():
            score = self._score(module, criteria)
            if score is not None:
                matches.append((score, module))

        if criteria.sort_by == "name":
            matches.sort(key=lambda item: (item[1].name.lower(), item[1].hierarchical_name))
        elif criteria.sort_by == "updated_at":
            matches.sort(key=lambda item: item[1].updated_at, reverse=True)
        elif criteria.sort_by == "relevance":
            matches.sort(key=lambda item: item[0], reverse=True)

        page = matches[criteria.offset:criteria.offset + criteria.limit]
        return SearchResult(modules=[m for _, m in page], total=len(matches), query=criteria)

    @staticmethod
    def _type_references(module: Module, names: Tuple[str, ...]) -> List[Tuple[str, str]]:
        found = []
        for base in module.inheritance or ():
            if base in names:
                found.append(("inheritance", f"{module.hierarchical_name} inherits {base}"))
        for interface in module.interfaces or ():
            if interface in names:
                found.append(("interface", f"{module.hierarchical_name} implements {interface}"))
        for dependency in module.dependencies:
            if dependency in names:
                found.append(("dependency", f"{module.hierarchical_name} depends on {dependency}"))
        type_uses = [module.return_type, module.data_type]
        type_uses += [p.data_type for p in module.parameters or ()]
        if any(use in names for use in type_uses if use):
            found.append(("reference", f"{module.hierarchical_name} uses type {names[0]}"))
        return found

    @returns_result("get_type_structure")
    def get_type_structure(self, type_name: str) -> TypeStructure:
        """Ancestors, descendants and referencing modules of a named type"""
        if not isinstance(type_name, str) or not type_name:
            raise ValidationError("type_name must be a non-empty string")

        modules = self._load()
        index = self._index(modules)
        target = index.get(type_name) or next(
            (m for m in modules.values() if m.name == type_name), None
        )
        structure = TypeStructure(type_name=type_name)
        related: Dict[str, Module] = {}

        if target is not None:
            related[target.hierarchical_name] = target
            chain = [target.hierarchical_name]
            parent_name = target.parent_module
            while parent_name and parent_name not in chain:
                parent = index.get(parent_name)
                structure.relationships.append(
                    ModuleRelationship(chain[0], parent_name, "parent-child")
                )
                chain.insert(0, parent_name)
                if parent is None:
                    break
                related.setdefault(parent_name, parent)
                parent_name = parent.parent_module
            structure.hierarchy = chain

            queue = deque([target.hierarchical_name])
            seen = {target.hierarchical_name}
            while queue:
                current = queue.popleft()
                for module in modules.values():
                    if module.parent_module == current and module.hierarchical_name not in seen:
                        seen.add(module.hierarchical_name)
                        structure.descendants.append(module.hierarchical_name)
                        structure.relationships.append(
                            ModuleRelationship(module.hierarchical_name, current, "parent-child")
                        )
                        related.setdefault(module.hierarchical_name, module)
                        queue.append(module.hierarchical_name)

        names = (type_name,) if target is None else tuple(
            dict.fromkeys((type_name, target.name, target.hierarchical_name))
        )
        for module in modules.values():
            if target is not None and module.id == target.id:
                continue
            for relationship_type, description in self._type_references(module, names):
                structure.relationships.append(
                    ModuleRelationship(module.hierarchical_name, type_name, relationship_type, description)
                )
                related.setdefault(module.hierarchical_name, module)

        if target is None and not related:
            raise NotFoundError(f"No module defines or references type {type_name}")
        structure.related_modules = list(related.values())
        return structure

    # ----- integrity -----

    @returns_result("check_integrity")
    def check_integrity(self, auto_repair: bool = False) -> Dict[str, Any]:
        """Graph check of the collection, optionally followed by auto-repair"""
        with self._lock:
            modules = self._load()
            result = self.checker.check(modules)
            issues = self.checker.detect_issues(modules)
            report = None

            if auto_repair and any(issue.auto_fixable for issue in issues):
                report = self.checker.apply_repairs(
                    modules,
                    issues,
                    self.storage.backup_path,
                    label=self.collection,
                    encoder=self.storage.codec.encode_modules,
                )
                if report.repaired_issues:
                    self._save(report.modules)
                    result = self.checker.check(report.modules)
                    result.repaired_items = len(report.repaired_issues)
                    issues = self.checker.detect_issues(report.modules)

        return {
            "collection": self.collection,
            "result": result.to_dict(),
            "issues": [asdict(issue) for issue in issues],
            "repair": report.to_dict() if report else None,
        }
