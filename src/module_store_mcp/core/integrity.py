"""
Integrity Checker

Validation passes over a snapshot of a whole module map:
- structural validation of every record
- reference checks for parent, child and dependency links
- cycle detection over parent + dependency edges
- canonical checksums of module content and of collection files
- two-phase auto-repair of dangling parent/child references

The checker holds no state of its own apart from the injected checksum cache.
"""

import copy
import hashlib
import json
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import xxhash

from .codec import RecordCodec
from .errors import BackupError
from .models import AccessModifier, Module, ModuleType, TYPE_FIELDS
from .naming import NameResolver
from .result import utc_now

logger = logging.getLogger(__name__)

CHECKSUM_ALGORITHM = "sha256"
FILE_PATH_PATTERN = re.compile(r"^[A-Za-z0-9._\-/\\]+$")
FINGERPRINT_CONTENT_LIMIT = 10240  # bytes; larger files are fingerprinted by stat
AUTO_FIXABLE = ("missing_reference", "orphaned_data")


def file_sha256(path: Path) -> str:
    """Hex digest of a file's bytes"""
    digest = hashlib.new(CHECKSUM_ALGORITHM)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_fingerprint(path: Path) -> str:
    """Cheap change detector: xxh3 of small files, stat metadata of large ones"""
    stat = Path(path).stat()
    if stat.st_size >= FINGERPRINT_CONTENT_LIMIT:
        return f"{stat.st_mtime_ns}:{stat.st_size}:{stat.st_ino}"
    with open(path, "rb") as f:
        return xxhash.xxh3_64(f.read()).hexdigest()


def _parse_timestamp(value: Any) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return True
    except ValueError:
        return False


@dataclass
class _CacheEntry:
    fingerprint: str
    checksum: str
    stored_at: float


class ChecksumCache:
    """Bounded, time-expiring cache of per-file checksums"""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def checksum(self, path: Path) -> str:
        key = str(Path(path).resolve())
        fingerprint = file_fingerprint(path)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if (
                entry is not None
                and now - entry.stored_at < self.ttl_seconds
                and entry.fingerprint == fingerprint
            ):
                self.hits += 1
                return entry.checksum
            self.misses += 1

        checksum = file_sha256(path)
        with self._lock:
            self._entries[key] = _CacheEntry(fingerprint, checksum, now)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return checksum

    def invalidate(self, path: Path) -> None:
        with self._lock:
            self._entries.pop(str(Path(path).resolve()), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Checksum cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "cache_size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / lookups if lookups else 0.0,
            }


@dataclass
class ConsistencyIssue:
    type: str  # missing_reference | orphaned_data | missing_dependency | circular_dependency | invalid_data
    severity: str  # low | medium | high | critical
    description: str
    affected_items: List[str] = field(default_factory=list)
    module_id: Optional[str] = None
    suggested_fix: Optional[str] = None
    auto_fixable: bool = False


@dataclass
class GraphCheckResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    checked_items: int = 0
    corrupted_items: int = 0
    repaired_items: int = 0
    cycles: List[List[str]] = field(default_factory=list)
    checksum: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)

    def merge(self, other: "GraphCheckResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.checked_items += other.checked_items
        self.corrupted_items += other.corrupted_items
        self.cycles.extend(other.cycles)
        self.is_valid = not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RepairReport:
    success: bool
    repaired_issues: List[ConsistencyIssue] = field(default_factory=list)
    failed_repairs: List[ConsistencyIssue] = field(default_factory=list)
    skipped_issues: List[ConsistencyIssue] = field(default_factory=list)
    backup_created: Optional[str] = None
    message: str = ""
    modules: Dict[str, Module] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "repaired_issues": [asdict(i) for i in self.repaired_issues],
            "failed_repairs": [asdict(i) for i in self.failed_repairs],
            "skipped_issues": [asdict(i) for i in self.skipped_issues],
            "backup_created": self.backup_created,
            "message": self.message,
        }


class IntegrityChecker:
    """Pure validation over a {id: Module} snapshot"""

    def __init__(
        self,
        resolver: Optional[NameResolver] = None,
        checksum_cache: Optional[ChecksumCache] = None,
    ):
        self.resolver = resolver or NameResolver()
        self.checksum_cache = checksum_cache or ChecksumCache()

    # ----- structural validation -----

    def _module_problems(self, key: str, module: Module) -> Tuple[List[str], List[str]]:
        errors: List[str] = []
        warnings: List[str] = []
        label = module.hierarchical_name or module.name or key

        if not isinstance(module.id, str) or not module.id:
            errors.append(f"Module {key!r} has no id")
        elif module.id != key:
            errors.append(f"Module {label!r} is stored under key {key!r} but has id {module.id!r}")

        if not isinstance(module.name, str) or not module.name:
            errors.append(f"Module {key!r} has no valid name")
            return errors, warnings
        reason = self.resolver.name_error(module.name)
        if reason:
            errors.append(f"Module {label!r}: {reason}")

        if not isinstance(module.type, str) or not module.type:
            errors.append(f"Module {label!r} has no valid type")
        elif module.type not in ModuleType.values():
            errors.append(
                f"Module {label!r} has unsupported type {module.type!r}; "
                f"expected one of {', '.join(ModuleType.values())}"
            )

        hname = module.hierarchical_name
        if not isinstance(hname, str) or not hname:
            errors.append(f"Module {module.name!r} has no hierarchical name")
        else:
            segments = hname.split(".")
            for segment in segments:
                if self.resolver.name_error(segment):
                    errors.append(f"Hierarchical name {hname!r} contains invalid segment {segment!r}")
            if len(segments) > self.resolver.max_depth:
                warnings.append(
                    f"Hierarchical name {hname!r} is nested {len(segments)} deep "
                    f"(maximum {self.resolver.max_depth})"
                )
            expected = self.resolver.generate_hierarchical_name(module.name, module.parent_module)
            if hname != expected:
                errors.append(
                    f"Hierarchical name {hname!r} does not match parent and name ({expected!r})"
                )

        if not isinstance(module.file_path, str):
            errors.append(f"Module {label!r} has a non-string file path")
        elif module.file_path and not FILE_PATH_PATTERN.match(module.file_path):
            errors.append(f"Module {label!r} has invalid characters in file path {module.file_path!r}")

        if module.access_modifier not in AccessModifier.values():
            errors.append(f"Module {label!r} has invalid access modifier {module.access_modifier!r}")

        for list_field in ("children", "dependencies"):
            value = getattr(module, list_field)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                errors.append(f"Module {label!r}: {list_field} must be a list of names")

        for stamp_field in ("created_at", "updated_at"):
            value = getattr(module, stamp_field)
            if not value:
                warnings.append(f"Module {label!r} has no {stamp_field}")
            elif not _parse_timestamp(value):
                errors.append(f"Module {label!r} has unparseable {stamp_field} {value!r}")

        errors.extend(self._type_field_problems(label, module))
        return errors, warnings

    @staticmethod
    def _type_field_problems(label: str, module: Module) -> List[str]:
        errors = []
        for name in TYPE_FIELDS.get(module.type, ()):
            value = getattr(module, name)
            if value is None:
                continue
            if name in ("is_async", "is_constant"):
                if not isinstance(value, bool):
                    errors.append(f"Module {label!r}: {name} must be a boolean")
            elif name == "parameters":
                for parameter in value:
                    if not getattr(parameter, "name", None):
                        errors.append(f"Module {label!r} has a parameter without a name")
            elif name in ("return_type", "data_type", "initial_value"):
                if not isinstance(value, str):
                    errors.append(f"Module {label!r}: {name} must be a string")
            elif not isinstance(value, list):
                errors.append(f"Module {label!r}: {name} must be a list")
        return errors

    def validate_structure(self, modules: Dict[str, Module]) -> GraphCheckResult:
        """Required fields, types, identifiers, timestamps and name uniqueness"""
        result = GraphCheckResult()
        seen: Dict[str, str] = {}
        for key, module in modules.items():
            result.checked_items += 1
            if not isinstance(module, Module):
                result.errors.append(f"Entry {key!r} is not a module record")
                result.corrupted_items += 1
                continue
            errors, warnings = self._module_problems(key, module)
            hname = module.hierarchical_name
            if isinstance(hname, str) and hname:
                if hname in seen:
                    errors.append(f"Hierarchical name {hname!r} is used by {seen[hname]!r} and {key!r}")
                else:
                    seen[hname] = key
            result.errors.extend(errors)
            result.warnings.extend(warnings)
            if errors:
                result.corrupted_items += 1
        result.is_valid = not result.errors
        return result

    # ----- reference checks -----

    @staticmethod
    def _by_name(modules: Dict[str, Module]) -> Dict[str, Module]:
        return {m.hierarchical_name: m for m in modules.values() if m.hierarchical_name}

    def check_references(self, modules: Dict[str, Module]) -> GraphCheckResult:
        result = GraphCheckResult()
        by_name = self._by_name(modules)

        for module in modules.values():
            result.checked_items += 1
            broken = False
            if module.parent_module and module.parent_module not in by_name:
                result.errors.append(
                    f"Module {module.hierarchical_name!r} references missing parent "
                    f"{module.parent_module!r}"
                )
                broken = True
            for child in module.children:
                if child not in by_name:
                    result.errors.append(
                        f"Module {module.hierarchical_name!r} references missing child {child!r}"
                    )
                    broken = True
            for dependency in module.dependencies:
                if dependency not in by_name:
                    result.warnings.append(
                        f"Module {module.hierarchical_name!r} depends on missing module "
                        f"{dependency!r}"
                    )
            if broken:
                result.corrupted_items += 1

        result.is_valid = not result.errors
        return result

    # ----- cycle detection -----

    def find_cycles(self, modules: Dict[str, Module]) -> List[List[str]]:
        """
        Cycles over parent and dependency edges.

        Iterative depth-first search over an index arena. A cycle is reported
        only for a back-edge to a node on the current path, as
        [first, ..., first]. Shared ancestors (diamonds) are not cycles.
        """
        names = [m.hierarchical_name for m in modules.values() if m.hierarchical_name]
        index = {name: i for i, name in enumerate(dict.fromkeys(names))}
        nodes = list(index)
        edges: List[List[int]] = [[] for _ in nodes]
        for module in modules.values():
            source = index.get(module.hierarchical_name)
            if source is None:
                continue
            targets = list(module.dependencies)
            if module.parent_module:
                targets.append(module.parent_module)
            for target in targets:
                target_index = index.get(target)
                if target_index is not None and target_index not in edges[source]:
                    edges[source].append(target_index)

        unvisited, on_path, done = 0, 1, 2
        state = [unvisited] * len(nodes)
        cycles: List[List[str]] = []
        seen_cycles = set()

        for root in range(len(nodes)):
            if state[root] != unvisited:
                continue
            path: List[int] = [root]
            stack: List[Tuple[int, int]] = [(root, 0)]
            state[root] = on_path
            while stack:
                node, edge_pos = stack[-1]
                if edge_pos >= len(edges[node]):
                    stack.pop()
                    path.pop()
                    state[node] = done
                    continue
                stack[-1] = (node, edge_pos + 1)
                target = edges[node][edge_pos]
                if state[target] == on_path:
                    cycle = path[path.index(target):]
                    key = frozenset(cycle)
                    if key not in seen_cycles:
                        seen_cycles.add(key)
                        cycles.append([nodes[i] for i in cycle] + [nodes[target]])
                elif state[target] == unvisited:
                    state[target] = on_path
                    path.append(target)
                    stack.append((target, 0))
        return cycles

    def check_cycles(self, modules: Dict[str, Module]) -> GraphCheckResult:
        result = GraphCheckResult(checked_items=len(modules))
        for cycle in self.find_cycles(modules):
            result.cycles.append(cycle)
            result.errors.append(f"Circular reference detected: {' -> '.join(cycle)}")
            result.corrupted_items += 1
        result.is_valid = not result.errors
        return result

    # ----- checksums -----

    @staticmethod
    def _normalize(module: Module) -> Dict[str, Any]:
        data = module.to_dict()
        for volatile in ("id", "created_at", "updated_at"):
            data.pop(volatile, None)
        for key, value in data.items():
            if isinstance(value, list) and all(isinstance(v, str) for v in value):
                data[key] = sorted(value)
        return data

    def generate_checksum(self, modules: Dict[str, Module]) -> str:
        """Checksum of module content, independent of ids, timestamps and ordering"""
        ordered = sorted(
            modules.values(), key=lambda m: (str(m.hierarchical_name), str(m.name))
        )
        payload = json.dumps(
            [self._normalize(m) for m in ordered],
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        )
        return hashlib.new(CHECKSUM_ALGORITHM, payload.encode("utf-8")).hexdigest()

    def file_checksum(self, path: Path) -> str:
        return self.checksum_cache.checksum(path)

    # ----- aggregate -----

    def check(
        self,
        modules: Dict[str, Module],
        check_references: bool = True,
        check_cycles: bool = True,
        validate_data: bool = True,
        generate_checksum: bool = True,
    ) -> GraphCheckResult:
        started = time.time()
        result = GraphCheckResult()
        logger.info("Starting integrity check of %d modules", len(modules))

        if check_references:
            result.merge(self.check_references(modules))
        if check_cycles:
            result.merge(self.check_cycles(modules))
        if validate_data:
            result.merge(self.validate_structure(modules))
        if generate_checksum:
            result.checksum = self.generate_checksum(modules)

        result.is_valid = not result.errors
        logger.info(
            "Integrity check finished: %d checks, %d corrupted, %.1fms",
            result.checked_items, result.corrupted_items, (time.time() - started) * 1000,
        )
        return result

    # ----- auto-repair -----

    def detect_issues(self, modules: Dict[str, Module]) -> List[ConsistencyIssue]:
        """Phase one of auto-repair: classify every problem in the snapshot"""
        issues: List[ConsistencyIssue] = []
        by_name = self._by_name(modules)

        for key, module in modules.items():
            errors, _ = self._module_problems(key, module)
            if errors:
                issues.append(
                    ConsistencyIssue(
                        type="invalid_data",
                        severity="critical",
                        description="; ".join(errors),
                        affected_items=[module.hierarchical_name or key],
                        module_id=key,
                        suggested_fix="Fix or delete the record by hand",
                    )
                )

            label = module.hierarchical_name or key
            if module.parent_module and module.parent_module not in by_name:
                issues.append(
                    ConsistencyIssue(
                        type="missing_reference",
                        severity="high",
                        description=(
                            f"Module {label!r} references missing parent {module.parent_module!r}"
                        ),
                        affected_items=[label],
                        module_id=key,
                        suggested_fix="Detach the module from its missing parent",
                        auto_fixable=True,
                    )
                )

            missing_children = [c for c in module.children if c not in by_name]
            if missing_children:
                issues.append(
                    ConsistencyIssue(
                        type="orphaned_data",
                        severity="medium",
                        description=(
                            f"Module {label!r} lists missing children: {', '.join(missing_children)}"
                        ),
                        affected_items=[label, *missing_children],
                        module_id=key,
                        suggested_fix="Remove the invalid child references",
                        auto_fixable=True,
                    )
                )

            missing_dependencies = [d for d in module.dependencies if d not in by_name]
            if missing_dependencies:
                issues.append(
                    ConsistencyIssue(
                        type="missing_dependency",
                        severity="low",
                        description=(
                            f"Module {label!r} depends on missing modules: "
                            f"{', '.join(missing_dependencies)}"
                        ),
                        affected_items=[label, *missing_dependencies],
                        module_id=key,
                    )
                )

        for cycle in self.find_cycles(modules):
            issues.append(
                ConsistencyIssue(
                    type="circular_dependency",
                    severity="critical",
                    description=f"Circular reference: {' -> '.join(cycle)}",
                    affected_items=cycle[:-1],
                    suggested_fix="Break the cycle by removing a dependency",
                )
            )
        return issues

    @staticmethod
    def _reroot(modules: Dict[str, Module], module: Module) -> bool:
        """
        Make module a root: drop its parent and shorten its hierarchical name,
        and the names of everything below it, to match. Returns False without
        changing anything if a new name is already taken.
        """
        old = module.hierarchical_name
        prefix = old + "."
        renames = {old: module.name}
        for other in modules.values():
            if other.hierarchical_name.startswith(prefix):
                renames[other.hierarchical_name] = module.name + other.hierarchical_name[len(old):]

        taken = {m.hierarchical_name for m in modules.values()} - set(renames)
        if any(new in taken for new in renames.values()):
            return False

        for other in modules.values():
            other.hierarchical_name = renames.get(other.hierarchical_name, other.hierarchical_name)
            if other.parent_module in renames:
                other.parent_module = renames[other.parent_module]
            other.children = [renames.get(c, c) for c in other.children]
            other.dependencies = [renames.get(d, d) for d in other.dependencies]
        module.parent_module = None
        return True

    def apply_repairs(
        self,
        modules: Dict[str, Module],
        issues: List[ConsistencyIssue],
        snapshot_dir: Path,
        label: str = "collection",
        encoder: Optional[Callable[[Dict[str, Module]], str]] = None,
    ) -> RepairReport:
        """
        Phase two of auto-repair.

        Writes a timestamped snapshot of the untouched map, then works on a
        copy: dangling child references are dropped and modules whose parent
        is missing are detached and renamed as roots. Returns the repaired
        copy in the report; the input map is never mutated.

        Raises:
            BackupError: the pre-repair snapshot could not be written
        """
        snapshot_dir = Path(snapshot_dir)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        snapshot = snapshot_dir / f"pre-repair_{label}_{stamp}.yaml"
        encoder = encoder or RecordCodec().encode_modules
        try:
            snapshot_dir.mkdir(parents=True, exist_ok=True)
            snapshot.write_text(encoder(modules), encoding="utf-8")
        except OSError as e:
            raise BackupError(f"Cannot write pre-repair snapshot {snapshot}: {e}") from e

        repaired = copy.deepcopy(modules)
        by_name = self._by_name(repaired)
        report = RepairReport(success=False, backup_created=str(snapshot), modules=repaired)

        for issue in issues:
            if not issue.auto_fixable or issue.type not in AUTO_FIXABLE:
                report.skipped_issues.append(issue)
                continue
            module = repaired.get(issue.module_id or "")
            if module is None:
                report.failed_repairs.append(issue)
                logger.error("Repair failed, module no longer present: %s", issue.description)
                continue
            if issue.type == "missing_reference":
                if module.parent_module and module.parent_module not in by_name:
                    if not self._reroot(repaired, module):
                        report.failed_repairs.append(issue)
                        logger.error(
                            "Cannot detach %s: its local name is already taken",
                            module.hierarchical_name,
                        )
                        continue
                    by_name = self._by_name(repaired)
                    logger.info("Detached %s from its missing parent", module.hierarchical_name)
            else:
                module.children = [c for c in module.children if c in by_name]
                logger.info("Removed dangling child references of %s", module.hierarchical_name)
            report.repaired_issues.append(issue)

        report.success = not report.failed_repairs
        report.message = (
            f"Repaired {len(report.repaired_issues)} issue(s), "
            f"{len(report.failed_repairs)} failed, {len(report.skipped_issues)} not auto-fixable"
        )
        return report
