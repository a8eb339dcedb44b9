"""
Storage Engine

File-backed persistence of module collections, one YAML file per collection.

Design Principles:
- Every public operation returns an OperationResult, never raises
- Writes go to a temp file first and replace the live file atomically
- The prior file is backed up just before it is replaced
- Every operation is recorded in a bounded diagnostic event buffer
"""

import logging
import os
import re
import shutil
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..config import StoreConfig
from .backup import BackupRotator, BackupValidationResult
from .codec import FILE_SUFFIX, RecordCodec
from .errors import (
    BackupError,
    InitializationError,
    ModuleStoreError,
    NotFoundError,
    ParseError,
    ReadError,
    ValidationError,
    WriteError,
)
from .integrity import ChecksumCache, IntegrityChecker
from .lease import READ, WRITE, LeaseManager
from .models import (
    BackupInfo,
    Collection,
    CollectionMetadata,
    FileIntegrityError,
    FileIntegrityWarning,
    FileStats,
    IntegrityCheckResult,
    Module,
    StorageEvent,
    StorageStats,
)
from .naming import NameResolver
from .result import returns_result, utc_now

logger = logging.getLogger(__name__)

COLLECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")
MAX_EVENTS = 1000
EVENTS_KEPT = 500
LARGE_FILE_SIZE = 10 * 1024 * 1024

# method name -> event type
EVENT_TYPES = {
    "initialize": "file_created",
    "load": "file_read",
    "read_collection": "file_read",
    "save": "file_updated",
    "backup": "backup_created",
    "list_backups": "file_read",
    "restore": "backup_restored",
    "check_integrity": "integrity_check",
    "get_stats": "file_read",
}


def _mtime_iso(mtime: float) -> str:
    return datetime.fromtimestamp(mtime, timezone.utc).isoformat()


class StorageEngine:
    """Loads, saves, backs up and checks collection files under one root"""

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        codec: Optional[RecordCodec] = None,
        leases: Optional[LeaseManager] = None,
        checksum_cache: Optional[ChecksumCache] = None,
        checker: Optional[IntegrityChecker] = None,
        rotator: Optional[BackupRotator] = None,
    ):
        self.config = config or StoreConfig()
        self.root_path = Path(self.config.root_path)
        self.backup_path = Path(self.config.backup_path)
        self.codec = codec or RecordCodec()
        self.leases = leases or LeaseManager(self.config.lease_timeout_seconds)
        self.checksum_cache = checksum_cache or ChecksumCache(self.config.checksum_cache_ttl_seconds)
        self.checker = checker or IntegrityChecker(
            NameResolver(self.config.max_nesting_depth, self.config.max_name_length),
            self.checksum_cache,
        )
        self.rotator = rotator or BackupRotator(self.backup_path, self.config.max_backups, self.codec)

        self._events: List[StorageEvent] = []
        self._events_lock = threading.Lock()
        self._last_backup: Dict[str, float] = {}

    # ----- paths -----

    def collection_path(self, name: str) -> Path:
        if not isinstance(name, str) or not COLLECTION_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid collection name: {name!r}",
                details="Only letters, digits, '_' and '-' are allowed",
            )
        return self.root_path / f"{name}{FILE_SUFFIX}"

    def _collection_files(self) -> List[Path]:
        if not self.root_path.exists():
            return []
        return sorted(p for p in self.root_path.glob(f"*{FILE_SUFFIX}") if p.is_file())

    # ----- events -----

    def _record_event(self, event: StorageEvent) -> None:
        with self._events_lock:
            self._events.append(event)
            if len(self._events) > MAX_EVENTS:
                del self._events[:-EVENTS_KEPT]

    def _observe_result(self, method: str, args: Tuple[Any, ...], result) -> None:
        event_type = EVENT_TYPES.get(method)
        if event_type is None:
            return
        file_path = None
        if args and isinstance(args[0], str) and COLLECTION_NAME_PATTERN.match(args[0]):
            file_path = str(self.root_path / f"{args[0]}{FILE_SUFFIX}")
        self._record_event(
            StorageEvent(
                type=event_type,
                operation=method,
                success=result.success,
                file_path=file_path,
                error=result.error.message if result.error else None,
                metadata={"error_code": result.error_code} if result.error else {},
            )
        )

    @returns_result("get_events")
    def get_events(self, limit: int = 100) -> List[StorageEvent]:
        """Most recent diagnostic events, oldest first"""
        with self._events_lock:
            if limit <= 0:
                return []
            return list(self._events[-limit:])

    # ----- lifecycle -----

    @returns_result("initialize", InitializationError.code)
    def initialize(self) -> bool:
        try:
            self.root_path.mkdir(parents=True, exist_ok=True)
            self.backup_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InitializationError(f"Cannot create storage directories: {e}") from e
        logger.info("Storage initialized at %s", self.root_path)
        return True

    # ----- reading -----

    def _read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Collection file {path.name} is not valid UTF-8", details=str(e)) from e
        except OSError as e:
            raise ReadError(f"Cannot read collection file {path.name}: {e}") from e

    def _read(self, name: str) -> Collection:
        path = self.collection_path(name)
        with self.leases.lease(path, READ):
            if not path.exists():
                return Collection()
            collection = self.codec.decode(self._read_text(path))

        if self.config.strict_mode:
            check = self.checker.validate_structure(collection.modules)
            if check.errors:
                raise ValidationError(
                    f"Collection {name!r} contains invalid records", details=check.errors
                )
        return collection

    @returns_result("load", ReadError.code)
    def load(self, name: str) -> Dict[str, Module]:
        """All modules of a collection keyed by id; a missing file is empty"""
        return self._read(name).modules

    @returns_result("read_collection", ReadError.code)
    def read_collection(self, name: str) -> Collection:
        return self._read(name)

    # ----- writing -----

    def _backup_due(self, name: str) -> bool:
        if not self.config.auto_backup:
            return False
        interval = self.config.backup_interval_seconds
        if interval <= 0:
            return True
        last = self._last_backup.get(name)
        return last is None or time.time() - last >= interval

    def _auto_backup(self, name: str, path: Path) -> Optional[BackupInfo]:
        """Copy the live file aside; rotation waits until the replace succeeds"""
        if not path.exists() or not self._backup_due(name):
            return None
        try:
            return self.rotator.create_backup(path, name, prune=False)
        except BackupError as e:
            logger.error("Automatic backup of %s failed: %s", name, e.message)
            return None

    def _replace_with_backup(self, name: str, tmp_path: Path, path: Path) -> None:
        """
        Back up the live file, then move tmp_path over it.

        Old backups are pruned only once the new file is in place; if the
        replace fails the fresh copy is removed again, so the backup
        directory is left as it was.
        """
        info = self._auto_backup(name, path)
        try:
            self._replace(tmp_path, path)
        except WriteError:
            if info is not None:
                self.rotator.discard(info)
            raise
        if info is not None:
            self._last_backup[name] = time.time()
            self.rotator.prune(name)

    def _existing_metadata(self, path: Path) -> Optional[CollectionMetadata]:
        if not path.exists():
            return None
        try:
            data = self.codec.parse(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ModuleStoreError) as e:
            logger.warning("Ignoring unreadable metadata in %s: %s", path, e)
            return None
        if isinstance(data, dict) and isinstance(data.get("metadata"), dict):
            return CollectionMetadata.from_dict(data["metadata"])
        return None

    def _write_temp(self, path: Path, text: str) -> Path:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise WriteError(f"Failed to write {path.name}: {e}") from e
        return tmp_path

    def _replace(self, tmp_path: Path, path: Path) -> None:
        try:
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise WriteError(f"Failed to replace {path.name}: {e}") from e
        self.checksum_cache.invalidate(path)

    @returns_result("save", WriteError.code)
    def save(self, name: str, modules: Dict[str, Module]) -> bool:
        """
        Validate and atomically write a collection.

        The previous file is backed up only once the new content has been
        written to a temp file, so a failed save leaves both the live file
        and the backup directory as they were.
        """
        path = self.collection_path(name)
        check = self.checker.validate_structure(modules)
        if check.errors:
            raise ValidationError(
                f"Refusing to save invalid records to {name!r}", details=check.errors
            )

        with self.leases.lease(path, WRITE):
            previous = self._existing_metadata(path)
            metadata = CollectionMetadata(
                created_at=previous.created_at if previous else utc_now(),
                updated_at=utc_now(),
                total_modules=len(modules),
                checksum=self.checker.generate_checksum(modules),
            )
            text = self.codec.encode(Collection(metadata=metadata, modules=modules))

            try:
                self.root_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise WriteError(f"Cannot create storage directory: {e}") from e
            tmp_path = self._write_temp(path, text)
            self._replace_with_backup(name, tmp_path, path)

        logger.info("Saved %d modules to %s", len(modules), path)
        return True

    # ----- backups -----

    @returns_result("backup", BackupError.code)
    def backup(self, name: str, description: Optional[str] = None) -> BackupInfo:
        path = self.collection_path(name)
        with self.leases.lease(path, READ):
            if not path.exists():
                raise NotFoundError(f"Collection {name!r} does not exist")
            info = self.rotator.create_backup(path, name, description)
        self._last_backup[name] = time.time()
        return info

    @returns_result("list_backups", ReadError.code)
    def list_backups(self, name: str) -> List[BackupInfo]:
        self.collection_path(name)
        return self.rotator.list_backups(name)

    @returns_result("restore", BackupError.code)
    def restore(self, name: str, backup_id: str) -> BackupValidationResult:
        """Replace the live collection with a validated backup"""
        path = self.collection_path(name)
        backup_file = self.rotator.find_backup(name, backup_id)
        if backup_file is None:
            raise NotFoundError(f"Backup {backup_id!r} of collection {name!r} not found")

        validation = self.rotator.validate_backup(backup_file)
        if not validation.can_restore:
            raise ValidationError(
                f"Backup {backup_id!r} cannot be restored", details=validation.issues
            )

        with self.leases.lease(path, WRITE):
            try:
                self.root_path.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent
                )
                os.close(fd)
                shutil.copyfile(backup_file, tmp_name)
            except OSError as e:
                raise WriteError(f"Failed to stage backup {backup_id!r}: {e}") from e
            self._replace_with_backup(name, Path(tmp_name), path)

        logger.info("Restored %s from backup %s", name, backup_file.name)
        return validation

    # ----- diagnostics -----

    def _check_file(self, path: Path, result: IntegrityCheckResult) -> bool:
        file_path = str(path)

        def error(error_type: str, message: str, severity: str) -> bool:
            result.errors.append(FileIntegrityError(file_path, error_type, message, severity))
            return False

        try:
            size = path.stat().st_size
            text = path.read_text(encoding="utf-8")
            result.checksums[path.stem] = self.checker.file_checksum(path)
        except FileNotFoundError:
            result.summary.missing_files += 1
            return error("missing_file", "File disappeared during the check", "high")
        except (OSError, UnicodeDecodeError) as e:
            return error("corrupted_data", f"Cannot read file: {e}", "critical")

        if size > LARGE_FILE_SIZE:
            result.warnings.append(
                FileIntegrityWarning(file_path, "performance_issue", f"File is large ({size} bytes)")
            )

        try:
            data = self.codec.parse(text)
        except ParseError as e:
            return error("corrupted_data", f"{e.message}: {e.details}", "critical")

        shape = self.codec.shape_errors(data)
        if shape:
            return error("schema_violation", "; ".join(shape), "high")

        try:
            collection = self.codec.decode(text)
        except ModuleStoreError as e:
            return error("schema_violation", e.message, "high")

        if isinstance(data["modules"], list):
            result.warnings.append(
                FileIntegrityWarning(
                    file_path, "deprecated_format", "modules stored as a list instead of a mapping"
                )
            )
        else:
            rekeyed = [
                str(key) for key, record in data["modules"].items()
                if record.get("id") and str(record["id"]) != str(key)
            ]
            if rekeyed:
                result.warnings.append(
                    FileIntegrityWarning(
                        file_path,
                        "deprecated_format",
                        f"{len(rekeyed)} module(s) keyed by something other than their id "
                        f"({', '.join(rekeyed[:5])}); the next save keys them by id",
                    )
                )

        valid = True
        if self.config.strict_mode:
            structure = self.checker.validate_structure(collection.modules)
            for message in structure.errors:
                valid = error("schema_violation", message, "high")

        stored = collection.metadata.checksum
        if stored is None:
            result.warnings.append(
                FileIntegrityWarning(file_path, "best_practice", "Metadata carries no checksum")
            )
        elif stored != self.checker.generate_checksum(collection.modules):
            valid = error(
                "checksum_mismatch",
                "Stored checksum does not match module content",
                "high",
            )
        return valid

    @returns_result("check_integrity", ReadError.code)
    def check_integrity(self) -> IntegrityCheckResult:
        """Check every collection file under the root directory"""
        result = IntegrityCheckResult()
        for path in self._collection_files():
            result.summary.total_files += 1
            if self._check_file(path, result):
                result.summary.valid_files += 1
            else:
                result.summary.corrupted_files += 1
        result.is_valid = not result.errors
        logger.info(
            "Integrity check: %d files, %d valid, %d corrupted",
            result.summary.total_files,
            result.summary.valid_files,
            result.summary.corrupted_files,
        )
        return result

    @returns_result("get_stats", ReadError.code)
    def get_stats(self) -> StorageStats:
        stats = StorageStats()
        latest = 0.0
        for path in self._collection_files():
            granted = self.leases.try_acquire(path, READ)
            if not granted:
                stats.unreadable_files.append(path.name)
                continue
            try:
                stat = path.stat()
                data = self.codec.parse(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, ModuleStoreError) as e:
                logger.warning("Skipping %s in statistics: %s", path.name, e)
                stats.unreadable_files.append(path.name)
                continue
            finally:
                self.leases.release(path)

            modules = data.get("modules") if isinstance(data, dict) else None
            count = len(modules) if isinstance(modules, (dict, list)) else 0
            stats.total_files += 1
            stats.total_modules += count
            stats.total_size += stat.st_size
            latest = max(latest, stat.st_mtime)
            stats.file_distribution[path.stem] = FileStats(
                modules_count=count, size=stat.st_size, last_modified=_mtime_iso(stat.st_mtime)
            )
        if latest:
            stats.last_modified = _mtime_iso(latest)

        if self.backup_path.exists():
            backups = [p for p in self.backup_path.glob(f"*{FILE_SUFFIX}") if p.is_file()]
            stats.backup_count = len(backups)
            if backups:
                stats.last_backup = _mtime_iso(max(p.stat().st_mtime for p in backups))
        return stats
