"""
Backup Rotator

Point-in-time copies of collection files with count-based retention.

Design Principles:
- Copy then checksum - never hash the live file mid-write
- Retention by count, oldest modification time pruned first
- Rotation failures are logged, never raised to the caller
"""

import logging
import re
import shutil
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .codec import FILE_SUFFIX, RecordCodec
from .errors import BackupError, ModuleStoreError
from .integrity import file_sha256
from .models import BackupInfo

logger = logging.getLogger(__name__)

STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"
MAX_BACKUP_SIZE = 100 * 1024 * 1024


@dataclass
class BackupValidationResult:
    is_valid: bool
    backup_path: str
    size: int = 0
    checksum: str = ""
    created_at: Optional[str] = None
    modules_count: int = 0
    issues: List[str] = field(default_factory=list)
    can_restore: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BackupRotator:
    """Creates, lists, validates and prunes backups of collection files"""

    def __init__(self, backup_dir: Path, max_backups: int = 10, codec: Optional[RecordCodec] = None):
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self.codec = codec or RecordCodec()

    def _pattern(self, collection_name: str) -> "re.Pattern[str]":
        return re.compile(
            rf"^{re.escape(collection_name)}_"
            r"(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z)(?:-(\d+))?"
            rf"{re.escape(FILE_SUFFIX)}$"
        )

    def _next_backup_path(self, collection_name: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime(STAMP_FORMAT)
        candidate = self.backup_dir / f"{collection_name}_{stamp}{FILE_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{collection_name}_{stamp}-{counter}{FILE_SUFFIX}"
            counter += 1
        return candidate

    def create_backup(
        self,
        source: Path,
        collection_name: str,
        description: Optional[str] = None,
        prune: bool = True,
    ) -> BackupInfo:
        """
        Copy source into the backup directory and, unless prune is False,
        prune old copies

        Raises:
            BackupError: source missing or copy failed
        """
        source = Path(source)
        if not source.exists():
            raise BackupError(f"Nothing to back up, file not found: {source}")

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            target = self._next_backup_path(collection_name)
            shutil.copyfile(source, target)
            checksum = file_sha256(target)
            size = target.stat().st_size
        except OSError as e:
            raise BackupError(f"Failed to copy {source} to backup directory: {e}") from e

        info = BackupInfo(
            id=target.stem,
            filename=target.name,
            path=str(target),
            size=size,
            created_at=datetime.now(timezone.utc).isoformat(),
            modules_count=self._count_modules(target),
            checksum=checksum,
            description=description or f"Automatic backup - {collection_name}",
        )
        logger.info("Backed up %s to %s", source, target)

        if prune:
            self.prune(collection_name)
        return info

    def discard(self, info: BackupInfo) -> None:
        """Remove a backup that belongs to an abandoned write"""
        try:
            Path(info.path).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to remove abandoned backup %s: %s", info.path, e)

    def _count_modules(self, path: Path) -> int:
        try:
            data = self.codec.parse(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ModuleStoreError):
            return 0
        modules = data.get("modules") if isinstance(data, dict) else None
        return len(modules) if isinstance(modules, (dict, list)) else 0

    def _sorted_backups(self, collection_name: str) -> List[Tuple[Tuple[int, str, int], Path]]:
        if not self.backup_dir.exists():
            return []
        pattern = self._pattern(collection_name)
        entries = []
        for path in self.backup_dir.iterdir():
            match = pattern.match(path.name)
            if not match or not path.is_file():
                continue
            try:
                mtime = path.stat().st_mtime_ns
            except OSError:
                continue
            entries.append(((mtime, match.group(1), int(match.group(2) or 0)), path))
        entries.sort(key=lambda entry: entry[0])
        return entries

    def backup_paths(self, collection_name: str) -> List[Path]:
        """Backups of one collection, oldest first"""
        return [path for _, path in self._sorted_backups(collection_name)]

    def list_backups(self, collection_name: str) -> List[BackupInfo]:
        backups = []
        for path in self.backup_paths(collection_name):
            try:
                stat = path.stat()
                checksum = file_sha256(path)
            except OSError as e:
                logger.warning("Skipping unreadable backup %s: %s", path, e)
                continue
            backups.append(
                BackupInfo(
                    id=path.stem,
                    filename=path.name,
                    path=str(path),
                    size=stat.st_size,
                    created_at=datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
                    modules_count=self._count_modules(path),
                    checksum=checksum,
                )
            )
        return backups

    def find_backup(self, collection_name: str, backup_id: str) -> Optional[Path]:
        for path in self.backup_paths(collection_name):
            if path.stem == backup_id or path.name == backup_id:
                return path
        return None

    def prune(self, collection_name: str) -> List[Path]:
        """Delete the oldest backups beyond max_backups; failures are only logged"""
        removed: List[Path] = []
        try:
            paths = self.backup_paths(collection_name)
        except OSError as e:
            logger.error("Backup rotation failed for %s: %s", collection_name, e)
            return removed

        excess = len(paths) - self.max_backups
        for path in paths[: max(excess, 0)]:
            try:
                path.unlink()
                removed.append(path)
            except OSError as e:
                logger.error("Failed to remove old backup %s: %s", path, e)
        if removed:
            logger.info("Pruned %d old backup(s) of %s", len(removed), collection_name)
        return removed

    def validate_backup(self, backup_path: Path) -> BackupValidationResult:
        backup_path = Path(backup_path)
        result = BackupValidationResult(is_valid=False, backup_path=str(backup_path))

        if not backup_path.exists():
            result.issues.append("Backup file does not exist")
            return result

        try:
            stat = backup_path.stat()
            result.size = stat.st_size
            result.created_at = datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat()
            if stat.st_size == 0:
                result.issues.append("Backup file is empty")
                return result
            if stat.st_size > MAX_BACKUP_SIZE:
                logger.warning("Backup %s is unusually large (%d bytes)", backup_path, stat.st_size)
            result.checksum = file_sha256(backup_path)
            text = backup_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            result.issues.append(f"Cannot read backup file: {e}")
            return result

        try:
            collection = self.codec.decode(text)
        except ModuleStoreError as e:
            result.issues.append(e.message)
            if isinstance(e.details, list):
                result.issues.extend(str(d) for d in e.details)
            return result

        result.modules_count = len(collection.modules)
        for key, module in collection.modules.items():
            if not module.name or not module.type:
                result.issues.append(f"Module {key!r} is missing name or type")

        result.is_valid = not result.issues
        result.can_restore = result.is_valid
        return result
