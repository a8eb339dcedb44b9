"""
Advisory Lease Manager

In-process, in-memory mutual exclusion for collection files.

Design Principles:
- Non-blocking - try_acquire answers immediately, callers retry
- Write leases are exclusive, read leases are shared
- Stale leases expire after a fixed window and are reclaimed
- Advisory only - does not stop other processes writing the file
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

from .errors import LockError

logger = logging.getLogger(__name__)

READ = "read"
WRITE = "write"
LEASE_MODES = (READ, WRITE)

DEFAULT_EXPIRY_SECONDS = 300.0


@dataclass
class LeaseInfo:
    """Lease held on one resource"""

    resource: str
    mode: str  # 'read' or 'write'
    acquired_at: float
    holders: int = 1

    def age_seconds(self, now: float) -> float:
        return now - self.acquired_at

    def is_expired(self, now: float, max_age_seconds: float) -> bool:
        return self.age_seconds(now) > max_age_seconds


@dataclass
class LeaseResult:
    """Tagged outcome of try_acquire"""

    granted: bool
    resource: str
    mode: str
    reason: Optional[str] = None
    held_mode: Optional[str] = None
    reclaimed_stale: bool = False

    def __bool__(self) -> bool:
        return self.granted


class LeaseManager:
    """
    Per-resource advisory leases

    A request is rejected while an unexpired lease exists and either the
    held or the requested mode is 'write'. Concurrent reads share one lease.
    """

    def __init__(
        self,
        expiry_seconds: float = DEFAULT_EXPIRY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self._leases: Dict[str, LeaseInfo] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(resource: Union[str, Path]) -> str:
        return str(Path(resource).resolve())

    def try_acquire(self, resource: Union[str, Path], mode: str = READ) -> LeaseResult:
        if mode not in LEASE_MODES:
            raise ValueError(f"Invalid lease mode: {mode}. Must be 'read' or 'write'")

        key = self._key(resource)
        with self._lock:
            now = self._clock()
            existing = self._leases.get(key)
            reclaimed = False

            if existing is not None and existing.is_expired(now, self.expiry_seconds):
                logger.warning(
                    "Reclaiming stale %s lease on %s (%.0fs old)",
                    existing.mode, key, existing.age_seconds(now),
                )
                del self._leases[key]
                existing = None
                reclaimed = True

            if existing is None:
                self._leases[key] = LeaseInfo(resource=key, mode=mode, acquired_at=now)
                logger.debug("Granted %s lease on %s", mode, key)
                return LeaseResult(True, key, mode, reclaimed_stale=reclaimed)

            if existing.mode == WRITE or mode == WRITE:
                logger.debug("Rejected %s lease on %s: %s lease held", mode, key, existing.mode)
                return LeaseResult(
                    False,
                    key,
                    mode,
                    reason=f"{existing.mode} lease already held",
                    held_mode=existing.mode,
                )

            # read + read
            existing.holders += 1
            existing.acquired_at = now
            return LeaseResult(True, key, mode, held_mode=READ)

    def release(self, resource: Union[str, Path]) -> None:
        """Drop one holder; the lease disappears with its last holder"""
        key = self._key(resource)
        with self._lock:
            lease = self._leases.get(key)
            if lease is None:
                return
            lease.holders -= 1
            if lease.mode == WRITE or lease.holders <= 0:
                del self._leases[key]

    def force_release(self, resource: Union[str, Path]) -> None:
        """Remove the lease regardless of holders"""
        with self._lock:
            self._leases.pop(self._key(resource), None)

    def get_lease(self, resource: Union[str, Path]) -> Optional[LeaseInfo]:
        with self._lock:
            return self._leases.get(self._key(resource))

    def is_leased(self, resource: Union[str, Path]) -> bool:
        lease = self.get_lease(resource)
        return lease is not None and not lease.is_expired(self._clock(), self.expiry_seconds)

    @contextmanager
    def lease(self, resource: Union[str, Path], mode: str = READ) -> Iterator[LeaseResult]:
        """Hold a lease for the duration of the block, raising LockError if refused"""
        result = self.try_acquire(resource, mode)
        if not result.granted:
            raise LockError(
                f"Cannot acquire {mode} lease on {result.resource}: {result.reason}",
                details={"resource": result.resource, "held_mode": result.held_mode},
            )
        try:
            yield result
        finally:
            self.release(resource)

    def cleanup_stale_leases(self) -> int:
        """Drop every expired lease, returning how many were removed"""
        with self._lock:
            now = self._clock()
            stale = [
                key for key, lease in self._leases.items()
                if lease.is_expired(now, self.expiry_seconds)
            ]
            for key in stale:
                del self._leases[key]
            return len(stale)

    def get_lease_statistics(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            stats: Dict[str, Any] = {
                "total_leases": len(self._leases),
                "write_leases": 0,
                "read_leases": 0,
                "leases": [],
            }
            for key, lease in self._leases.items():
                stats["leases"].append(
                    {
                        "resource": key,
                        "mode": lease.mode,
                        "holders": lease.holders,
                        "age_seconds": lease.age_seconds(now),
                    }
                )
                if lease.mode == WRITE:
                    stats["write_leases"] += 1
                else:
                    stats["read_leases"] += 1
            return stats
