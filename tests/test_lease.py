"""Tests for advisory leases."""

import pytest

from module_store_mcp.core.errors import LockError
from module_store_mcp.core.lease import READ, WRITE, LeaseManager


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestLeaseManager:
    """Non-blocking read/write leases with expiry"""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def leases(self, clock):
        return LeaseManager(expiry_seconds=300, clock=clock)

    def test_write_is_exclusive(self, leases, temp_root):
        path = temp_root / "modules.yaml"
        assert leases.try_acquire(path, WRITE).granted

        rejected = leases.try_acquire(path, WRITE)
        assert not rejected.granted
        assert rejected.held_mode == WRITE
        assert not leases.try_acquire(path, READ)

    def test_read_blocks_write(self, leases, temp_root):
        path = temp_root / "modules.yaml"
        assert leases.try_acquire(path, READ)
        result = leases.try_acquire(path, WRITE)
        assert not result.granted
        assert result.held_mode == READ

    def test_reads_share_and_count_holders(self, leases, temp_root):
        path = temp_root / "modules.yaml"
        assert leases.try_acquire(path, READ)
        assert leases.try_acquire(path, READ)
        assert leases.get_lease(path).holders == 2

        leases.release(path)
        assert leases.is_leased(path)
        assert not leases.try_acquire(path, WRITE)

        leases.release(path)
        assert not leases.is_leased(path)
        assert leases.try_acquire(path, WRITE)

    def test_force_release_drops_all_holders(self, leases, temp_root):
        path = temp_root / "modules.yaml"
        leases.try_acquire(path, READ)
        leases.try_acquire(path, READ)
        leases.force_release(path)
        assert leases.get_lease(path) is None

    def test_stale_lease_is_reclaimed(self, leases, clock, temp_root):
        path = temp_root / "modules.yaml"
        assert leases.try_acquire(path, WRITE)

        clock.now += 301
        result = leases.try_acquire(path, WRITE)
        assert result.granted
        assert result.reclaimed_stale

    def test_unexpired_lease_is_kept(self, leases, clock, temp_root):
        path = temp_root / "modules.yaml"
        leases.try_acquire(path, WRITE)
        clock.now += 299
        assert not leases.try_acquire(path, WRITE)

    def test_release_without_lease_is_noop(self, leases, temp_root):
        leases.release(temp_root / "nothing.yaml")

    def test_invalid_mode(self, leases, temp_root):
        with pytest.raises(ValueError):
            leases.try_acquire(temp_root / "modules.yaml", "exclusive")

    def test_context_manager_releases(self, leases, temp_root):
        path = temp_root / "modules.yaml"
        with leases.lease(path, WRITE):
            assert leases.is_leased(path)
        assert not leases.is_leased(path)

    def test_context_manager_raises_lock_error(self, leases, temp_root):
        path = temp_root / "modules.yaml"
        leases.try_acquire(path, WRITE)
        with pytest.raises(LockError) as exc_info:
            with leases.lease(path, READ):
                pass
        assert exc_info.value.code == "LOCK_ERROR"

    def test_cleanup_and_statistics(self, leases, clock, temp_root):
        leases.try_acquire(temp_root / "a.yaml", WRITE)
        leases.try_acquire(temp_root / "b.yaml", READ)
        stats = leases.get_lease_statistics()
        assert stats["total_leases"] == 2
        assert stats["write_leases"] == 1
        assert stats["read_leases"] == 1

        clock.now += 400
        assert leases.cleanup_stale_leases() == 2
        assert leases.get_lease_statistics()["total_leases"] == 0
