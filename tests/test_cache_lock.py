"""Tests for cache/lock.py module."""

import os
import threading
import time

import pytest

from cargo_local_install.cache.lock import (
    acquire_lock,
    read_lock_owner,
)
from cargo_local_install.errors import LockTimeoutError

KEY = "a" * 64


def no_sleep(_seconds: float) -> None:
    pass


class TestAcquireLock:
    """Tests for acquire_lock function."""

    def test_acquires_and_records_owner(self, tmp_path):
        """Should create the lock file and record the holder's pid."""
        lock = acquire_lock(tmp_path / "locks", KEY)
        try:
            assert lock.held
            assert lock.path == tmp_path / "locks" / f"{KEY}.lock"
            owner = read_lock_owner(lock.path)
            assert owner is not None
            assert owner["pid"] == os.getpid()
            assert "acquired_at" in owner
        finally:
            lock.release()

    def test_release_removes_file(self, tmp_path):
        """Should remove the lock file on release."""
        lock = acquire_lock(tmp_path, KEY)
        lock.release()

        assert not lock.held
        assert not lock.path.exists()

    def test_release_is_idempotent(self, tmp_path):
        """Should tolerate a second release."""
        lock = acquire_lock(tmp_path, KEY)
        lock.release()
        lock.release()

    def test_times_out_while_held(self, tmp_path):
        """Should raise LockTimeoutError when the bound is exceeded."""
        holder = acquire_lock(tmp_path, KEY)
        try:
            with pytest.raises(LockTimeoutError) as exc_info:
                acquire_lock(tmp_path, KEY, timeout=0, sleep=no_sleep)
            assert exc_info.value.retryable is True
            assert exc_info.value.code == "lock_timeout"
        finally:
            holder.release()

    def test_backoff_is_bounded(self, tmp_path):
        """Should double the delay up to the maximum interval."""
        holder = acquire_lock(tmp_path, KEY)
        delays: list[float] = []

        def record(seconds: float) -> None:
            delays.append(seconds)
            if len(delays) >= 6:
                holder.release()

        lock = acquire_lock(
            tmp_path,
            KEY,
            timeout=None,
            poll_interval=0.1,
            max_interval=0.5,
            sleep=record,
        )
        lock.release()

        assert delays[:4] == [0.1, 0.2, 0.4, 0.5]
        assert max(delays) == 0.5

    def test_different_keys_do_not_contend(self, tmp_path):
        """Should allow locks on different keys at the same time."""
        first = acquire_lock(tmp_path, "1" * 64)
        second = acquire_lock(tmp_path, "2" * 64, timeout=0, sleep=no_sleep)
        first.release()
        second.release()

    def test_dead_holder_does_not_wedge_slot(self, tmp_path):
        """Should acquire once the holder's descriptor is gone."""
        crashed = acquire_lock(tmp_path, KEY)
        # A killed process closes its descriptors without releasing
        os.close(crashed._fd)
        crashed._fd = None
        assert crashed.path.exists()

        lock = acquire_lock(tmp_path, KEY, timeout=0, sleep=no_sleep)
        assert lock.held
        lock.release()

    def test_waiter_acquires_after_release(self, tmp_path):
        """Should hand the lock to a waiter once the holder releases."""
        holder = acquire_lock(tmp_path, KEY)
        acquired = threading.Event()

        def wait_for_lock() -> None:
            lock = acquire_lock(tmp_path, KEY, timeout=10, poll_interval=0.01)
            acquired.set()
            lock.release()

        waiter = threading.Thread(target=wait_for_lock)
        waiter.start()
        time.sleep(0.1)
        assert not acquired.is_set()

        holder.release()
        waiter.join(timeout=10)
        assert acquired.is_set()


class TestReadLockOwner:
    """Tests for read_lock_owner function."""

    def test_missing_file(self, tmp_path):
        """Should return None for a missing file."""
        assert read_lock_owner(tmp_path / "missing.lock") is None

    def test_garbage_file(self, tmp_path):
        """Should return None for unreadable content."""
        path = tmp_path / "bad.lock"
        path.write_text("not json")
        assert read_lock_owner(path) is None
