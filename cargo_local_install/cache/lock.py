"""Per-fingerprint build locks.

Locks are lock files under the cache root held with ``fcntl.flock``. The
kernel drops a flock when its holder dies, so a crashed build never wedges
a slot: the next process simply acquires the lock. Holders record their pid
in the file for diagnostics and remove the file on release.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Any

from cargo_local_install.errors import LockTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_POLL_MAX_INTERVAL = 2.0


class BuildLock:
    """Exclusive ownership of one fingerprint's cache slot.

    Attributes:
        key: Fingerprint digest the lock protects.
        path: Lock file path.
    """

    def __init__(self, key: str, path: Path, fd: int) -> None:
        self.key = key
        self.path = path
        self._fd: int | None = fd

    @property
    def held(self) -> bool:
        """Whether this lock has not been released yet."""
        return self._fd is not None

    def release(self) -> None:
        """Remove the lock file and drop the lock. Safe to call twice."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            # Unlink while still holding the lock; waiters on the old inode
            # notice the mismatch after acquiring and retry.
            self.path.unlink(missing_ok=True)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        logger.debug("Build lock released for key: %s", self.key[:16])

    def __enter__(self) -> BuildLock:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "held" if self.held else "released"
        return f"<BuildLock(key='{self.key[:16]}...', {state})>"


def read_lock_owner(path: Path) -> dict[str, Any] | None:
    """Read the diagnostic owner record from a lock file.

    Args:
        path: Lock file path.

    Returns:
        Owner record (pid, acquired_at), or None if absent or unreadable.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _write_owner(fd: int) -> None:
    record = {
        "pid": os.getpid(),
        "acquired_at": datetime.now(timezone.utc).isoformat(),
    }
    os.ftruncate(fd, 0)
    os.write(fd, json.dumps(record).encode("utf-8"))


def _same_file(fd: int, path: Path) -> bool:
    try:
        st = path.stat()
    except FileNotFoundError:
        return False
    fst = os.fstat(fd)
    return (st.st_dev, st.st_ino) == (fst.st_dev, fst.st_ino)


def acquire_lock(
    lock_dir: Path,
    key: str,
    timeout: float | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_interval: float = DEFAULT_POLL_MAX_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> BuildLock:
    """Acquire the build lock for a fingerprint.

    Polls with exponential backoff, bounded by ``max_interval``.

    Args:
        lock_dir: Directory for lock files.
        key: Fingerprint digest to lock on.
        timeout: Seconds to wait (None = wait indefinitely).
        poll_interval: Initial delay between attempts.
        max_interval: Maximum delay between attempts.
        sleep: Sleep function (injectable for tests).

    Returns:
        Held BuildLock.

    Raises:
        LockTimeoutError: If the lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_path = lock_dir / f"{key}.lock"

    logger.debug("Acquiring build lock for key: %s", key[:16])

    start = time.monotonic()
    delay = poll_interval
    announced = False
    while True:
        fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            elapsed = time.monotonic() - start
            if timeout is not None and elapsed >= timeout:
                raise LockTimeoutError(key, timeout) from None
            if not announced:
                owner = read_lock_owner(lock_path) or {}
                logger.info(
                    "Waiting for build lock on %s (held by pid %s)",
                    key[:16],
                    owner.get("pid", "?"),
                )
                announced = True
            wait = delay
            if timeout is not None:
                wait = min(wait, max(timeout - elapsed, 0.0))
            sleep(wait)
            delay = min(delay * 2, max_interval)
            continue
        except BaseException:
            os.close(fd)
            raise

        if not _same_file(fd, lock_path):
            # The previous holder released and removed the file between our
            # open and flock; start over on the current path.
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
            continue

        _write_owner(fd)
        logger.debug("Build lock acquired for key: %s", key[:16])
        return BuildLock(key, lock_path, fd)


__all__ = ["BuildLock", "acquire_lock", "read_lock_owner"]
