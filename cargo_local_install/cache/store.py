"""Fingerprint-keyed cache of built binaries.

This module handles:
- Looking up committed entries by fingerprint
- Claiming a fingerprint's slot for a build (with race re-check)
- Atomically committing a staged build into its slot
- Discarding failed builds without touching existing entries

Layout under the cache root::

    crates/<fingerprint>/bin/<binary>...
    crates/<fingerprint>/metadata.json
    crates/<fingerprint>/.complete
    locks/<fingerprint>.lock
    staging/<fingerprint>-<nonce>/

The filesystem is the only state. An entry is visible only once its
directory has been renamed into ``crates/`` and carries the completion
marker; anything else is treated as a miss.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from cargo_local_install.cache.lock import BuildLock, acquire_lock
from cargo_local_install.errors import PublishFailedError

if TYPE_CHECKING:
    from cargo_local_install.config import Settings
    from cargo_local_install.install.fingerprint import Fingerprint

logger = logging.getLogger(__name__)

COMPLETE_MARKER = ".complete"
METADATA_FILE = "metadata.json"
BIN_DIR = "bin"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


class BinaryInfo(BaseModel):
    """A binary stored in a cache entry."""

    name: str
    size_bytes: int
    sha256: str


class EntryMetadata(BaseModel):
    """Metadata written alongside every committed entry.

    Attributes:
        fingerprint: Fingerprint digest of the entry.
        package: Package name.
        version: Exact version that was built.
        locked: Whether the build used the package's lock file.
        inputs: Full canonical fingerprint inputs.
        binaries: Binaries in the entry's bin directory.
        created_at: Commit time (UTC).
    """

    fingerprint: str
    package: str
    version: str
    locked: bool
    inputs: dict[str, Any] = Field(default_factory=dict)
    binaries: list[BinaryInfo] = Field(default_factory=list)
    created_at: datetime


@dataclass(frozen=True)
class CacheEntry:
    """A committed, immutable cache entry.

    Attributes:
        fingerprint: Fingerprint digest.
        path: Entry directory.
        metadata: Parsed metadata.json.
    """

    fingerprint: str
    path: Path
    metadata: EntryMetadata

    @property
    def bin_dir(self) -> Path:
        """Directory holding the entry's binaries."""
        return self.path / BIN_DIR

    @property
    def binaries(self) -> list[str]:
        """Names of the binaries in this entry."""
        return [b.name for b in self.metadata.binaries]

    def binary_path(self, name: str) -> Path:
        """Absolute path of one binary in this entry."""
        return self.bin_dir / name


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def discover_binaries(bin_dir: Path) -> list[BinaryInfo]:
    """Describe the regular files in a build's bin directory.

    Args:
        bin_dir: Directory containing built binaries.

    Returns:
        BinaryInfo for each regular file, sorted by name.
    """
    if not bin_dir.is_dir():
        return []
    binaries: list[BinaryInfo] = []
    for path in sorted(bin_dir.iterdir()):
        if path.is_symlink() or not path.is_file():
            continue
        binaries.append(
            BinaryInfo(
                name=path.name,
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
            )
        )
    return binaries


class CacheStore:
    """Maps fingerprints to committed build outputs on disk."""

    def __init__(
        self,
        root: Path,
        lock_timeout: float | None = None,
        poll_interval: float = 0.1,
        poll_max_interval: float = 2.0,
    ) -> None:
        self.root = root
        self.crates_dir = root / "crates"
        self.locks_dir = root / "locks"
        self.staging_dir = root / "staging"
        self.lock_timeout = lock_timeout
        self.poll_interval = poll_interval
        self.poll_max_interval = poll_max_interval

    @classmethod
    def from_settings(cls, settings: Settings) -> CacheStore:
        """Create a store configured from application settings."""
        return cls(
            settings.cache_root,
            lock_timeout=settings.lock_timeout,
            poll_interval=settings.lock_poll_interval,
            poll_max_interval=settings.lock_poll_max_interval,
        )

    def slot_path(self, key: str) -> Path:
        """Directory a fingerprint's entry lives in once committed."""
        return self.crates_dir / key

    def lookup(self, key: str) -> CacheEntry | None:
        """Find the committed entry for a fingerprint.

        Args:
            key: Fingerprint digest.

        Returns:
            CacheEntry if a complete entry exists, None otherwise.
        """
        slot = self.slot_path(key)
        if not (slot / COMPLETE_MARKER).is_file():
            return None
        try:
            metadata = EntryMetadata.model_validate_json(
                (slot / METADATA_FILE).read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", key[:16], e)
            return None
        if not all((slot / BIN_DIR / b.name).is_file() for b in metadata.binaries):
            logger.warning("Ignoring cache entry %s with missing binaries", key[:16])
            return None
        return CacheEntry(fingerprint=key, path=slot, metadata=metadata)

    def entries(self) -> Iterator[CacheEntry]:
        """Iterate over every committed entry."""
        if not self.crates_dir.is_dir():
            return
        for slot in sorted(self.crates_dir.iterdir()):
            if not slot.is_dir():
                continue
            entry = self.lookup(slot.name)
            if entry is not None:
                yield entry

    def begin_build(self, key: str, recheck: bool = True) -> BuildLock | CacheEntry:
        """Claim a fingerprint's slot for building.

        Blocks (polling with backoff) while another process holds the slot.
        Once the lock is held the cache is consulted again, since the
        previous holder may have just committed the same fingerprint.

        Args:
            key: Fingerprint digest.
            recheck: Re-run lookup after acquiring the lock.

        Returns:
            A held BuildLock, or the CacheEntry a competitor committed.

        Raises:
            LockTimeoutError: If the lock wait exceeds the configured bound.
        """
        lock = acquire_lock(
            self.locks_dir,
            key,
            timeout=self.lock_timeout,
            poll_interval=self.poll_interval,
            max_interval=self.poll_max_interval,
        )
        if recheck:
            entry = self.lookup(key)
            if entry is not None:
                logger.info("Fingerprint %s was built concurrently, reusing", key[:16])
                lock.release()
                return entry
        try:
            self._discard_staging(key)
        except BaseException:
            lock.release()
            raise
        return lock

    def new_staging_dir(self, lock: BuildLock) -> Path:
        """Create a fresh staging directory for a claimed fingerprint.

        Args:
            lock: Held lock for the fingerprint.

        Returns:
            Empty directory on the same filesystem as the committed entries.
        """
        self._check_lock(lock)
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        path = self.staging_dir / f"{lock.key}-{uuid.uuid4().hex[:8]}"
        path.mkdir()
        return path

    def commit(
        self,
        lock: BuildLock,
        built_root: Path,
        fingerprint: Fingerprint,
    ) -> CacheEntry:
        """Publish a finished build into the fingerprint's slot.

        The build output is completed in staging, renamed into place in a
        single step, then marked complete. An existing entry for the same
        fingerprint (forced rebuild) is swapped out, not modified. The lock
        is released whatever the outcome.

        Args:
            lock: Held lock for the fingerprint.
            built_root: Directory containing the build's ``bin/`` directory.
            fingerprint: Fingerprint of the build, recorded in metadata.

        Returns:
            The committed CacheEntry.

        Raises:
            PublishFailedError: If the output cannot be committed. No partial
                entry remains.
        """
        self._check_lock(lock)
        key = lock.key
        slot = self.slot_path(key)
        staging: Path | None = None
        displaced: Path | None = None
        published = False

        try:
            if built_root.parent == self.staging_dir and built_root.name.startswith(key):
                staging = built_root
            else:
                staging = self.new_staging_dir(lock)
                shutil.copytree(built_root / BIN_DIR, staging / BIN_DIR)

            binaries = discover_binaries(staging / BIN_DIR)
            if not binaries:
                raise PublishFailedError(f"Build for {key[:16]} produced no binaries")

            metadata = EntryMetadata(
                fingerprint=key,
                package=fingerprint.inputs.package,
                version=fingerprint.inputs.version,
                locked=fingerprint.inputs.locked,
                inputs=fingerprint.inputs.to_dict(),
                binaries=binaries,
                created_at=datetime.now(timezone.utc),
            )
            _write_file(staging / METADATA_FILE, metadata.model_dump_json(indent=2))

            self.crates_dir.mkdir(parents=True, exist_ok=True)
            if slot.exists():
                displaced = self.staging_dir / f"{key}-old-{uuid.uuid4().hex[:8]}"
                os.rename(slot, displaced)
            os.rename(staging, slot)
            staging = None
            published = True
            _write_file(slot / COMPLETE_MARKER, key)
        except PublishFailedError:
            self._rollback(slot, staging, displaced, published)
            lock.release()
            raise
        except OSError as e:
            self._rollback(slot, staging, displaced, published)
            lock.release()
            raise PublishFailedError(f"Failed to commit {key[:16]}: {e}") from e

        if displaced is not None:
            shutil.rmtree(displaced, ignore_errors=True)
        lock.release()
        logger.info("Committed %s %s as %s", metadata.package, metadata.version, key[:16])
        return CacheEntry(fingerprint=key, path=slot, metadata=metadata)

    def abort(self, lock: BuildLock) -> None:
        """Release a claim without publishing anything.

        Staged output for the fingerprint is removed; a previously
        committed entry is left untouched.

        Args:
            lock: Held lock for the fingerprint.
        """
        try:
            if lock.held:
                self._discard_staging(lock.key)
        finally:
            lock.release()
        logger.debug("Aborted build for %s", lock.key[:16])

    def _check_lock(self, lock: BuildLock) -> None:
        if not lock.held:
            raise ValueError(f"Build lock for {lock.key[:16]} is not held")
        if lock.path.parent != self.locks_dir:
            raise ValueError(f"Build lock for {lock.key[:16]} belongs to another store")

    def _discard_staging(self, key: str) -> None:
        """Remove leftovers of earlier, interrupted builds of a fingerprint."""
        if not self.staging_dir.is_dir():
            return
        for leftover in self.staging_dir.glob(f"{key}-*"):
            logger.debug("Removing stale staging directory %s", leftover)
            shutil.rmtree(leftover, ignore_errors=True)

    def _rollback(
        self,
        slot: Path,
        staging: Path | None,
        displaced: Path | None,
        published: bool,
    ) -> None:
        if staging is not None:
            shutil.rmtree(staging, ignore_errors=True)
        if published:
            # Renamed in but never marked complete
            shutil.rmtree(slot, ignore_errors=True)
        if displaced is not None and not slot.exists():
            try:
                os.rename(displaced, slot)
            except OSError as e:
                logger.error("Failed to restore previous entry %s: %s", slot.name[:16], e)


def _write_file(path: Path, content: str) -> None:
    """Write a file by renaming a fully written temporary file over it."""
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


__all__ = [
    "BIN_DIR",
    "COMPLETE_MARKER",
    "METADATA_FILE",
    "BinaryInfo",
    "CacheEntry",
    "CacheStore",
    "EntryMetadata",
    "compute_file_hash",
    "discover_binaries",
]
