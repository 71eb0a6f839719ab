"""Materializing cached binaries into project directories.

A binary is exposed as a symlink to the cache entry when the filesystem
allows it, and as an independent copy otherwise. Either way the result is
created under a temporary name and renamed over the destination, so an
existing link or copy is replaced without a window where it is missing.
This module never writes to the cache.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from collections.abc import Iterable
from pathlib import Path

from cargo_local_install.cache.store import CacheEntry
from cargo_local_install.errors import LinkFailedError
from cargo_local_install.types import LinkMethod, LinkResult

logger = logging.getLogger(__name__)


def _temp_path(destination: Path) -> Path:
    return destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.tmp")


def _place_symlink(source: Path, destination: Path) -> None:
    tmp_path = _temp_path(destination)
    os.symlink(source, tmp_path)
    try:
        os.replace(tmp_path, destination)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def _place_copy(source: Path, destination: Path) -> None:
    tmp_path = _temp_path(destination)
    try:
        shutil.copy2(source, tmp_path)
        os.replace(tmp_path, destination)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def materialize(
    entry: CacheEntry,
    output_dir: Path,
    binary_name: str,
    allow_symlink: bool = True,
) -> LinkResult:
    """Expose one binary of a cache entry in an output directory.

    Args:
        entry: Committed cache entry.
        output_dir: Directory receiving the binary (created if missing).
        binary_name: Name of the binary inside the entry.
        allow_symlink: Try a symlink before falling back to a copy.

    Returns:
        LinkResult describing what was created.

    Raises:
        LinkFailedError: If neither a symlink nor a copy could be created.
    """
    source = entry.binary_path(binary_name).absolute()
    destination = output_dir / binary_name

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LinkFailedError(
            destination, f"Unable to create {output_dir}: {e}"
        ) from e

    if allow_symlink:
        try:
            _place_symlink(source, destination)
        except OSError as e:
            logger.warning("Unable to link %s to %s: %s", destination, source, e)
        else:
            logger.info("Linked %s to %s", destination, source)
            return LinkResult(path=destination, source=source, method=LinkMethod.SYMLINK)

    try:
        _place_copy(source, destination)
    except OSError as e:
        raise LinkFailedError(
            destination, f"Error replacing {destination} with {source}: {e}"
        ) from e
    logger.info("Replaced %s with %s", destination, source)
    return LinkResult(path=destination, source=source, method=LinkMethod.COPY)


def materialize_all(
    entry: CacheEntry,
    output_dir: Path,
    binaries: Iterable[str] | None = None,
    allow_symlink: bool = True,
) -> list[LinkResult]:
    """Expose every binary of a cache entry.

    Args:
        entry: Committed cache entry.
        output_dir: Directory receiving the binaries.
        binaries: Subset of binary names (defaults to all of them).
        allow_symlink: Try symlinks before falling back to copies.

    Returns:
        One LinkResult per binary.
    """
    names = list(binaries) if binaries is not None else entry.binaries
    return [
        materialize(entry, output_dir, name, allow_symlink=allow_symlink)
        for name in names
    ]


__all__ = ["materialize", "materialize_all"]
