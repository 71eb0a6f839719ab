"""Shared type definitions for cargo_local_install.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class Strictness(str, Enum):
    """How strictly the install must follow a pinned version."""

    LOCKED = "locked"
    UNLOCKED = "unlocked"
    UNSPECIFIED = "unspecified"


class LinkMethod(str, Enum):
    """How a cached binary was materialized into a project."""

    SYMLINK = "symlink"
    COPY = "copy"


class InstallStatus(str, Enum):
    """Outcome of a single install request."""

    CACHE_HIT = "cache_hit"
    BUILT = "built"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class LinkResult:
    """A binary materialized into a caller's output directory.

    Attributes:
        path: Destination path inside the output directory.
        source: Cached binary the destination refers to (or was copied from).
        method: Whether a symlink or a copy was produced.
    """

    path: Path
    source: Path
    method: LinkMethod


__all__ = [
    "InstallStatus",
    "LinkMethod",
    "LinkResult",
    "Strictness",
]
