"""Install metadata from Cargo.toml.

Projects declare the tools they need under ``[package.metadata.local-install]``
or ``[workspace.metadata.local-install]``::

    [package.metadata.local-install]
    cargo-web = "0.6.26"
    wasm-pack = { version = "0.12.1", locked = false, features = ["curl"] }

A plain string is a locked install of that version. Versions follow
dependency-table rules, so `"0.6.26"` means `^0.6.26`; a full version is
also the pin used for locked installs. Only registry sources are supported;
git and path entries are reported and skipped.
"""

from __future__ import annotations

import logging
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cargo_local_install.errors import ManifestError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "Cargo.toml"
METADATA_KEY = "local-install"

FULL_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.\-+]+)?$")
UNSUPPORTED_SOURCE_KEYS = ("git", "path", "branch", "rev", "tag")


class InstallSpec(BaseModel):
    """One tool declared in a manifest.

    Attributes:
        name: Key in the metadata table.
        package: Package to install (defaults to name).
        version: Declared version.
        registry: Alternative registry name.
        locked: Whether to install with the package's lock file.
        features: Features to enable.
        default_features: Whether default features are enabled.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    package: str | None = None
    version: str
    registry: str | None = None
    locked: bool = True
    features: list[str] = Field(default_factory=list)
    default_features: bool = Field(default=True, alias="default-features")

    @property
    def package_name(self) -> str:
        """Registry package name for this tool."""
        return self.package or self.name

    @property
    def requirement(self) -> str:
        """The declared version as a requirement.

        A version starting with a digit is a caret requirement, as in a
        dependency table: ``0.6`` means ``^0.6``.
        """
        version = self.version.strip()
        if version[:1].isdigit():
            return f"^{version}"
        return version

    @property
    def pinned_version(self) -> str | None:
        """The declared version when it names exactly one release."""
        version = self.version.lstrip("=").strip()
        return version if FULL_VERSION_PATTERN.match(version) else None


@dataclass
class InstallSet:
    """Tools declared by one manifest.

    Attributes:
        manifest_path: Cargo.toml the tools came from.
        bin_dir: Directory the tools are installed into.
        installs: Declared tools, in table order.
    """

    manifest_path: Path
    bin_dir: Path
    installs: list[InstallSpec] = field(default_factory=list)

    def find(self, package: str) -> InstallSpec | None:
        """Return the declaration for a package, if any."""
        for spec in self.installs:
            if spec.package_name == package:
                return spec
        return None


def find_manifest(start: Path) -> Path | None:
    """Find the nearest Cargo.toml at or above a directory.

    Args:
        start: Directory to start searching from.

    Returns:
        Path to Cargo.toml, or None if there is none.
    """
    for directory in [start, *start.parents]:
        candidate = directory / MANIFEST_NAME
        if candidate.is_file():
            return candidate
    return None


def parse_install_entry(name: str, data: Any) -> InstallSpec | None:
    """Parse one entry of a local-install table.

    Args:
        name: Entry key.
        data: Entry value (version string or table).

    Returns:
        InstallSpec, or None for unsupported source kinds.

    Raises:
        ManifestError: If the entry is malformed.
    """
    if isinstance(data, str):
        return InstallSpec(name=name, version=data)
    if not isinstance(data, dict):
        raise ManifestError(f"Invalid local-install entry for '{name}'")
    unsupported = [k for k in UNSUPPORTED_SOURCE_KEYS if k in data]
    if unsupported:
        logger.warning(
            "Skipping '%s': %s sources are not supported", name, "/".join(unsupported)
        )
        return None
    try:
        return InstallSpec.model_validate({"name": name, **data})
    except ValidationError as e:
        raise ManifestError(f"Invalid local-install entry for '{name}': {e}") from e


def load_install_set(manifest_path: Path) -> InstallSet:
    """Read the local-install tables of a manifest.

    Args:
        manifest_path: Path to Cargo.toml.

    Returns:
        InstallSet with bin directory next to the manifest.

    Raises:
        ManifestError: If the manifest cannot be read or parsed.
    """
    try:
        with manifest_path.open("rb") as f:
            document = tomllib.load(f)
    except OSError as e:
        raise ManifestError(f"Unable to read {manifest_path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Unable to parse {manifest_path}: {e}") from e

    install_set = InstallSet(
        manifest_path=manifest_path,
        bin_dir=manifest_path.parent / "bin",
    )
    for section in ("workspace", "package"):
        table = document.get(section, {}).get("metadata", {}).get(METADATA_KEY, {})
        if not isinstance(table, dict):
            raise ManifestError(
                f"{section}.metadata.{METADATA_KEY} in {manifest_path} must be a table"
            )
        for name, data in table.items():
            spec = parse_install_entry(name, data)
            if spec is not None:
                install_set.installs.append(spec)
    return install_set


def find_cwd_installs(start: Path | None = None) -> InstallSet | None:
    """Load the install set of the project containing a directory.

    Args:
        start: Directory to search from (defaults to the working directory).

    Returns:
        InstallSet, or None if no Cargo.toml was found.
    """
    manifest_path = find_manifest((start or Path.cwd()).resolve())
    if manifest_path is None:
        return None
    logger.debug("Using manifest %s", manifest_path)
    return load_install_set(manifest_path)


__all__ = [
    "InstallSet",
    "InstallSpec",
    "find_cwd_installs",
    "find_manifest",
    "load_install_set",
    "parse_install_entry",
]
