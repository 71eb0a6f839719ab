"""Install request model.

An InstallRequest is built once per package per invocation, validated on
construction, and never mutated afterwards. Resolution produces a copy
carrying the exact version rather than updating the original.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cargo_local_install.types import Strictness

PACKAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")
FULL_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.\-+]+)?$")
EXACT_VERSION_PATTERN = re.compile(r"^=?\s*(\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.\-+]+)?)$")

DEFAULT_PROFILE = "release"


class InstallRequest(BaseModel):
    """A fully validated request to install one package.

    Attributes:
        package: Package name on the registry.
        version: Version requirement (e.g. '^0.6'), if any. A bare full
            version such as '0.6.26' is stored as the exact '=0.6.26'.
        pinned_version: Exact version pinned by the project's manifest.
        resolved_version: Exact version chosen by resolution.
        features: Explicitly enabled features.
        default_features: Whether the package's default features are enabled.
        all_features: Whether every feature is enabled.
        target: Target triple; None builds for the host.
        toolchain: Identifier of the compiler toolchain.
        profile: Build profile name.
        registry: Alternative registry name, None for the default registry.
        strictness: Locked / Unlocked / Unspecified.
        output_dir: Directory receiving one link or copy per binary.
        force: Rebuild even if a cached entry exists.
        jobs: Parallel build jobs (does not affect the produced binary).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    package: Annotated[
        str, Field(description="Package name", min_length=1, max_length=64)
    ]
    version: str | None = Field(default=None, description="Version requirement")
    pinned_version: str | None = Field(
        default=None, description="Version pinned by the project manifest"
    )
    resolved_version: str | None = Field(
        default=None, description="Exact resolved version"
    )
    features: frozenset[str] = Field(default_factory=frozenset)
    default_features: bool = True
    all_features: bool = False
    target: str | None = Field(default=None, description="Target triple")
    toolchain: Annotated[str, Field(min_length=1, description="Toolchain identifier")]
    profile: str = Field(default=DEFAULT_PROFILE, min_length=1)
    registry: str | None = None
    strictness: Strictness = Strictness.UNSPECIFIED
    output_dir: Path
    force: bool = False
    jobs: int | None = Field(default=None, ge=1)

    @field_validator("package")
    @classmethod
    def validate_package(cls, v: str) -> str:
        """Validate package names contain only registry-safe characters."""
        if not PACKAGE_NAME_PATTERN.match(v):
            raise ValueError(
                f"package must match pattern {PACKAGE_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("version", "pinned_version", "target", "registry")
    @classmethod
    def strip_optional(cls, v: str | None) -> str | None:
        """Normalize blank optional strings to None."""
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator("version")
    @classmethod
    def exact_bare_version(cls, v: str | None) -> str | None:
        """Read a bare full version as exact, like `cargo install --version`."""
        if v is not None and FULL_VERSION_PATTERN.match(v.strip()):
            return f"={v.strip()}"
        return v

    @field_validator("features", mode="before")
    @classmethod
    def split_features(cls, v: Any) -> Any:
        """Accept features as a comma/space separated string or an iterable."""
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        features: set[str] = set()
        for item in v:
            features.update(f for f in re.split(r"[\s,]+", str(item)) if f)
        return frozenset(features)

    @property
    def locked(self) -> bool:
        """Whether the build must use the package's own lock file."""
        return self.strictness is Strictness.LOCKED

    @property
    def exact_version(self) -> str | None:
        """The version from an exact '=X.Y.Z' (or bare 'X.Y.Z') requirement."""
        if self.version is None:
            return None
        match = EXACT_VERSION_PATTERN.match(self.version)
        return match.group(1) if match else None

    def with_resolved_version(self, version: str) -> InstallRequest:
        """Return a copy of this request carrying the resolved version.

        Args:
            version: Exact version string.

        Returns:
            New InstallRequest; this instance is left unchanged.
        """
        return self.model_copy(update={"resolved_version": version})


__all__ = ["DEFAULT_PROFILE", "InstallRequest"]
