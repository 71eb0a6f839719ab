"""Fingerprint computation for installs.

This module handles:
- Canonical input snapshot creation from install requests
- Deterministic hash computation over normalized inputs

Two requests that would produce the same binary map to the same
fingerprint; changing anything that affects the binary changes it.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Any

from cargo_local_install.install.request import InstallRequest

# Schema version for fingerprint format; bump when the canonical form changes
FINGERPRINT_SCHEMA_VERSION = "1"

# Stands in for the target triple when building for the host
HOST_TARGET = "host"

# Feature tokens that cannot collide with real feature names
DEFAULT_FEATURES_TOKEN = "+default"
ALL_FEATURES_TOKEN = "+all"

# Prefix for unresolved requirements so they never equal an exact version
REQUIREMENT_PREFIX = "req:"


@dataclass(frozen=True)
class FingerprintInputs:
    """Canonical representation of everything that affects a built binary.

    Attributes:
        schema_version: Version of fingerprint schema.
        package: Package name.
        version: Exact resolved version (or prefixed requirement).
        features: Sorted feature tokens.
        target: Target triple, or HOST_TARGET.
        toolchain: Toolchain identifier.
        profile: Build profile name.
        registry: Registry name, empty for the default registry.
        locked: Whether the package's own lock file is used.
    """

    schema_version: str = FINGERPRINT_SCHEMA_VERSION
    package: str = ""
    version: str = ""
    features: tuple[str, ...] = ()
    target: str = HOST_TARGET
    toolchain: str = ""
    profile: str = ""
    registry: str = ""
    locked: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["features"] = list(data["features"])
        return data


@dataclass(frozen=True)
class Fingerprint:
    """Opaque cache key for one installable artifact.

    Attributes:
        digest: SHA-256 hex digest of the canonical inputs.
        inputs: The canonical inputs the digest was computed from.
    """

    digest: str
    inputs: FingerprintInputs = field(compare=False)

    def __str__(self) -> str:
        return self.digest

    @property
    def short(self) -> str:
        """Abbreviated digest for log lines."""
        return self.digest[:16]


def canonical_features(request: InstallRequest) -> tuple[str, ...]:
    """Compute the canonical, order-insensitive feature tokens.

    Default-feature inclusion is an explicit element of the set rather
    than an implicit merge with the package's default list.

    Args:
        request: InstallRequest instance.

    Returns:
        Sorted tuple of feature tokens.
    """
    if request.all_features:
        return (ALL_FEATURES_TOKEN,)
    features = set(request.features)
    if request.default_features:
        features.add(DEFAULT_FEATURES_TOKEN)
    return tuple(sorted(features))


def canonical_version(request: InstallRequest) -> str:
    """Return the version string that identifies the build."""
    if request.resolved_version:
        return request.resolved_version
    return f"{REQUIREMENT_PREFIX}{request.version or '*'}"


def create_fingerprint_inputs(request: InstallRequest) -> FingerprintInputs:
    """Create canonical fingerprint inputs from a request.

    Args:
        request: InstallRequest instance.

    Returns:
        FingerprintInputs with all normalized inputs.
    """
    return FingerprintInputs(
        schema_version=FINGERPRINT_SCHEMA_VERSION,
        package=request.package,
        version=canonical_version(request),
        features=canonical_features(request),
        target=request.target or HOST_TARGET,
        toolchain=request.toolchain,
        profile=request.profile,
        registry=request.registry or "",
        locked=request.locked,
    )


def compute_digest(inputs: FingerprintInputs) -> str:
    """Compute the SHA-256 digest of canonical inputs.

    Args:
        inputs: FingerprintInputs instance.

    Returns:
        Hex digest.
    """
    # Serialize to canonical JSON (sorted keys, no extra whitespace)
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def fingerprint(request: InstallRequest) -> Fingerprint:
    """Compute the fingerprint of an install request.

    Pure and total: no I/O, and every validated request has a fingerprint.

    Args:
        request: InstallRequest instance.

    Returns:
        Fingerprint for the request.
    """
    inputs = create_fingerprint_inputs(request)
    return Fingerprint(digest=compute_digest(inputs), inputs=inputs)


__all__ = [
    "ALL_FEATURES_TOKEN",
    "DEFAULT_FEATURES_TOKEN",
    "FINGERPRINT_SCHEMA_VERSION",
    "HOST_TARGET",
    "Fingerprint",
    "FingerprintInputs",
    "canonical_features",
    "canonical_version",
    "compute_digest",
    "create_fingerprint_inputs",
    "fingerprint",
]
