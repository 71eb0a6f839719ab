"""Version resolution against the package registry.

This module handles:
- Normalizing cargo-style version requirements
- Checking whether an exact version satisfies a requirement
- Fetching published versions from the sparse registry index
- Selecting the newest non-yanked version matching a requirement

Requirement matching is delegated to ``semantic_version.SimpleSpec``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Protocol

import httpx
import semantic_version

from cargo_local_install.errors import ResolutionError

logger = logging.getLogger(__name__)

# Official crates.io sparse index
CRATES_IO_INDEX = "https://index.crates.io"

# Timeout for index requests (seconds)
INDEX_TIMEOUT = 30


class VersionResolver(Protocol):
    """Anything that can turn a requirement into an exact version."""

    def resolve(
        self, package: str, requirement: str | None, registry: str | None = None
    ) -> str:
        """Return the exact version ``requirement`` resolves to."""
        ...


def normalize_requirement(requirement: str) -> str:
    """Translate a cargo requirement into SimpleSpec syntax.

    A bare version means a caret requirement in cargo (``1.2`` is ``^1.2``)
    and a single ``=`` means exact.

    Args:
        requirement: Cargo version requirement.

    Returns:
        Equivalent SimpleSpec expression.
    """
    clauses: list[str] = []
    for raw in requirement.split(","):
        clause = re.sub(r"\s+", "", raw)
        if not clause:
            continue
        if clause[0].isdigit() and "*" not in clause:
            clause = f"^{clause}"
        elif clause.startswith("=") and not clause.startswith("=="):
            clause = f"=={clause[1:]}"
        clauses.append(clause)
    return ",".join(clauses) or "*"


def parse_requirement(requirement: str | None) -> semantic_version.SimpleSpec:
    """Parse a cargo requirement.

    Args:
        requirement: Cargo version requirement, None for any version.

    Returns:
        SimpleSpec for the requirement.

    Raises:
        ResolutionError: If the requirement is not valid.
    """
    expression = normalize_requirement(requirement) if requirement else "*"
    try:
        return semantic_version.SimpleSpec(expression)
    except ValueError as e:
        raise ResolutionError(
            f"Invalid version requirement '{requirement}': {e}",
            code="invalid_requirement",
        ) from e


def parse_version(version: str) -> semantic_version.Version:
    """Parse an exact version.

    Raises:
        ResolutionError: If the version is not a full semantic version.
    """
    try:
        return semantic_version.Version(version)
    except ValueError as e:
        raise ResolutionError(
            f"Invalid version '{version}': {e}", code="invalid_version"
        ) from e


def satisfies(version: str, requirement: str | None) -> bool:
    """Check whether an exact version satisfies a requirement.

    Args:
        version: Exact version string.
        requirement: Cargo version requirement (None matches anything).

    Returns:
        True if the version matches.
    """
    if requirement is None:
        return True
    return parse_requirement(requirement).match(parse_version(version))


def index_path(package: str) -> str:
    """Compute a package's path inside a sparse registry index.

    Args:
        package: Package name.

    Returns:
        Relative index path (e.g. 'ca/rg/cargo-web').
    """
    name = package.lower()
    if len(name) == 1:
        return f"1/{name}"
    if len(name) == 2:
        return f"2/{name}"
    if len(name) == 3:
        return f"3/{name[0]}/{name}"
    return f"{name[0:2]}/{name[2:4]}/{name}"


def parse_index_entries(content: str) -> list[semantic_version.Version]:
    """Parse published, non-yanked versions from an index file.

    Each line of an index file is a JSON object describing one release.

    Args:
        content: Index file content.

    Returns:
        Parsed versions, in file order.
    """
    versions: list[semantic_version.Version] = []
    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed index line")
            continue
        if record.get("yanked"):
            continue
        try:
            versions.append(semantic_version.Version(record["vers"]))
        except (KeyError, ValueError):
            logger.debug("Skipping index entry without a valid version")
    return versions


class RegistryIndexResolver:
    """Resolves requirements using a sparse registry index over HTTP."""

    def __init__(
        self,
        client: httpx.Client,
        index_url: str = CRATES_IO_INDEX,
        timeout: float = INDEX_TIMEOUT,
    ) -> None:
        self.client = client
        self.index_url = index_url.rstrip("/")
        self.timeout = timeout

    def available_versions(self, package: str) -> list[semantic_version.Version]:
        """Fetch the non-yanked versions of a package.

        Args:
            package: Package name.

        Returns:
            Published versions.

        Raises:
            ResolutionError: If the index cannot be fetched.
        """
        url = f"{self.index_url}/{index_path(package)}"
        logger.debug("Fetching index entry %s", url)
        try:
            response = self.client.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise ResolutionError(
                    f"Package not found in registry index: {package}",
                    code="package_not_found",
                ) from e
            raise ResolutionError(
                f"HTTP error fetching index for {package}: {e.response.status_code}",
                code="http_error",
            ) from e
        except httpx.TimeoutException as e:
            raise ResolutionError(
                f"Timeout fetching index for {package}", code="timeout"
            ) from e
        except httpx.RequestError as e:
            raise ResolutionError(
                f"Network error fetching index for {package}: {e}",
                code="network_error",
            ) from e
        return parse_index_entries(response.text)

    def resolve(
        self, package: str, requirement: str | None, registry: str | None = None
    ) -> str:
        """Resolve a requirement to the newest matching version.

        Args:
            package: Package name.
            requirement: Cargo version requirement (None = latest).
            registry: Alternative registry name; only the configured index
                is consulted, so named registries need an exact version.

        Returns:
            Exact version string.

        Raises:
            ResolutionError: If nothing matches or the index is unavailable.
        """
        if registry is not None:
            raise ResolutionError(
                f"Cannot resolve '{requirement or '*'}' for {package} on registry "
                f"'{registry}'; pin an exact version with --version =X.Y.Z",
                code="unsupported_registry",
            )
        spec = parse_requirement(requirement)
        selected = spec.select(self.available_versions(package))
        if selected is None:
            raise ResolutionError(
                f"No published version of {package} matches '{requirement or '*'}'",
                code="no_matching_version",
            )
        logger.info("Resolved %s %s to %s", package, requirement or "*", selected)
        return str(selected)


__all__ = [
    "CRATES_IO_INDEX",
    "RegistryIndexResolver",
    "VersionResolver",
    "index_path",
    "normalize_requirement",
    "parse_index_entries",
    "parse_requirement",
    "parse_version",
    "satisfies",
]
