"""Install service module.

This module provides the high-level install API:
- resolve_request(): apply the strictness policy and pin an exact version
- Installer.install(): main entry point - reuse a cached build or build,
  commit and link
"""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cargo_local_install.cache.store import CacheEntry, CacheStore
from cargo_local_install.cargo.invoker import (
    BuildInvoker,
    BuildResult,
    CargoInstaller,
    build_failure,
)
from cargo_local_install.cargo.resolver import VersionResolver, satisfies
from cargo_local_install.errors import LockConflictError
from cargo_local_install.install.fingerprint import Fingerprint, fingerprint
from cargo_local_install.install.linker import materialize_all
from cargo_local_install.install.request import InstallRequest
from cargo_local_install.types import InstallStatus, LinkResult, Strictness

if TYPE_CHECKING:
    from cargo_local_install.cache.lock import BuildLock
    from cargo_local_install.config import Settings

logger = logging.getLogger(__name__)

UNSPECIFIED_WARNING = (
    "either specify --locked to use the same dependencies the package was "
    "built with, or --unlocked to get rid of this warning"
)


@dataclass
class InstallOutcome:
    """Result of installing one package.

    Attributes:
        request: The request with its resolved version.
        fingerprint: Fingerprint the request mapped to.
        status: Cache hit, fresh build, or dry run.
        entry: Cache entry the binaries come from (None for a dry-run miss).
        links: Binaries materialized into the output directory.
        command: Build command a dry run would have executed.
    """

    request: InstallRequest
    fingerprint: Fingerprint
    status: InstallStatus
    entry: CacheEntry | None = None
    links: list[LinkResult] = field(default_factory=list)
    command: str | None = None

    @property
    def cache_hit(self) -> bool:
        """Whether no build was needed."""
        return self.status is InstallStatus.CACHE_HIT

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "package": self.request.package,
            "version": self.request.resolved_version,
            "fingerprint": self.fingerprint.digest,
            "status": self.status.value,
            "entry": str(self.entry.path) if self.entry else None,
            "links": [
                {"path": str(link.path), "source": str(link.source), "method": link.method.value}
                for link in self.links
            ],
            "command": self.command,
        }


def resolve_request(request: InstallRequest, resolver: VersionResolver) -> InstallRequest:
    """Pin a request to an exact version according to its strictness.

    A locked request is pinned by the manifest or an exact requirement, and
    any requirement it carries must agree with that pin; disagreement is an
    error, never a reason to rebuild something else. Without a pin, a
    locked request still needs a requirement to resolve (e.g. ``^0.6``
    declared by the manifest); with neither, the version is ambiguous.

    Args:
        request: Validated InstallRequest.
        resolver: Resolver for requests that are not pinned.

    Returns:
        Copy of the request with ``resolved_version`` set.

    Raises:
        LockConflictError: If a locked request has no version or contradicts its pin.
        ResolutionError: If an unpinned requirement cannot be resolved.
    """
    if request.resolved_version:
        return request

    if request.strictness is Strictness.LOCKED:
        pin = request.pinned_version or request.exact_version
        if pin is None:
            if request.version is None:
                raise LockConflictError(
                    f"--locked install of {request.package} needs a version; "
                    "'*' is ambiguous"
                )
            return request.with_resolved_version(
                resolver.resolve(request.package, request.version, request.registry)
            )
        if request.version is not None and not satisfies(pin, request.version):
            raise LockConflictError(
                f"{request.package} is pinned to {pin}, which does not satisfy "
                f"the requested version '{request.version}'"
            )
        return request.with_resolved_version(pin)

    if request.strictness is Strictness.UNSPECIFIED:
        logger.warning(UNSPECIFIED_WARNING)
    elif request.version is None and request.pinned_version is None:
        logger.warning(
            "%s has no version pin; consider pinning it and using --locked",
            request.package,
        )

    exact = request.exact_version
    if exact is None and request.version is None:
        exact = request.pinned_version
    if exact is not None:
        return request.with_resolved_version(exact)
    return request.with_resolved_version(
        resolver.resolve(request.package, request.version, request.registry)
    )


class Installer:
    """Decides between reuse and rebuild and carries out the decision."""

    def __init__(
        self,
        store: CacheStore,
        invoker: BuildInvoker,
        resolver: VersionResolver,
        target_dir: Path,
        allow_symlink: bool = True,
    ) -> None:
        self.store = store
        self.invoker = invoker
        self.resolver = resolver
        self.target_dir = target_dir
        self.allow_symlink = allow_symlink

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        resolver: VersionResolver,
        invoker: BuildInvoker | None = None,
    ) -> Installer:
        """Create an installer configured from application settings."""
        return cls(
            store=CacheStore.from_settings(settings),
            invoker=invoker or CargoInstaller(cargo=settings.cargo),
            resolver=resolver,
            target_dir=settings.effective_target_dir,
            allow_symlink=settings.link_mode == "auto",
        )

    def install(self, request: InstallRequest, dry_run: bool = False) -> InstallOutcome:
        """Install a package, building it only if no cached build exists.

        Args:
            request: Validated InstallRequest.
            dry_run: Resolve and look up only; build and link nothing.

        Returns:
            InstallOutcome describing what happened.

        Raises:
            LockConflictError: If strictness rules reject the request.
            ResolutionError: If the version cannot be resolved.
            LockTimeoutError: If another build of the same fingerprint
                held the slot for too long.
            BuildFailedError: If the build fails; the cache is unchanged.
            PublishFailedError: If the build cannot be committed.
            LinkFailedError: If the binaries cannot be materialized.
        """
        resolved = resolve_request(request, self.resolver)
        fp = fingerprint(resolved)
        logger.info(
            "Fingerprint for %s %s: %s",
            resolved.package,
            resolved.resolved_version,
            fp.short,
        )

        entry = None if resolved.force and not dry_run else self.store.lookup(fp.digest)
        if dry_run:
            return self._dry_run(resolved, fp, entry)
        if entry is not None:
            logger.info("Cache hit for %s, reusing %s", resolved.package, fp.short)
            return self._finish(resolved, fp, entry, InstallStatus.CACHE_HIT)

        claim = self.store.begin_build(fp.digest, recheck=not resolved.force)
        if isinstance(claim, CacheEntry):
            return self._finish(resolved, fp, claim, InstallStatus.CACHE_HIT)

        entry = self._build(resolved, fp, claim)
        return self._finish(resolved, fp, entry, InstallStatus.BUILT)

    def _build(self, request: InstallRequest, fp: Fingerprint, lock: BuildLock) -> CacheEntry:
        try:
            staging = self.store.new_staging_dir(lock)
            result = self.invoker.build(request, staging, self.target_dir)
            if not result.success:
                error = build_failure(result)
                error.log_path = self._preserve_log(result, fp)
                raise error
        except BaseException:
            self.store.abort(lock)
            raise
        return self.store.commit(lock, result.root, fp)

    def _preserve_log(self, result: BuildResult, fp: Fingerprint) -> Path | None:
        """Move a failed build's log out of staging before it is discarded."""
        if not result.log_path.is_file():
            return None
        logs_dir = self.store.root / "logs"
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            kept = logs_dir / f"{fp.digest}-failed.log"
            shutil.move(str(result.log_path), str(kept))
        except OSError as e:
            logger.warning("Unable to keep build log %s: %s", result.log_path, e)
            return None
        return kept

    def _finish(
        self,
        request: InstallRequest,
        fp: Fingerprint,
        entry: CacheEntry,
        status: InstallStatus,
    ) -> InstallOutcome:
        links = materialize_all(
            entry, request.output_dir, allow_symlink=self.allow_symlink
        )
        return InstallOutcome(
            request=request,
            fingerprint=fp,
            status=status,
            entry=entry,
            links=links,
        )

    def _dry_run(
        self,
        request: InstallRequest,
        fp: Fingerprint,
        entry: CacheEntry | None,
    ) -> InstallOutcome:
        command: str | None = None
        if entry is None or request.force:
            root = self.store.staging_dir / f"{fp.digest}-dry-run"
            command = shlex.join(self.invoker.command(request, root, self.target_dir))
        return InstallOutcome(
            request=request,
            fingerprint=fp,
            status=InstallStatus.DRY_RUN,
            entry=entry,
            command=command,
        )


__all__ = [
    "InstallOutcome",
    "Installer",
    "UNSPECIFIED_WARNING",
    "resolve_request",
]
