"""Error types for cargo_local_install.

Every error carries a machine-readable ``code`` and a ``retryable`` flag so
that the CLI can map failures to exit codes without string matching.
"""

from __future__ import annotations

from pathlib import Path


class LocalInstallError(Exception):
    """Base error for install operations."""

    retryable = False

    def __init__(self, message: str, code: str = "local_install_error") -> None:
        super().__init__(message)
        self.code = code


class LockConflictError(LocalInstallError):
    """Raised when a locked install has no usable or a contradicting pin."""

    def __init__(self, message: str, code: str = "lock_conflict") -> None:
        super().__init__(message, code=code)


class BuildFailedError(LocalInstallError):
    """Raised when the underlying build step fails.

    Attributes:
        exit_code: Process exit code, if the build ran at all.
        log_path: Build log, if one was written.
        diagnostic: Tail of the builder's output.
    """

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        log_path: Path | None = None,
        diagnostic: str | None = None,
        code: str = "build_failed",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code
        self.log_path = log_path
        self.diagnostic = diagnostic


class LockTimeoutError(LocalInstallError):
    """Raised when another process holds a build lock past the wait bound."""

    retryable = True

    def __init__(self, fingerprint: str, timeout: float, code: str = "lock_timeout") -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for build lock on {fingerprint[:16]}",
            code=code,
        )
        self.fingerprint = fingerprint
        self.timeout = timeout


class PublishFailedError(LocalInstallError):
    """Raised when a build output cannot be committed into the cache."""

    def __init__(self, message: str, code: str = "publish_failed") -> None:
        super().__init__(message, code=code)


class LinkFailedError(LocalInstallError):
    """Raised when neither a symlink nor a copy could be materialized."""

    def __init__(self, destination: Path, message: str, code: str = "link_failed") -> None:
        super().__init__(message, code=code)
        self.destination = destination


class ResolutionError(LocalInstallError):
    """Raised when a version requirement cannot be resolved."""

    def __init__(self, message: str, code: str = "resolution_failed") -> None:
        super().__init__(message, code=code)


class ToolchainError(LocalInstallError):
    """Raised when the toolchain cannot be identified."""

    def __init__(self, message: str, code: str = "toolchain_error") -> None:
        super().__init__(message, code=code)


class ManifestError(LocalInstallError):
    """Raised when a Cargo.toml cannot be read or has invalid install metadata."""

    def __init__(self, message: str, code: str = "manifest_error") -> None:
        super().__init__(message, code=code)


__all__ = [
    "BuildFailedError",
    "LinkFailedError",
    "LocalInstallError",
    "LockConflictError",
    "LockTimeoutError",
    "ManifestError",
    "PublishFailedError",
    "ResolutionError",
    "ToolchainError",
]
