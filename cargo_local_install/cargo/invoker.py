"""Build invoker for running `cargo install`.

This module handles:
- Composing `cargo install` commands from install requests
- Executing builds with subprocess into a staging root
- Capturing stdout/stderr to log files
- Identifying the active rustc toolchain
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from cargo_local_install.errors import BuildFailedError, ToolchainError

if TYPE_CHECKING:
    from cargo_local_install.install.request import InstallRequest

logger = logging.getLogger(__name__)

BUILD_LOG = "build.log"
DIAGNOSTIC_TAIL_LINES = 20


@dataclass
class BuildResult:
    """Result of a build execution.

    Attributes:
        success: Whether the build succeeded.
        exit_code: Process exit code.
        root: Install root; binaries are in ``root / "bin"``.
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
        error_message: Error message if build failed.
    """

    success: bool
    exit_code: int
    root: Path
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None

    @property
    def bin_dir(self) -> Path:
        """Directory containing the built binaries."""
        return self.root / "bin"


class BuildInvoker(Protocol):
    """Anything that can build a request into an install root."""

    def command(
        self, request: InstallRequest, root: Path, target_dir: Path
    ) -> list[str]:
        """Return the command `build` runs, for dry runs and logs."""
        ...

    def build(
        self, request: InstallRequest, root: Path, target_dir: Path
    ) -> BuildResult:
        """Build ``request`` with binaries placed under ``root / "bin"``."""
        ...


@dataclass(frozen=True)
class Toolchain:
    """Identity of a rustc toolchain.

    Attributes:
        release: rustc release (e.g. '1.80.0').
        commit_hash: Commit the compiler was built from.
        host: Host target triple.
    """

    release: str
    commit_hash: str
    host: str

    @property
    def identifier(self) -> str:
        """Stable identifier used in fingerprints."""
        return f"rustc {self.release} ({self.commit_hash[:9]}) {self.host}"


def parse_rustc_version(output: str) -> Toolchain:
    """Parse the output of `rustc -vV`.

    Args:
        output: Verbose version output.

    Returns:
        Toolchain parsed from the output.

    Raises:
        ToolchainError: If release or host are missing.
    """
    fields: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            fields[key.strip()] = value.strip()

    release = fields.get("release")
    host = fields.get("host")
    if not release or not host:
        raise ToolchainError("Unrecognized `rustc -vV` output")
    return Toolchain(
        release=release,
        commit_hash=fields.get("commit-hash", "unknown"),
        host=host,
    )


def detect_toolchain(rustc: str = "rustc", timeout: int = 60) -> Toolchain:
    """Identify the toolchain cargo will build with.

    Args:
        rustc: rustc executable.
        timeout: Command timeout in seconds.

    Returns:
        Detected Toolchain.

    Raises:
        ToolchainError: If rustc cannot be run or its output is unexpected.
    """
    try:
        result = subprocess.run(
            [rustc, "-vV"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as e:
        raise ToolchainError(f"`{rustc} -vV` timed out after {timeout}s") from e
    except subprocess.CalledProcessError as e:
        raise ToolchainError(f"`{rustc} -vV` failed: {e.stderr.strip()}") from e
    except OSError as e:
        raise ToolchainError(f"Failed to run {rustc}: {e}") from e

    toolchain = parse_rustc_version(result.stdout)
    logger.debug("Detected toolchain: %s", toolchain.identifier)
    return toolchain


def compose_install_command(
    request: InstallRequest,
    root: Path,
    target_dir: Path,
    cargo: str = "cargo",
) -> list[str]:
    """Compose the `cargo install` command for a request.

    Args:
        request: InstallRequest instance.
        root: Install root receiving ``bin/``.
        target_dir: Shared cargo target directory.
        cargo: cargo executable.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [cargo, "install"]

    if request.resolved_version:
        cmd.extend(["--version", f"={request.resolved_version}"])
    elif request.version:
        cmd.extend(["--version", request.version])

    if request.locked:
        cmd.append("--locked")

    if request.all_features:
        cmd.append("--all-features")
    elif request.features:
        cmd.extend(["--features", ",".join(sorted(request.features))])
    if not request.default_features:
        cmd.append("--no-default-features")

    if request.target:
        cmd.extend(["--target", request.target])
    cmd.extend(["--profile", request.profile])

    if request.registry:
        cmd.extend(["--registry", request.registry])
    if request.jobs is not None:
        cmd.extend(["--jobs", str(request.jobs)])

    cmd.extend(["--target-dir", str(target_dir)])
    cmd.extend(["--root", str(root)])
    cmd.extend(["--", request.package])
    return cmd


def _read_tail(path: Path, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
    try:
        with path.open(encoding="utf-8", errors="replace") as f:
            return "".join(deque(f, maxlen=lines)).rstrip()
    except OSError:
        return ""


class CargoInstaller:
    """Builds install requests with `cargo install`."""

    def __init__(self, cargo: str = "cargo") -> None:
        self.cargo = cargo

    def command(self, request: InstallRequest, root: Path, target_dir: Path) -> list[str]:
        """Return the command `build` would run."""
        return compose_install_command(request, root, target_dir, cargo=self.cargo)

    def build(
        self, request: InstallRequest, root: Path, target_dir: Path
    ) -> BuildResult:
        """Execute `cargo install` into ``root``.

        There is no build timeout; cargo runs to completion or failure.

        Args:
            request: InstallRequest instance.
            root: Install root (normally a cache staging directory).
            target_dir: Shared cargo target directory.

        Returns:
            BuildResult with execution details.

        Raises:
            BuildFailedError: If cargo cannot be started.
        """
        root.mkdir(parents=True, exist_ok=True)
        target_dir.mkdir(parents=True, exist_ok=True)
        log_path = root / BUILD_LOG

        cmd = self.command(request, root, target_dir)
        cmd_str = shlex.join(cmd)
        logger.info("Executing build: %s", cmd_str)

        started_at = datetime.now(timezone.utc)
        error_message: str | None = None

        try:
            with log_path.open("w") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    cmd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    check=False,
                )
        except OSError as e:
            error_message = f"Failed to execute {cmd_str}: {e}"
            logger.error(error_message)
            raise BuildFailedError(error_message, log_path=log_path) from e

        exit_code = result.returncode
        success = exit_code == 0
        if not success:
            error_message = f"`cargo install {request.package}` failed with exit code {exit_code}"
            logger.error("%s. See log: %s", error_message, log_path)

        finished_at = datetime.now(timezone.utc)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n")

        return BuildResult(
            success=success,
            exit_code=exit_code,
            root=root,
            log_path=log_path,
            started_at=started_at,
            finished_at=finished_at,
            command=cmd_str,
            error_message=error_message,
        )


def build_failure(result: BuildResult) -> BuildFailedError:
    """Turn a failed BuildResult into the error surfaced to callers.

    Args:
        result: BuildResult with ``success`` False.

    Returns:
        BuildFailedError carrying the builder's diagnostic output.
    """
    return BuildFailedError(
        result.error_message or f"Build failed with exit code {result.exit_code}",
        exit_code=result.exit_code,
        log_path=result.log_path,
        diagnostic=_read_tail(result.log_path),
    )


__all__ = [
    "BUILD_LOG",
    "BuildInvoker",
    "BuildResult",
    "CargoInstaller",
    "Toolchain",
    "build_failure",
    "compose_install_command",
    "detect_toolchain",
    "parse_rustc_version",
]
