"""Smoke tests for the CLI.

These tests verify CLI behavior without network access or a Rust
toolchain; the build step is replaced by a fake.
"""

import json
import sys
from datetime import datetime, timezone

import httpx
import pytest
import respx
from typer.testing import CliRunner

from cargo_local_install import __version__
from cargo_local_install.cache.store import CacheStore
from cargo_local_install.cargo.invoker import BuildResult, Toolchain
from cargo_local_install.cli import app, exit_code_for, run
from cargo_local_install.errors import (
    BuildFailedError,
    LinkFailedError,
    LocalInstallError,
    LockConflictError,
    LockTimeoutError,
    ManifestError,
    PublishFailedError,
    ResolutionError,
    ToolchainError,
)
from cargo_local_install.install.engine import Installer

runner = CliRunner()

TOOLCHAIN = Toolchain(
    release="1.80.0",
    commit_hash="051478957371ee0084a7c0913941d2a8c4757bb9",
    host="x86_64-unknown-linux-gnu",
)


def index_lines(name: str, *versions: str) -> str:
    return "\n".join(
        json.dumps({"name": name, "vers": vers, "yanked": False, "deps": []})
        for vers in versions
    )


class FakeInvoker:
    """Writes a binary named after the package instead of running cargo."""

    def __init__(self) -> None:
        self.calls = 0

    def command(self, request, root, target_dir):
        return ["cargo", "install", "--root", str(root), "--", request.package]

    def build(self, request, root, target_dir):
        self.calls += 1
        now = datetime.now(timezone.utc)
        (root / "bin").mkdir(parents=True, exist_ok=True)
        (root / "bin" / request.package).write_bytes(request.package.encode())
        log_path = root / "build.log"
        log_path.write_text("ok\n")
        return BuildResult(
            success=True,
            exit_code=0,
            root=root,
            log_path=log_path,
            started_at=now,
            finished_at=now,
            command=f"cargo install {request.package}",
        )


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Isolate the cache root and working directory."""
    monkeypatch.setenv("CARGO_LOCAL_INSTALL_CACHE_ROOT", str(tmp_path / "cache"))
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return tmp_path


@pytest.fixture
def fake_build(monkeypatch):
    """Replace toolchain detection and the build step."""
    invoker = FakeInvoker()

    def from_settings(settings, resolver, invoker_=None):
        return Installer(
            CacheStore.from_settings(settings),
            invoker,
            resolver,
            target_dir=settings.effective_target_dir,
        )

    monkeypatch.setattr(
        "cargo_local_install.cargo.invoker.detect_toolchain", lambda rustc: TOOLCHAIN
    )
    monkeypatch.setattr(Installer, "from_settings", staticmethod(from_settings))
    return invoker


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "cargo binaries" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_install_help(self) -> None:
        """install --help should list the strictness flags."""
        result = runner.invoke(app, ["install", "--help"])
        assert result.exit_code == 0
        assert "--locked" in result.stdout
        assert "--unlocked" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self, workspace) -> None:
        """CLI config should show configuration."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Cache root" in result.stdout
        assert "Lock timeout" in result.stdout

    def test_config_json(self, workspace) -> None:
        """CLI config --json should output valid JSON."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["cache_root"] == str(workspace / "cache")
        assert data["link_mode"] == "auto"


class TestCLIInstall:
    """Test CLI install command."""

    def test_install_builds_and_links(self, workspace, fake_build) -> None:
        """Should build once and link into ROOT/bin."""
        root = workspace / "project"
        args = ["install", "cargo-web", "--version", "=0.6.26", "--locked", "--root", str(root)]

        first = runner.invoke(app, args)
        second = runner.invoke(app, args)

        assert first.exit_code == 0, first.output
        assert second.exit_code == 0, second.output
        assert fake_build.calls == 1
        assert (root / "bin" / "cargo-web").read_bytes() == b"cargo-web"
        assert "Reused" in second.output

    def test_install_json(self, workspace, fake_build) -> None:
        """Should print outcomes as JSON."""
        result = runner.invoke(
            app,
            ["install", "cargo-web", "--version", "=0.6.26", "--unlocked", "--json", "-q"],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data[0]["package"] == "cargo-web"
        assert data[0]["status"] == "built"
        assert data[0]["links"][0]["path"] == str(workspace / "project" / "bin" / "cargo-web")

    def test_dry_run_builds_nothing(self, workspace, fake_build) -> None:
        """Should not build or link on a dry run."""
        result = runner.invoke(
            app, ["install", "cargo-web", "--version", "=0.6.26", "--locked", "--dry-run"]
        )

        assert result.exit_code == 0, result.output
        assert fake_build.calls == 0
        assert not (workspace / "project" / "bin").exists()

    def test_locked_conflict_exit_code(self, workspace, fake_build) -> None:
        """Should fail a locked install without any version before building."""
        result = runner.invoke(app, ["install", "cargo-web", "--locked"])

        assert result.exit_code == 3
        assert "lock_conflict" in result.output
        assert fake_build.calls == 0

    def test_locked_and_unlocked_exclusive(self, workspace, fake_build) -> None:
        """Should reject --locked together with --unlocked."""
        result = runner.invoke(app, ["install", "cargo-web", "--locked", "--unlocked"])

        assert result.exit_code == 2

    def test_debug_and_profile_exclusive(self, workspace, fake_build) -> None:
        """Should reject --debug together with --profile."""
        result = runner.invoke(
            app, ["install", "cargo-web", "--debug", "--profile", "bench"]
        )

        assert result.exit_code == 2

    def test_no_packages(self, workspace, fake_build) -> None:
        """Should fail without packages or manifest metadata."""
        result = runner.invoke(app, ["install"])

        assert result.exit_code == 2

    def test_installs_from_manifest(self, workspace, fake_build) -> None:
        """Should install the tools declared in Cargo.toml."""
        project = workspace / "project"
        (project / "Cargo.toml").write_text(
            '[package]\nname = "project"\nversion = "0.1.0"\n\n'
            '[package.metadata.local-install]\ncargo-web = "0.6.26"\n'
        )

        result = runner.invoke(app, ["install"])

        assert result.exit_code == 0, result.output
        assert (project / "bin" / "cargo-web").exists()

    @respx.mock
    def test_manifest_range_is_resolved(self, workspace, fake_build) -> None:
        """Should resolve a manifest table entry's range against the index."""
        respx.get("https://index.crates.io/wa/sm/wasm-pack").mock(
            return_value=httpx.Response(
                200, text=index_lines("wasm-pack", "0.12.0", "0.12.1", "0.13.0")
            )
        )
        (workspace / "project" / "Cargo.toml").write_text(
            '[package]\nname = "project"\nversion = "0.1.0"\n\n'
            "[package.metadata.local-install]\n"
            'wasm-pack = { version = "^0.12", locked = false }\n'
        )

        result = runner.invoke(app, ["install", "--json", "-q"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[0]["version"] == "0.12.1"

    @respx.mock
    def test_manifest_partial_version_is_caret(self, workspace, fake_build) -> None:
        """Should read a partial manifest version as a caret range."""
        respx.get("https://index.crates.io/ca/rg/cargo-web").mock(
            return_value=httpx.Response(
                200, text=index_lines("cargo-web", "0.5.9", "0.6.25", "0.6.26", "0.7.0")
            )
        )
        (workspace / "project" / "Cargo.toml").write_text(
            '[package]\nname = "project"\nversion = "0.1.0"\n\n'
            '[package.metadata.local-install]\ncargo-web = "0.6"\n'
        )

        result = runner.invoke(app, ["install", "--json", "-q"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[0]["version"] == "0.6.26"

    @respx.mock
    @pytest.mark.parametrize("strictness", ["--locked", "--unlocked"])
    def test_bare_version_installs_exactly(self, workspace, fake_build, strictness) -> None:
        """Should install a bare X.Y.Z exactly, without querying the index."""
        result = runner.invoke(
            app,
            ["install", "cargo-web", "--version", "0.6.25", strictness, "--json", "-q"],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[0]["version"] == "0.6.25"
        assert not respx.calls

    def test_invalid_manifest(self, workspace, fake_build) -> None:
        """Should report an unreadable Cargo.toml."""
        (workspace / "project" / "Cargo.toml").write_text("[package\n")

        result = runner.invoke(app, ["install", "cargo-web"])

        assert result.exit_code == 2

    def test_toolchain_missing(self, workspace, monkeypatch) -> None:
        """Should report a missing toolchain."""

        def missing(rustc):
            raise ToolchainError("Failed to run rustc")

        monkeypatch.setattr("cargo_local_install.cargo.invoker.detect_toolchain", missing)

        result = runner.invoke(app, ["install", "cargo-web", "--version", "=1.0.0"])

        assert result.exit_code == 9


class TestCLICache:
    """Test CLI cache commands."""

    def test_cache_list_empty(self, workspace) -> None:
        """Should report an empty cache."""
        result = runner.invoke(app, ["cache", "list"])

        assert result.exit_code == 0
        assert "No cache entries found" in result.stdout

    def test_cache_list_json(self, workspace, fake_build) -> None:
        """Should list committed entries as JSON."""
        runner.invoke(app, ["install", "cargo-web", "--version", "=0.6.26", "--locked"])

        result = runner.invoke(app, ["cache", "list", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert len(data) == 1
        assert data[0]["package"] == "cargo-web"
        assert data[0]["locked"] is True


class TestExitCodes:
    """Test error to exit code mapping."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (ManifestError("bad"), 2),
            (LockConflictError("conflict"), 3),
            (BuildFailedError("failed"), 4),
            (LockTimeoutError("a" * 64, 1), 5),
            (PublishFailedError("publish"), 6),
            (LinkFailedError(None, "link"), 7),
            (ResolutionError("resolve"), 8),
            (ToolchainError("rustc"), 9),
            (LocalInstallError("other"), 1),
        ],
    )
    def test_exit_code_for(self, error, code) -> None:
        """Each error type should map to its own exit code."""
        assert exit_code_for(error) == code


class TestRun:
    """Test the console entry point."""

    def test_strips_cargo_subcommand(self, monkeypatch, capsys) -> None:
        """Should accept the argument cargo passes to subcommands."""
        monkeypatch.setattr(sys, "argv", ["cargo-local-install", "local-install", "--version"])

        with pytest.raises(SystemExit) as exc_info:
            run()

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out
