"""Thin CLI wrapper for cargo_local_install.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Annotated

import httpx
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from cargo_local_install import __version__
from cargo_local_install.config import Settings, get_settings, print_settings_json
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
from cargo_local_install.types import InstallStatus, LinkMethod, Strictness

app = typer.Typer(
    name="cargo-local-install",
    help="Install cargo binaries per project, backed by a shared build cache",
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Inspect the shared build cache")
app.add_typer(cache_app, name="cache")

console = Console()
err_console = Console(stderr=True)

EXIT_CODES: list[tuple[type[LocalInstallError], int]] = [
    (ManifestError, 2),
    (LockConflictError, 3),
    (BuildFailedError, 4),
    (LockTimeoutError, 5),
    (PublishFailedError, 6),
    (LinkFailedError, 7),
    (ResolutionError, 8),
    (ToolchainError, 9),
]


def exit_code_for(error: LocalInstallError) -> int:
    """Map an error to the process exit code."""
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return 1


def configure_logging(level: str) -> None:
    """Route log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
        force=True,
    )


def status(verb: str, message: str, style: str = "green") -> None:
    """Print a right-aligned status line."""
    err_console.print(f"[bold {style}]{verb:>12}[/bold {style}] {escape(message)}")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"cargo-local-install version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Install cargo binaries per project, backed by a shared build cache."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Cache root:          {settings.cache_root}")
    console.print(f"  Target directory:    {settings.effective_target_dir}")
    console.print()
    console.print("[bold]Locking:[/bold]")
    console.print(f"  Lock timeout:        {settings.lock_timeout:g}s")
    console.print(f"  Poll interval:       {settings.lock_poll_interval:g}s")
    console.print(f"  Max poll interval:   {settings.lock_poll_max_interval:g}s")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  cargo:               {settings.cargo}")
    console.print(f"  rustc:               {settings.rustc}")
    console.print(f"  Registry index:      {settings.registry_index_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Link mode:           {settings.link_mode}")
    console.print(f"  Log level:           {settings.log_level}")


@app.command()
def install(
    packages: Annotated[
        list[str] | None,
        typer.Argument(help="Packages to install (default: Cargo.toml metadata)"),
    ] = None,
    version: Annotated[
        str | None,
        typer.Option("--version", help="Version requirement to install"),
    ] = None,
    features: Annotated[
        list[str] | None,
        typer.Option("--features", "-F", help="Features to activate (repeatable)"),
    ] = None,
    all_features: Annotated[
        bool, typer.Option("--all-features", help="Activate all available features")
    ] = False,
    no_default_features: Annotated[
        bool,
        typer.Option("--no-default-features", help="Do not activate the `default` feature"),
    ] = False,
    target: Annotated[
        str | None, typer.Option("--target", help="Build for the target triple")
    ] = None,
    profile: Annotated[
        str | None, typer.Option("--profile", help="Build with the named profile")
    ] = None,
    debug: Annotated[
        bool, typer.Option("--debug", help="Build in debug mode instead of release")
    ] = False,
    registry: Annotated[
        str | None, typer.Option("--registry", help="Registry to install from")
    ] = None,
    root: Annotated[
        Path | None,
        typer.Option("--root", help="Directory to install into (binaries go to ROOT/bin)"),
    ] = None,
    target_dir: Annotated[
        Path | None,
        typer.Option("--target-dir", help="Shared directory for build artifacts"),
    ] = None,
    locked: Annotated[
        bool, typer.Option("--locked", help="Require the pinned version and lock file")
    ] = False,
    unlocked: Annotated[
        bool, typer.Option("--unlocked", help="Allow unpinned versions without warning")
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Rebuild even if cached")
    ] = False,
    jobs: Annotated[
        int | None, typer.Option("--jobs", "-j", help="Number of parallel build jobs")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show what would be built without building")
    ] = False,
    json_output: Annotated[
        bool, typer.Option("--json", help="Output as JSON")
    ] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Less output")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="More output")] = False,
) -> None:
    """Install packages into ROOT/bin, reusing cached builds when possible."""
    from cargo_local_install.cargo.invoker import detect_toolchain
    from cargo_local_install.cargo.manifest import find_cwd_installs
    from cargo_local_install.cargo.resolver import RegistryIndexResolver
    from cargo_local_install.install.engine import Installer
    from cargo_local_install.install.request import DEFAULT_PROFILE, InstallRequest

    settings = get_settings()
    if target_dir is not None:
        settings = settings.model_copy(update={"target_dir": target_dir.resolve()})
    level = "DEBUG" if verbose else "WARNING" if quiet else settings.log_level
    configure_logging(level)

    if locked and unlocked:
        err_console.print("[red]Error: --locked and --unlocked are mutually exclusive[/red]")
        raise typer.Exit(code=2)
    if debug and profile:
        err_console.print("[red]Error: --debug and --profile are mutually exclusive[/red]")
        raise typer.Exit(code=2)
    cli_strictness = Strictness.LOCKED if locked else Strictness.UNLOCKED if unlocked else None

    try:
        install_set = find_cwd_installs()
    except ManifestError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=exit_code_for(e)) from None

    if packages:
        selected = [(p, install_set.find(p) if install_set else None) for p in packages]
    elif install_set is not None and install_set.installs:
        selected = [(spec.package_name, spec) for spec in install_set.installs]
    else:
        err_console.print("[red]Error: no packages specified[/red]")
        raise typer.Exit(code=2)

    if root is not None:
        bin_dir = root / "bin"
    elif install_set is not None and not packages:
        bin_dir = install_set.bin_dir
    else:
        bin_dir = Path("bin")
    bin_dir = bin_dir.absolute()

    try:
        toolchain = detect_toolchain(settings.rustc)
    except ToolchainError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=exit_code_for(e)) from None

    requests = []
    for package, spec in selected:
        if cli_strictness is not None:
            strictness = cli_strictness
        elif spec is not None:
            strictness = Strictness.LOCKED if spec.locked else Strictness.UNLOCKED
        else:
            strictness = Strictness.UNSPECIFIED
        try:
            requests.append(
                InstallRequest(
                    package=package,
                    version=version or (spec.requirement if spec else None),
                    pinned_version=spec.pinned_version if spec else None,
                    features=[*(features or []), *(spec.features if spec else [])],
                    default_features=not no_default_features
                    and (spec.default_features if spec else True),
                    all_features=all_features,
                    target=target,
                    toolchain=toolchain.identifier,
                    profile="dev" if debug else profile or DEFAULT_PROFILE,
                    registry=registry or (spec.registry if spec else None),
                    strictness=strictness,
                    output_dir=bin_dir,
                    force=force,
                    jobs=jobs,
                )
            )
        except ValidationError as e:
            err_console.print(f"[red]Invalid request for {escape(package)}:[/red]")
            err_console.print(escape(str(e)))
            raise typer.Exit(code=2) from None

    outcomes = []
    with httpx.Client(follow_redirects=True) as client:
        resolver = RegistryIndexResolver(
            client,
            index_url=settings.registry_index_url,
            timeout=settings.http_timeout,
        )
        installer = Installer.from_settings(settings, resolver)
        for request in requests:
            try:
                outcome = installer.install(request, dry_run=dry_run)
            except LocalInstallError as e:
                _report_error(e)
                raise typer.Exit(code=exit_code_for(e)) from None
            except OSError as e:
                err_console.print(f"[red]Error: {escape(str(e))}[/red]")
                raise typer.Exit(code=1) from None
            outcomes.append(outcome)
            if not json_output and not quiet:
                _report_outcome(outcome)

    if json_output:
        typer.echo(json.dumps([o.to_dict() for o in outcomes], indent=2))
    elif not dry_run and not quiet:
        err_console.print(
            f"[yellow]warning:[/yellow] be sure to add `{escape(str(bin_dir))}` "
            "to your PATH to be able to run the installed binaries"
        )


def _report_outcome(outcome) -> None:
    package = f"{outcome.request.package} v{outcome.request.resolved_version}"
    if outcome.status is InstallStatus.DRY_RUN:
        if outcome.entry is not None and not outcome.request.force:
            status("Cached", f"{package} ({outcome.fingerprint.short}) --dry-run")
        else:
            status("Skipped", f"`{outcome.command or package}` (--dry-run)", "yellow")
        return
    verb = "Reused" if outcome.cache_hit else "Built"
    status(verb, f"{package} ({outcome.fingerprint.short})")
    for link in outcome.links:
        if link.method is LinkMethod.SYMLINK:
            status("Linked", f"`{link.path}` to `{link.source}`")
        else:
            status("Replaced", f"`{link.path}` with `{link.source}`")


def _report_error(error: LocalInstallError) -> None:
    err_console.print(f"[red]Error ({error.code}): {escape(str(error))}[/red]")
    if isinstance(error, BuildFailedError):
        if error.diagnostic:
            err_console.print(escape(error.diagnostic))
        if error.log_path:
            err_console.print(f"See log: {escape(str(error.log_path))}")
    if error.retryable:
        err_console.print("[yellow]This error is temporary; re-run to retry.[/yellow]")


@cache_app.command("list")
def cache_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List committed cache entries."""
    from cargo_local_install.cache.store import CacheStore

    settings: Settings = get_settings()
    store = CacheStore.from_settings(settings)
    entries = list(store.entries())

    if json_output:
        output = [
            {"path": str(e.path), **e.metadata.model_dump(mode="json")} for e in entries
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    if not entries:
        console.print("[yellow]No cache entries found[/yellow]")
        return

    console.print(f"[bold]Found {len(entries)} cache entr{'y' if len(entries) == 1 else 'ies'}:[/bold]")
    console.print()
    for e in entries:
        meta = e.metadata
        console.print(f"  [green]{meta.package} {meta.version}[/green]")
        console.print(f"    Fingerprint: {e.fingerprint}")
        console.print(f"    Binaries: {', '.join(e.binaries)}")
        console.print(f"    Locked: {meta.locked}")
        console.print(f"    Created: {meta.created_at.isoformat()}")
        console.print()


def run() -> None:
    """Console entry point; also works as the `cargo local-install` subcommand."""
    # cargo runs `cargo-local-install local-install ARGS...`
    if len(sys.argv) > 1 and sys.argv[1] == "local-install":
        del sys.argv[1]
    app()


if __name__ == "__main__":
    run()
