"""Thin CLI wrapper for ybuild.

This module provides the command-line interface using Typer.
All build logic is delegated to core modules.
"""

import json
import logging
import shlex
import signal
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from ybuild import __version__
from ybuild.build.driver import BuildCleanupError, BuildOptions, run_build
from ybuild.build.phases import TargetError
from ybuild.build.trace import TraceSink
from ybuild.config import get_settings, print_settings_json
from ybuild.manifest import (
    CyclicDependencyError,
    ManifestError,
    UnknownTargetError,
    build_order,
    load_package,
)

app = typer.Typer(
    name="yb",
    help="ybuild - build targets on the host or in containers",
    no_args_is_help=True,
)
console = Console()


def _print_json(text: str) -> None:
    console.print(text, markup=False, highlight=False, soft_wrap=True)


def setup_logging(level: str) -> None:
    """Send log records through rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ybuild version {__version__}")
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
    """ybuild - build targets on the host or in containers."""


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
        _print_json(print_settings_json(settings))
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Cache directory:     {settings.cache_dir}")
        console.print(f"  Build root:          {settings.build_root}")
        console.print(f"  Manifest file:       {settings.manifest_file}")
        console.print()
        console.print("[bold]Docker:[/bold]")
        console.print(f"  Docker host:         {settings.docker_host or '(environment)'}")
        console.print(f"  Container workdir:   {settings.container_workdir}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        command_timeout = settings.command_timeout or "(none)"
        console.print(f"  Command timeout:     {command_timeout}")
        console.print(f"  Download timeout:    {settings.download_timeout}")
        console.print(f"  Docker timeout:      {settings.docker_timeout}")
        console.print(f"  Stop timeout:        {settings.container_stop_timeout}")


@app.command()
def targets(
    package_dir: Annotated[
        Path,
        typer.Option("--package-dir", "-C", help="Package directory"),
    ] = Path("."),
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the package's build targets."""
    settings = get_settings()
    try:
        package = load_package(package_dir.resolve(), settings.manifest_file)
    except ManifestError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    manifest = package.manifest
    if json_output:
        data = [
            {
                "name": name,
                "depends_on": list(manifest.target(name).depends_on),
                "container": manifest.target(name).container is not None,
            }
            for name in manifest.target_names()
        ]
        _print_json(json.dumps(data, indent=2))
        return

    if not manifest.targets:
        console.print(f"No targets in {package.name}")
        return
    console.print(f"[bold]Targets of {package.name}:[/bold]")
    for name in manifest.target_names():
        target = manifest.target(name)
        deps = f" (depends on {', '.join(target.depends_on)})" if target.depends_on else ""
        console.print(f"  {name}{deps}", highlight=False)


def _print_trace(tracer: TraceSink) -> None:
    console.print(tracer.render(), markup=False, highlight=False, soft_wrap=True)


def _cancel_on_signal(cancel: threading.Event):
    """Signal handler: the first signal cancels the build, a second one interrupts."""

    def handle(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        console.print("Cancelling build...", style="yellow", highlight=False)
        cancel.set()

    return handle


def _print_failure(tracer: TraceSink, message: str) -> None:
    _print_trace(tracer)
    console.print(" -- BUILD FAILED -- ", highlight=False)
    console.print(message, style="red", markup=False, highlight=False, soft_wrap=True)


@app.command()
def build(
    target: Annotated[
        str,
        typer.Argument(help="Target to build"),
    ] = "default",
    no_container: Annotated[
        bool,
        typer.Option("--no-container", help="Run every target on the host"),
    ] = False,
    deps_only: Annotated[
        bool,
        typer.Option("--deps-only", help="Install dependencies only; skip build commands"),
    ] = False,
    exec_prefix: Annotated[
        str | None,
        typer.Option("--exec-prefix", help="Arguments to prepend to every build command"),
    ] = None,
    package_dir: Annotated[
        Path,
        typer.Option("--package-dir", "-C", help="Package directory"),
    ] = Path("."),
) -> None:
    """Build a target and its dependencies."""
    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        package = load_package(package_dir.resolve(), settings.manifest_file)
    except ManifestError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    try:
        prefix = shlex.split(exec_prefix) if exec_prefix else []
    except ValueError as e:
        console.print(f"[red]Invalid --exec-prefix: {e}[/red]")
        raise typer.Exit(code=1) from None

    options = BuildOptions(no_container=no_container, setup_only=deps_only, exec_prefix=prefix)
    tracer = TraceSink()
    cancel = threading.Event()

    handler = _cancel_on_signal(cancel)
    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        order = build_order(package.manifest, target)
        console.print("Going to build targets in the following order:", highlight=False)
        for build_target in order:
            console.print(f"   - {build_target.name}", highlight=False)
        console.print(" === BUILD === ", highlight=False)
        run_build(package, target, options, settings=settings, tracer=tracer, cancel=cancel)
    except UnknownTargetError as e:
        console.print(str(e), style="red", markup=False, highlight=False, soft_wrap=True)
        if e.valid_targets:
            console.print(f"Valid build targets: {', '.join(e.valid_targets)}", highlight=False)
        raise typer.Exit(code=1) from None
    except CyclicDependencyError as e:
        console.print(str(e), style="red", markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(code=1) from None
    except (TargetError, BuildCleanupError) as e:
        _print_failure(tracer, str(e))
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        _print_failure(tracer, "build interrupted")
        raise typer.Exit(code=130) from None
    finally:
        for sig, prev in previous.items():
            signal.signal(sig, prev)

    _print_trace(tracer)
    console.print(" -- BUILD SUCCEEDED -- ", highlight=False)


if __name__ == "__main__":
    app()
