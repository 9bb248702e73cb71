"""Phase executor: install a target's buildpacks, then run its commands."""

from __future__ import annotations

import dataclasses
import io
import logging
import shlex
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING

from ybuild.biome.base import CommandError
from ybuild.biome.env import EnvBiome, Environment
from ybuild.buildpacks import BuildpackError, new_buildpack
from ybuild.containers.manager import ContainerError
from ybuild.download import DownloadError, ExtractionError
from ybuild.types import BuildReport, Phase

if TYPE_CHECKING:
    from ybuild.biome.base import Biome
    from ybuild.manifest.schema import BuildTarget
    from ybuild.system import BuildSystem

logger = logging.getLogger(__name__)


class TargetError(Exception):
    """Raised when a target fails; wraps the underlying error.

    Attributes:
        target: Name of the failed target.
        phase: Phase the failure happened in.
        cause: Underlying error.
        code: Machine-readable code of the underlying error.
        report: Outcomes of the build the target was part of, when known.
    """

    def __init__(self, target: str, phase: Phase, cause: BaseException) -> None:
        super().__init__(f"target {target}: {phase.value}: {cause}")
        self.target = target
        self.phase = phase
        self.cause = cause
        self.code = getattr(cause, "code", "target_failed")
        self.report: BuildReport | None = None


class TeeWriter(io.TextIOBase):
    """Text sink that writes to several sinks."""

    def __init__(self, *sinks: IO[str]) -> None:
        super().__init__()
        self.sinks = sinks

    def writable(self) -> bool:
        return True

    def write(self, s: str) -> int:
        for sink in self.sinks:
            sink.write(s)
        return len(s)

    def flush(self) -> None:
        for sink in self.sinks:
            sink.flush()


def setup(system: BuildSystem, target: BuildTarget, package_cache_dir: Path) -> Biome:
    """Install and set up a target's buildpacks.

    Buildpacks run in declared order. Each one installs its tool, then adds
    to an environment overlay shared by all of them; install and setup
    commands already see the additions of the buildpacks before them.

    Args:
        system: Build system for the target.
        target: Target being built.
        package_cache_dir: Package-scoped cache root.

    Returns:
        The target's biome with the composed environment applied.

    Raises:
        TargetError: If a buildpack cannot be constructed, installed or set up.
    """
    env = Environment(vars=dict(target.environment))
    composed = EnvBiome(system.biome, env)
    tool_system = dataclasses.replace(system, biome=composed)

    for spec in target.buildpacks:
        with system.span(spec):
            try:
                buildpack = new_buildpack(
                    spec,
                    shared_cache_dir=system.settings.cache_dir,
                    package_cache_dir=package_cache_dir,
                    package_dir=system.biome.workdir,
                )
                logger.info("Setting up %s for target %s", spec, target.name)
                buildpack.install(tool_system)
                buildpack.setup(tool_system, env)
            except BuildpackError as e:
                raise TargetError(target.name, Phase.SETUP, e) from e
            except (CommandError, ContainerError, DownloadError, ExtractionError, OSError) as e:
                error = BuildpackError(spec, str(e), code=getattr(e, "code", "install_failed"))
                raise TargetError(target.name, Phase.SETUP, error) from e

    return composed


def _log_header(log: IO[str], text: str) -> None:
    log.write(f"# {text}\n")
    log.flush()


def execute(system: BuildSystem, target: BuildTarget, log_dir: Path | None = None) -> None:
    """Run a target's build commands in order, stopping at the first failure.

    Args:
        system: Build system whose biome is fully composed.
        target: Target being built.
        log_dir: Directory for the per-target log (no log when None).

    Raises:
        TargetError: If a command cannot be parsed, fails or is cancelled.
    """
    log: IO[str] | None = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log = (log_dir / f"{target.name}.log").open("a", encoding="utf-8")

    try:
        for command in target.commands:
            try:
                argv = shlex.split(command)
            except ValueError as e:
                error = CommandError(
                    [command], None, message=f"cannot parse '{command}': {e}", code="invalid_command"
                )
                raise TargetError(target.name, Phase.EXECUTE, error) from e
            if not argv:
                continue

            stdout = system.stdout
            stderr = system.stderr
            if log is not None:
                _log_header(log, f"Command: {command}")
                _log_header(log, f"Started: {datetime.now(timezone.utc).isoformat()}")
                stdout = TeeWriter(stdout or sys.stdout, log)
                stderr = TeeWriter(stderr or sys.stderr, log)

            logger.info("Running: %s", command)
            with system.span(command):
                try:
                    system.run(argv, stdout=stdout, stderr=stderr)
                except (CommandError, ContainerError) as e:
                    if log is not None:
                        _log_header(log, f"Exit code: {getattr(e, 'exit_code', None)}")
                    raise TargetError(target.name, Phase.EXECUTE, e) from e
            if log is not None:
                _log_header(log, "Exit code: 0")
    finally:
        if log is not None:
            log.close()


__all__ = ["TargetError", "TeeWriter", "execute", "setup"]
