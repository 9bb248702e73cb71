"""Orchestration driver.

Runs a requested target and its dependencies, one target at a time:

- resolve the build order (no side effects before this succeeds)
- create the shared Docker network the first time a container needs it
- per target: acquire a biome, install buildpacks, run commands, release
  the biome on every exit path
- stop at the first failing target and remove the network exactly once
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING

import httpx

from ybuild.biome.container import new_container_biome
from ybuild.biome.host import HostBiome
from ybuild.biome.prefix import ExecPrefix
from ybuild.build import phases
from ybuild.build.phases import TargetError
from ybuild.build.trace import TraceSink
from ybuild.config import Settings, get_settings
from ybuild.containers.manager import ContainerManager
from ybuild.download import DownloadCache
from ybuild.manifest.order import build_order
from ybuild.system import BuildSystem
from ybuild.types import BuildReport, Phase, TargetOutcome, TargetStatus

if TYPE_CHECKING:
    from ybuild.biome.base import Biome
    from ybuild.manifest.io import Package
    from ybuild.manifest.schema import BuildTarget

logger = logging.getLogger(__name__)

# Creates the biome for a target; receives the shared network ID, if any
BiomeFactory = Callable[["BuildTarget", "str | None"], "Biome"]


class BuildCleanupError(Exception):
    """Raised when build-wide resources cannot be released after a successful build.

    Attributes:
        target: Requested target.
        cause: Underlying error.
        code: Machine-readable code.
        report: Outcomes of the build.
    """

    def __init__(self, target: str, cause: BaseException, code: str = "cleanup_failed") -> None:
        super().__init__(f"build {target}: clean up network: {cause}")
        self.target = target
        self.cause = cause
        self.code = code
        self.report: BuildReport | None = None


class BuildCancelledError(Exception):
    """Raised when a build is cancelled between targets."""

    def __init__(self, message: str = "build cancelled", code: str = "build_cancelled") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class BuildOptions:
    """How to run a build.

    Attributes:
        no_container: Run every target on the host, ignoring containers.
        setup_only: Install buildpacks but skip build commands.
        exec_prefix: Arguments prepended to every build command.
    """

    no_container: bool = False
    setup_only: bool = False
    exec_prefix: list[str] = field(default_factory=list)


class NetworkScope:
    """The build's shared Docker network.

    Created on first use and removed at most once.
    """

    def __init__(self, manager: ContainerManager) -> None:
        self.manager = manager
        self.network_id: str | None = None

    def get(self) -> str:
        if self.network_id is None:
            self.network_id = self.manager.create_network()
        return self.network_id

    def release(self) -> None:
        network_id, self.network_id = self.network_id, None
        if network_id is not None:
            self.manager.remove_network(network_id)


@contextmanager
def acquired(biome: Biome, target: str) -> Iterator[Biome]:
    """Close a biome on every exit from the block.

    A close failure is raised when the block succeeded and logged when the
    block already failed, so it never replaces the original error.
    """
    try:
        yield biome
    except BaseException:
        try:
            biome.close()
        except Exception as e:
            logger.warning("Clean up environment of target %s: %s", target, e)
        raise
    else:
        try:
            biome.close()
        except Exception as e:
            raise TargetError(target, Phase.CLEANUP, e) from e


def _release_network(network: NetworkScope | None, report: BuildReport, failed: bool) -> None:
    if network is None:
        return
    try:
        network.release()
    except Exception as e:
        if failed:
            logger.warning("Clean up network: %s", e)
            return
        error = BuildCleanupError(report.target, e)
        error.report = report
        raise error from e


def run_build(
    package: Package,
    target_name: str,
    options: BuildOptions | None = None,
    settings: Settings | None = None,
    manager: ContainerManager | None = None,
    http_client: httpx.Client | None = None,
    tracer: TraceSink | None = None,
    cancel: threading.Event | None = None,
    stdout: IO[str] | None = None,
    stderr: IO[str] | None = None,
    biome_factory: BiomeFactory | None = None,
) -> BuildReport:
    """Build a target and everything it depends on.

    Args:
        package: Loaded package.
        target_name: Requested target.
        options: Build options.
        settings: Settings (loaded from the environment if None).
        manager: Container manager (created when a container is needed).
        http_client: Client for toolchain downloads (one is created if None).
        tracer: Span sink; spans are recorded even when the build fails.
        cancel: Set to abort the running command and skip remaining targets.
        stdout: Sink for command output.
        stderr: Sink for command errors.
        biome_factory: Override for creating target biomes.

    Returns:
        BuildReport with one outcome per target.

    Raises:
        UnknownTargetError: If a target is not defined.
        CyclicDependencyError: If the targets form a cycle.
        TargetError: For the first target that fails; its `report` holds the
            outcomes so far.
        BuildCleanupError: If every target succeeded but the build network
            could not be removed.
    """
    settings = settings or get_settings()
    options = options or BuildOptions()
    tracer = tracer or TraceSink()

    order = build_order(package.manifest, target_name)
    logger.debug(
        "Going to build targets in the following order:%s",
        "".join(f"\n   - {t.name}" for t in order),
    )
    report = BuildReport(target=target_name, order=[t.name for t in order])

    uses_containers = not options.no_container and any(t.container for t in order)
    if uses_containers and manager is None:
        manager = ContainerManager(settings)
    network = NetworkScope(manager) if uses_containers and manager is not None else None

    build_dir = settings.package_build_dir(package.name)

    def default_factory(target: BuildTarget, network_id: str | None) -> Biome:
        if target.container is None or options.no_container or manager is None:
            return HostBiome(package.path)
        return new_container_biome(
            manager,
            package.name,
            package.path,
            build_dir,
            target.container,
            network_id=network_id,
            shared_dirs=[settings.cache_dir, build_dir],
            cancel=cancel,
        )

    factory = biome_factory or default_factory
    own_client = http_client is None
    client = http_client or httpx.Client(follow_redirects=True)
    downloads = DownloadCache(client, settings.download_cache_dir, timeout=settings.download_timeout)

    failed = False
    try:
        with tracer.span(f"Build {target_name}", root=True):
            for target in order:
                outcome = TargetOutcome(name=target.name, status=TargetStatus.FAILED)
                report.outcomes.append(outcome)
                started = time.monotonic()
                try:
                    with tracer.span(target.name):
                        _build_target(
                            package,
                            target,
                            options,
                            settings,
                            factory,
                            network,
                            downloads,
                            manager,
                            tracer,
                            cancel,
                            stdout,
                            stderr,
                        )
                except TargetError as e:
                    outcome.phase = e.phase
                    outcome.error = str(e.cause)
                    raise
                finally:
                    outcome.elapsed = time.monotonic() - started
                outcome.status = TargetStatus.SUCCEEDED
    except TargetError as e:
        failed = True
        done = {o.name for o in report.outcomes}
        report.outcomes.extend(
            TargetOutcome(name=t.name, status=TargetStatus.SKIPPED)
            for t in order
            if t.name not in done
        )
        e.report = report
        logger.error("%s", e)
        raise
    except BaseException:
        failed = True
        raise
    finally:
        try:
            _release_network(network, report, failed)
        finally:
            if own_client:
                client.close()

    return report


def _build_target(
    package: Package,
    target: BuildTarget,
    options: BuildOptions,
    settings: Settings,
    factory: BiomeFactory,
    network: NetworkScope | None,
    downloads: DownloadCache,
    manager: ContainerManager | None,
    tracer: TraceSink,
    cancel: threading.Event | None,
    stdout: IO[str] | None,
    stderr: IO[str] | None,
) -> None:
    if cancel is not None and cancel.is_set():
        raise TargetError(target.name, Phase.PROVISION, BuildCancelledError())

    network_id: str | None = None
    try:
        if network is not None and target.container is not None:
            network_id = network.get()
        biome = factory(target, network_id)
    except Exception as e:
        raise TargetError(target.name, Phase.PROVISION, e) from e

    with acquired(biome, target.name):
        system = BuildSystem(
            biome=biome,
            settings=settings,
            downloads=downloads,
            containers=manager,
            network_id=network_id,
            stdout=stdout,
            stderr=stderr,
            cancel=cancel,
            tracer=tracer,
        )
        composed = phases.setup(system, target, settings.package_cache_dir(package.name))
        if options.setup_only:
            logger.info("Dependencies of %s are set up; skipping build commands", target.name)
            return

        logger.info("Executing build steps of %s...", target.name)
        exec_biome = ExecPrefix(composed, options.exec_prefix)
        phases.execute(
            dataclasses.replace(system, biome=exec_biome),
            target,
            log_dir=settings.package_log_dir(package.name),
        )


__all__ = [
    "BiomeFactory",
    "BuildCancelledError",
    "BuildCleanupError",
    "BuildOptions",
    "NetworkScope",
    "acquired",
    "run_build",
]
