"""Buildpack plugin contract and shared install helpers.

A buildpack installs one toolchain into the shared cache (keyed by tool and
version) and then describes the environment needed to use it. Installs are
idempotent: an existing, populated install directory is left alone.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from ybuild.download import extract_archive, file_lock

if TYPE_CHECKING:
    from ybuild.biome.env import Environment
    from ybuild.system import BuildSystem

logger = logging.getLogger(__name__)

# Lock acquisition timeout for concurrent installs of the same tool (seconds)
INSTALL_LOCK_TIMEOUT = 1800


class BuildpackError(Exception):
    """Raised when a buildpack cannot install or set up its tool."""

    def __init__(self, tool: str, message: str, code: str = "buildpack_error") -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.code = code


class UnknownBuildpackError(BuildpackError):
    """Raised when no buildpack exists for a tool name."""

    def __init__(self, tool: str, known: list[str]) -> None:
        super().__init__(
            tool,
            f"unknown buildpack (known: {', '.join(known)})",
            code="unknown_buildpack",
        )
        self.known = known


@dataclass(frozen=True)
class BuildToolSpec:
    """What a buildpack is constructed from.

    Attributes:
        tool: Tool identifier (e.g., 'nodejs').
        version: Version string.
        shared_cache_dir: Cache root shared by all packages.
        package_cache_dir: Cache root private to the package.
        package_dir: Package directory as seen inside the biome.
    """

    tool: str
    version: str
    shared_cache_dir: Path
    package_cache_dir: Path
    package_dir: str

    def install_dir(self, tool: str | None = None, version: str | None = None) -> Path:
        """Deterministic install path: <shared-cache>/<tool>/<tool>-<version>."""
        tool = tool or self.tool
        version = version or self.version
        return self.shared_cache_dir / tool / f"{tool}-{version}"


class Buildpack(Protocol):
    """Plugin contract every buildpack implements."""

    def version(self) -> str:
        """Version of the tool this buildpack provides."""
        ...

    def install(self, system: BuildSystem) -> None:
        """Fetch and unpack the tool; a no-op if it is already installed."""
        ...

    def setup(self, system: BuildSystem, env: Environment) -> None:
        """Add what the tool needs to a composed environment.

        Other buildpacks mutate the same environment; only add to it.
        """
        ...


def split_buildpack_spec(spec: str) -> tuple[str, str]:
    """Split 'tool:version' into its parts."""
    tool, sep, version = spec.partition(":")
    if not sep or not tool or not version:
        raise ValueError(f"buildpack must look like 'tool:version', got '{spec}'")
    return tool.lower(), version


def is_installed(path: Path) -> bool:
    """Whether an install directory exists and is populated."""
    return path.is_dir() and any(path.iterdir())


def install_archive(
    system: BuildSystem,
    tool: str,
    url: str,
    dest: Path,
    strip_top_level: bool = True,
) -> bool:
    """Download an archive and unpack it to an install directory.

    The archive is unpacked next to the destination and renamed into place,
    so a half-unpacked tree is never visible at `dest`. Concurrent installs
    of the same destination serialize on a file lock; the loser finds the
    tool installed and does nothing.

    Args:
        system: Build system (download cache).
        tool: Tool name for messages.
        url: Archive URL.
        dest: Install directory.
        strip_top_level: Unwrap a single top-level directory in the archive.

    Returns:
        True if the tool was installed, False if it already was.

    Raises:
        DownloadError: If the download fails.
        ExtractionError: If the archive cannot be unpacked.
    """
    if is_installed(dest):
        logger.info("%s located in %s", tool, dest)
        return False

    dest.parent.mkdir(parents=True, exist_ok=True)
    with file_lock(dest.parent / ".locks", str(dest), timeout=INSTALL_LOCK_TIMEOUT):
        if is_installed(dest):
            logger.info("%s installed concurrently in %s", tool, dest)
            return False

        logger.info("Installing %s into %s", tool, dest)
        archive = system.downloads.download_file_with_cache(url)
        staging = Path(tempfile.mkdtemp(prefix=f".{dest.name}-", dir=dest.parent))
        try:
            extract_archive(archive, staging)
            root = staging
            entries = list(staging.iterdir())
            if strip_top_level and len(entries) == 1 and entries[0].is_dir():
                root = entries[0]
            if dest.exists():
                shutil.rmtree(dest)
            root.rename(dest)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
    return True


def run_installer(
    system: BuildSystem,
    tool: str,
    dest: Path,
    commands: list[list[str]],
    env: Environment | None = None,
    dir: str | None = None,
) -> bool:
    """Install a tool by running commands in the biome.

    Used for tools that ship an installer script or build from source
    instead of unpacking an archive. A failed install leaves no directory
    behind.

    Args:
        system: Build system commands run through.
        tool: Tool name for messages.
        dest: Install directory the commands populate.
        commands: Commands to run, in order.
        env: Overlay for the install commands.
        dir: Working directory for the install commands.

    Returns:
        True if the tool was installed, False if it already was.

    Raises:
        CommandError: If an install command fails.
    """
    if is_installed(dest):
        logger.info("%s located in %s", tool, dest)
        return False

    dest.parent.mkdir(parents=True, exist_ok=True)
    with file_lock(dest.parent / ".locks", str(dest), timeout=INSTALL_LOCK_TIMEOUT):
        if is_installed(dest):
            logger.info("%s installed concurrently in %s", tool, dest)
            return False
        logger.info("Installing %s into %s", tool, dest)
        try:
            for argv in commands:
                system.run(argv, env=env, dir=dir)
        except BaseException:
            shutil.rmtree(dest, ignore_errors=True)
            raise
    return True


__all__ = [
    "BuildToolSpec",
    "Buildpack",
    "BuildpackError",
    "UnknownBuildpackError",
    "install_archive",
    "is_installed",
    "run_installer",
    "split_buildpack_spec",
]
