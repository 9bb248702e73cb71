"""Homebrew buildpack."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ybuild.buildpacks.base import BuildpackError, BuildToolSpec, run_installer

if TYPE_CHECKING:
    from ybuild.biome.env import Environment
    from ybuild.system import BuildSystem

HOMEBREW_GIT_URL = "https://github.com/Homebrew/brew.git"


class HomebrewBuildpack:
    """Clones Homebrew into the package's cache.

    Homebrew keeps one version of each formula per prefix, so every package
    gets its own checkout instead of sharing one keyed by version. Only
    macOS is supported.
    """

    def __init__(self, spec: BuildToolSpec) -> None:
        self.spec = spec

    def version(self) -> str:
        return self.spec.version

    def install_dir(self) -> Path:
        return self.spec.package_cache_dir / "homebrew"

    def brew_dir(self) -> Path:
        return self.install_dir() / "brew"

    def install(self, system: BuildSystem) -> None:
        os_name = system.biome.descriptor.os
        if os_name != "darwin":
            raise BuildpackError(
                self.spec.tool,
                f"Homebrew not supported on {os_name} platform",
                code="unsupported_platform",
            )
        dest = self.brew_dir()
        run_installer(system, "brew", dest, [["git", "clone", HOMEBREW_GIT_URL, str(dest)]])

    def setup(self, system: BuildSystem, env: Environment) -> None:
        env.prepend(str(self.brew_dir() / "bin"))


__all__ = ["HOMEBREW_GIT_URL", "HomebrewBuildpack"]
