"""Python buildpack.

Python interpreters come from conda: a pinned Miniconda is installed once
into the shared cache, and each package gets its own conda environment
with the requested Python version under the package cache.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ybuild.biome.env import Environment
from ybuild.buildpacks.anaconda import CONDA_CONFIG_COMMAND, install_miniconda, miniconda_url
from ybuild.buildpacks.base import BuildToolSpec, run_installer

if TYPE_CHECKING:
    from ybuild.system import BuildSystem

logger = logging.getLogger(__name__)

# Miniconda release used to create Python environments
ANACONDA_TOOL_VERSION = "4.7.10"


class PythonBuildpack:
    """Creates a per-package conda environment with a given Python."""

    def __init__(self, spec: BuildToolSpec) -> None:
        self.spec = spec

    def version(self) -> str:
        return self.spec.version

    def conda_dir(self) -> Path:
        return self.spec.install_dir("miniconda3", ANACONDA_TOOL_VERSION)

    def environment_dir(self) -> Path:
        return self.spec.package_cache_dir / "conda-python" / self.spec.version

    def install(self, system: BuildSystem) -> None:
        url = miniconda_url(3, ANACONDA_TOOL_VERSION, system.biome.descriptor)
        install_miniconda(system, f"Miniconda {ANACONDA_TOOL_VERSION}", url, self.conda_dir())

    def setup(self, system: BuildSystem, env: Environment) -> None:
        conda = str(self.conda_dir() / "bin" / "conda")
        env_dir = self.environment_dir()
        run_installer(
            system,
            f"Python {self.spec.version} environment",
            env_dir,
            [
                [conda, *CONDA_CONFIG_COMMAND],
                [conda, "create", "--prefix", str(env_dir), f"python={self.spec.version}"],
            ],
            env=Environment(prepend_path=[str(self.conda_dir() / "bin")]),
            dir=system.biome.workdir,
        )
        env.prepend(str(env_dir / "bin"))


__all__ = ["ANACONDA_TOOL_VERSION", "PythonBuildpack"]
