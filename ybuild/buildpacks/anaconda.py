"""Anaconda (Miniconda) buildpacks for Python 2 and Python 3 lines."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ybuild.biome.env import Environment
from ybuild.buildpacks.base import BuildToolSpec, is_installed, run_installer

if TYPE_CHECKING:
    from ybuild.system import BuildSystem
    from ybuild.types import Descriptor

logger = logging.getLogger(__name__)

MINICONDA_URL_TEMPLATE = (
    "https://repo.continuum.io/miniconda/Miniconda{py_num}-{version}-{os}-{arch}.{extension}"
)

_CONDA_OS = {"darwin": "MacOSX", "linux": "Linux", "windows": "Windows"}
_CONDA_ARCH = {"amd64": "x86_64", "arm64": "aarch64"}

CONDA_CONFIG_COMMAND = ["config", "--set", "always_yes", "yes", "--set", "changeps1", "no"]


def miniconda_url(py_num: int, version: str, descriptor: Descriptor) -> str:
    """Installer URL for a Miniconda release.

    Args:
        py_num: Python line the installer targets (2 or 3).
        version: Miniconda version; empty means 'latest'.
        descriptor: Platform the installer runs on.
    """
    return MINICONDA_URL_TEMPLATE.format(
        py_num=py_num,
        version=version or "latest",
        os=_CONDA_OS.get(descriptor.os, descriptor.os),
        arch=_CONDA_ARCH.get(descriptor.arch, descriptor.arch),
        extension="exe" if descriptor.os == "windows" else "sh",
    )


def install_miniconda(system: BuildSystem, tool: str, url: str, dest: Path) -> bool:
    """Download a Miniconda installer and run it in batch mode into `dest`."""
    if is_installed(dest):
        logger.info("%s located in %s", tool, dest)
        return False
    installer = system.downloads.download_file_with_cache(url)
    return run_installer(
        system,
        tool,
        dest,
        [["bash", str(installer), "-b", "-p", str(dest)]],
        dir=system.biome.workdir,
    )


class AnacondaBuildpack:
    """Installs Miniconda and puts its bin directory on PATH."""

    def __init__(self, spec: BuildToolSpec, py_num: int) -> None:
        self.spec = spec
        self.py_num = py_num

    def version(self) -> str:
        return self.spec.version

    def install_dir(self) -> Path:
        return self.spec.install_dir()

    def install(self, system: BuildSystem) -> None:
        url = miniconda_url(self.py_num, self.spec.version, system.biome.descriptor)
        install_miniconda(system, f"Anaconda{self.py_num} v{self.spec.version}", url, self.install_dir())

    def setup(self, system: BuildSystem, env: Environment) -> None:
        bin_dir = str(self.install_dir() / "bin")
        env.prepend(bin_dir)
        overlay = Environment(prepend_path=[bin_dir])
        system.run(["conda", *CONDA_CONFIG_COMMAND], env=overlay, dir=system.biome.workdir)


def new_anaconda2(spec: BuildToolSpec) -> AnacondaBuildpack:
    return AnacondaBuildpack(spec, py_num=2)


def new_anaconda3(spec: BuildToolSpec) -> AnacondaBuildpack:
    return AnacondaBuildpack(spec, py_num=3)


__all__ = [
    "AnacondaBuildpack",
    "MINICONDA_URL_TEMPLATE",
    "install_miniconda",
    "miniconda_url",
    "new_anaconda2",
    "new_anaconda3",
]
