"""Heroku CLI buildpack."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ybuild.buildpacks.base import BuildToolSpec, install_archive

if TYPE_CHECKING:
    from ybuild.biome.env import Environment
    from ybuild.system import BuildSystem
    from ybuild.types import Descriptor

HEROKU_DIST_MIRROR = "https://cli-assets.heroku.com/heroku-{os}-{arch}.tar.gz"


class HerokuBuildpack:
    """Installs the standalone Heroku CLI tarball.

    The tarball is not versioned by URL; the version only keys the install
    directory.
    """

    def __init__(self, spec: BuildToolSpec) -> None:
        self.spec = spec

    def version(self) -> str:
        return self.spec.version

    def download_url(self, descriptor: Descriptor) -> str:
        arch = "x64" if descriptor.arch == "amd64" else descriptor.arch
        return HEROKU_DIST_MIRROR.format(os=descriptor.os, arch=arch)

    def install(self, system: BuildSystem) -> None:
        url = self.download_url(system.biome.descriptor)
        install_archive(system, f"Heroku v{self.spec.version}", url, self.spec.install_dir("heroku"))

    def setup(self, system: BuildSystem, env: Environment) -> None:
        env.prepend(str(self.spec.install_dir("heroku") / "bin"))


__all__ = ["HEROKU_DIST_MIRROR", "HerokuBuildpack"]
