"""OpenJDK buildpack, using AdoptOpenJDK HotSpot builds."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ybuild.buildpacks.base import BuildpackError, BuildToolSpec, install_archive

if TYPE_CHECKING:
    from ybuild.biome.env import Environment
    from ybuild.system import BuildSystem
    from ybuild.types import Descriptor

logger = logging.getLogger(__name__)

OPENJDK_DIST_MIRROR = (
    "https://github.com/AdoptOpenJDK/openjdk{major}-binaries/releases/download/"
    "jdk{major}u{minor}-b{patch}/"
    "OpenJDK{major}U-jdk_{arch}_{os}_hotspot_{major}u{minor}b{patch}.{extension}"
)

_JDK_OS = {"darwin": "mac"}
_JDK_ARCH = {"amd64": "x64", "arm64": "aarch64"}


class JavaBuildpack:
    """Installs an OpenJDK distribution and points JAVA_HOME at it.

    Versions are written 'major.update.build', e.g. '8.202.08' for
    jdk8u202-b08.
    """

    def __init__(self, spec: BuildToolSpec) -> None:
        parts = spec.version.split(".")
        if len(parts) != 3 or not all(parts):
            raise BuildpackError(
                spec.tool,
                f"version must look like 'major.update.build', got '{spec.version}'",
                code="invalid_version",
            )
        self.spec = spec
        self.major, self.minor, self.patch = parts

    def version(self) -> str:
        return self.spec.version

    def download_url(self, descriptor: Descriptor) -> str:
        return OPENJDK_DIST_MIRROR.format(
            major=self.major,
            minor=self.minor,
            patch=self.patch,
            os=_JDK_OS.get(descriptor.os, descriptor.os),
            arch=_JDK_ARCH.get(descriptor.arch, descriptor.arch),
            extension="zip" if descriptor.os == "windows" else "tar.gz",
        )

    def install_dir(self) -> Path:
        return self.spec.install_dir("java")

    def java_home(self, descriptor: Descriptor) -> Path:
        home = self.install_dir()
        if descriptor.os == "darwin":
            home = home / "Contents" / "Home"
        return home

    def install(self, system: BuildSystem) -> None:
        url = self.download_url(system.biome.descriptor)
        install_archive(system, f"Java v{self.spec.version}", url, self.install_dir())

    def setup(self, system: BuildSystem, env: Environment) -> None:
        java_home = self.java_home(system.biome.descriptor)
        logger.info("Setting JAVA_HOME to %s", java_home)
        env.set("JAVA_HOME", str(java_home))
        env.prepend(str(java_home / "bin"))


__all__ = ["JavaBuildpack", "OPENJDK_DIST_MIRROR"]
