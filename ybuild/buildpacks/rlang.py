"""R buildpack; builds R from source."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ybuild.buildpacks.base import BuildToolSpec, install_archive, run_installer

if TYPE_CHECKING:
    from ybuild.biome.env import Environment
    from ybuild.system import BuildSystem


RLANG_DIST_MIRROR = "https://cloud.r-project.org/src/base"


class RLangBuildpack:
    """Downloads the R source release, then configures and installs it."""

    def __init__(self, spec: BuildToolSpec) -> None:
        self.spec = spec

    def version(self) -> str:
        return self.spec.version

    def major_version(self) -> str:
        return self.spec.version.split(".")[0]

    def download_url(self) -> str:
        return f"{RLANG_DIST_MIRROR}/R-{self.major_version()}/R-{self.spec.version}.tar.gz"

    def install_dir(self) -> Path:
        return self.spec.install_dir("r")

    def source_dir(self) -> Path:
        return self.spec.shared_cache_dir / "r" / "src" / f"R-{self.spec.version}"

    def install(self, system: BuildSystem) -> None:
        dest = self.install_dir()
        src = self.source_dir()
        install_archive(system, f"R {self.spec.version} sources", self.download_url(), src)
        run_installer(
            system,
            f"R v{self.spec.version}",
            dest,
            [
                ["./configure", "--with-x=no", f"--prefix={dest}"],
                ["make"],
                ["make", "install"],
            ],
            dir=str(src),
        )

    def setup(self, system: BuildSystem, env: Environment) -> None:
        env.prepend(str(self.install_dir() / "bin"))


__all__ = ["RLANG_DIST_MIRROR", "RLangBuildpack"]
