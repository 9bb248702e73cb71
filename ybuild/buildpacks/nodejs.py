"""Node.js buildpack."""

from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING

from ybuild.buildpacks.base import BuildToolSpec, install_archive

if TYPE_CHECKING:
    from ybuild.biome.env import Environment
    from ybuild.system import BuildSystem
    from ybuild.types import Descriptor

logger = logging.getLogger(__name__)

NODE_DIST_MIRROR = "https://nodejs.org/dist"

# Node publishes amd64 builds as "x64"
_NODE_ARCH = {"amd64": "x64", "386": "x86", "arm": "armv7l"}


def node_package_name(version: str, descriptor: Descriptor) -> str:
    """Distribution name, e.g. 'node-v12.16.1-linux-x64'."""
    arch = _NODE_ARCH.get(descriptor.arch, descriptor.arch)
    return f"node-v{version}-{descriptor.os}-{arch}"


class NodeBuildpack:
    """Installs a Node.js binary distribution."""

    def __init__(self, spec: BuildToolSpec) -> None:
        self.spec = spec

    def version(self) -> str:
        return self.spec.version

    def download_url(self, descriptor: Descriptor) -> str:
        name = node_package_name(self.spec.version, descriptor)
        return f"{NODE_DIST_MIRROR}/v{self.spec.version}/{name}.tar.gz"

    def install(self, system: BuildSystem) -> None:
        url = self.download_url(system.biome.descriptor)
        install_archive(system, f"Node v{self.spec.version}", url, self.spec.install_dir("nodejs"))

    def setup(self, system: BuildSystem, env: Environment) -> None:
        env.prepend(str(self.spec.install_dir("nodejs") / "bin"))
        node_path = self.spec.package_dir
        logger.info("Setting NODE_PATH to %s", node_path)
        env.set("NODE_PATH", node_path)
        env.prepend(posixpath.join(node_path, "node_modules", ".bin"))


__all__ = ["NODE_DIST_MIRROR", "NodeBuildpack", "node_package_name"]
