"""Container biome: commands run via exec inside a build container."""

from __future__ import annotations

import logging
import posixpath
import shlex
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from ybuild.biome.base import CommandError, Invocation
from ybuild.biome.env import Environment
from ybuild.containers.models import ContainerRecord, ContainerSpec
from ybuild.types import Descriptor

if TYPE_CHECKING:
    from ybuild.containers.manager import ContainerManager
    from ybuild.manifest.schema import ContainerDefinition

logger = logging.getLogger(__name__)


class ContainerBiome:
    """Runs commands inside a running container.

    The biome owns its container: close() stops and removes it.
    """

    def __init__(
        self,
        manager: ContainerManager,
        container: ContainerRecord,
        workdir: str,
        descriptor: Descriptor,
        base_env: dict[str, str] | None = None,
    ) -> None:
        self.manager = manager
        self.container = container
        self._workdir = workdir
        self._descriptor = descriptor
        self._base_env = dict(base_env or {})
        self._closed = False

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def descriptor(self) -> Descriptor:
        return self._descriptor

    @property
    def env(self) -> Environment:
        return Environment()

    def run(self, invocation: Invocation) -> None:
        """Exec a command in the container.

        Raises:
            CommandError: If the command exits non-zero.
            ContainerError: If the exec session fails.
        """
        if self._closed:
            raise RuntimeError("biome is closed")
        if not invocation.argv:
            raise ValueError("empty command")

        workdir = self._workdir
        if invocation.dir:
            workdir = posixpath.join(self._workdir, invocation.dir)
        env = invocation.env.merge(self._base_env, self._descriptor.path_separator)

        logger.debug(
            "Exec in %s: %s (cwd %s)",
            self.container.name,
            shlex.join(invocation.argv),
            workdir,
        )
        exit_code = self.manager.exec(
            self.container.id,
            invocation.argv,
            env=env,
            workdir=workdir,
            stdout=invocation.stdout,
            stderr=invocation.stderr,
            cancel=invocation.cancel,
        )
        if exit_code != 0:
            raise CommandError(invocation.argv, exit_code)

    def close(self) -> None:
        """Stop and remove the container."""
        if self._closed:
            return
        self._closed = True
        logger.info("Removing container %s", self.container.name)
        try:
            self.manager.stop(self.container.id)
        finally:
            self.manager.remove(self.container.id)


def new_container_biome(
    manager: ContainerManager,
    package_name: str,
    package_dir: Path,
    package_build_dir: Path,
    definition: ContainerDefinition,
    network_id: str | None = None,
    shared_dirs: list[Path] | None = None,
    cancel: threading.Event | None = None,
) -> ContainerBiome:
    """Materialize a running container and wrap it in a biome.

    Reuses the container with the deterministic name if one exists,
    otherwise pulls the image and creates it. A container created here is
    removed again if it cannot be brought up.

    Raises:
        ContainerError: If the container cannot be created or started.
        ImagePullError: If the image cannot be pulled.
    """
    spec = ContainerSpec(
        package_name=package_name,
        definition=definition,
        package_dir=package_dir,
        package_build_dir=package_build_dir,
        shared_dirs=list(shared_dirs or []),
        network_id=network_id,
    )

    container = manager.find_container(spec)
    if container is None:
        manager.ensure_image(definition.image, cancel=cancel)
        container = manager.new_container(spec)

    try:
        if not container.is_running:
            manager.start(container.id)
        if network_id:
            manager.connect_network(network_id, container.id)
        base_env = manager.container_env(container.id)
        descriptor = Descriptor(os="linux", arch=manager.architecture())
    except BaseException:
        try:
            manager.remove(container.id)
        except Exception as e:
            logger.warning("Clean up container %s: %s", container.name, e)
        raise

    return ContainerBiome(
        manager,
        container,
        workdir=manager.settings.container_workdir,
        descriptor=descriptor,
        base_env=base_env,
    )


__all__ = ["ContainerBiome", "new_container_biome"]
