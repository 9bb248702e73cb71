"""Container resource manager.

This module handles:
- Discovering build containers by their deterministic name
- Pulling images that are not present locally
- Creating containers with translated bind mounts
- Starting, stopping and removing containers
- One-shot exec sessions inside running containers
- The per-build Docker network

Creation is not idempotent at this layer: callers look a container up with
find_container() before calling new_container().
"""

from __future__ import annotations

import codecs
import logging
import re
import sys
import threading
import time
import uuid
from collections.abc import Mapping
from typing import IO

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.types import Mount

from ybuild.biome.base import CommandCancelledError
from ybuild.biome.host import normalize_arch
from ybuild.config import Settings, get_settings
from ybuild.containers.models import (
    ContainerRecord,
    ContainerSpec,
    MountSpec,
    split_image_ref,
)

logger = logging.getLogger(__name__)

# Keeps a container alive so it can be exec'd into repeatedly
IDLE_COMMAND = ["tail", "-f", "/dev/null"]

LABEL_PACKAGE = "io.ybuild.package"
LABEL_BUILD = "io.ybuild.build"

# How long start() waits for the container to report running (seconds)
START_TIMEOUT = 30.0

# How often a running exec checks for cancellation (seconds)
EXEC_POLL_INTERVAL = 0.1

# How long a cancelled exec waits for its output stream to end (seconds)
EXEC_ABORT_TIMEOUT = 5.0


class ContainerError(Exception):
    """Raised when a Docker container operation fails."""

    def __init__(self, message: str, code: str = "container_error") -> None:
        super().__init__(message)
        self.code = code


class ImagePullError(ContainerError):
    """Raised when an image cannot be pulled."""

    def __init__(self, message: str, code: str = "pull_error") -> None:
        super().__init__(message, code=code)


class NetworkError(ContainerError):
    """Raised when a Docker network cannot be created or removed."""

    def __init__(self, message: str, code: str = "network_error") -> None:
        super().__init__(message, code=code)


def _record_from_container(container: docker.models.containers.Container) -> ContainerRecord:
    attrs = container.attrs or {}
    networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
    mounts = [
        MountSpec(source=m.get("Source", ""), target=m.get("Destination", ""))
        for m in attrs.get("Mounts") or []
    ]
    exposed = (attrs.get("Config") or {}).get("ExposedPorts") or {}
    return ContainerRecord(
        id=container.id,
        name=container.name,
        status=container.status,
        network_ids=[n.get("NetworkID", name) for name, n in networks.items()],
        mounts=mounts,
        ports=sorted(exposed),
    )


def _port_bindings(ports: list[str]) -> dict[str, int | None]:
    """Translate 'host:container' / 'container' port specs to docker-py form."""
    bindings: dict[str, int | None] = {}
    for spec in ports:
        host, sep, container_port = spec.rpartition(":")
        if "/" not in container_port:
            container_port += "/tcp"
        bindings[container_port] = int(host) if sep else None
    return bindings


def _log_pull_event(image_ref: str, event: Mapping[str, object]) -> None:
    status = event.get("status")
    if not status:
        return
    if event.get("progressDetail") or event.get("progress"):
        logger.debug("%s: %s %s %s", image_ref, event.get("id", ""), status, event.get("progress", ""))
    else:
        logger.info("%s: %s", image_ref, status)


class ContainerManager:
    """Creates, discovers and drives build containers.

    The Docker client is connected on first use, so a manager can be handed
    to builds that never touch a container without requiring a daemon.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: docker.DockerClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        """Connected Docker client.

        Raises:
            ContainerError: If the Docker daemon cannot be reached.
        """
        with self._lock:
            if self._client is None:
                try:
                    if self.settings.docker_host:
                        client = docker.DockerClient(
                            base_url=self.settings.docker_host,
                            timeout=self.settings.docker_timeout,
                        )
                    else:
                        client = docker.from_env(timeout=self.settings.docker_timeout)
                    client.ping()
                except DockerException as e:
                    raise ContainerError(
                        f"Docker is not available: {e}", code="docker_unavailable"
                    ) from e
                self._client = client
            return self._client

    def architecture(self) -> str:
        """Normalized CPU architecture of the Docker daemon."""
        try:
            info = self.client.info()
        except DockerException as e:
            raise ContainerError(f"cannot query Docker daemon: {e}") from e
        return normalize_arch(str(info.get("Architecture", "")))

    # -- discovery -------------------------------------------------------

    def find_container(self, spec: ContainerSpec) -> ContainerRecord | None:
        """Find the container for a spec by its deterministic name.

        Args:
            spec: Container spec (only package name and image are used).

        Returns:
            The existing container, or None if there is none.

        Raises:
            ContainerError: If the Docker daemon cannot be queried.
        """
        name = spec.name
        try:
            found = self.client.containers.list(
                all=True, filters={"name": f"^/{re.escape(name)}$"}
            )
        except DockerException as e:
            raise ContainerError(f"cannot list containers named {name}: {e}") from e

        # The daemon's name filter is a regex match; keep exact names only.
        matches = [c for c in found if c.name == name]
        if not matches:
            logger.debug("No container named %s", name)
            return None
        if len(matches) > 1:
            logger.warning(
                "%d containers named %s, reusing %s",
                len(matches),
                name,
                matches[0].id[:12],
            )
        record = _record_from_container(matches[0])
        logger.info("Found container %s (%s, %s)", name, record.id[:12], record.status)
        return record

    def get_container(self, container_id: str) -> ContainerRecord:
        """Inspect a container by ID.

        Raises:
            ContainerError: If the container does not exist.
        """
        try:
            return _record_from_container(self.client.containers.get(container_id))
        except NotFound as e:
            raise ContainerError(f"no such container {container_id}", code="not_found") from e
        except DockerException as e:
            raise ContainerError(f"cannot inspect container {container_id}: {e}") from e

    # -- images ----------------------------------------------------------

    def ensure_image(self, image_ref: str, cancel: threading.Event | None = None) -> None:
        """Make sure an image is present locally, pulling it if needed.

        Args:
            image_ref: Image reference ('name[:tag]').
            cancel: Aborts the pull between progress events when set.

        Raises:
            ImagePullError: If the pull fails or is cancelled.
        """
        try:
            self.client.images.get(image_ref)
            logger.debug("Image %s present", image_ref)
            return
        except ImageNotFound:
            pass
        except DockerException as e:
            raise ImagePullError(f"cannot inspect image {image_ref}: {e}") from e

        repository, tag = split_image_ref(image_ref)
        logger.info("Image %s not found, pulling", image_ref)
        try:
            for event in self.client.api.pull(repository, tag=tag, stream=True, decode=True):
                if cancel is not None and cancel.is_set():
                    raise ImagePullError(
                        f"pull of {image_ref} cancelled", code="pull_cancelled"
                    )
                if event.get("error"):
                    raise ImagePullError(f"cannot pull {image_ref}: {event['error']}")
                _log_pull_event(image_ref, event)
        except DockerException as e:
            raise ImagePullError(f"cannot pull {image_ref}: {e}") from e

        try:
            self.client.images.get(image_ref)
        except DockerException as e:
            raise ImagePullError(f"image {image_ref} missing after pull") from e

    # -- lifecycle -------------------------------------------------------

    def resolve_mounts(self, spec: ContainerSpec) -> list[MountSpec]:
        """Translate a spec's mounts to host bind mounts.

        Relative host paths resolve against the package build directory and
        are created if missing. The package directory is always bound at the
        container workdir; shared directories are bound at identical paths.
        """
        mounts: list[MountSpec] = []
        for host_rel, target in spec.definition.mount_pairs():
            source = spec.package_build_dir / host_rel
            source.mkdir(parents=True, exist_ok=True)
            mounts.append(MountSpec(source=str(source), target=target))

        for shared in spec.shared_dirs:
            shared.mkdir(parents=True, exist_ok=True)
            mounts.append(MountSpec(source=str(shared), target=str(shared)))

        mounts.append(
            MountSpec(source=str(spec.package_dir), target=self.settings.container_workdir)
        )
        return mounts

    def new_container(self, spec: ContainerSpec) -> ContainerRecord:
        """Create (but do not start) a build container.

        The container runs an idle command so commands can be exec'd into it
        for as long as it lives.

        Args:
            spec: Container spec.

        Returns:
            Record of the created container.

        Raises:
            ContainerError: If creation fails (including a name conflict).
        """
        definition = spec.definition
        name = spec.name
        mounts = self.resolve_mounts(spec)
        ports = _port_bindings(definition.ports)

        logger.info("Creating container %s from %s", name, definition.image)
        try:
            container = self.client.containers.create(
                definition.image,
                command=IDLE_COMMAND,
                name=name,
                mounts=[Mount(target=m.target, source=m.source, type="bind") for m in mounts],
                environment=dict(definition.environment),
                working_dir=self.settings.container_workdir,
                network=spec.network_id,
                ports=ports or None,
                labels={LABEL_PACKAGE: spec.package_name},
            )
        except DockerException as e:
            raise ContainerError(
                f"cannot create container {name}: {e}", code="create_failed"
            ) from e

        logger.info("Created container %s (%s)", name, container.id[:12])
        return ContainerRecord(
            id=container.id,
            name=name,
            status="created",
            network_ids=[spec.network_id] if spec.network_id else [],
            mounts=mounts,
            ports=list(definition.ports),
        )

    def start(self, container_id: str) -> None:
        """Start a created container and wait until it is running.

        Raises:
            ContainerError: If the container fails to start.
        """
        try:
            container = self.client.containers.get(container_id)
            container.start()
            deadline = time.monotonic() + START_TIMEOUT
            container.reload()
            while container.status != "running":
                if container.status in ("exited", "dead") or time.monotonic() >= deadline:
                    raise ContainerError(
                        f"container {container_id[:12]} did not start (status {container.status})",
                        code="start_failed",
                    )
                time.sleep(0.1)
                container.reload()
        except DockerException as e:
            raise ContainerError(
                f"cannot start container {container_id[:12]}: {e}", code="start_failed"
            ) from e
        logger.debug("Container %s running", container_id[:12])

    def connect_network(self, network_id: str, container_id: str) -> None:
        """Attach a container to a network unless it already is."""
        record = self.get_container(container_id)
        if network_id in record.network_ids:
            return
        try:
            self.client.networks.get(network_id).connect(container_id)
        except DockerException as e:
            raise NetworkError(
                f"cannot connect {container_id[:12]} to network {network_id[:12]}: {e}"
            ) from e

    def container_env(self, container_id: str) -> dict[str, str]:
        """Environment baked into a container (image env plus overrides)."""
        try:
            container = self.client.containers.get(container_id)
        except DockerException as e:
            raise ContainerError(f"cannot inspect container {container_id[:12]}: {e}") from e
        env: dict[str, str] = {}
        for entry in (container.attrs.get("Config") or {}).get("Env") or []:
            key, _, value = entry.partition("=")
            env[key] = value
        return env

    def stop(self, container_id: str) -> None:
        """Stop a container. A missing container is not an error."""
        try:
            self.client.containers.get(container_id).stop(
                timeout=self.settings.container_stop_timeout
            )
        except NotFound:
            logger.debug("Container %s already gone", container_id[:12])
        except DockerException as e:
            raise ContainerError(
                f"cannot stop container {container_id[:12]}: {e}", code="stop_failed"
            ) from e

    def remove(self, container_id: str) -> None:
        """Remove a container. A missing container is not an error."""
        try:
            self.client.containers.get(container_id).remove(force=True)
            logger.info("Removed container %s", container_id[:12])
        except NotFound:
            logger.debug("Container %s already gone", container_id[:12])
        except DockerException as e:
            raise ContainerError(
                f"cannot remove container {container_id[:12]}: {e}", code="remove_failed"
            ) from e

    # -- exec ------------------------------------------------------------

    def exec(
        self,
        container_id: str,
        argv: list[str],
        env: Mapping[str, str] | None = None,
        workdir: str | None = None,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> int:
        """Run a command in a running container.

        Each call creates a fresh exec session; sessions are never reused.
        Output is copied on a worker thread so cancellation is noticed even
        while the command is silent. Cancelling stops the container, which
        kills the command; the container cannot be used afterwards.

        Args:
            container_id: Running container.
            argv: Command and arguments.
            env: Environment for the command.
            workdir: Working directory inside the container.
            stdout: Sink for standard output (process stdout if None).
            stderr: Sink for standard error (process stderr if None).
            cancel: Aborts the command when set.

        Returns:
            Exit status of the command.

        Raises:
            ContainerError: If the exec session cannot be created or run.
            CommandCancelledError: If cancelled before or while running.
        """
        stdout = stdout or sys.stdout
        stderr = stderr or sys.stderr
        if cancel is not None and cancel.is_set():
            raise CommandCancelledError(argv)
        try:
            exec_id = self.client.api.exec_create(
                container_id,
                argv,
                stdout=True,
                stderr=True,
                environment=dict(env or {}),
                workdir=workdir,
            )["Id"]
            stream = self.client.api.exec_start(exec_id, stream=True, demux=True)
        except DockerException as e:
            raise ContainerError(
                f"cannot exec in container {container_id[:12]}: {e}", code="exec_failed"
            ) from e

        errors: list[Exception] = []

        def copy_output() -> None:
            out_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            err_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            try:
                for out_chunk, err_chunk in stream:
                    if out_chunk:
                        stdout.write(out_decoder.decode(out_chunk))
                        stdout.flush()
                    if err_chunk:
                        stderr.write(err_decoder.decode(err_chunk))
                        stderr.flush()
            except Exception as e:
                errors.append(e)

        worker = threading.Thread(target=copy_output, daemon=True)
        worker.start()
        while worker.is_alive():
            if cancel is not None and cancel.is_set():
                self._abort_exec(container_id, stream)
                worker.join(timeout=EXEC_ABORT_TIMEOUT)
                raise CommandCancelledError(argv)
            worker.join(timeout=EXEC_POLL_INTERVAL)

        try:
            if errors:
                raise errors[0]
            exit_code = self.client.api.exec_inspect(exec_id)["ExitCode"]
        except DockerException as e:
            raise ContainerError(
                f"cannot exec in container {container_id[:12]}: {e}", code="exec_failed"
            ) from e
        return int(exit_code) if exit_code is not None else -1

    def _abort_exec(self, container_id: str, stream: object) -> None:
        """Kill a running exec by stopping its container, then drop the stream."""
        logger.info("Cancelling command in container %s", container_id[:12])
        try:
            self.stop(container_id)
        except ContainerError as e:
            logger.warning("Stop container %s after cancel: %s", container_id[:12], e)
        # Streams returned by the SDK close their socket; plain iterators have nothing to close
        close = getattr(stream, "close", None)
        if close is not None:
            close()

    # -- networks --------------------------------------------------------

    def create_network(self) -> str:
        """Create a bridge network for one build invocation.

        Returns:
            Network ID.

        Raises:
            NetworkError: If the network cannot be created.
        """
        build_id = uuid.uuid4().hex[:12]
        name = f"ybuild-{build_id}"
        try:
            network = self.client.networks.create(
                name, driver="bridge", labels={LABEL_BUILD: build_id}
            )
        except DockerException as e:
            raise NetworkError(f"cannot create network {name}: {e}") from e
        logger.info("Created network %s (%s)", name, network.id[:12])
        return network.id

    def remove_network(self, network_id: str) -> None:
        """Remove a build network.

        Raises:
            NetworkError: If the network exists but cannot be removed.
        """
        try:
            self.client.networks.get(network_id).remove()
            logger.info("Removed network %s", network_id[:12])
        except NotFound:
            logger.debug("Network %s already gone", network_id[:12])
        except DockerException as e:
            raise NetworkError(f"cannot remove network {network_id[:12]}: {e}") from e


__all__ = [
    "IDLE_COMMAND",
    "ContainerError",
    "ContainerManager",
    "ImagePullError",
    "NetworkError",
]
