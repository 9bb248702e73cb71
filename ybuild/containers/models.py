"""Container naming and record types."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ybuild.manifest.schema import ContainerDefinition

_NAME_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_.\-]")


def split_image_ref(image_ref: str) -> tuple[str, str | None]:
    """Split an image reference into repository and tag.

    A registry port ('host:5000/img') is not mistaken for a tag. Digest
    references return the digest as the tag part.

    Args:
        image_ref: Image reference, e.g. 'python:3.11' or 'golang'.

    Returns:
        Tuple of (repository, tag or digest); tag defaults to 'latest'.
    """
    if "@" in image_ref:
        repo, _, digest = image_ref.partition("@")
        return repo, digest
    repo, sep, tag = image_ref.rpartition(":")
    if sep and "/" not in tag:
        return repo, tag
    return image_ref, "latest"


def image_base_name(image_ref: str) -> str:
    """Image reference without tag or digest."""
    return split_image_ref(image_ref)[0]


def container_name(package_name: str, image_ref: str) -> str:
    """Deterministic container name for a package and image.

    Re-running a build of the same package against the same image always
    yields the same name, so an existing container can be found again.
    """
    name = f"{package_name}-{image_base_name(image_ref)}"
    return _NAME_INVALID_CHARS.sub("_", name)


@dataclass(frozen=True)
class MountSpec:
    """Bind mount of a host path into a container."""

    source: str
    target: str


@dataclass
class ContainerSpec:
    """Everything needed to materialize a target's build container.

    Attributes:
        package_name: Owning package.
        definition: Container definition from the manifest.
        package_dir: Host package directory, bound at the container workdir.
        package_build_dir: Host directory relative mounts resolve against.
        shared_dirs: Host directories bound at identical paths (tool caches).
        network_id: Network to attach the container to.
    """

    package_name: str
    definition: ContainerDefinition
    package_dir: Path
    package_build_dir: Path
    shared_dirs: list[Path] = field(default_factory=list)
    network_id: str | None = None

    @property
    def name(self) -> str:
        return container_name(self.package_name, self.definition.image)


@dataclass
class ContainerRecord:
    """A container known to the Docker daemon.

    Attributes:
        id: Container ID.
        name: Container name.
        status: Docker state ('created', 'running', 'exited', ...).
        network_ids: Networks the container is attached to.
        mounts: Bind mounts.
        ports: Declared ports.
    """

    id: str
    name: str
    status: str = "created"
    network_ids: list[str] = field(default_factory=list)
    mounts: list[MountSpec] = field(default_factory=list)
    ports: list[str] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.status == "running"


__all__ = [
    "ContainerRecord",
    "ContainerSpec",
    "MountSpec",
    "container_name",
    "image_base_name",
    "split_image_ref",
]
