"""Docker container lifecycle management.

This module handles:
- Deterministic container naming and discovery
- Image pulls, container creation with mounts, start/stop/remove
- Exec sessions inside running containers
- Per-build Docker networks
"""

from ybuild.containers.manager import (
    ContainerError,
    ContainerManager,
    ImagePullError,
    NetworkError,
)
from ybuild.containers.models import ContainerRecord, ContainerSpec, container_name

__all__ = [
    "ContainerError",
    "ContainerManager",
    "ContainerRecord",
    "ContainerSpec",
    "ImagePullError",
    "NetworkError",
    "container_name",
]
