"""Package manifest module.

This module handles:
- Manifest schema validation
- Loading manifests from YAML/JSON
- Target dependency ordering
"""

from ybuild.manifest.io import ManifestError, Package, load_package
from ybuild.manifest.order import CyclicDependencyError, UnknownTargetError, build_order
from ybuild.manifest.schema import BuildTarget, ContainerDefinition, Manifest

__all__ = [
    "BuildTarget",
    "ContainerDefinition",
    "CyclicDependencyError",
    "Manifest",
    "ManifestError",
    "Package",
    "UnknownTargetError",
    "build_order",
    "load_package",
]
