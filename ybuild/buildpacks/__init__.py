"""Buildpack registry.

Buildpacks are looked up by tool name from a 'tool:version' spec and
constructed from a BuildToolSpec.
"""

from collections.abc import Callable
from pathlib import Path

from ybuild.buildpacks.anaconda import new_anaconda2, new_anaconda3
from ybuild.buildpacks.base import (
    Buildpack,
    BuildpackError,
    BuildToolSpec,
    UnknownBuildpackError,
    install_archive,
    is_installed,
    run_installer,
    split_buildpack_spec,
)
from ybuild.buildpacks.heroku import HerokuBuildpack
from ybuild.buildpacks.homebrew import HomebrewBuildpack
from ybuild.buildpacks.nodejs import NodeBuildpack
from ybuild.buildpacks.openjdk import JavaBuildpack
from ybuild.buildpacks.python import PythonBuildpack
from ybuild.buildpacks.rlang import RLangBuildpack

BUILDPACKS: dict[str, Callable[[BuildToolSpec], Buildpack]] = {
    "anaconda2": new_anaconda2,
    "anaconda3": new_anaconda3,
    "heroku": HerokuBuildpack,
    "homebrew": HomebrewBuildpack,
    "java": JavaBuildpack,
    "node": NodeBuildpack,
    "nodejs": NodeBuildpack,
    "openjdk": JavaBuildpack,
    "python": PythonBuildpack,
    "r": RLangBuildpack,
}


def new_buildpack(
    spec: str,
    shared_cache_dir: Path,
    package_cache_dir: Path,
    package_dir: str,
) -> Buildpack:
    """Construct the buildpack for a 'tool:version' spec.

    Args:
        spec: Buildpack spec from the manifest.
        shared_cache_dir: Cache root shared across packages.
        package_cache_dir: Cache root of the package.
        package_dir: Package directory as seen inside the biome.

    Returns:
        Buildpack instance.

    Raises:
        UnknownBuildpackError: If no buildpack handles the tool.
        BuildpackError: If the spec is malformed.
    """
    try:
        tool, version = split_buildpack_spec(spec)
    except ValueError as e:
        raise BuildpackError(spec, str(e), code="invalid_spec") from e

    factory = BUILDPACKS.get(tool)
    if factory is None:
        raise UnknownBuildpackError(tool, sorted(BUILDPACKS))
    return factory(
        BuildToolSpec(
            tool=tool,
            version=version,
            shared_cache_dir=shared_cache_dir,
            package_cache_dir=package_cache_dir,
            package_dir=package_dir,
        )
    )


__all__ = [
    "BUILDPACKS",
    "BuildToolSpec",
    "Buildpack",
    "BuildpackError",
    "UnknownBuildpackError",
    "install_archive",
    "is_installed",
    "new_buildpack",
    "run_installer",
    "split_buildpack_spec",
]
