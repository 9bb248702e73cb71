"""Pydantic models for the package manifest.

This module defines the models used to validate manifest data loaded from
YAML/JSON before any build work starts. Loaded models are frozen: a target
is immutable for the rest of the build.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TARGET_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")
BUILDPACK_SPEC_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+:[a-zA-Z0-9_.\-+]+$")


class ContainerDefinition(BaseModel):
    """Container a target's commands run in.

    Attributes:
        image: Image reference (e.g., 'python:3.11' or 'golang').
        mounts: Extra bind mounts as 'hostRelative:containerAbsolute'. The
            host side is resolved against the package build directory.
        ports: Declared ports ('8080:80' publishes, '80' only exposes).
        environment: Variables set on the container itself.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    image: str = Field(min_length=1, description="Image reference")
    mounts: list[str] = Field(default_factory=list)
    ports: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)

    @field_validator("mounts")
    @classmethod
    def validate_mounts(cls, v: list[str]) -> list[str]:
        """Validate each mount is 'host:container' with an absolute container path."""
        for spec in v:
            host, sep, dest = spec.partition(":")
            if not sep or not host or not dest:
                raise ValueError(f"mount must look like 'host:/container/path', got '{spec}'")
            if not dest.startswith("/"):
                raise ValueError(f"mount destination must start with '/', got '{spec}'")
            if host.startswith("/") or ".." in host.split("/"):
                raise ValueError(
                    f"mount source must be relative to the package build dir, got '{spec}'"
                )
        return v

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: list[str]) -> list[str]:
        """Validate port specs are 'port' or 'hostPort:containerPort'."""
        for spec in v:
            if not re.match(r"^(\d+:)?\d+(/(tcp|udp))?$", spec):
                raise ValueError(f"invalid port spec '{spec}'")
        return v

    def mount_pairs(self) -> list[tuple[str, str]]:
        """Return mounts split into (host relative path, container path)."""
        pairs = []
        for spec in self.mounts:
            host, _, dest = spec.partition(":")
            pairs.append((host, dest))
        return pairs


class BuildTarget(BaseModel):
    """A named unit of build work.

    Attributes:
        name: Unique name within the manifest.
        depends_on: Names of targets that must be built first, in order.
        buildpacks: Toolchains to install, as 'tool:version'.
        commands: Build-phase shell commands, run in order.
        environment: Variables set for every command of this target.
        container: Container to run in; runs on the host when absent.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Target name")
    depends_on: list[str] = Field(default_factory=list)
    buildpacks: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    container: ContainerDefinition | None = Field(default=None)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate target name characters."""
        if not TARGET_NAME_PATTERN.match(v):
            raise ValueError(
                f"target name must contain only letters, digits, '_', '.', '-', got '{v}'"
            )
        return v

    @field_validator("buildpacks")
    @classmethod
    def validate_buildpacks(cls, v: list[str]) -> list[str]:
        """Validate buildpack specs are 'tool:version'."""
        for spec in v:
            if not BUILDPACK_SPEC_PATTERN.match(spec):
                raise ValueError(f"buildpack must look like 'tool:version', got '{spec}'")
        return v


class Manifest(BaseModel):
    """Top-level manifest of a package.

    Attributes:
        package: Package name (defaults to the package directory name).
        targets: Build targets.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    package: str | None = Field(default=None)
    targets: list[BuildTarget] = Field(default_factory=list)

    @field_validator("package")
    @classmethod
    def validate_package(cls, v: str | None) -> str | None:
        """Validate package name is usable in container names."""
        if v is not None and not TARGET_NAME_PATTERN.match(v):
            raise ValueError(f"invalid package name '{v}'")
        return v

    @model_validator(mode="after")
    def validate_unique_names(self) -> "Manifest":
        """Reject duplicate target names."""
        seen: set[str] = set()
        for target in self.targets:
            if target.name in seen:
                raise ValueError(f"duplicate target name '{target.name}'")
            seen.add(target.name)
        return self

    def target(self, name: str) -> BuildTarget | None:
        """Look up a target by name."""
        for target in self.targets:
            if target.name == name:
                return target
        return None

    def target_names(self) -> list[str]:
        """Names of all targets, sorted."""
        return sorted(t.name for t in self.targets)


__all__ = ["BuildTarget", "ContainerDefinition", "Manifest"]
