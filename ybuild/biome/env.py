"""Environment overlays.

Buildpacks describe the environment they need as an overlay (variables plus
directories to put in front of PATH) instead of touching os.environ. The
overlay is merged with the biome's base environment only when a command
runs.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ybuild.biome.base import Biome, Invocation
    from ybuild.types import Descriptor


@dataclass
class Environment:
    """Mutable environment overlay.

    Attributes:
        vars: Variables to set; last write wins.
        prepend_path: Directories placed in front of PATH, first entry first.
    """

    vars: dict[str, str] = field(default_factory=dict)
    prepend_path: list[str] = field(default_factory=list)

    def set(self, name: str, value: str) -> None:
        self.vars[name] = value

    def prepend(self, directory: str) -> None:
        """Put a directory at the front of PATH."""
        if directory in self.prepend_path:
            self.prepend_path.remove(directory)
        self.prepend_path.insert(0, directory)

    def combine(self, other: Environment) -> Environment:
        """Return a new overlay with `other` applied on top of this one."""
        prepend = list(other.prepend_path)
        prepend.extend(p for p in self.prepend_path if p not in prepend)
        return Environment(vars={**self.vars, **other.vars}, prepend_path=prepend)

    def merge(self, base: Mapping[str, str], separator: str = ":") -> dict[str, str]:
        """Apply the overlay to a base environment.

        Args:
            base: Environment the overlay is applied to (not modified).
            separator: PATH list separator.

        Returns:
            New environment mapping.
        """
        merged = dict(base)
        merged.update(self.vars)
        if self.prepend_path:
            current = merged.get("PATH", "")
            parts = list(self.prepend_path)
            if current:
                parts.append(current)
            merged["PATH"] = separator.join(parts)
        return merged

    def copy(self) -> Environment:
        return Environment(vars=dict(self.vars), prepend_path=list(self.prepend_path))


class EnvBiome:
    """Biome decorator that applies an environment overlay to every command."""

    def __init__(self, biome: Biome, environment: Environment) -> None:
        self.biome = biome
        self.environment = environment

    @property
    def workdir(self) -> str:
        return self.biome.workdir

    @property
    def descriptor(self) -> Descriptor:
        return self.biome.descriptor

    @property
    def env(self) -> Environment:
        return self.biome.env.combine(self.environment)

    def run(self, invocation: Invocation) -> None:
        self.biome.run(
            dataclasses.replace(invocation, env=self.environment.combine(invocation.env))
        )

    def close(self) -> None:
        self.biome.close()


__all__ = ["EnvBiome", "Environment"]
