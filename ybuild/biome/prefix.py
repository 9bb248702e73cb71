"""Argument-prefixing biome decorator."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ybuild.biome.base import Biome, Invocation
    from ybuild.biome.env import Environment
    from ybuild.types import Descriptor


class ExecPrefix:
    """Biome that prepends fixed arguments to every command.

    Useful for wrapping build commands in a timer or tracer (for example
    ``["time", "-v"]``) without changing the underlying biome. Everything
    except ``run`` is forwarded unchanged.
    """

    def __init__(self, biome: Biome, prepend_argv: list[str] | None = None) -> None:
        self.biome = biome
        self.prepend_argv = list(prepend_argv or [])

    @property
    def workdir(self) -> str:
        return self.biome.workdir

    @property
    def descriptor(self) -> Descriptor:
        return self.biome.descriptor

    @property
    def env(self) -> Environment:
        return self.biome.env

    def run(self, invocation: Invocation) -> None:
        if self.prepend_argv:
            invocation = dataclasses.replace(
                invocation, argv=[*self.prepend_argv, *invocation.argv]
            )
        self.biome.run(invocation)

    def close(self) -> None:
        self.biome.close()


__all__ = ["ExecPrefix"]
