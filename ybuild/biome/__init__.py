"""Execution environments ("biomes").

This module handles:
- The biome contract shared by host and container execution
- Environment overlays and the decorator that applies them
- The argv-prefixing decorator

The container biome lives in ybuild.biome.container and is imported from
there directly.
"""

from ybuild.biome.base import (
    Biome,
    CommandCancelledError,
    CommandError,
    CommandTimeoutError,
    Invocation,
)
from ybuild.biome.env import EnvBiome, Environment
from ybuild.biome.host import HostBiome
from ybuild.biome.prefix import ExecPrefix

__all__ = [
    "Biome",
    "CommandCancelledError",
    "CommandError",
    "CommandTimeoutError",
    "EnvBiome",
    "Environment",
    "ExecPrefix",
    "HostBiome",
    "Invocation",
]
