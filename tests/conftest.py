"""Shared fixtures for ybuild tests."""

from pathlib import Path

import pytest

from ybuild.biome.base import CommandError, Invocation
from ybuild.biome.env import Environment
from ybuild.config import Settings
from ybuild.types import Descriptor


class RecordingBiome:
    """In-memory biome that records what it is asked to run.

    Commands whose first argument is in `failing` exit with status 1.
    """

    def __init__(
        self,
        workdir: str = "/src",
        failing: set[str] | None = None,
        close_error: Exception | None = None,
        os: str = "linux",
    ) -> None:
        self._workdir = workdir
        self._os = os
        self.failing = failing or set()
        self.close_error = close_error
        self.invocations: list[Invocation] = []
        self.close_calls = 0

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def descriptor(self) -> Descriptor:
        return Descriptor(os=self._os, arch="amd64")

    @property
    def env(self) -> Environment:
        return Environment(vars={"BASE": "1"})

    @property
    def argvs(self) -> list[list[str]]:
        return [inv.argv for inv in self.invocations]

    def run(self, invocation: Invocation) -> None:
        self.invocations.append(invocation)
        if invocation.argv and invocation.argv[0] in self.failing:
            raise CommandError(invocation.argv, 1)

    def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def recording_biome():
    """Factory for RecordingBiome instances."""
    return RecordingBiome


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory."""
    return Settings(
        cache_dir=tmp_path / "cache",
        build_root=tmp_path / "build",
    )
