"""Collaborators shared by the build phases and buildpacks."""

from __future__ import annotations

import threading
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING

from ybuild.biome.base import Invocation
from ybuild.biome.env import Environment

if TYPE_CHECKING:
    from ybuild.biome.base import Biome
    from ybuild.build.trace import Span, TraceSink
    from ybuild.config import Settings
    from ybuild.containers.manager import ContainerManager
    from ybuild.download import DownloadCache


@dataclass
class BuildSystem:
    """What a phase or buildpack may use while working on a target.

    Attributes:
        biome: Biome commands run in.
        settings: Effective settings.
        downloads: Download cache for toolchain archives.
        containers: Container manager (None when containers are disabled).
        network_id: Shared Docker network of this build, if any.
        stdout: Sink for command output.
        stderr: Sink for command errors.
        cancel: Set to abort in-flight commands, pulls and execs.
        tracer: Span sink.
    """

    biome: Biome
    settings: Settings
    downloads: DownloadCache
    containers: ContainerManager | None = None
    network_id: str | None = None
    stdout: IO[str] | None = None
    stderr: IO[str] | None = None
    cancel: threading.Event | None = None
    tracer: TraceSink | None = None

    def run(
        self,
        argv: list[str],
        env: Environment | None = None,
        dir: str | None = None,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
    ) -> None:
        """Run a command in the biome with this system's sinks and limits."""
        self.biome.run(
            Invocation(
                argv=argv,
                env=env or Environment(),
                dir=dir,
                stdout=stdout or self.stdout,
                stderr=stderr or self.stderr,
                timeout=self.settings.command_timeout,
                cancel=self.cancel,
            )
        )

    def span(self, name: str) -> AbstractContextManager[Span | None]:
        """Span context for a unit of work; a no-op without a tracer."""
        if self.tracer is None:
            return nullcontext()
        return self.tracer.span(name)


__all__ = ["BuildSystem"]
