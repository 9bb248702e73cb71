"""Biome contract.

A biome is the environment build commands run in: a working directory, an
environment overlay and a way to execute a command. Host and container
biomes implement the same contract; decorators wrap any biome to change one
aspect of it.
"""

from __future__ import annotations

import shlex
import threading
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING, Protocol

from ybuild.biome.env import Environment

if TYPE_CHECKING:
    from ybuild.types import Descriptor


class CommandError(Exception):
    """Raised when a command exits non-zero or cannot be started."""

    def __init__(
        self,
        argv: list[str],
        exit_code: int | None,
        message: str | None = None,
        code: str = "command_failed",
    ) -> None:
        command = shlex.join(argv)
        if message is None:
            message = f"command '{command}' exited with status {exit_code}"
        super().__init__(message)
        self.argv = argv
        self.command = command
        self.exit_code = exit_code
        self.code = code


class CommandCancelledError(CommandError):
    """Raised when a running command is cancelled."""

    def __init__(self, argv: list[str]) -> None:
        super().__init__(
            argv,
            None,
            message=f"command '{shlex.join(argv)}' cancelled",
            code="command_cancelled",
        )


class CommandTimeoutError(CommandError):
    """Raised when a command runs past its timeout."""

    def __init__(self, argv: list[str], timeout: float) -> None:
        super().__init__(
            argv,
            -1,
            message=f"command '{shlex.join(argv)}' timed out after {timeout:g}s",
            code="command_timeout",
        )
        self.timeout = timeout


@dataclass
class Invocation:
    """A single command execution request.

    Attributes:
        argv: Command and arguments.
        env: Overlay applied on top of the biome's environment.
        dir: Working directory; relative paths resolve against the biome workdir.
        stdout: Sink for standard output (process stdout if None).
        stderr: Sink for standard error (process stderr if None).
        timeout: Seconds before the command is killed (None = no limit).
        cancel: Event that aborts the command when set.
    """

    argv: list[str]
    env: Environment = field(default_factory=Environment)
    dir: str | None = None
    stdout: IO[str] | None = None
    stderr: IO[str] | None = None
    timeout: float | None = None
    cancel: threading.Event | None = None


class Biome(Protocol):
    """Execution environment contract."""

    @property
    def workdir(self) -> str:
        """Package directory as seen by commands in this biome."""
        ...

    @property
    def descriptor(self) -> Descriptor:
        """Platform commands run on."""
        ...

    @property
    def env(self) -> Environment:
        """Environment overlay applied to every command."""
        ...

    def run(self, invocation: Invocation) -> None:
        """Run a command to completion.

        Raises:
            CommandError: If the command cannot start or exits non-zero.
        """
        ...

    def close(self) -> None:
        """Release resources held by the biome. Safe to call more than once."""
        ...


__all__ = [
    "Biome",
    "CommandCancelledError",
    "CommandError",
    "CommandTimeoutError",
    "Invocation",
]
