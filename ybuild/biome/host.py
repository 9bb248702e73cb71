"""Host biome: commands run as local subprocesses."""

from __future__ import annotations

import contextlib
import logging
import os
import platform
import shlex
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import IO

from ybuild.biome.base import (
    CommandCancelledError,
    CommandError,
    CommandTimeoutError,
    Invocation,
)
from ybuild.biome.env import Environment
from ybuild.types import Descriptor

logger = logging.getLogger(__name__)

# How often a waiting command checks for cancellation (seconds)
POLL_INTERVAL = 0.1

# Grace period between SIGTERM and SIGKILL for aborted commands (seconds)
TERMINATE_GRACE = 5.0

# How long to keep reading output after a command exits (seconds). Background
# processes it left behind may hold the pipes open indefinitely.
DRAIN_TIMEOUT = 1.0

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
}


def normalize_arch(machine: str) -> str:
    """Map a machine name (uname style) to a GOARCH-like name."""
    return _ARCH_ALIASES.get(machine.lower(), machine.lower())


def host_descriptor() -> Descriptor:
    """Describe the platform this process runs on."""
    if sys.platform.startswith("linux"):
        os_name = "linux"
    elif sys.platform == "darwin":
        os_name = "darwin"
    elif sys.platform in ("win32", "cygwin"):
        os_name = "windows"
    else:
        os_name = sys.platform
    return Descriptor(os=os_name, arch=normalize_arch(platform.machine()))


def _pump(source: IO[str], sink: IO[str]) -> None:
    try:
        for line in iter(source.readline, ""):
            sink.write(line)
            sink.flush()
    except (OSError, ValueError) as e:
        # The sink was closed after the drain timeout
        logger.debug("Stopped copying command output: %s", e)
    finally:
        source.close()


def _drain(pumps: list[threading.Thread], timeout: float) -> None:
    deadline = time.monotonic() + timeout
    for pump in pumps:
        pump.join(timeout=max(0.0, deadline - time.monotonic()))
    if any(pump.is_alive() for pump in pumps):
        logger.debug("Background processes still hold the output pipes; not waiting for them")


def _signal_group(proc: subprocess.Popen[str], sig: int) -> None:
    # The group outlives its leader while any process started by it is alive
    with contextlib.suppress(ProcessLookupError):
        os.killpg(proc.pid, sig)


def _terminate(proc: subprocess.Popen[str]) -> None:
    """Stop a command and every process it started."""
    _signal_group(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        pass
    _signal_group(proc, signal.SIGKILL)
    proc.wait()


def _wait(proc: subprocess.Popen[str], invocation: Invocation) -> int:
    deadline = None
    if invocation.timeout is not None:
        deadline = time.monotonic() + invocation.timeout
    while True:
        try:
            return proc.wait(timeout=POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            pass
        if invocation.cancel is not None and invocation.cancel.is_set():
            raise CommandCancelledError(invocation.argv)
        if deadline is not None and time.monotonic() >= deadline:
            raise CommandTimeoutError(invocation.argv, invocation.timeout or 0)


class HostBiome:
    """Runs commands directly on the host.

    The environment overlay is merged over the inherited process
    environment for each command; os.environ itself is never modified.
    """

    def __init__(self, package_dir: Path | str) -> None:
        self._workdir = str(package_dir)
        self._descriptor = host_descriptor()
        self._closed = False

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def descriptor(self) -> Descriptor:
        return self._descriptor

    @property
    def env(self) -> Environment:
        return Environment()

    def run(self, invocation: Invocation) -> None:
        """Run a command as a subprocess, streaming its output.

        Raises:
            CommandError: If the command cannot start or exits non-zero.
            CommandCancelledError: If the cancel event is set while running.
            CommandTimeoutError: If the command exceeds its timeout.
        """
        if self._closed:
            raise RuntimeError("biome is closed")
        argv = invocation.argv
        if not argv:
            raise ValueError("empty command")

        cwd = self._workdir
        if invocation.dir:
            cwd = os.path.join(self._workdir, invocation.dir)
        env = invocation.env.merge(os.environ, self._descriptor.path_separator)
        stdout = invocation.stdout or sys.stdout
        stderr = invocation.stderr or sys.stderr

        logger.debug("Running %s in %s", shlex.join(argv), cwd)
        try:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            raise CommandError(
                argv,
                None,
                message=f"cannot start '{shlex.join(argv)}': {e}",
                code="execution_error",
            ) from e

        pumps = [
            threading.Thread(target=_pump, args=(proc.stdout, stdout), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, stderr), daemon=True),
        ]
        for pump in pumps:
            pump.start()
        try:
            exit_code = _wait(proc, invocation)
        except BaseException:
            _terminate(proc)
            raise
        finally:
            _drain(pumps, DRAIN_TIMEOUT)

        if exit_code != 0:
            raise CommandError(argv, exit_code)

    def close(self) -> None:
        self._closed = True


__all__ = ["HostBiome", "host_descriptor", "normalize_arch"]
