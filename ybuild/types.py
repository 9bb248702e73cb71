"""Shared type definitions for ybuild.

This module contains enums and small dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class Phase(str, Enum):
    """Stage of a target's execution an error occurred in."""

    PROVISION = "provision"
    SETUP = "setup"
    EXECUTE = "execute"
    CLEANUP = "cleanup"


class SpanStatus(str, Enum):
    """Outcome recorded on a trace span."""

    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class Descriptor:
    """Platform a biome executes on.

    Attributes:
        os: Operating system name ("linux", "darwin", "windows").
        arch: Normalized CPU architecture ("amd64", "arm64", ...).
    """

    os: str
    arch: str

    @property
    def path_separator(self) -> str:
        """Separator for PATH-style list variables."""
        return ";" if self.os == "windows" else ":"


class TargetStatus(str, Enum):
    """Outcome of one target in a build."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TargetOutcome:
    """What happened to one target.

    Attributes:
        name: Target name.
        status: Outcome.
        phase: Phase the target stopped in, for failures.
        error: Error message, for failures.
        elapsed: Seconds spent on the target.
    """

    name: str
    status: TargetStatus
    phase: Phase | None = None
    error: str | None = None
    elapsed: float = 0.0


@dataclass
class BuildReport:
    """Summary of a build invocation.

    Attributes:
        target: Requested target.
        order: Resolved build order.
        outcomes: Per-target outcomes, in build order.
    """

    target: str
    order: list[str] = field(default_factory=list)
    outcomes: list[TargetOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.outcomes) and all(
            o.status == TargetStatus.SUCCEEDED for o in self.outcomes
        )

    def outcome(self, name: str) -> TargetOutcome | None:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None


__all__ = [
    "BuildReport",
    "Descriptor",
    "Phase",
    "SpanStatus",
    "TargetOutcome",
    "TargetStatus",
]
