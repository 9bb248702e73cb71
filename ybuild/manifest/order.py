"""Target graph resolution.

Computes the order targets must be built in: dependencies first, the
requested target last, each target exactly once. Resolution is a pure
function of the manifest.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ybuild.manifest.schema import BuildTarget, Manifest


class UnknownTargetError(Exception):
    """Raised when a target name is not defined in the manifest."""

    def __init__(
        self,
        name: str,
        referenced_by: str | None = None,
        valid_targets: list[str] | None = None,
        code: str = "unknown_target",
    ) -> None:
        message = f"unknown target '{name}'"
        if referenced_by is not None:
            message += f" (dependency of '{referenced_by}')"
        super().__init__(message)
        self.name = name
        self.referenced_by = referenced_by
        self.valid_targets = valid_targets or []
        self.code = code


class CyclicDependencyError(Exception):
    """Raised when target dependencies form a cycle."""

    def __init__(self, cycle: list[str], code: str = "cyclic_dependency") -> None:
        super().__init__(f"cyclic dependency: {' -> '.join(cycle)}")
        self.cycle = cycle
        self.code = code


def build_order(manifest: Manifest, target_name: str) -> list[BuildTarget]:
    """Compute the build order for a target.

    Depth-first, post-order traversal from the requested target. A target
    shared by several ancestors is emitted once, at its first completion.

    Args:
        manifest: Loaded manifest.
        target_name: Target to build.

    Returns:
        Targets in the order they must be built; the requested target last.

    Raises:
        UnknownTargetError: If the target or one of its dependencies is undefined.
        CyclicDependencyError: If a target depends on itself, directly or not.
    """
    targets = {t.name: t for t in manifest.targets}
    valid = manifest.target_names()
    order: list[BuildTarget] = []
    done: set[str] = set()
    path: list[str] = []

    def visit(name: str, referenced_by: str | None) -> None:
        if name in done:
            return
        if name in path:
            raise CyclicDependencyError(path[path.index(name) :] + [name])
        target = targets.get(name)
        if target is None:
            raise UnknownTargetError(name, referenced_by=referenced_by, valid_targets=valid)

        path.append(name)
        for dep in target.depends_on:
            visit(dep, name)
        path.pop()

        done.add(name)
        order.append(target)

    visit(target_name, None)
    return order


__all__ = ["CyclicDependencyError", "UnknownTargetError", "build_order"]
