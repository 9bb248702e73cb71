"""Tests for target dependency ordering."""

import pytest

from ybuild.manifest.order import CyclicDependencyError, UnknownTargetError, build_order
from ybuild.manifest.schema import Manifest


def make_manifest(deps: dict[str, list[str]]) -> Manifest:
    """Build a manifest from a name -> dependencies mapping."""
    return Manifest(targets=[{"name": name, "depends_on": d} for name, d in deps.items()])


def names(targets) -> list[str]:
    return [t.name for t in targets]


class TestBuildOrder:
    """Test build_order function."""

    def test_single_target(self):
        """A target without dependencies builds alone."""
        manifest = make_manifest({"default": []})
        assert names(build_order(manifest, "default")) == ["default"]

    def test_chain(self):
        """Dependencies come before dependents, requested target last."""
        manifest = make_manifest({"c": ["b"], "b": ["a"], "a": []})
        assert names(build_order(manifest, "c")) == ["a", "b", "c"]

    def test_declared_dependency_order(self):
        """Siblings are visited in the order they are declared."""
        manifest = make_manifest({"default": ["y", "x"], "x": [], "y": []})
        assert names(build_order(manifest, "default")) == ["y", "x", "default"]

    def test_diamond_deduplicates(self):
        """A shared dependency is built exactly once."""
        manifest = make_manifest(
            {"default": ["left", "right"], "left": ["base"], "right": ["base"], "base": []}
        )
        order = names(build_order(manifest, "default"))

        assert order == ["base", "left", "right", "default"]
        assert order.count("base") == 1

    def test_dependencies_precede_dependents(self):
        """Every target appears after all of its dependencies."""
        deps = {
            "default": ["test", "lint"],
            "test": ["build", "fixtures"],
            "lint": ["deps"],
            "build": ["deps"],
            "fixtures": [],
            "deps": [],
        }
        order = names(build_order(make_manifest(deps), "default"))

        assert sorted(order) == sorted(deps)
        for name, target_deps in deps.items():
            for dep in target_deps:
                assert order.index(dep) < order.index(name)
        assert order[-1] == "default"

    def test_unrelated_targets_excluded(self):
        """Targets that are not dependencies are not built."""
        manifest = make_manifest({"default": ["a"], "a": [], "other": []})
        assert names(build_order(manifest, "default")) == ["a", "default"]

    def test_unknown_target(self):
        """Should reject an undefined requested target."""
        manifest = make_manifest({"a": []})
        with pytest.raises(UnknownTargetError) as exc_info:
            build_order(manifest, "missing")
        assert exc_info.value.name == "missing"
        assert exc_info.value.valid_targets == ["a"]
        assert exc_info.value.code == "unknown_target"

    def test_unknown_dependency(self):
        """Should name the target referencing an undefined dependency."""
        manifest = make_manifest({"default": ["ghost"]})
        with pytest.raises(UnknownTargetError) as exc_info:
            build_order(manifest, "default")
        assert exc_info.value.referenced_by == "default"

    def test_self_cycle(self):
        """A target depending on itself is a cycle."""
        manifest = make_manifest({"a": ["a"]})
        with pytest.raises(CyclicDependencyError) as exc_info:
            build_order(manifest, "a")
        assert exc_info.value.cycle == ["a", "a"]

    def test_cycle_is_named(self):
        """The error should name the targets in the cycle."""
        manifest = make_manifest({"default": ["a"], "a": ["b"], "b": ["c"], "c": ["a"]})
        with pytest.raises(CyclicDependencyError) as exc_info:
            build_order(manifest, "default")

        assert exc_info.value.cycle == ["a", "b", "c", "a"]
        assert "a -> b -> c -> a" in str(exc_info.value)
