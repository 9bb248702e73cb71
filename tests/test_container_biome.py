"""Tests for the container biome.

The ContainerManager is mocked; these tests cover how the biome drives it.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ybuild.biome.base import CommandError, Invocation
from ybuild.biome.container import ContainerBiome, new_container_biome
from ybuild.biome.env import Environment
from ybuild.containers.manager import ContainerError, ImagePullError
from ybuild.containers.models import ContainerRecord
from ybuild.manifest.schema import ContainerDefinition
from ybuild.types import Descriptor


@pytest.fixture
def manager(settings):
    """Mocked ContainerManager."""
    manager = MagicMock()
    manager.settings = settings
    manager.architecture.return_value = "arm64"
    manager.container_env.return_value = {"PATH": "/usr/bin", "HOME": "/root"}
    manager.exec.return_value = 0
    return manager


@pytest.fixture
def biome(manager):
    """Container biome around a running container."""
    return ContainerBiome(
        manager,
        ContainerRecord(id="abc", name="demo-python", status="running"),
        workdir="/build",
        descriptor=Descriptor(os="linux", arch="amd64"),
        base_env={"PATH": "/usr/bin", "HOME": "/root"},
    )


def create(manager, tmp_path: Path, network_id: str | None = "net-1"):
    return new_container_biome(
        manager,
        "demo",
        tmp_path / "src",
        tmp_path / "build",
        ContainerDefinition(image="python:3.11"),
        network_id=network_id,
        shared_dirs=[tmp_path / "cache"],
    )


class TestContainerBiome:
    """Tests for ContainerBiome.run and close."""

    def test_run_merges_environment(self, biome, manager):
        """The overlay is merged over the container's environment."""
        env = Environment(vars={"CI": "1"}, prepend_path=["/opt/node/bin"])

        biome.run(Invocation(argv=["npm", "test"], env=env, dir="web"))

        args, kwargs = manager.exec.call_args
        assert args == ("abc", ["npm", "test"])
        assert kwargs["env"] == {"PATH": "/opt/node/bin:/usr/bin", "HOME": "/root", "CI": "1"}
        assert kwargs["workdir"] == "/build/web"

    def test_nonzero_exit(self, biome, manager):
        """A non-zero exit is a CommandError with the exit code."""
        manager.exec.return_value = 2

        with pytest.raises(CommandError) as exc_info:
            biome.run(Invocation(argv=["make"]))

        assert exc_info.value.exit_code == 2
        assert exc_info.value.command == "make"

    def test_close_once(self, biome, manager):
        """close() stops and removes the container once."""
        biome.close()
        biome.close()

        manager.stop.assert_called_once_with("abc")
        manager.remove.assert_called_once_with("abc")

    def test_close_removes_when_stop_fails(self, biome, manager):
        """The container is removed even if stopping fails."""
        manager.stop.side_effect = ContainerError("stuck")

        with pytest.raises(ContainerError):
            biome.close()

        manager.remove.assert_called_once_with("abc")

    def test_run_after_close(self, biome):
        """A closed biome refuses commands."""
        biome.close()
        with pytest.raises(RuntimeError):
            biome.run(Invocation(argv=["make"]))


class TestNewContainerBiome:
    """Tests for container materialization."""

    def test_creates_when_absent(self, manager, tmp_path: Path):
        """A missing container is pulled, created, started and attached."""
        manager.find_container.return_value = None
        manager.new_container.return_value = ContainerRecord(id="new", name="demo-python")

        biome = create(manager, tmp_path)

        manager.ensure_image.assert_called_once_with("python:3.11", cancel=None)
        manager.start.assert_called_once_with("new")
        manager.connect_network.assert_called_once_with("net-1", "new")
        assert biome.container.id == "new"
        assert biome.workdir == "/build"
        assert biome.descriptor == Descriptor(os="linux", arch="arm64")

    def test_reuses_existing(self, manager, tmp_path: Path):
        """An existing running container is reused as is."""
        manager.find_container.return_value = ContainerRecord(
            id="old", name="demo-python", status="running"
        )

        biome = create(manager, tmp_path)

        manager.ensure_image.assert_not_called()
        manager.new_container.assert_not_called()
        manager.start.assert_not_called()
        assert biome.container.id == "old"

    def test_pull_failure(self, manager, tmp_path: Path):
        """A pull failure propagates before anything is created."""
        manager.find_container.return_value = None
        manager.ensure_image.side_effect = ImagePullError("no such image")

        with pytest.raises(ImagePullError):
            create(manager, tmp_path)

        manager.new_container.assert_not_called()

    def test_start_failure_removes_container(self, manager, tmp_path: Path):
        """A container that cannot start is removed again."""
        manager.find_container.return_value = None
        manager.new_container.return_value = ContainerRecord(id="new", name="demo-python")
        manager.start.side_effect = ContainerError("exited")

        with pytest.raises(ContainerError, match="exited"):
            create(manager, tmp_path)

        manager.remove.assert_called_once_with("new")

    def test_cleanup_failure_keeps_original_error(self, manager, tmp_path: Path):
        """A failed removal does not replace the start error."""
        manager.find_container.return_value = None
        manager.new_container.return_value = ContainerRecord(id="new", name="demo-python")
        manager.start.side_effect = ContainerError("exited")
        manager.remove.side_effect = ContainerError("remove failed")

        with pytest.raises(ContainerError, match="exited"):
            create(manager, tmp_path)

    def test_no_network(self, manager, tmp_path: Path):
        """Without a network nothing is connected."""
        manager.find_container.return_value = ContainerRecord(
            id="old", name="demo-python", status="running"
        )

        create(manager, tmp_path, network_id=None)

        manager.connect_network.assert_not_called()
