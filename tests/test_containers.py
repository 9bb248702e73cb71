"""Tests for the container resource manager.

The Docker SDK client is replaced by a MagicMock so these tests run
without a Docker daemon.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, ImageNotFound, NotFound

from ybuild.biome.base import CommandCancelledError
from ybuild.containers.manager import (
    IDLE_COMMAND,
    LABEL_PACKAGE,
    ContainerError,
    ContainerManager,
    ImagePullError,
    NetworkError,
)
from ybuild.containers.models import (
    ContainerSpec,
    container_name,
    image_base_name,
    split_image_ref,
)
from ybuild.manifest.schema import ContainerDefinition


def fake_container(name: str, container_id: str = "c0ffee" * 6, status: str = "created"):
    container = MagicMock()
    container.id = container_id
    container.name = name
    container.status = status
    container.attrs = {
        "NetworkSettings": {"Networks": {}},
        "Mounts": [],
        "Config": {"Env": ["PATH=/usr/local/bin:/usr/bin", "LANG=C.UTF-8"]},
    }
    return container


@pytest.fixture
def client():
    """Mocked docker.DockerClient."""
    return MagicMock()


@pytest.fixture
def manager(settings, client):
    """ContainerManager around the mocked client."""
    return ContainerManager(settings, client=client)


@pytest.fixture
def spec(tmp_path: Path):
    """Container spec for package 'demo' on python:3.11."""
    return ContainerSpec(
        package_name="demo",
        definition=ContainerDefinition(
            image="python:3.11", mounts=["data:/var/data"], ports=["8080:80"]
        ),
        package_dir=tmp_path / "src",
        package_build_dir=tmp_path / "build" / "demo",
        shared_dirs=[tmp_path / "cache"],
        network_id="net-1",
    )


class TestNaming:
    """Tests for image references and container names."""

    @pytest.mark.parametrize(
        "ref,expected",
        [
            ("python:3.11", ("python", "3.11")),
            ("golang", ("golang", "latest")),
            ("localhost:5000/team/img", ("localhost:5000/team/img", "latest")),
            ("localhost:5000/team/img:v2", ("localhost:5000/team/img", "v2")),
            ("alpine@sha256:abc", ("alpine", "sha256:abc")),
        ],
    )
    def test_split_image_ref(self, ref, expected):
        """Tags are split off without confusing registry ports."""
        assert split_image_ref(ref) == expected

    def test_image_base_name(self):
        """The base name drops the tag."""
        assert image_base_name("python:3.11") == "python"

    def test_container_name_deterministic(self):
        """The same package and image always give the same name."""
        assert container_name("demo", "python:3.11") == "demo-python"
        assert container_name("demo", "python:3.12") == container_name("demo", "python:3.11")

    def test_container_name_sanitized(self):
        """Characters Docker rejects are replaced."""
        assert container_name("demo", "ghcr.io/org/tool:1") == "demo-ghcr.io_org_tool"


class TestFindContainer:
    """Tests for container discovery."""

    def test_not_found(self, manager, client, spec):
        """No matching container gives None, every time."""
        client.containers.list.return_value = []

        assert manager.find_container(spec) is None
        assert manager.find_container(spec) is None
        client.containers.list.assert_called_with(
            all=True, filters={"name": "^/demo\\-python$"}
        )

    def test_found_twice(self, manager, client, spec):
        """Repeated lookups return the same container."""
        client.containers.list.return_value = [fake_container("demo-python", "abc123")]

        first = manager.find_container(spec)
        second = manager.find_container(spec)

        assert first is not None
        assert first.id == second.id == "abc123"

    def test_exact_name_only(self, manager, client, spec):
        """Containers whose names merely contain the name are ignored."""
        client.containers.list.return_value = [fake_container("demo-python-old", "zzz")]

        assert manager.find_container(spec) is None

    def test_multiple_matches_reuse_first(self, manager, client, spec):
        """With several exact matches the first is reused."""
        client.containers.list.return_value = [
            fake_container("demo-python", "first"),
            fake_container("demo-python", "second"),
        ]

        assert manager.find_container(spec).id == "first"

    def test_daemon_error(self, manager, client, spec):
        """A daemon failure is a ContainerError."""
        client.containers.list.side_effect = APIError("boom")

        with pytest.raises(ContainerError):
            manager.find_container(spec)


class TestEnsureImage:
    """Tests for image availability."""

    def test_present(self, manager, client):
        """A local image is not pulled."""
        manager.ensure_image("python:3.11")

        client.api.pull.assert_not_called()

    def test_pull_missing(self, manager, client):
        """A missing image is pulled by repository and tag."""
        client.images.get.side_effect = [ImageNotFound("missing"), MagicMock()]
        client.api.pull.return_value = iter(
            [{"status": "Pulling fs layer", "id": "1"}, {"status": "Download complete"}]
        )

        manager.ensure_image("python:3.11")

        client.api.pull.assert_called_once_with("python", tag="3.11", stream=True, decode=True)

    def test_pull_error_event(self, manager, client):
        """An error event in the pull stream is a pull error."""
        client.images.get.side_effect = ImageNotFound("missing")
        client.api.pull.return_value = iter([{"error": "manifest unknown"}])

        with pytest.raises(ImagePullError, match="manifest unknown"):
            manager.ensure_image("python:nope")

    def test_pull_api_error(self, manager, client):
        """A registry failure is a pull error."""
        client.images.get.side_effect = ImageNotFound("missing")
        client.api.pull.side_effect = APIError("registry down")

        with pytest.raises(ImagePullError) as exc_info:
            manager.ensure_image("python:3.11")
        assert exc_info.value.code == "pull_error"

    def test_pull_cancelled(self, manager, client):
        """A set cancel event aborts the pull."""
        import threading

        cancel = threading.Event()
        cancel.set()
        client.images.get.side_effect = ImageNotFound("missing")
        client.api.pull.return_value = iter([{"status": "Pulling"}])

        with pytest.raises(ImagePullError) as exc_info:
            manager.ensure_image("python:3.11", cancel=cancel)
        assert exc_info.value.code == "pull_cancelled"


class TestNewContainer:
    """Tests for container creation."""

    def test_mounts(self, manager, spec, settings):
        """Relative mounts resolve under the build dir; the package dir is the workdir."""
        mounts = manager.resolve_mounts(spec)
        pairs = [(m.source, m.target) for m in mounts]

        assert (str(spec.package_build_dir / "data"), "/var/data") in pairs
        assert (str(spec.shared_dirs[0]), str(spec.shared_dirs[0])) in pairs
        assert (str(spec.package_dir), settings.container_workdir) in pairs
        assert (spec.package_build_dir / "data").is_dir()

    def test_create(self, manager, client, spec, settings):
        """Containers run an idle command on the build network."""
        client.containers.create.return_value = fake_container("demo-python", "new123")

        record = manager.new_container(spec)

        assert record.id == "new123"
        assert record.name == "demo-python"
        assert record.network_ids == ["net-1"]
        _, kwargs = client.containers.create.call_args
        assert client.containers.create.call_args.args[0] == "python:3.11"
        assert kwargs["command"] == IDLE_COMMAND
        assert kwargs["name"] == "demo-python"
        assert kwargs["network"] == "net-1"
        assert kwargs["working_dir"] == settings.container_workdir
        assert kwargs["ports"] == {"80/tcp": 8080}
        assert kwargs["labels"] == {LABEL_PACKAGE: "demo"}

    def test_create_conflict(self, manager, client, spec):
        """A creation failure is a ContainerError."""
        client.containers.create.side_effect = APIError("Conflict")

        with pytest.raises(ContainerError) as exc_info:
            manager.new_container(spec)
        assert exc_info.value.code == "create_failed"


class TestLifecycle:
    """Tests for start, stop and remove."""

    def test_start_waits_for_running(self, manager, client):
        """start() returns once the container reports running."""
        container = fake_container("demo-python")

        def reload():
            container.status = "running"

        container.reload.side_effect = reload
        client.containers.get.return_value = container

        manager.start(container.id)

        container.start.assert_called_once()

    def test_start_exited(self, manager, client):
        """A container that exits immediately did not start."""
        container = fake_container("demo-python")
        container.reload.side_effect = lambda: setattr(container, "status", "exited")
        client.containers.get.return_value = container

        with pytest.raises(ContainerError) as exc_info:
            manager.start(container.id)
        assert exc_info.value.code == "start_failed"

    def test_stop_and_remove_missing(self, manager, client):
        """Stopping or removing a missing container is not an error."""
        client.containers.get.side_effect = NotFound("gone")

        manager.stop("abc")
        manager.remove("abc")

    def test_remove_error(self, manager, client):
        """A failed removal is reported."""
        client.containers.get.return_value.remove.side_effect = APIError("busy")

        with pytest.raises(ContainerError) as exc_info:
            manager.remove("abc")
        assert exc_info.value.code == "remove_failed"

    def test_container_env(self, manager, client):
        """The container's configured environment is parsed."""
        client.containers.get.return_value = fake_container("demo-python")

        env = manager.container_env("abc")

        assert env == {"PATH": "/usr/local/bin:/usr/bin", "LANG": "C.UTF-8"}

    def test_connect_network_once(self, manager, client):
        """A container already on the network is not connected again."""
        container = fake_container("demo-python")
        container.attrs["NetworkSettings"]["Networks"] = {"ybuild-x": {"NetworkID": "net-1"}}
        client.containers.get.return_value = container

        manager.connect_network("net-1", container.id)
        client.networks.get.assert_not_called()

        manager.connect_network("net-2", container.id)
        client.networks.get.return_value.connect.assert_called_once_with(container.id)


class TestExec:
    """Tests for exec sessions."""

    def test_streams_and_returns_exit_code(self, manager, client):
        """Output is demultiplexed to the sinks; the exit code is returned."""
        import io

        client.api.exec_create.return_value = {"Id": "exec1"}
        client.api.exec_start.return_value = iter(
            [(b"hello ", None), (b"world\n", b"warn\n"), (None, None)]
        )
        client.api.exec_inspect.return_value = {"ExitCode": 2}
        out, err = io.StringIO(), io.StringIO()

        exit_code = manager.exec(
            "abc", ["make"], env={"A": "1"}, workdir="/build", stdout=out, stderr=err
        )

        assert exit_code == 2
        assert out.getvalue() == "hello world\n"
        assert err.getvalue() == "warn\n"
        client.api.exec_create.assert_called_once_with(
            "abc", ["make"], stdout=True, stderr=True, environment={"A": "1"}, workdir="/build"
        )

    def test_fresh_session_per_call(self, manager, client):
        """Every exec creates its own session."""
        import io

        client.api.exec_create.return_value = {"Id": "exec1"}
        client.api.exec_start.side_effect = lambda *a, **k: iter([])
        client.api.exec_inspect.return_value = {"ExitCode": 0}

        manager.exec("abc", ["true"], stdout=io.StringIO())
        manager.exec("abc", ["true"], stdout=io.StringIO())

        assert client.api.exec_create.call_count == 2

    def test_exec_cancelled(self, manager, client):
        """A set cancel event aborts streaming."""
        import io
        import threading

        cancel = threading.Event()
        cancel.set()
        client.api.exec_create.return_value = {"Id": "exec1"}
        client.api.exec_start.return_value = iter([(b"x", None)])

        with pytest.raises(CommandCancelledError):
            manager.exec("abc", ["sleep", "60"], stdout=io.StringIO(), cancel=cancel)

        client.api.exec_create.assert_not_called()

    def test_silent_exec_cancelled(self, manager, client):
        """Cancelling a command that writes nothing stops its container."""
        import io
        import threading
        import time

        class SilentStream:
            """Exec output stream that blocks until closed, like an idle socket."""

            def __init__(self):
                self.closed = threading.Event()

            def __iter__(self):
                return self

            def __next__(self):
                self.closed.wait(timeout=30)
                raise StopIteration

            def close(self):
                self.closed.set()

        stream = SilentStream()
        cancel = threading.Event()
        client.api.exec_create.return_value = {"Id": "exec1"}
        client.api.exec_start.return_value = stream
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(CommandCancelledError):
                manager.exec("abc", ["sleep", "600"], stdout=io.StringIO(), cancel=cancel)
        finally:
            timer.cancel()

        assert time.monotonic() - started < 5
        assert stream.closed.is_set()
        client.containers.get.assert_called_with("abc")
        client.containers.get.return_value.stop.assert_called_once()
        client.api.exec_inspect.assert_not_called()

    def test_stream_error(self, manager, client):
        """A Docker error while streaming becomes a ContainerError."""
        import io

        def broken(*args, **kwargs):
            yield (b"partial", None)
            raise APIError("connection reset")

        client.api.exec_create.return_value = {"Id": "exec1"}
        client.api.exec_start.side_effect = broken

        with pytest.raises(ContainerError) as exc_info:
            manager.exec("abc", ["make"], stdout=io.StringIO())

        assert exc_info.value.code == "exec_failed"


class TestNetworks:
    """Tests for the build network."""

    def test_create_network(self, manager, client):
        """Each build gets a uniquely named bridge network."""
        client.networks.create.return_value.id = "net-123"

        network_id = manager.create_network()

        assert network_id == "net-123"
        name = client.networks.create.call_args.args[0]
        assert name.startswith("ybuild-")
        assert client.networks.create.call_args.kwargs["driver"] == "bridge"

    def test_create_network_error(self, manager, client):
        """Creation failures are NetworkErrors."""
        client.networks.create.side_effect = APIError("no")

        with pytest.raises(NetworkError):
            manager.create_network()

    def test_remove_network(self, manager, client):
        """Removing a missing network is not an error."""
        manager.remove_network("net-1")
        client.networks.get.return_value.remove.assert_called_once()

        client.networks.get.side_effect = NotFound("gone")
        manager.remove_network("net-1")


class TestClient:
    """Tests for connecting to the daemon."""

    def test_unavailable(self, settings, monkeypatch):
        """An unreachable daemon is reported as docker_unavailable."""
        import docker
        from docker.errors import DockerException

        def from_env(**kwargs):
            raise DockerException("no daemon")

        monkeypatch.setattr(docker, "from_env", from_env)
        manager = ContainerManager(settings)

        with pytest.raises(ContainerError) as exc_info:
            manager.architecture()
        assert exc_info.value.code == "docker_unavailable"

    def test_architecture(self, manager, client):
        """The daemon architecture is normalized."""
        client.info.return_value = {"Architecture": "x86_64"}
        assert manager.architecture() == "amd64"
