"""
test_sandbox — docker-backed container runtime.

The docker client is a mock; these tests pin the container contract:
image, argv, two rw bind mounts, memory ceiling, auto-remove, and the
split between start failures and nonzero exits.
"""
from unittest import mock

import pytest
from docker.errors import APIError, ImageNotFound, NotFound

from contract_verifier.core.sandbox import DockerRuntime, SandboxSpec
from contract_verifier.errors import SandboxStartError
from contract_verifier.policy.toolchain import TINYGO


def make_spec(name="go-compiler"):
    return SandboxSpec(
        image=TINYGO.image("0.38.0"),
        command=tuple(TINYGO.command(10)),
        mounts={"/data/src": "/home/tinygo", "/data/out": "/out"},
        memory_limit=2147483648,
        name=name,
    )


@pytest.fixture
def client():
    c = mock.MagicMock()
    c.containers.get.side_effect = NotFound("no container")
    container = c.containers.create.return_value
    container.id = "abc123"
    container.wait.return_value = {"StatusCode": 0}
    return c


class TestDockerRuntime:

    def test_container_contract(self, client):
        assert DockerRuntime(client).run(make_spec()) == 0

        image = client.containers.create.call_args.args[0]
        kwargs = client.containers.create.call_args.kwargs
        assert image == "tinygo/tinygo:0.38.0"
        assert kwargs["command"][:2] == ["timeout", "10"]
        assert "-target=wasm-unknown" in kwargs["command"]
        assert kwargs["volumes"] == {
            "/data/src": {"bind": "/home/tinygo", "mode": "rw"},
            "/data/out": {"bind": "/out", "mode": "rw"},
        }
        assert kwargs["mem_limit"] == 2147483648
        assert kwargs["auto_remove"] is True
        assert kwargs["name"] == "go-compiler"
        container = client.containers.create.return_value
        container.start.assert_called_once()
        container.wait.assert_called_once_with(condition="not-running")

    def test_nonzero_exit_is_returned(self, client):
        client.containers.create.return_value.wait.return_value = {"StatusCode": 124}
        assert DockerRuntime(client).run(make_spec()) == 124

    def test_missing_image_is_pulled(self, client):
        container = client.containers.create.return_value
        client.containers.create.side_effect = [ImageNotFound("missing"), container]
        assert DockerRuntime(client).run(make_spec()) == 0
        client.images.pull.assert_called_once_with("tinygo/tinygo:0.38.0")

    def test_stale_container_removed(self, client):
        stale = mock.MagicMock()
        client.containers.get.side_effect = None
        client.containers.get.return_value = stale
        DockerRuntime(client).run(make_spec())
        stale.remove.assert_called_once_with(force=True)

    def test_create_failure(self, client):
        client.containers.create.side_effect = APIError("conflict")
        with pytest.raises(SandboxStartError):
            DockerRuntime(client).run(make_spec())

    def test_start_failure(self, client):
        client.containers.create.return_value.start.side_effect = APIError("oci runtime error")
        with pytest.raises(SandboxStartError):
            DockerRuntime(client).run(make_spec())

    def test_unnamed_spec_skips_stale_check(self, client):
        DockerRuntime(client).run(make_spec(name=None))
        client.containers.get.assert_not_called()
