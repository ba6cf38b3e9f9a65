"""
Sandbox executor — run one fixed build command inside a throwaway container.

The container sees exactly two bind mounts (source tree, output directory),
runs under a memory ceiling, and is removed by the daemon once it exits.
The wall-clock limit is the ``timeout`` wrapper already in the command.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, Tuple

import docker
from docker.errors import DockerException, ImageNotFound, NotFound

from contract_verifier.errors import SandboxStartError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SandboxSpec:
    """One container run."""
    image: str
    command: Tuple[str, ...]
    mounts: Dict[str, str] = field(default_factory=dict)   # host path → container path
    memory_limit: int = 2 * 1024 * 1024 * 1024
    name: Optional[str] = None


class ContainerRuntime(Protocol):
    def run(self, spec: SandboxSpec) -> int:
        """Run *spec* to completion and return its exit code.

        Raises SandboxStartError when the container never ran.
        """
        ...


class DockerRuntime:
    """ContainerRuntime backed by the local docker daemon."""

    def __init__(self, client: Optional["docker.DockerClient"] = None):
        self._client = client

    @property
    def client(self) -> "docker.DockerClient":
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise SandboxStartError(f"Docker daemon unavailable: {e}") from e
        return self._client

    def _remove_stale(self, name: str) -> None:
        """A crashed run can leave a container holding the fixed name."""
        try:
            stale = self.client.containers.get(name)
        except NotFound:
            return
        logger.warning(f"Removing stale container {name}")
        stale.remove(force=True)

    def _create(self, spec: SandboxSpec):
        kwargs = dict(
            command=list(spec.command),
            name=spec.name,
            volumes={
                host: {"bind": target, "mode": "rw"}
                for host, target in spec.mounts.items()
            },
            mem_limit=spec.memory_limit,
            auto_remove=True,
        )
        try:
            return self.client.containers.create(spec.image, **kwargs)
        except ImageNotFound:
            logger.info(f"Pulling image {spec.image}")
            self.client.images.pull(spec.image)
            return self.client.containers.create(spec.image, **kwargs)

    def run(self, spec: SandboxSpec) -> int:
        try:
            if spec.name:
                self._remove_stale(spec.name)
            container = self._create(spec)
            container.start()
        except DockerException as e:
            raise SandboxStartError(f"Failed to start container for {spec.image}: {e}") from e

        logger.info(f"Container {spec.name or container.id} started ({spec.image})")
        try:
            result = container.wait(condition="not-running")
        except DockerException as e:
            raise SandboxStartError(f"Lost track of container {spec.name or container.id}: {e}") from e
        exit_code = int(result.get("StatusCode", -1))
        logger.info(f"Container exited with code {exit_code}")
        return exit_code
