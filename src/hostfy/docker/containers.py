import logging
import shlex
import time
from typing import Iterator, List, Optional

import docker
from docker import errors
from docker.utils import parse_repository_tag

from hostfy.config import config
from hostfy.docker.models import ContainerSpec, ContainerState
from hostfy.errors import ContainerOperationFailed, HealthTimeout

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 30


class DockerManager:
    """Runtime abstraction over the Docker engine.

    Every call blocks until the engine answers. Failures of the engine are
    reported as ``ContainerOperationFailed``.
    """

    def __init__(self, client=None, network_name: Optional[str] = None):
        self.network_name = network_name or config.network_name
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.from_env()
            except errors.DockerException as e:
                raise ContainerOperationFailed(
                    f"Could not connect to Docker: {e}",
                    hint="Check that the Docker daemon is running",
                ) from e
        return self._client

    def ensure_network(self):
        """Create the shared bridge network if it does not exist yet."""
        try:
            if self.client.networks.list(names=[self.network_name]):
                return
            self.client.networks.create(self.network_name, driver="bridge")
            logger.info("Created network %s", self.network_name)
        except errors.APIError as e:
            raise ContainerOperationFailed(
                f"Could not create network '{self.network_name}': {e}"
            ) from e

    def pull_image(self, image: str):
        repository, tag = parse_repository_tag(image)
        logger.info("Pulling image %s", image)
        try:
            self.client.images.pull(repository, tag=tag or "latest")
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not pull image '{image}': {e}") from e

    def _get(self, name: str):
        try:
            return self.client.containers.get(name)
        except errors.NotFound as e:
            raise ContainerOperationFailed(f"Container '{name}' not found") from e
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not inspect container '{name}': {e}") from e

    def container_exists(self, name: str) -> bool:
        try:
            self.client.containers.get(name)
            return True
        except errors.NotFound:
            return False
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not inspect container '{name}': {e}") from e

    def container_running(self, name: str) -> bool:
        try:
            return self.client.containers.get(name).status == "running"
        except errors.NotFound:
            return False
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not inspect container '{name}': {e}") from e

    def create_container(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container and return its id."""
        network = spec.network or self.network_name
        kwargs = {
            "name": spec.name,
            "environment": dict(spec.env),
            "volumes": list(spec.volumes),
            "labels": dict(spec.labels),
            "restart_policy": {"Name": spec.restart or "unless-stopped"},
            "network": network,
        }
        if spec.ports:
            kwargs["ports"] = {
                f"{container_port}/tcp": int(host_port)
                for container_port, host_port in spec.ports.items()
            }
        if spec.healthcheck:
            kwargs["healthcheck"] = spec.healthcheck.to_docker()

        command = shlex.split(spec.command) if spec.command else None
        try:
            container = self.client.containers.create(spec.image, command, **kwargs)
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not create container '{spec.name}': {e}") from e

        logger.info("Container '%s' created", spec.name)
        return container.id

    def start_container(self, name: str):
        try:
            self._get(name).start()
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not start container '{name}': {e}") from e
        logger.info("Container '%s' started", name)

    def stop_container(self, name: str):
        try:
            self._get(name).stop(timeout=STOP_TIMEOUT)
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not stop container '{name}': {e}") from e

    def restart_container(self, name: str):
        try:
            self._get(name).restart(timeout=STOP_TIMEOUT)
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not restart container '{name}': {e}") from e

    def remove_container(self, name: str, force: bool = True):
        try:
            self._get(name).remove(force=force, v=False)
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not remove container '{name}': {e}") from e

    def inspect(self, name: str) -> ContainerState:
        c = self._get(name)
        state = c.attrs.get("State", {}) or {}
        health = (state.get("Health") or {}).get("Status")
        image = c.attrs.get("Config", {}).get("Image", "N/A")
        return ContainerState(
            id=c.id,
            name=c.name,
            image=image,
            status=c.status,
            health=health,
            labels=c.labels or {},
        )

    def list_by_label(self, key: str, value: str) -> List[str]:
        """Names of all containers (running or not) carrying ``key=value``."""
        try:
            containers = self.client.containers.list(all=True, filters={"label": f"{key}={value}"})
        except errors.APIError as e:
            raise ContainerOperationFailed(f"Could not list containers: {e}") from e
        return [c.name.lstrip("/") for c in containers]

    def stream_logs(self, name: str, tail: int = 100, follow: bool = False) -> Iterator[str]:
        """Yield log output of a container.

        Args:
            name: Container name
            tail: Number of lines to show from the end
            follow: If True, keep streaming new output
        """
        container = self._get(name)
        if not follow:
            yield container.logs(tail=tail).decode("utf-8", errors="replace")
            return
        for chunk in container.logs(stream=True, follow=True, tail=tail):
            yield chunk.decode("utf-8", errors="replace")

    def wait_healthy(self, name: str, timeout: float, interval: float = 2, settle: float = 3):
        """Block until ``name`` reports healthy.

        A running container without a health check counts as healthy after a
        short settle delay. Raises ``HealthTimeout`` once ``timeout`` elapses.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                state = self.inspect(name)
            except ContainerOperationFailed:
                time.sleep(interval)
                continue

            if state.health is not None:
                if state.health == "healthy":
                    return
            elif state.running:
                time.sleep(settle)
                return
            time.sleep(interval)

        raise HealthTimeout(
            f"Timed out after {timeout:.0f}s waiting for '{name}' to become healthy",
            hint=f"hostfy logs {name}",
        )

    def remove_volumes(self, names: List[str]) -> List[str]:
        """Remove the named volumes that exist; returns the ones removed."""
        removed = []
        for name in names:
            try:
                self.client.volumes.get(name).remove(force=True)
            except errors.NotFound:
                continue
            except errors.APIError as e:
                raise ContainerOperationFailed(f"Could not remove volume '{name}': {e}") from e
            removed.append(name)
        return removed
