import logging
from abc import ABC, abstractmethod
from typing import Optional

from hostfy.catalog.models import Service
from hostfy.docker.containers import DockerManager
from hostfy.docker.models import ContainerSpec, HealthcheckSpec
from hostfy.errors import ContainerOperationFailed, DependencyStartFailed, HealthTimeout

logger = logging.getLogger(__name__)

RUNNING = "running"
STARTED = "started"
CREATED = "created"


class ServiceManager(ABC):
    """Lifecycle of one shared infrastructure container (database, cache)."""

    kind: str = ""
    container_name: str = ""
    image: str = ""
    health_timeout: float = 60

    def __init__(
        self,
        runtime: DockerManager,
        service: Optional[Service] = None,
        health_timeout: Optional[float] = None,
    ):
        self.runtime = runtime
        # Catalog entry for this kind; may override image, command and healthcheck
        self.service = service
        if health_timeout is not None:
            self.health_timeout = health_timeout

    @abstractmethod
    def default_spec(self) -> ContainerSpec:
        pass

    def build_spec(self) -> ContainerSpec:
        spec = self.default_spec()
        if self.service is None:
            return spec

        updates = {"image": self.service.image or spec.image}
        if self.service.command:
            updates["command"] = self.service.command
        if self.service.restart:
            updates["restart"] = self.service.restart
        if self.service.healthcheck and self.service.healthcheck.test:
            updates["healthcheck"] = HealthcheckSpec(
                test=list(self.service.healthcheck.test),
                interval=self.service.healthcheck.interval,
                retries=self.service.healthcheck.retries,
            )
        return spec.model_copy(update=updates)

    def is_running(self) -> bool:
        return self.runtime.container_running(self.container_name)

    def ensure_running(self) -> str:
        """Make sure the service is up; safe to call any number of times.

        Returns ``"running"`` when nothing had to be done, ``"started"`` when a
        stopped container was started and ``"created"`` on first use.
        """
        try:
            if self.is_running():
                return RUNNING

            if self.runtime.container_exists(self.container_name):
                logger.info("Starting existing %s container %s", self.kind, self.container_name)
                self.runtime.start_container(self.container_name)
                self.runtime.wait_healthy(self.container_name, self.health_timeout)
                return STARTED

            spec = self.build_spec()
            logger.info("Creating %s container %s from %s", self.kind, spec.name, spec.image)
            self.runtime.pull_image(spec.image)
            self.runtime.create_container(spec)
            self.runtime.start_container(self.container_name)
            self.runtime.wait_healthy(self.container_name, self.health_timeout)
            return CREATED
        except (ContainerOperationFailed, HealthTimeout) as e:
            raise DependencyStartFailed(
                f"Could not start {self.kind}: {e}", hint=f"hostfy logs {self.container_name}"
            ) from e

    def restart(self):
        self.runtime.restart_container(self.container_name)
