import logging
from typing import Optional

from hostfy.catalog.repository import CatalogRepository
from hostfy.config import config
from hostfy.docker.containers import DockerManager
from hostfy.proxy.traefik import TraefikManager
from hostfy.services import PostgresManager, ServiceManager, get_service_manager
from hostfy.state.models import SystemSecrets
from hostfy.state.store import StateStore

logger = logging.getLogger(__name__)


class DeployContext:
    """Everything one CLI invocation works against.

    Built once per command and handed to the orchestrator and reconciler;
    nothing here is process-global.
    """

    def __init__(
        self,
        store: Optional[StateStore] = None,
        runtime: Optional[DockerManager] = None,
        catalog: Optional[CatalogRepository] = None,
        health_timeout: Optional[float] = None,
    ):
        self.store = store or StateStore()
        self._runtime = runtime
        self.catalog = catalog or CatalogRepository(self.store)
        self.health_timeout = health_timeout if health_timeout is not None else config.health_timeout
        self._secrets: Optional[SystemSecrets] = None

    @property
    def runtime(self) -> DockerManager:
        if self._runtime is None:
            self._runtime = DockerManager(network_name=self.store.load_config().network)
        return self._runtime

    @property
    def secrets(self) -> SystemSecrets:
        """System secrets, generated and persisted on first use."""
        if self._secrets is None:
            self._secrets = self.store.ensure_secrets()
        return self._secrets

    def dependency_manager(self, name: str) -> Optional[ServiceManager]:
        manager = get_service_manager(
            name,
            self.runtime,
            self.secrets,
            service=self.catalog.find_service(name),
            health_timeout=self.health_timeout,
        )
        if manager is None:
            logger.warning("Unsupported dependency '%s', skipping", name)
        return manager

    def postgres(self) -> PostgresManager:
        """Database manager for admin queries; does not consult the catalog."""
        return PostgresManager(self.runtime, self.secrets)

    def traefik(self) -> TraefikManager:
        return TraefikManager(self.runtime, dashboard=self.store.load_config().traefik.dashboard)
