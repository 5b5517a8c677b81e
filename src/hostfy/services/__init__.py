from typing import Optional

from hostfy.catalog.models import Service
from hostfy.docker.containers import DockerManager
from hostfy.services.base import ServiceManager
from hostfy.services.postgres import PostgresManager
from hostfy.services.redis import RedisManager
from hostfy.state.models import SystemSecrets

SUPPORTED_SERVICES = ("postgres", "redis")


def get_service_manager(
    name: str,
    runtime: DockerManager,
    secrets: SystemSecrets,
    service: Optional[Service] = None,
    health_timeout: Optional[float] = None,
) -> Optional[ServiceManager]:
    """Return the lifecycle manager for a dependency name, None if unsupported."""
    if name == "postgres":
        return PostgresManager(runtime, secrets, service=service, health_timeout=health_timeout)
    elif name == "redis":
        return RedisManager(runtime, service=service, health_timeout=health_timeout)
    return None


__all__ = [
    "SUPPORTED_SERVICES",
    "PostgresManager",
    "RedisManager",
    "ServiceManager",
    "get_service_manager",
]
