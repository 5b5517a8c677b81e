import logging
from typing import Dict

from hostfy.docker.containers import DockerManager
from hostfy.docker.models import MANAGED_LABEL, ContainerSpec

logger = logging.getLogger(__name__)

CONTAINER_NAME = "hostfy_traefik"
IMAGE = "traefik:v3.2"
CERT_RESOLVER = "hostfyresolver"


def generate_labels(name: str, domain: str, port: int) -> Dict[str, str]:
    """
    Generate Traefik Docker labels routing ``domain`` to ``port`` with TLS.

    Args:
        name (str): Container or stack name, used for router/service names.
        domain (str): The fully qualified domain.
        port (int): The port the container listens on.

    Returns:
        dict: A dictionary of Docker labels.
    """
    # Router names cannot contain dashes in every Traefik provider
    safe_name = name.replace("-", "_")

    return {
        "traefik.enable": "true",
        f"traefik.http.routers.{safe_name}.rule": f"Host(`{domain}`)",
        f"traefik.http.routers.{safe_name}.entrypoints": "websecure",
        f"traefik.http.routers.{safe_name}.tls.certresolver": CERT_RESOLVER,
        f"traefik.http.services.{safe_name}.loadbalancer.server.port": str(port),
        MANAGED_LABEL: "true",
        "hostfy.app": name,
        "hostfy.domain": domain,
    }


class TraefikManager:
    def __init__(self, runtime: DockerManager, dashboard: bool = False):
        self.runtime = runtime
        self.dashboard = dashboard

    def is_running(self) -> bool:
        return self.runtime.container_running(CONTAINER_NAME)

    def build_spec(self) -> ContainerSpec:
        network = self.runtime.network_name
        command = [
            f"--api.insecure={'true' if self.dashboard else 'false'}",
            "--providers.docker=true",
            "--providers.docker.exposedbydefault=false",
            f"--providers.docker.network={network}",
            "--entrypoints.web.address=:80",
            "--entrypoints.websecure.address=:443",
            "--entrypoints.web.http.redirections.entryPoint.to=websecure",
            "--entrypoints.web.http.redirections.entryPoint.scheme=https",
            f"--certificatesresolvers.{CERT_RESOLVER}.acme.httpchallenge=true",
            f"--certificatesresolvers.{CERT_RESOLVER}.acme.httpchallenge.entrypoint=web",
            f"--certificatesresolvers.{CERT_RESOLVER}.acme.storage=/letsencrypt/acme.json",
        ]
        ports = {"80": "80", "443": "443"}
        if self.dashboard:
            ports["8080"] = "8080"

        return ContainerSpec(
            name=CONTAINER_NAME,
            image=IMAGE,
            command=" ".join(command),
            volumes=[
                "/var/run/docker.sock:/var/run/docker.sock:ro",
                "hostfy_traefik_certs:/letsencrypt",
            ],
            ports=ports,
            labels={MANAGED_LABEL: "true", "hostfy.service": "traefik"},
            network=network,
        )

    def start(self):
        """Start the proxy, creating it on first use."""
        if self.is_running():
            return
        if self.runtime.container_exists(CONTAINER_NAME):
            self.runtime.start_container(CONTAINER_NAME)
            return

        logger.info("Creating reverse proxy %s", CONTAINER_NAME)
        self.runtime.pull_image(IMAGE)
        self.runtime.create_container(self.build_spec())
        self.runtime.start_container(CONTAINER_NAME)

    def restart(self):
        self.runtime.restart_container(CONTAINER_NAME)
