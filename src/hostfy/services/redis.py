from hostfy.docker.models import MANAGED_LABEL, ContainerSpec, HealthcheckSpec
from hostfy.services.base import ServiceManager

CONTAINER_NAME = "hostfy_redis"
IMAGE = "redis:7-alpine"
PORT = "6379"


class RedisManager(ServiceManager):
    kind = "redis"
    container_name = CONTAINER_NAME
    image = IMAGE
    health_timeout = 30

    def default_spec(self) -> ContainerSpec:
        return ContainerSpec(
            name=CONTAINER_NAME,
            image=IMAGE,
            command="redis-server --appendonly yes",
            volumes=["hostfy_redis_data:/data"],
            ports={PORT: PORT},
            labels={MANAGED_LABEL: "true", "hostfy.service": "redis"},
            network=self.runtime.network_name,
            healthcheck=HealthcheckSpec(test=["CMD", "redis-cli", "ping"], interval="5s", retries=5),
        )
