from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CatalogModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Healthcheck(CatalogModel):
    test: List[str] = Field(default_factory=list)
    interval: str = ""
    retries: int = 0


class Service(CatalogModel):
    image: str
    restart: Optional[str] = None
    command: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: List[str] = Field(default_factory=list)
    ports: List[str] = Field(default_factory=list)
    healthcheck: Optional[Healthcheck] = None


class TraefikRoute(CatalogModel):
    subdomain: str = ""
    port: int = 0


class TraefikConfig(CatalogModel):
    routes: List[TraefikRoute] = Field(default_factory=list)


class UserEnvVar(CatalogModel):
    key: str
    prompt: str = ""
    default: str = ""


class Container(CatalogModel):
    """A member of a multi-container stack."""

    name: str
    image: str
    port: int = 0
    command: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: List[str] = Field(default_factory=list)
    traefik: Optional[TraefikConfig] = None
    is_main: bool = False
    user_env: List[UserEnvVar] = Field(default_factory=list)

    def subdomain_template(self) -> str:
        if self.traefik and self.traefik.routes:
            return self.traefik.routes[0].subdomain
        return ""


class App(CatalogModel):
    name: str = ""
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)

    # Single-container shape
    image: Optional[str] = None
    port: int = 0
    console_port: int = 0
    command: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: List[str] = Field(default_factory=list)
    traefik: Optional[TraefikConfig] = None

    # Stack shape
    containers: List[Container] = Field(default_factory=list)
    shared_env: Dict[str, str] = Field(default_factory=dict)

    user_env: List[UserEnvVar] = Field(default_factory=list)

    def is_stack(self) -> bool:
        return len(self.containers) > 0

    def main_container(self) -> Optional[Container]:
        """Return the container flagged as main, falling back to the first one."""
        for container in self.containers:
            if container.is_main:
                return container
        if self.containers:
            return self.containers[0]
        return None


class Catalog(CatalogModel):
    version: str = ""
    updated_at: str = ""
    services: Dict[str, Service] = Field(default_factory=dict)
    apps: Dict[str, App] = Field(default_factory=dict)
