from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from hostfy.config import config


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def database_name(stack_name: str) -> str:
    """Database owned by a stack: ``My-App`` -> ``my_app_db``."""
    return stack_name.replace("-", "_").lower() + "_db"


def member_runtime_name(stack_name: str, member_name: str) -> str:
    return f"{stack_name}-{member_name}"


def volume_name(volume: str) -> Optional[str]:
    """Source of a named volume mount, None for bind mounts."""
    source = volume.split(":", 1)[0]
    if not source or "/" in source or source.startswith("."):
        return None
    return source


class TraefikSettings(BaseModel):
    dashboard: bool = False


class GlobalConfig(BaseModel):
    version: str = "1.0"
    catalog_url: str = Field(default_factory=lambda: config.catalog_url)
    catalog_updated_at: Optional[str] = None
    network: str = Field(default_factory=lambda: config.network_name)
    traefik: TraefikSettings = Field(default_factory=TraefikSettings)


class SystemSecrets(BaseModel):
    postgres_password: str = ""
    redis_password: Optional[str] = None
    system_key: str = ""


class ContainerConfig(BaseModel):
    """Installed state of one stack member."""

    name: str
    container_id: str = ""
    image: str
    domain: str = ""
    port: int = 0
    command: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: List[str] = Field(default_factory=list)
    is_main: bool = False


class AppConfig(BaseModel):
    """Installed state of an application, keyed by its stack name."""

    name: str
    catalog_app: str
    domain: str = ""
    installed_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    image: str = ""
    image_pulled_at: str = Field(default_factory=utc_now)
    container_id: str = ""
    database: str = ""
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: List[str] = Field(default_factory=list)
    command: Optional[str] = None
    port: int = 0

    is_stack: bool = False
    containers: List[ContainerConfig] = Field(default_factory=list)
    shared_env: Dict[str, str] = Field(default_factory=dict)

    def container_names(self) -> List[str]:
        """Runtime names of every container this record owns."""
        if self.is_stack and self.containers:
            return [member_runtime_name(self.name, c.name) for c in self.containers]
        return [self.name]

    def named_volumes(self) -> List[str]:
        """Named volumes this record mounts, in mount order."""
        mounts = list(self.volumes)
        for member in self.containers:
            mounts.extend(member.volumes)
        names = []
        for mount in mounts:
            name = volume_name(mount)
            if name and name not in names:
                names.append(name)
        return names

    def main_member(self) -> Optional[ContainerConfig]:
        for member in self.containers:
            if member.is_main:
                return member
        return self.containers[0] if self.containers else None


class AppSecretsBackup(BaseModel):
    name: str
    catalog_app: str
    secrets: Dict[str, str] = Field(default_factory=dict)
    backed_up_at: str = Field(default_factory=utc_now)
