import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

MANAGED_LABEL = "hostfy.managed"

_DURATION = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)?$")
_NANOS = {"ms": 10**6, "s": 10**9, "m": 60 * 10**9, "h": 3600 * 10**9}


def parse_duration(value: str) -> int:
    """Convert ``"5s"``, ``"1m"`` or ``"500ms"`` to nanoseconds (0 when empty)."""
    if not value:
        return 0
    match = _DURATION.match(value.strip())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(float(amount) * _NANOS[unit or "s"])


class HealthcheckSpec(BaseModel):
    test: List[str]
    interval: str = ""
    retries: int = 0

    def to_docker(self) -> dict:
        payload = {"test": self.test}
        if self.interval:
            payload["interval"] = parse_duration(self.interval)
        if self.retries:
            payload["retries"] = self.retries
        return payload


class ContainerSpec(BaseModel):
    """Everything needed to create one container."""

    name: str
    image: str
    command: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: List[str] = Field(default_factory=list)
    # container port -> host port
    ports: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    restart: str = "always"
    network: Optional[str] = None
    healthcheck: Optional[HealthcheckSpec] = None


class ContainerState(BaseModel):
    id: str
    name: str
    image: str
    status: str
    health: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.status == "running"
