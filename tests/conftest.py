import copy
from unittest.mock import MagicMock

import pytest

from hostfy.catalog.repository import CatalogRepository
from hostfy.deploy.context import DeployContext
from hostfy.docker.models import ContainerState
from hostfy.errors import ContainerOperationFailed
from hostfy.services.postgres import PostgresManager
from hostfy.state.models import volume_name
from hostfy.state.store import StateStore

CATALOG = {
    "version": "1",
    "services": {
        "postgres": {"image": "postgres:16-alpine"},
        "redis": {"image": "redis:7-alpine"},
    },
    "apps": {
        "n8n": {
            "name": "n8n",
            "description": "Workflow automation",
            "image": "n8nio/n8n:1.0",
            "port": 5678,
            "dependencies": ["postgres"],
            "env": {
                "DB_POSTGRESDB_HOST": "{{SERVICE_postgres_HOST}}",
                "DB_POSTGRESDB_DATABASE": "{{APP_DATABASE}}",
                "DB_POSTGRESDB_USER": "{{SERVICE_postgres_USER}}",
                "DB_POSTGRESDB_PASSWORD": "{{SERVICE_postgres_PASSWORD}}",
                "N8N_ENCRYPTION_KEY": "{{GENERATE_SECRET_32}}",
                "N8N_HOST": "{{APP_DOMAIN}}",
                "WEBHOOK_URL": "https://{{APP_DOMAIN}}/",
            },
            "volumes": ["{{APP_NAME}}_data:/home/node/.n8n"],
        },
        "minio": {
            "name": "MinIO",
            "description": "Object storage",
            "image": "minio/minio:2024",
            "port": 9001,
            "command": "server /data --console-address :9001",
            "volumes": ["{{APP_NAME}}_data:/data"],
            "user_env": [
                {"key": "MINIO_ROOT_USER", "prompt": "Admin user", "default": "admin"},
                {"key": "MINIO_ROOT_PASSWORD", "prompt": "Admin password", "default": "{{SYSTEM_GENERATE}}"},
            ],
        },
        "chatwoot": {
            "name": "Chatwoot",
            "description": "Customer support",
            "dependencies": ["postgres", "redis"],
            "shared_env": {
                "SECRET_KEY_BASE": "{{GENERATE_SECRET_64}}",
                "FRONTEND_URL": "https://{{APP_DOMAIN}}",
                "POSTGRES_DATABASE": "{{APP_DATABASE}}",
                "REDIS_URL": "redis://{{SERVICE_redis_HOST}}:6379",
            },
            "containers": [
                {
                    "name": "web",
                    "image": "chatwoot/chatwoot:v3.0",
                    "port": 3000,
                    "is_main": True,
                    "command": "bundle exec rails s -p 3000 -b 0.0.0.0",
                },
                {
                    "name": "worker",
                    "image": "chatwoot/chatwoot:v3.0",
                    "command": "bundle exec sidekiq",
                    "env": {"SIDEKIQ_CONCURRENCY": "5"},
                },
            ],
        },
        "evolution": {
            "name": "Evolution",
            "description": "Messaging API",
            "shared_env": {
                "API_DOMAIN": "api.{{APP_DOMAIN}}",
                "AUTHENTICATION_API_KEY": "{{GENERATE_SECRET_32}}",
                "SERVER_URL": "https://{{API_DOMAIN}}",
            },
            "containers": [
                {"name": "app", "image": "evolution/manager:1.0", "port": 3000},
                {
                    "name": "api",
                    "image": "evolution/api:2.0",
                    "port": 8080,
                    "traefik": {"routes": [{"subdomain": "{{API_DOMAIN}}", "port": 8080}]},
                },
            ],
        },
    },
}


class FakeRuntime:
    """In-memory stand-in for ``DockerManager``.

    ``failures`` maps ``(operation, name)`` to an exception raised when that
    operation is called for that container.
    """

    def __init__(self, network_name="hostfy_network"):
        self.network_name = network_name
        self.containers = {}
        self.volumes = set()
        self.pulled = []
        self.calls = []
        self.failures = {}
        self.network_created = False

    def _record(self, operation, name=None):
        self.calls.append((operation, name))
        error = self.failures.get((operation, name))
        if error is not None:
            raise error

    def _require(self, name):
        if name not in self.containers:
            raise ContainerOperationFailed(f"Container '{name}' not found")
        return self.containers[name]

    def spec(self, name):
        return self.containers[name]["spec"]

    def created(self, name):
        return [call for call in self.calls if call == ("create_container", name)]

    def ensure_network(self):
        self._record("ensure_network")
        self.network_created = True

    def pull_image(self, image):
        self._record("pull_image", image)
        self.pulled.append(image)

    def container_exists(self, name):
        return name in self.containers

    def container_running(self, name):
        return self.containers.get(name, {}).get("status") == "running"

    def create_container(self, spec):
        self._record("create_container", spec.name)
        if spec.name in self.containers:
            raise ContainerOperationFailed(f"Conflict: '{spec.name}' already exists")
        # the engine creates named volumes on first mount
        self.volumes.update(v for v in map(volume_name, spec.volumes) if v)
        container_id = f"{spec.name}-{len(self.calls)}"
        self.containers[spec.name] = {"spec": spec, "status": "created", "id": container_id}
        return container_id

    def start_container(self, name):
        self._record("start_container", name)
        self._require(name)["status"] = "running"

    def stop_container(self, name):
        self._record("stop_container", name)
        self._require(name)["status"] = "exited"

    def restart_container(self, name):
        self._record("restart_container", name)
        self._require(name)["status"] = "running"

    def remove_container(self, name, force=True):
        self._record("remove_container", name)
        self._require(name)
        del self.containers[name]

    def inspect(self, name):
        container = self._require(name)
        spec = container["spec"]
        return ContainerState(
            id=container["id"],
            name=name,
            image=spec.image,
            status=container["status"],
            labels=spec.labels,
        )

    def list_by_label(self, key, value):
        return [
            name
            for name, container in self.containers.items()
            if container["spec"].labels.get(key) == value
        ]

    def stream_logs(self, name, tail=100, follow=False):
        self._record("stream_logs", name)
        self._require(name)
        yield f"logs of {name}\n"

    def wait_healthy(self, name, timeout, interval=2, settle=3):
        self._record("wait_healthy", name)
        self._require(name)

    def remove_volumes(self, names):
        self._record("remove_volumes", ",".join(names))
        removed = [name for name in names if name in self.volumes]
        self.volumes.difference_update(removed)
        return removed


@pytest.fixture
def catalog_data():
    return copy.deepcopy(CATALOG)


@pytest.fixture
def store(tmp_path):
    store = StateStore(str(tmp_path / "hostfy"))
    store.ensure_directories()
    return store


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def catalog_client(catalog_data):
    client = MagicMock()
    client.fetch_catalog.return_value = catalog_data
    return client


@pytest.fixture
def catalog(store, catalog_client):
    return CatalogRepository(store, client=catalog_client)


@pytest.fixture
def ctx(store, runtime, catalog):
    return DeployContext(store=store, runtime=runtime, catalog=catalog, health_timeout=1)


@pytest.fixture
def databases(monkeypatch):
    """Replace the database admin calls with an in-memory set of names."""
    names = set()
    monkeypatch.setattr(PostgresManager, "create_database", lambda self, name: names.add(name))
    monkeypatch.setattr(PostgresManager, "drop_database", lambda self, name: names.discard(name))
    monkeypatch.setattr(PostgresManager, "list_databases", lambda self: sorted(names))
    return names
