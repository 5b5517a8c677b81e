import logging
import re
from typing import List, Optional

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import sql

from hostfy.catalog.models import Service
from hostfy.catalog.templates import POSTGRES_USER
from hostfy.config import config
from hostfy.docker.containers import DockerManager
from hostfy.docker.models import MANAGED_LABEL, ContainerSpec, HealthcheckSpec
from hostfy.errors import DatabaseOperationFailed
from hostfy.services.base import ServiceManager
from hostfy.state.models import SystemSecrets

logger = logging.getLogger(__name__)

CONTAINER_NAME = "hostfy_postgres"
IMAGE = "postgres:15-alpine"
PORT = "5432"
ADMIN_DATABASE = "hostfy"
SYSTEM_DATABASES = ("postgres", ADMIN_DATABASE)

_VALID_NAME = re.compile(r"^[a-z0-9_]+$")


def validate_database_name(name: str) -> str:
    if not name or not _VALID_NAME.match(name):
        raise DatabaseOperationFailed(f"Invalid database name: {name!r}")
    return name


class PostgresManager(ServiceManager):
    kind = "postgres"
    container_name = CONTAINER_NAME
    image = IMAGE
    health_timeout = 60

    def __init__(
        self,
        runtime: DockerManager,
        secrets: SystemSecrets,
        service: Optional[Service] = None,
        health_timeout: Optional[float] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        super().__init__(runtime, service=service, health_timeout=health_timeout)
        self.secrets = secrets
        self.host = host or config.postgres_host
        self.port = port or config.postgres_port

    def default_spec(self) -> ContainerSpec:
        return ContainerSpec(
            name=CONTAINER_NAME,
            image=IMAGE,
            env={
                "POSTGRES_USER": POSTGRES_USER,
                "POSTGRES_PASSWORD": self.secrets.postgres_password,
                "POSTGRES_DB": ADMIN_DATABASE,
            },
            volumes=["hostfy_postgres_data:/var/lib/postgresql/data"],
            ports={PORT: PORT},
            labels={MANAGED_LABEL: "true", "hostfy.service": "postgres"},
            network=self.runtime.network_name,
            healthcheck=HealthcheckSpec(
                test=["CMD-SHELL", f"pg_isready -U {POSTGRES_USER}"], interval="5s", retries=10
            ),
        )

    def _connect(self):
        try:
            conn = psycopg2.connect(
                host=self.host,
                port=self.port,
                user=POSTGRES_USER,
                password=self.secrets.postgres_password,
                dbname=ADMIN_DATABASE,
                connect_timeout=10,
            )
        except psycopg2.OperationalError as e:
            raise DatabaseOperationFailed(
                f"Could not connect to postgres at {self.host}:{self.port}: {e}",
                hint="hostfy start all",
            ) from e
        # CREATE/DROP DATABASE cannot run inside a transaction block
        conn.autocommit = True
        return conn

    def create_database(self, name: str):
        """Create ``name``; an already existing database counts as success."""
        validate_database_name(name)
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1 FROM pg_database WHERE datname = %s", (name,))
            if cursor.fetchone():
                logger.info("Database '%s' already exists", name)
                return
            cursor.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(name)))
            logger.info("Database '%s' created", name)
        except pg_errors.DuplicateDatabase:
            logger.info("Database '%s' already exists", name)
        except psycopg2.Error as e:
            raise DatabaseOperationFailed(f"Could not create database '{name}': {e}") from e
        finally:
            conn.close()

    def drop_database(self, name: str):
        validate_database_name(name)
        if name in SYSTEM_DATABASES:
            raise DatabaseOperationFailed(f"Refusing to drop system database '{name}'")
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(name)))
            logger.info("Database '%s' dropped", name)
        except psycopg2.Error as e:
            raise DatabaseOperationFailed(f"Could not drop database '{name}': {e}") from e
        finally:
            conn.close()

    def list_databases(self) -> List[str]:
        """Application databases, excluding templates and the engine's own."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT datname FROM pg_database "
                "WHERE datistemplate = false AND datname NOT IN %s ORDER BY datname",
                (SYSTEM_DATABASES,),
            )
            return [row[0] for row in cursor.fetchall()]
        except psycopg2.Error as e:
            raise DatabaseOperationFailed(f"Could not list databases: {e}") from e
        finally:
            conn.close()
