"""Detect and remove runtime resources no installed app accounts for.

A container is an orphan when it carries the managed label but is neither a
shared service nor a member of any app record. A database is an orphan when
the shared engine has it but no app record names it.
"""
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, Iterable, List, Optional, Set

from hostfy.deploy.cleanup import CleanupAction, CleanupReport, run_cleanup
from hostfy.deploy.context import DeployContext
from hostfy.docker.models import MANAGED_LABEL
from hostfy.errors import DatabaseOperationFailed
from hostfy.proxy import traefik
from hostfy.services import postgres, redis
from hostfy.state.models import AppConfig

logger = logging.getLogger(__name__)

SHARED_CONTAINERS = frozenset({postgres.CONTAINER_NAME, redis.CONTAINER_NAME, traefik.CONTAINER_NAME})


@dataclass
class OrphanReport:
    containers: List[str] = field(default_factory=list)
    databases: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.containers and not self.databases


def expected_container_names(apps: Iterable[AppConfig]) -> Set[str]:
    names = set()
    for app in apps:
        names.update(app.container_names())
    return names


def expected_databases(apps: Iterable[AppConfig]) -> Set[str]:
    return {app.database for app in apps if app.database}


def find_orphans(ctx: DeployContext) -> OrphanReport:
    apps = ctx.store.list_apps()
    report = OrphanReport()

    managed = ctx.runtime.list_by_label(MANAGED_LABEL, "true")
    expected = expected_container_names(apps) | SHARED_CONTAINERS
    report.containers = sorted(set(managed) - expected)

    pg = ctx.postgres()
    if not pg.is_running():
        logger.debug("Postgres is not running, skipping database check")
        return report
    try:
        databases = pg.list_databases()
    except DatabaseOperationFailed as e:
        report.warnings.append(str(e))
        return report
    report.databases = sorted(set(databases) - expected_databases(apps))
    return report


def _remove_container(ctx: DeployContext, name: str):
    if ctx.runtime.container_running(name):
        ctx.runtime.stop_container(name)
    ctx.runtime.remove_container(name)


def remove_orphans(ctx: DeployContext, report: OrphanReport) -> CleanupReport:
    actions = [
        CleanupAction(f"remove container {name}", partial(_remove_container, ctx, name))
        for name in report.containers
    ]
    if report.databases:
        pg = ctx.postgres()
        actions += [
            CleanupAction(f"drop database {name}", partial(pg.drop_database, name))
            for name in report.databases
        ]
    return run_cleanup(actions)


def list_databases_with_usage(ctx: DeployContext) -> Dict[str, Optional[str]]:
    """Every app database on the shared engine mapped to the app using it (or None)."""
    owners = {app.database: app.name for app in ctx.store.list_apps() if app.database}
    return {name: owners.get(name) for name in ctx.postgres().list_databases()}


def remove_database(ctx: DeployContext, name: str):
    for app in ctx.store.list_apps():
        if app.database == name:
            raise DatabaseOperationFailed(
                f"Database '{name}' is in use by '{app.name}'",
                hint=f"hostfy remove {app.name} --purge",
            )
    ctx.postgres().drop_database(name)
