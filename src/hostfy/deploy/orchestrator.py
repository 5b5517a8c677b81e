import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, Iterator, List, Optional

from hostfy.catalog.models import UserEnvVar
from hostfy.catalog.templates import PLACEHOLDER, POSTGRES_USER, TemplateContext, resolve_references
from hostfy.deploy.cleanup import CleanupAction, CleanupReport, Severity, run_cleanup
from hostfy.deploy.context import DeployContext
from hostfy.deploy.plan import (
    MemberPlan,
    installed_members,
    plan_for,
    runtime_env,
    runtime_name,
    store_member,
)
from hostfy.docker.models import MANAGED_LABEL, ContainerSpec
from hostfy.errors import AlreadyInstalled, CatalogEntryNotFound, ContainerOperationFailed
from hostfy.proxy import traefik
from hostfy.services import SUPPORTED_SERVICES, get_service_manager
from hostfy.state.models import AppConfig, ContainerConfig, GlobalConfig, database_name, utc_now
from hostfy.state.secrets import filter_sensitive
from hostfy.version import get_version

logger = logging.getLogger(__name__)

DEFAULT_ROUTE_PORT = 80


@dataclass
class InstallResult:
    app: AppConfig
    # Values chosen for operator-facing variables, keyed by env key
    user_env: Dict[str, str] = field(default_factory=dict)
    # Domains that need a DNS record pointing at this host
    domains: List[str] = field(default_factory=list)
    reused_secrets: bool = False

    @property
    def database(self) -> str:
        return self.app.database


@dataclass
class UpdateResult:
    app: AppConfig
    changes: List[str] = field(default_factory=list)

    @property
    def nothing_to_update(self) -> bool:
        return not self.changes


@dataclass
class UpgradeResult:
    app: AppConfig
    upgraded: List[str] = field(default_factory=list)
    added_env: List[str] = field(default_factory=list)

    @property
    def up_to_date(self) -> bool:
        return not self.upgraded


def member_labels(stack_name: str, container_name: str, domain: str, port: int) -> Dict[str, str]:
    """Labels of an app container; routing labels only when domain and port are known."""
    labels = {}
    if domain and port:
        labels.update(traefik.generate_labels(container_name, domain, port))
    labels[MANAGED_LABEL] = "true"
    labels["hostfy.app"] = stack_name
    return labels


def _rewrite_domain(env: Dict[str, str], old: str, new: str) -> Dict[str, str]:
    return {key: value.replace(old, new) for key, value in env.items()}


class Deployer:
    """Install, update, upgrade and remove catalog apps on this host."""

    def __init__(self, ctx: DeployContext):
        self.ctx = ctx

    @property
    def store(self):
        return self.ctx.store

    @property
    def runtime(self):
        return self.ctx.runtime

    # Install

    def install(
        self,
        app_id: str,
        domain: str,
        name: Optional[str] = None,
        env_overrides: Optional[Dict[str, str]] = None,
    ) -> InstallResult:
        """Provision catalog app ``app_id`` as stack ``name`` (defaults to the app id).

        Dependencies are started and the app database is created before any
        app container. The record is written only after every member started;
        a failure part way leaves already created containers in place.
        """
        stack_name = name or app_id
        if self.store.app_exists(stack_name):
            raise AlreadyInstalled(
                f"App '{stack_name}' is already installed",
                hint=f"hostfy install {app_id} --domain {domain} --name {stack_name}-2",
            )

        app = self.ctx.catalog.get_app(app_id)
        shape = plan_for(app, stack_name)
        overrides = dict(env_overrides or {})

        self.store.ensure_directories()
        self.runtime.ensure_network()
        self._ensure_dependencies(app.dependencies)

        database = ""
        if "postgres" in app.dependencies:
            database = database_name(stack_name)
            self.ctx.postgres().create_database(database)

        tmpl = TemplateContext(stack_name, domain, self.ctx.secrets)
        preserved = self._preserved_secrets(stack_name, app_id)
        if preserved:
            logger.info("Reusing %d backed up secret(s) for %s", len(preserved), stack_name)
            tmpl.set_preserved_secrets(preserved)

        shared_env = tmpl.resolve_env(shape.shared_env)
        shared_env.update(overrides)
        user_values = self._resolve_user_env(tmpl, shape.user_env, shared_env, overrides)
        shared_env.update(user_values)

        record = AppConfig(
            name=stack_name,
            catalog_app=app_id,
            domain=domain,
            database=database,
            is_stack=shape.is_stack,
            shared_env=shared_env if shape.is_stack else {},
        )
        domains = []
        for member in shape.members:
            installed = self._install_member(
                tmpl, stack_name, member, domain, shared_env, overrides, user_values
            )
            if installed.domain:
                domains.append(installed.domain)

            if shape.is_stack:
                record.containers.append(installed)
            else:
                record.image = installed.image
                record.container_id = installed.container_id
                record.env = installed.env
                record.volumes = installed.volumes
                record.command = installed.command
                record.port = installed.port

        self.store.save_app(record)
        logger.info("Installed %s (%s)", stack_name, app_id)
        return InstallResult(
            app=record, user_env=user_values, domains=domains, reused_secrets=bool(preserved)
        )

    def _install_member(
        self,
        tmpl: TemplateContext,
        stack_name: str,
        member: MemberPlan,
        domain: str,
        shared_env: Dict[str, str],
        overrides: Dict[str, str],
        user_values: Dict[str, str],
    ) -> ContainerConfig:
        member_domain = self._member_domain(tmpl, member, domain, shared_env)
        self.runtime.pull_image(member.image)

        member_env = tmpl.resolve_env(member.env)
        member_env.update({k: v for k, v in overrides.items() if k in member_env})
        member_user = self._resolve_user_env(
            tmpl, member.user_env, {**shared_env, **member_env}, overrides
        )
        member_env.update(member_user)
        user_values.update(member_user)

        if member.runtime_name == stack_name:
            # single container: the shared layer is the whole env
            member_env = {**shared_env, **member_env}

        installed = ContainerConfig(
            name=member.name,
            image=member.image,
            domain=member_domain,
            port=member.port,
            command=member.command,
            env=member_env,
            volumes=tmpl.resolve_volumes(member.volumes),
            is_main=member.is_main,
        )
        spec = self._container_spec(
            stack_name, member.runtime_name, installed, {**shared_env, **member_env}, member.port
        )
        installed.container_id = self.runtime.create_container(spec)
        self.runtime.start_container(member.runtime_name)
        return installed

    def _ensure_dependencies(self, names: List[str]):
        for name in names:
            manager = self.ctx.dependency_manager(name)
            if manager is None:
                continue
            outcome = manager.ensure_running()
            logger.info("Dependency %s: %s", name, outcome)

    def _preserved_secrets(self, stack_name: str, app_id: str) -> Dict[str, str]:
        if not self.store.secrets_backup_exists(stack_name):
            return {}
        backup = self.store.load_secrets_backup(stack_name)
        if backup.catalog_app != app_id:
            logger.warning(
                "Ignoring secrets backup for %s: it was taken from catalog app %s",
                stack_name,
                backup.catalog_app,
            )
            return {}
        return dict(backup.secrets)

    def _resolve_user_env(
        self,
        tmpl: TemplateContext,
        variables: List[UserEnvVar],
        env: Dict[str, str],
        overrides: Dict[str, str],
    ) -> Dict[str, str]:
        values = {}
        for var in variables:
            if var.key in overrides:
                values[var.key] = overrides[var.key]
                continue
            resolved = tmpl.resolve_env({var.key: var.default})[var.key]
            values[var.key] = resolve_references(resolved, env)
        return values

    def _member_domain(
        self, tmpl: TemplateContext, member: MemberPlan, domain: str, shared_env: Dict[str, str]
    ) -> str:
        if member.is_main:
            return domain
        if not member.subdomain:
            return ""
        resolved = tmpl.resolve_value(resolve_references(member.subdomain, shared_env))
        if PLACEHOLDER.search(resolved):
            logger.warning("Could not resolve route '%s' for %s", member.subdomain, member.name)
            return ""
        return resolved

    def _container_spec(
        self,
        stack_name: str,
        container_name: str,
        member: ContainerConfig,
        env: Dict[str, str],
        port: int,
    ) -> ContainerSpec:
        return ContainerSpec(
            name=container_name,
            image=member.image,
            command=member.command,
            env=env,
            volumes=list(member.volumes),
            labels=member_labels(stack_name, container_name, member.domain, port),
            network=self.runtime.network_name,
        )

    def _recreate(self, app: AppConfig, member: ContainerConfig):
        name = runtime_name(app, member)
        if self.runtime.container_exists(name):
            self.runtime.stop_container(name)
            self.runtime.remove_container(name)

        spec = self._container_spec(
            app.name, name, member, runtime_env(app, member), member.port or DEFAULT_ROUTE_PORT
        )
        member.container_id = self.runtime.create_container(spec)
        self.runtime.start_container(name)

    # Update

    def update(
        self,
        name: str,
        domain: Optional[str] = None,
        env_overrides: Optional[Dict[str, str]] = None,
    ) -> UpdateResult:
        """Apply env overrides and/or a domain change, recreating every member."""
        app = self.store.load_app(name)
        overrides = dict(env_overrides or {})
        new_domain = domain if domain and domain != app.domain else None
        if not overrides and new_domain is None:
            return UpdateResult(app=app)

        changes = []
        members = installed_members(app)
        for key, value in overrides.items():
            if app.is_stack:
                app.shared_env[key] = value
                for member in members:
                    if key in member.env:
                        member.env[key] = value
            else:
                members[0].env[key] = value
            changes.append(f"{key}={value}")

        if new_domain is not None:
            old = app.domain
            app.domain = new_domain
            changes.append(f"domain: {old or '-'} -> {new_domain}")
            if old:
                app.shared_env = _rewrite_domain(app.shared_env, old, new_domain)
            for member in members:
                if old:
                    member.env = _rewrite_domain(member.env, old, new_domain)
                if member.is_main:
                    member.domain = new_domain
                elif old and member.domain:
                    member.domain = member.domain.replace(old, new_domain)

        for member in members:
            self._recreate(app, member)
            store_member(app, member)

        self.store.save_app(app)
        logger.info("Updated %s: %s", name, "; ".join(changes))
        return UpdateResult(app=app, changes=changes)

    # Upgrade

    def upgrade(self, name: str, force: bool = False) -> UpgradeResult:
        """Move members to the images the refreshed catalog names.

        Only members whose image changed are recreated unless ``force``.
        Env keys new in the catalog are added; existing values are kept.
        """
        app = self.store.load_app(name)
        catalog = self.ctx.catalog.fetch(force_refresh=True)
        entry = catalog.apps.get(app.catalog_app)
        if entry is None:
            raise CatalogEntryNotFound(
                f"App '{app.catalog_app}' is no longer in the catalog", hint="hostfy catalog"
            )

        shape = plan_for(entry, app.name)
        targets = {plan.name: plan for plan in shape.members}
        members = installed_members(app)

        changed = []
        for member in members:
            target = targets.get(member.name)
            if target is None:
                logger.warning("%s: member '%s' is no longer in the catalog", name, member.name)
                continue
            if force or target.image != member.image:
                changed.append((member, target))

        if not changed:
            logger.info("%s is already up to date", name)
            return UpgradeResult(app=app)

        tmpl = TemplateContext(app.name, app.domain, self.ctx.secrets)
        added = []
        if app.is_stack:
            added += self._add_missing_env(tmpl, app.shared_env, shape.shared_env, app.shared_env)
            for member, target in changed:
                added += self._add_missing_env(tmpl, member.env, target.env, runtime_env(app, member))
        else:
            added += self._add_missing_env(tmpl, members[0].env, shape.shared_env, members[0].env)

        main = next((m for m in members if m.is_main), members[0])
        app.image_pulled_at = utc_now()
        upgraded = []
        for member, target in changed:
            if target.image != member.image:
                logger.info("%s: %s -> %s", member.name, member.image, target.image)
            member.image = target.image
            self.runtime.pull_image(member.image)
            self._recreate(app, member)
            store_member(app, member)
            upgraded.append(member.name)
            if member is main:
                # the record must match the running images even if the wait times out
                self.store.save_app(app)
                self.runtime.wait_healthy(runtime_name(app, member), self.ctx.health_timeout)

        self.store.save_app(app)
        return UpgradeResult(app=app, upgraded=upgraded, added_env=sorted(set(added)))

    def _add_missing_env(
        self,
        tmpl: TemplateContext,
        target: Dict[str, str],
        template: Dict[str, str],
        context_env: Dict[str, str],
    ) -> List[str]:
        missing = {key: value for key, value in template.items() if key not in target}
        if not missing:
            return []
        resolved = tmpl.resolve_env(missing)
        lookup = {**context_env, **resolved}
        for key, value in resolved.items():
            target[key] = resolve_references(value, lookup)
        return list(missing)

    # Remove

    def remove(self, name: str, purge: bool = False) -> CleanupReport:
        """Tear an app down; returns the advisory failures encountered.

        Without ``purge`` volumes and database are kept and sensitive env
        values are backed up for a later reinstall. The record is always
        deleted last.
        """
        app = self.store.load_app(name)
        actions = []
        for container in app.container_names():
            actions.append(CleanupAction(f"stop {container}", partial(self._stop_if_present, container)))
            actions.append(
                CleanupAction(f"remove {container}", partial(self._remove_if_present, container))
            )

        if purge:
            if app.database:
                actions.append(
                    CleanupAction(
                        f"drop database {app.database}",
                        partial(self._drop_database, app.database),
                    )
                )
            volumes = app.named_volumes()
            if volumes:
                actions.append(
                    CleanupAction(
                        "remove volumes " + ", ".join(volumes),
                        partial(self.runtime.remove_volumes, volumes),
                    )
                )
            actions.append(
                CleanupAction("delete secrets backup", partial(self.store.delete_secrets_backup, name))
            )
        else:
            actions.append(CleanupAction("back up secrets", partial(self.store.backup_app_secrets, app)))

        actions.append(
            CleanupAction("delete app record", partial(self.store.delete_app, name), Severity.FATAL)
        )
        report = run_cleanup(actions)
        logger.info("Removed %s%s", name, " (purged)" if purge else "")
        return report

    def _stop_if_present(self, container: str):
        if self.runtime.container_running(container):
            self.runtime.stop_container(container)

    def _remove_if_present(self, container: str):
        if self.runtime.container_exists(container):
            self.runtime.remove_container(container)

    def _drop_database(self, database: str):
        self.ctx.postgres().drop_database(database)

    # Lifecycle

    def start(self, name: str):
        app = self.store.load_app(name)
        for container in app.container_names():
            self.runtime.start_container(container)

    def stop(self, name: str):
        app = self.store.load_app(name)
        for container in reversed(app.container_names()):
            self.runtime.stop_container(container)

    def restart(self, name: str):
        app = self.store.load_app(name)
        for container in app.container_names():
            self.runtime.restart_container(container)

    def _service_managers(self):
        for kind in SUPPORTED_SERVICES:
            yield get_service_manager(kind, self.runtime, self.store.load_secrets())

    def _start_service(self, manager):
        if self.runtime.container_exists(manager.container_name):
            manager.ensure_running()

    def _restart_if_present(self, container: str, restart):
        if self.runtime.container_exists(container):
            restart()

    def start_all(self) -> CleanupReport:
        """Start the proxy, existing shared services and every app, best effort."""
        actions = [CleanupAction("start traefik", self.ctx.traefik().start)]
        for manager in self._service_managers():
            actions.append(CleanupAction(f"start {manager.kind}", partial(self._start_service, manager)))
        for app in self.store.list_apps():
            actions.append(CleanupAction(f"start {app.name}", partial(self.start, app.name)))
        return run_cleanup(actions)

    def restart_all(self) -> CleanupReport:
        proxy = self.ctx.traefik()
        actions = [
            CleanupAction(
                "restart traefik",
                partial(self._restart_if_present, traefik.CONTAINER_NAME, proxy.restart),
            )
        ]
        for manager in self._service_managers():
            actions.append(
                CleanupAction(
                    f"restart {manager.kind}",
                    partial(self._restart_if_present, manager.container_name, manager.restart),
                )
            )
        for app in self.store.list_apps():
            actions.append(CleanupAction(f"restart {app.name}", partial(self.restart, app.name)))
        return run_cleanup(actions)

    def member_container(self, app: AppConfig, container: Optional[str] = None) -> str:
        """Runtime name of a member; the main member when ``container`` is None."""
        if not app.is_stack or not app.containers:
            return app.name
        if container is None:
            return runtime_name(app, app.main_member())
        for member in app.containers:
            if member.name == container:
                return runtime_name(app, member)
        raise ContainerOperationFailed(
            f"Stack '{app.name}' has no container '{container}'",
            hint="Available: " + ", ".join(m.name for m in app.containers),
        )

    def logs(
        self, name: str, container: Optional[str] = None, tail: int = 100, follow: bool = False
    ) -> Iterator[str]:
        app = self.store.load_app(name)
        return self.runtime.stream_logs(self.member_container(app, container), tail=tail, follow=follow)

    # Inspection

    def app_status(self, app: AppConfig) -> str:
        states = [self.runtime.container_running(name) for name in app.container_names()]
        if states and all(states):
            return "running"
        if any(states):
            return "partial"
        return "stopped"

    def status(self) -> Dict:
        cfg = self.store.load_config()
        services = {"traefik": self.runtime.container_running(traefik.CONTAINER_NAME)}
        for manager in self._service_managers():
            services[manager.kind] = manager.is_running()

        apps = []
        for app in self.store.list_apps():
            apps.append(
                {
                    "name": app.name,
                    "catalog_app": app.catalog_app,
                    "domain": app.domain,
                    "status": self.app_status(app),
                    "containers": app.container_names(),
                    "database": app.database or None,
                }
            )
        return {
            "version": get_version(),
            "catalog_url": cfg.catalog_url,
            "catalog_updated_at": cfg.catalog_updated_at,
            "network": cfg.network,
            "services": services,
            "apps": apps,
        }

    def describe_secrets(self, name: str) -> Dict:
        app = self.store.load_app(name)
        info = {
            "name": app.name,
            "env": filter_sensitive([app.shared_env, app.env] + [m.env for m in app.containers]),
        }
        if app.database:
            info["database"] = {
                "name": app.database,
                "user": POSTGRES_USER,
                "password": self.ctx.secrets.postgres_password,
            }
        return info

    def initialize(self, catalog_url: Optional[str] = None) -> GlobalConfig:
        """Prepare the host: state directories, config, secrets, network and proxy."""
        self.store.ensure_directories()
        cfg = self.store.load_config()
        if catalog_url:
            cfg.catalog_url = catalog_url
        self.store.save_config(cfg)
        self.store.ensure_secrets()
        self.runtime.ensure_network()
        self.ctx.traefik().start()
        return cfg
