import json
import logging
import os
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from hostfy.config import config
from hostfy.errors import StateRecordNotFound, StateWriteFailed
from hostfy.state.models import (
    AppConfig,
    AppSecretsBackup,
    GlobalConfig,
    SystemSecrets,
    utc_now,
)
from hostfy.state.secrets import filter_sensitive, generate_password, generate_secret

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
SECRETS_FILE = "secrets.json"
CATALOG_CACHE_FILE = "catalog_cache.json"
APPS_DIR = "apps"
BACKUPS_DIR = "backups"

ModelT = TypeVar("ModelT", bound=BaseModel)


class StateStore:
    """JSON records kept under the hostfy state directory.

    Layout::

        <root>/config.json
        <root>/secrets.json                 (0600)
        <root>/catalog_cache.json
        <root>/apps/<stack>.json
        <root>/backups/<stack>.secrets.json (0600)
    """

    def __init__(self, root: Optional[str] = None):
        self.root = root or config.hostfy_dir

    # Paths

    @property
    def config_path(self) -> str:
        return os.path.join(self.root, CONFIG_FILE)

    @property
    def secrets_path(self) -> str:
        return os.path.join(self.root, SECRETS_FILE)

    @property
    def catalog_cache_path(self) -> str:
        return os.path.join(self.root, CATALOG_CACHE_FILE)

    @property
    def apps_dir(self) -> str:
        return os.path.join(self.root, APPS_DIR)

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.root, BACKUPS_DIR)

    def app_path(self, name: str) -> str:
        return os.path.join(self.apps_dir, f"{name}.json")

    def backup_path(self, name: str) -> str:
        return os.path.join(self.backups_dir, f"{name}.secrets.json")

    def ensure_directories(self):
        for path in (self.root, self.apps_dir, self.backups_dir):
            try:
                os.makedirs(path, exist_ok=True)
            except OSError as e:
                raise StateWriteFailed(f"Could not create directory {path}: {e}") from e

    # Low level helpers

    def _read_model(self, path: str, model: Type[ModelT]) -> ModelT:
        with open(path, "r") as f:
            return model.model_validate(json.load(f))

    def _write_model(self, path: str, record: BaseModel, mode: int = 0o644):
        self.ensure_directories()
        payload = record.model_dump_json(indent=2)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            os.chmod(path, mode)
        except OSError as e:
            raise StateWriteFailed(f"Could not write {path}: {e}") from e

    # Global config

    def load_config(self) -> GlobalConfig:
        if not os.path.exists(self.config_path):
            return GlobalConfig()
        return self._read_model(self.config_path, GlobalConfig)

    def save_config(self, cfg: GlobalConfig):
        self._write_model(self.config_path, cfg)

    # System secrets

    def load_secrets(self) -> SystemSecrets:
        if not os.path.exists(self.secrets_path):
            return SystemSecrets()
        return self._read_model(self.secrets_path, SystemSecrets)

    def save_secrets(self, secrets: SystemSecrets):
        self._write_model(self.secrets_path, secrets, mode=0o600)

    def ensure_secrets(self) -> SystemSecrets:
        """Load system secrets, generating and persisting any that are missing."""
        secrets = self.load_secrets()
        changed = False

        if not secrets.postgres_password:
            secrets.postgres_password = generate_password(24)
            changed = True
        if not secrets.system_key:
            secrets.system_key = generate_secret(64)
            changed = True

        if changed:
            logger.info("Generated system secrets at %s", self.secrets_path)
            self.save_secrets(secrets)
        return secrets

    # Installed applications

    def app_exists(self, name: str) -> bool:
        return os.path.exists(self.app_path(name))

    def load_app(self, name: str) -> AppConfig:
        path = self.app_path(name)
        if not os.path.exists(path):
            raise StateRecordNotFound(
                f"App '{name}' not found", hint="hostfy list"
            )
        return self._read_model(path, AppConfig)

    def save_app(self, app: AppConfig):
        app.updated_at = utc_now()
        self._write_model(self.app_path(app.name), app)

    def delete_app(self, name: str):
        path = self.app_path(name)
        if not os.path.exists(path):
            raise StateRecordNotFound(f"App '{name}' not found")
        os.remove(path)

    def list_apps(self) -> List[AppConfig]:
        if not os.path.isdir(self.apps_dir):
            return []

        apps = []
        for entry in sorted(os.listdir(self.apps_dir)):
            if not entry.endswith(".json"):
                continue
            try:
                apps.append(self._read_model(os.path.join(self.apps_dir, entry), AppConfig))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("Skipping unreadable app record %s: %s", entry, e)
        return apps

    # Secrets backups

    def backup_app_secrets(self, app: AppConfig) -> Optional[AppSecretsBackup]:
        """Keep the sensitive env values of ``app`` for a future reinstall.

        Nothing is written when the app carries no sensitive keys.
        """
        envs = [app.shared_env, app.env] + [member.env for member in app.containers]
        secrets = filter_sensitive(envs)
        if not secrets:
            return None

        backup = AppSecretsBackup(name=app.name, catalog_app=app.catalog_app, secrets=secrets)
        self._write_model(self.backup_path(app.name), backup, mode=0o600)
        logger.info("Backed up %d secret(s) for %s", len(secrets), app.name)
        return backup

    def secrets_backup_exists(self, name: str) -> bool:
        return os.path.exists(self.backup_path(name))

    def load_secrets_backup(self, name: str) -> AppSecretsBackup:
        path = self.backup_path(name)
        if not os.path.exists(path):
            raise StateRecordNotFound(f"No secrets backup for '{name}'")
        return self._read_model(path, AppSecretsBackup)

    def delete_secrets_backup(self, name: str):
        path = self.backup_path(name)
        if os.path.exists(path):
            os.remove(path)
