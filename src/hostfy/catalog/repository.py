import json
import logging
import os
import time
from typing import Dict, Optional

from pydantic import ValidationError

from hostfy.catalog.client import CatalogClient
from hostfy.catalog.models import App, Catalog, Service
from hostfy.config import config
from hostfy.errors import CatalogEntryNotFound, CatalogUnavailable
from hostfy.state.models import utc_now
from hostfy.state.store import StateStore

logger = logging.getLogger(__name__)


class CatalogRepository:
    """Serves the catalog from a local cache, refreshing it once the TTL elapses."""

    def __init__(
        self,
        store: StateStore,
        client: Optional[CatalogClient] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.store = store
        self.client = client or CatalogClient()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.catalog_ttl_seconds
        self._catalog: Optional[Catalog] = None

    def fetch(self, force_refresh: bool = False, allow_stale: bool = False) -> Catalog:
        """Return the effective catalog.

        A fresh cache is served unless ``force_refresh`` is set. When the remote
        source fails, a stale cache is used only if ``allow_stale`` is set.
        """
        if not force_refresh:
            if self._catalog is not None:
                return self._catalog
            cached = self._load_cache(max_age=self.ttl_seconds)
            if cached is not None:
                self._catalog = cached
                return cached

        cfg = self.store.load_config()
        try:
            data = self.client.fetch_catalog(cfg.catalog_url)
            catalog = Catalog.model_validate(data)
        except (CatalogUnavailable, ValidationError) as e:
            stale = self._load_cache(max_age=None) if allow_stale else None
            if stale is None:
                if isinstance(e, ValidationError):
                    raise CatalogUnavailable(f"Malformed catalog document: {e}") from e
                raise
            logger.warning("Catalog refresh failed, using stale cache: %s", e)
            self._catalog = stale
            return stale

        self._save_cache(catalog)
        cfg.catalog_updated_at = utc_now()
        self.store.save_config(cfg)
        self._catalog = catalog
        return catalog

    def get_app(self, app_id: str) -> App:
        app = self.fetch().apps.get(app_id)
        if app is None:
            raise CatalogEntryNotFound(
                f"App '{app_id}' not found in catalog", hint="hostfy catalog --refresh"
            )
        return app

    def get_service(self, name: str) -> Service:
        service = self.fetch().services.get(name)
        if service is None:
            raise CatalogEntryNotFound(f"Service '{name}' not found in catalog")
        return service

    def find_service(self, name: str) -> Optional[Service]:
        """Like ``get_service`` but tolerant of an unreachable or incomplete catalog."""
        try:
            return self.get_service(name)
        except (CatalogEntryNotFound, CatalogUnavailable):
            return None

    def list_apps(self) -> Dict[str, App]:
        return dict(self.fetch().apps)

    def _load_cache(self, max_age: Optional[int]) -> Optional[Catalog]:
        path = self.store.catalog_cache_path
        try:
            age = time.time() - os.path.getmtime(path)
        except OSError:
            return None
        if max_age is not None and age > max_age:
            logger.debug("Catalog cache expired (%.0fs old)", age)
            return None

        try:
            with open(path, "r") as f:
                return Catalog.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable catalog cache: %s", e)
            return None

    def _save_cache(self, catalog: Catalog):
        self.store.ensure_directories()
        try:
            with open(self.store.catalog_cache_path, "w") as f:
                f.write(catalog.model_dump_json(indent=2))
        except OSError as e:
            logger.warning("Could not write catalog cache: %s", e)
