import json
from typing import Any, Dict
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from hostfy.config import config
from hostfy.errors import CatalogUnavailable


class CatalogClient:
    def __init__(self, timeout_seconds: int = None):
        self.timeout_seconds = timeout_seconds or config.catalog_timeout

    def fetch_catalog(self, url: str) -> Dict[str, Any]:
        request = Request(url, headers={"Accept": "application/json"})
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                status = getattr(response, "status", 200)
                if status != 200:
                    raise CatalogUnavailable(f"Catalog request to {url} returned status {status}")
                payload = response.read().decode("utf-8")
        except HTTPError as e:
            raise CatalogUnavailable(f"Catalog request to {url} returned status {e.code}") from e
        except (URLError, OSError) as e:
            raise CatalogUnavailable(f"Could not fetch catalog from {url}: {e}") from e

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise CatalogUnavailable(f"Catalog at {url} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CatalogUnavailable("Catalog payload must be a JSON object")
        self._validate_catalog_payload(data)
        return data

    def _validate_catalog_payload(self, data: Dict[str, Any]):
        for key in ("services", "apps"):
            value = data.get(key)
            if value is not None and not isinstance(value, dict):
                raise CatalogUnavailable(f"Catalog payload '{key}' must be an object")

        for app_id, app in (data.get("apps") or {}).items():
            if not isinstance(app, dict):
                raise CatalogUnavailable(f"Catalog app '{app_id}' must be an object")
            if not app.get("image") and not app.get("containers"):
                raise CatalogUnavailable(
                    f"Catalog app '{app_id}' declares neither an image nor containers"
                )
