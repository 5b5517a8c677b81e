import io
import os
import time
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from hostfy.catalog.client import CatalogClient
from hostfy.catalog.repository import CatalogRepository
from hostfy.errors import CatalogEntryNotFound, CatalogUnavailable


class _Response(io.BytesIO):
    status = 200

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _age_cache(store, seconds):
    past = time.time() - seconds
    os.utime(store.catalog_cache_path, (past, past))


def test_fetch_downloads_and_caches(store, catalog_client):
    repository = CatalogRepository(store, client=catalog_client)

    catalog = repository.fetch()

    assert set(catalog.apps) == {"n8n", "minio", "chatwoot", "evolution"}
    assert os.path.exists(store.catalog_cache_path)
    assert store.load_config().catalog_updated_at is not None
    catalog_client.fetch_catalog.assert_called_once_with(store.load_config().catalog_url)


def test_fresh_cache_is_served_without_network(store, catalog_client):
    CatalogRepository(store, client=catalog_client).fetch()
    other_client = MagicMock()

    catalog = CatalogRepository(store, client=other_client).fetch()

    assert "n8n" in catalog.apps
    other_client.fetch_catalog.assert_not_called()


def test_expired_cache_is_refreshed(store, catalog_client):
    CatalogRepository(store, client=catalog_client).fetch()
    _age_cache(store, 7200)

    CatalogRepository(store, client=catalog_client, ttl_seconds=3600).fetch()

    assert catalog_client.fetch_catalog.call_count == 2


def test_stale_cache_only_with_explicit_fallback(store, catalog_client):
    CatalogRepository(store, client=catalog_client).fetch()
    _age_cache(store, 7200)
    failing = MagicMock()
    failing.fetch_catalog.side_effect = CatalogUnavailable("offline")

    with pytest.raises(CatalogUnavailable):
        CatalogRepository(store, client=failing).fetch()

    catalog = CatalogRepository(store, client=failing).fetch(allow_stale=True)
    assert "n8n" in catalog.apps


def test_force_refresh_bypasses_fresh_cache(store, catalog_client):
    repository = CatalogRepository(store, client=catalog_client)
    repository.fetch()

    repository.fetch(force_refresh=True)

    assert catalog_client.fetch_catalog.call_count == 2


def test_malformed_document_is_unavailable(store):
    client = MagicMock()
    client.fetch_catalog.return_value = {"apps": {"bad": {"port": "not a number"}}}

    with pytest.raises(CatalogUnavailable):
        CatalogRepository(store, client=client).fetch()


def test_lookups(catalog):
    assert catalog.get_app("chatwoot").is_stack()
    assert catalog.get_service("postgres").image == "postgres:16-alpine"
    assert catalog.find_service("mongo") is None
    with pytest.raises(CatalogEntryNotFound) as exc:
        catalog.get_app("nope")
    assert exc.value.hint == "hostfy catalog --refresh"


@patch("hostfy.catalog.client.urlopen")
def test_client_parses_payload(mock_urlopen):
    mock_urlopen.return_value = _Response(b'{"apps": {"a": {"image": "nginx"}}, "services": {}}')

    data = CatalogClient(timeout_seconds=5).fetch_catalog("https://example.com/catalog.json")

    assert data["apps"]["a"]["image"] == "nginx"
    assert mock_urlopen.call_args[1]["timeout"] == 5


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"[1, 2]",
        b'{"apps": []}',
        b'{"apps": {"a": {"port": 80}}}',
    ],
)
@patch("hostfy.catalog.client.urlopen")
def test_client_rejects_bad_payloads(mock_urlopen, payload):
    mock_urlopen.return_value = _Response(payload)

    with pytest.raises(CatalogUnavailable):
        CatalogClient().fetch_catalog("https://example.com/catalog.json")


@patch("hostfy.catalog.client.urlopen")
def test_client_maps_transport_errors(mock_urlopen):
    mock_urlopen.side_effect = URLError("no route to host")
    with pytest.raises(CatalogUnavailable):
        CatalogClient().fetch_catalog("https://example.com/catalog.json")

    mock_urlopen.side_effect = HTTPError("https://example.com", 404, "Not Found", {}, None)
    with pytest.raises(CatalogUnavailable) as exc:
        CatalogClient().fetch_catalog("https://example.com/catalog.json")
    assert "404" in str(exc.value)
