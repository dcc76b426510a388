"""Shared fixtures: offline caches, fake CDN transports, sample rows."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from mtgjson_views.async_client import AsyncMtgJsonViews
from mtgjson_views.cache import CacheManager
from mtgjson_views.client import MtgJsonViews
from mtgjson_views.connection import Connection

SAMPLE_CARDS = [
    {
        "uuid": "card-uuid-001",
        "name": "Lightning Bolt",
        "setCode": "A25",
        "rarity": "uncommon",
        "manaValue": 1.0,
        "colors": ["R"],
        "keywords": [],
        "releaseDate": "2018-03-16",
    },
    {
        "uuid": "card-uuid-002",
        "name": "Counterspell",
        "setCode": "A25",
        "rarity": "common",
        "manaValue": 2.0,
        "colors": ["U"],
        "keywords": [],
        "releaseDate": "2018-03-16",
    },
    {
        "uuid": "card-uuid-003",
        "name": "Serra Angel",
        "setCode": "M19",
        "rarity": "uncommon",
        "manaValue": 5.0,
        "colors": ["W"],
        "keywords": ["Flying", "Vigilance"],
        "releaseDate": "2018-07-13",
    },
]

SAMPLE_SETS = [
    {"code": "A25", "name": "Masters 25", "type": "masters"},
    {"code": "M19", "name": "Core Set 2019", "type": "core"},
]


class FakeCDN:
    """Routes for an ``httpx.MockTransport`` standing in for the CDN.

    ``routes`` maps a path relative to the v5 root (``"Meta.json"``) to a
    response factory. Every request path is recorded in ``requests``.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Callable[[], httpx.Response]] = {}
        self.requests: list[str] = []

    def serve(self, path: str, content: bytes, status: int = 200) -> None:
        self.routes[path] = lambda: httpx.Response(status, content=content)

    def set_version(self, version: str) -> None:
        self.serve("Meta.json", ('{"data": {"version": "%s"}}' % version).encode())

    def hits(self, path: str) -> int:
        return self.requests.count(path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v5/")
        self.requests.append(path)
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404)
        return route()

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def cdn() -> FakeCDN:
    return FakeCDN()


@pytest.fixture
def online_cache(tmp_path, cdn):
    """Online CacheManager talking to the fake CDN."""
    cache = CacheManager(tmp_path / "cache", transport=cdn.transport)
    yield cache
    cache.close()


@pytest.fixture
def offline_cache(tmp_path):
    cache = CacheManager(tmp_path / "cache", offline=True)
    yield cache
    cache.close()


@pytest.fixture
def parquet_conn(offline_cache):
    """Offline Connection plus a writer that places parquet files in its cache.

    Call ``write(view_name, table)`` and then ``conn.ensure_views(view_name)``
    to run the real probe-classify-create path on that file.
    """
    conn = Connection(offline_cache)

    def write(view_name: str, table: pa.Table) -> Path:
        path = offline_cache.path_for(view_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        pq.write_table(table, path)
        return path

    yield conn, write
    conn.close()


@pytest.fixture
def sdk_offline(tmp_path):
    """Offline client with sample cards and sets loaded as tables."""
    sdk = MtgJsonViews(cache_dir=tmp_path / "cache", offline=True)
    sdk.connection.register_table_from_data("cards", SAMPLE_CARDS)
    sdk.connection.register_table_from_data("sets", SAMPLE_SETS)
    yield sdk
    sdk.close()


@pytest.fixture
def async_offline(tmp_path):
    """Offline async client with the sample cards loaded; tests close it."""
    client = AsyncMtgJsonViews(cache_dir=tmp_path / "cache", offline=True)
    client.inner.connection.register_table_from_data("cards", SAMPLE_CARDS)
    return client
