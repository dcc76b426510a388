"""Tests for the cache manager."""

import gzip
import json
import threading

import httpx
import pytest

from mtgjson_views.cache import CacheManager
from mtgjson_views.config import ClientConfig, default_cache_dir
from mtgjson_views.errors import (
    CorruptCacheError,
    DownloadCancelled,
    DownloadError,
    NotCachedError,
    UnknownResourceError,
)


def test_cache_dir_created(tmp_path):
    cache_dir = tmp_path / "test_cache"
    cache = CacheManager(cache_dir, offline=True)
    assert cache_dir.exists()
    cache.close()


def test_local_version_none(offline_cache):
    assert offline_cache.local_version() is None


def test_save_and_read_version(offline_cache):
    offline_cache._save_version("5.2.2+20250101")
    assert offline_cache.local_version() == "5.2.2+20250101"


def test_clear(offline_cache):
    offline_cache._save_version("test")
    (offline_cache.cache_dir / "parquet").mkdir()
    (offline_cache.cache_dir / "parquet" / "cards.parquet").write_bytes(b"x")
    offline_cache.clear()
    assert offline_cache.cache_dir.exists()
    assert list(offline_cache.cache_dir.iterdir()) == []


def test_unknown_resource(offline_cache):
    with pytest.raises(UnknownResourceError, match="nope"):
        offline_cache.ensure_resource("nope")
    with pytest.raises(KeyError):
        offline_cache.path_for("nope")


# === Remote version and staleness ===


def test_remote_version_from_meta(online_cache, cdn):
    cdn.set_version("5.2.2+20250101")
    assert online_cache.remote_version() == "5.2.2+20250101"


def test_remote_version_meta_section_fallback(online_cache, cdn):
    cdn.serve("Meta.json", b'{"meta": {"version": "5.3.0"}}')
    assert online_cache.remote_version() == "5.3.0"


def test_remote_version_memoized_until_reset(online_cache, cdn):
    cdn.set_version("v1")
    assert online_cache.remote_version() == "v1"
    cdn.set_version("v2")
    assert online_cache.remote_version() == "v1"
    assert cdn.hits("Meta.json") == 1
    online_cache.reset_remote_version()
    assert online_cache.remote_version() == "v2"


@pytest.mark.parametrize(
    "status, body",
    [
        (500, b"oops"),
        (404, b""),
        (200, b"not json"),
        (200, b"[1, 2, 3]"),
        (200, b'{"data": {"date": "2025-01-01"}}'),
    ],
)
def test_remote_version_soft_failures(online_cache, cdn, status, body):
    cdn.serve("Meta.json", body, status=status)
    assert online_cache.remote_version() is None


def test_remote_version_network_error(tmp_path):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    cache = CacheManager(tmp_path / "cache", transport=httpx.MockTransport(handler))
    assert cache.remote_version() is None
    assert cache.is_stale() is False
    cache.close()


def test_remote_version_offline_makes_no_request(tmp_path, cdn):
    cdn.set_version("v1")
    cache = CacheManager(tmp_path / "cache", offline=True, transport=cdn.transport)
    assert cache.remote_version() is None
    assert cdn.requests == []
    cache.close()


@pytest.mark.parametrize(
    "local, remote, stale",
    [
        (None, "v1", True),
        ("v1", "v1", False),
        ("v1", "v2", True),
        (None, None, False),
        ("v1", None, False),
    ],
)
def test_staleness_table(online_cache, cdn, local, remote, stale):
    if local is not None:
        online_cache._save_version(local)
    if remote is not None:
        cdn.set_version(remote)
    assert online_cache.is_stale() is stale


# === Downloads ===


def test_download_writes_file_and_version(online_cache, cdn):
    cdn.set_version("v2")
    cdn.serve("parquet/cards.parquet", b"PAR1 data")
    path = online_cache.download("cards")
    assert path == online_cache.cache_dir / "parquet" / "cards.parquet"
    assert path.read_bytes() == b"PAR1 data"
    assert online_cache.local_version() == "v2"


def test_download_reports_progress(tmp_path, cdn):
    calls = []
    cdn.set_version("v1")
    cdn.serve("Keywords.json", b"x" * 200_000)
    cache = CacheManager(
        tmp_path / "cache",
        transport=cdn.transport,
        on_progress=lambda f, d, t: calls.append((f, d, t)),
    )
    cache.download("keywords")
    assert calls[-1] == ("Keywords.json", 200_000, 200_000)
    assert [d for _, d, _ in calls] == sorted(d for _, d, _ in calls)
    cache.close()


def test_download_http_error_keeps_existing_copy(online_cache, cdn):
    cdn.set_version("v2")
    cdn.serve("parquet/sets.parquet", b"gone", status=503)
    dest = online_cache.path_for("sets")
    dest.parent.mkdir(parents=True)
    dest.write_bytes(b"old good copy")
    with pytest.raises(DownloadError, match="sets.parquet"):
        online_cache.download("sets")
    assert dest.read_bytes() == b"old good copy"
    assert list(dest.parent.glob("*.tmp")) == []
    assert online_cache.local_version() is None


def test_download_interrupted_stream_leaves_no_temp(online_cache, cdn):
    def broken_body():
        yield b"a" * 65536
        raise httpx.ReadError("connection reset")

    cdn.set_version("v1")
    cdn.routes["parquet/cards.parquet"] = lambda: httpx.Response(
        200, content=broken_body()
    )
    with pytest.raises(DownloadError):
        online_cache.download("cards")
    parquet_dir = online_cache.cache_dir / "parquet"
    assert list(parquet_dir.iterdir()) == []


def test_download_cancelled(tmp_path, cdn):
    cancel = threading.Event()

    def body():
        for _ in range(4):
            yield b"b" * 65536

    cdn.set_version("v1")
    cdn.routes["parquet/cards.parquet"] = lambda: httpx.Response(200, content=body())
    cache = CacheManager(
        tmp_path / "cache",
        transport=cdn.transport,
        on_progress=lambda *_: cancel.set(),
    )
    with pytest.raises(DownloadCancelled):
        cache.download("cards", cancel=cancel)
    assert list((cache.cache_dir / "parquet").iterdir()) == []
    assert cache.local_version() is None
    cache.close()


def test_download_cancelled_before_request(online_cache, cdn):
    cancel = threading.Event()
    cancel.set()
    cdn.set_version("v1")
    cdn.serve("parquet/cards.parquet", b"never sent")
    with pytest.raises(DownloadCancelled):
        online_cache.download("cards", cancel=cancel)
    assert cdn.hits("parquet/cards.parquet") == 0
    assert not online_cache.path_for("cards").exists()
    assert online_cache.local_version() is None


def test_ensure_resource_downloads_when_missing(online_cache, cdn):
    cdn.set_version("v1")
    cdn.serve("parquet/sets.parquet", b"sets")
    path = online_cache.ensure_resource("sets")
    assert path.read_bytes() == b"sets"
    online_cache.ensure_resource("sets")
    assert cdn.hits("parquet/sets.parquet") == 1


def test_ensure_resource_refetches_when_stale(online_cache, cdn):
    dest = online_cache.path_for("sets")
    dest.parent.mkdir(parents=True)
    dest.write_bytes(b"old")
    online_cache._save_version("v1")
    cdn.set_version("v2")
    cdn.serve("parquet/sets.parquet", b"new")
    assert online_cache.ensure_resource("sets").read_bytes() == b"new"
    assert online_cache.local_version() == "v2"


def test_ensure_resource_fresh_copy_not_refetched(online_cache, cdn):
    dest = online_cache.path_for("sets")
    dest.parent.mkdir(parents=True)
    dest.write_bytes(b"cached")
    online_cache._save_version("v1")
    cdn.set_version("v1")
    assert online_cache.ensure_resource("sets").read_bytes() == b"cached"
    assert cdn.hits("parquet/sets.parquet") == 0


def test_version_marker_is_shared_across_files(online_cache, cdn):
    for name in ("sets", "cards"):
        dest = online_cache.path_for(name)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"v1 copy")
    online_cache._save_version("v1")
    cdn.set_version("v2")
    cdn.serve("parquet/sets.parquet", b"v2 sets")
    online_cache.ensure_resource("sets")
    # The first refetch records v2, so the other old file now looks fresh
    assert online_cache.ensure_resource("cards").read_bytes() == b"v1 copy"
    assert cdn.hits("parquet/cards.parquet") == 0


def test_offline_missing_file(offline_cache):
    with pytest.raises(NotCachedError, match="offline"):
        offline_cache.ensure_resource("cards")


def test_offline_returns_stale_copy(offline_cache):
    dest = offline_cache.path_for("cards")
    dest.parent.mkdir(parents=True)
    dest.write_bytes(b"stale but usable")
    assert offline_cache.ensure_resource("cards") == dest


# === JSON loading and corrupt file recovery ===


def test_load_json(offline_cache):
    (offline_cache.cache_dir / "Meta.json").write_text(
        '{"data": {"version": "5.2.2", "date": "2025-01-01"}}', encoding="utf-8"
    )
    assert offline_cache.load_json("meta")["data"]["version"] == "5.2.2"


def test_load_json_gzip(offline_cache):
    payload = {"data": {"uuid-1": {"paper": {}}}}
    (offline_cache.cache_dir / "AllPricesToday.json.gz").write_bytes(
        gzip.compress(json.dumps(payload).encode())
    )
    assert offline_cache.load_json("all_prices_today_json") == payload


def test_load_json_corrupt_removed(offline_cache):
    corrupt_path = offline_cache.cache_dir / "Meta.json"
    corrupt_path.write_bytes(b"\x00\xff\xfe invalid json bytes")
    with pytest.raises(CorruptCacheError, match="corrupt"):
        offline_cache.load_json("meta")
    assert not corrupt_path.exists()


def test_load_json_corrupt_gzip_removed(offline_cache):
    corrupt_path = offline_cache.cache_dir / "AllPricesToday.json.gz"
    corrupt_path.write_bytes(b"this is not gzip data at all")
    with pytest.raises(FileNotFoundError, match="corrupt"):
        offline_cache.load_json("all_prices_today_json")
    assert not corrupt_path.exists()


def test_load_json_truncated_removed(offline_cache):
    truncated_path = offline_cache.cache_dir / "Meta.json"
    truncated_path.write_text('{"data": {', encoding="utf-8")
    with pytest.raises(CorruptCacheError, match="corrupt"):
        offline_cache.load_json("meta")
    assert not truncated_path.exists()


def test_corrupt_file_refetched_on_retry(online_cache, cdn):
    cdn.set_version("v1")
    cdn.serve("Keywords.json", b'{"data": {"keywordAbilities": ["Flying"]}')
    with pytest.raises(CorruptCacheError):
        online_cache.load_json("keywords")
    cdn.serve("Keywords.json", b'{"data": {"keywordAbilities": ["Flying"]}}')
    assert online_cache.load_json("keywords")["data"]["keywordAbilities"] == ["Flying"]
    assert cdn.hits("Keywords.json") == 2


# === Configuration ===


def test_config_from_env(tmp_path):
    config = ClientConfig.from_env(
        {
            "MTGJSON_VIEWS_CACHE_DIR": str(tmp_path / "c"),
            "MTGJSON_VIEWS_OFFLINE": "yes",
            "MTGJSON_VIEWS_TIMEOUT": "30",
        }
    )
    assert config.cache_dir == tmp_path / "c"
    assert config.offline is True
    assert config.timeout == 30.0


def test_config_from_env_defaults():
    config = ClientConfig.from_env({})
    assert config.offline is False
    assert config.timeout == 120.0
    assert config.cache_dir == default_cache_dir()


def test_config_rejects_bad_timeout():
    with pytest.raises(ValueError):
        ClientConfig.from_env({"MTGJSON_VIEWS_TIMEOUT": "-1"})
