"""Version-aware CDN mirror for MTGJSON data files."""

from __future__ import annotations

import gzip
import json
import logging
import os
import shutil
import tempfile
import threading
import zlib
from pathlib import Path
from typing import Any

import httpx

from .config import (
    CDN_BASE,
    JSON_FILES,
    META_URL,
    PARQUET_FILES,
    VERSION_FILE,
    ProgressCallback,
    default_cache_dir,
)
from .errors import (
    CorruptCacheError,
    DownloadCancelled,
    DownloadError,
    NotCachedError,
    UnknownResourceError,
)

logger = logging.getLogger("mtgjson_views")

_CHUNK_SIZE = 65536

_DECODE_ERRORS = (
    gzip.BadGzipFile,
    EOFError,
    zlib.error,
    json.JSONDecodeError,
    UnicodeDecodeError,
    OSError,
)


class CacheManager:
    """Mirrors MTGJSON CDN files into a local directory.

    Files are fetched lazily on first access and fetched again once the
    version published in Meta.json differs from the one recorded in the
    local ``version.txt``.
    """

    def __init__(
        self,
        cache_dir: Path | str | None = None,
        *,
        offline: bool = False,
        timeout: float = 120.0,
        on_progress: ProgressCallback | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Create a cache manager.

        Args:
            cache_dir: Directory for cached data files. Defaults to a
                platform-appropriate cache directory.
            offline: If True, never contact the CDN (cached files only).
            timeout: Default HTTP timeout in seconds.
            on_progress: Optional callback
                ``(filename, bytes_downloaded, total_bytes)`` called for
                every chunk written during a download.
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
        """
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.offline = offline
        self.timeout = timeout
        self._on_progress = on_progress
        self._transport = transport
        self._client: httpx.Client | None = None
        self._remote_version: str | None = None
        self._lock = threading.RLock()

    @property
    def client(self) -> httpx.Client:
        """Lazy HTTP client, created on first use."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client, if open."""
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def version_file(self) -> Path:
        return self.cache_dir / VERSION_FILE

    def local_version(self) -> str | None:
        """Version recorded by the last successful download, if any."""
        try:
            version = self.version_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return version or None

    def _save_version(self, version: str) -> None:
        self.version_file.write_text(version, encoding="utf-8")

    def remote_version(self, *, timeout: float | None = None) -> str | None:
        """Current MTGJSON version published on the CDN.

        The first successful answer is memoized until
        :meth:`reset_remote_version` is called.

        Args:
            timeout: Per-call deadline in seconds, overriding the default.

        Returns:
            Version string (e.g. ``"5.2.2+20240101"``), or None when offline,
            when the CDN cannot be reached, or when Meta.json has no version.
        """
        if self._remote_version:
            return self._remote_version
        if self.offline:
            return None
        try:
            resp = self.client.get(META_URL, timeout=timeout or self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to fetch MTGJSON version from CDN: %s", e)
            return None
        version = _extract_version(payload)
        if version is None:
            logger.warning("Meta.json from CDN carries no version string")
            return None
        self._remote_version = version
        return version

    def reset_remote_version(self) -> None:
        """Forget the memoized remote version so the next check refetches it."""
        self._remote_version = None

    def is_stale(self) -> bool:
        """Whether the local cache should be refreshed from the CDN.

        Returns:
            False when the remote version cannot be determined (an
            unreachable CDN never forces a refetch), True when nothing has
            been downloaded yet, otherwise whether the versions differ.
        """
        remote = self.remote_version()
        if remote is None:
            return False
        local = self.local_version()
        if local is None:
            return True
        return local != remote

    def path_for(self, name: str) -> Path:
        """Local path a logical name is mirrored to.

        Raises:
            UnknownResourceError: If *name* is not in the catalog.
        """
        return self.cache_dir / _catalog_path(name)

    def ensure_resource(
        self, name: str, *, cancel: threading.Event | None = None
    ) -> Path:
        """Make a catalog file available locally, downloading if needed.

        In offline mode any cached copy is returned, stale or not.

        One ``version.txt`` covers the whole cache. After a version bump the
        first file downloaded records the new version, so files cached
        under the old release then count as fresh. Call :meth:`clear` (or
        :meth:`download` each file) to replace every file of a release.

        Args:
            name: Logical name (e.g. ``"cards"``, ``"meta"``).
            cancel: Optional event; setting it aborts a running download.

        Returns:
            Local filesystem path of the cached file.

        Raises:
            UnknownResourceError: If *name* is not in the catalog.
            NotCachedError: If offline and the file was never cached.
            DownloadError: If the file had to be downloaded and that failed.
        """
        local_path = self.path_for(name)
        with self._lock:
            if local_path.exists() and not self.is_stale():
                return local_path
            if self.offline:
                if local_path.exists():
                    return local_path
                raise NotCachedError(
                    f"{_catalog_path(name)} is not cached and offline mode is enabled"
                )
            return self.download(name, cancel=cancel)

    def download(
        self,
        name: str,
        *,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> Path:
        """Fetch a catalog file from the CDN, replacing any cached copy.

        Updates ``version.txt`` to the remote version once the file is in
        place.

        Args:
            name: Logical name (e.g. ``"cards"``).
            cancel: Optional event; setting it aborts the transfer.
            timeout: Per-call deadline in seconds, overriding the default.

        Returns:
            Local filesystem path of the downloaded file.

        Raises:
            UnknownResourceError: If *name* is not in the catalog.
            DownloadError: On HTTP or transfer failure.
            DownloadCancelled: If *cancel* was set before or during the
                transfer.
        """
        filename = _catalog_path(name)
        dest = self.cache_dir / filename
        with self._lock:
            self._download_file(filename, dest, cancel=cancel, timeout=timeout)
            version = self.remote_version(timeout=timeout)
            if version:
                self._save_version(version)
        return dest

    def _download_file(
        self,
        filename: str,
        dest: Path,
        *,
        cancel: threading.Event | None,
        timeout: float | None,
    ) -> None:
        """Stream one file into a temp file beside *dest*, then rename it.

        An existing copy of *dest* is only replaced after the whole body was
        written, and the temp file is removed on every failure path.
        """
        if cancel is not None and cancel.is_set():
            raise DownloadCancelled(filename)
        url = f"{CDN_BASE}/{filename}"
        logger.info("Downloading %s", url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{dest.name}.", suffix=".tmp", dir=dest.parent
        )
        tmp_dest = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                with self.client.stream(
                    "GET", url, timeout=timeout or self.timeout
                ) as resp:
                    resp.raise_for_status()
                    total = int(resp.headers.get("content-length", 0)) or None
                    downloaded = 0
                    for chunk in resp.iter_bytes(chunk_size=_CHUNK_SIZE):
                        if cancel is not None and cancel.is_set():
                            raise DownloadCancelled(filename)
                        f.write(chunk)
                        downloaded += len(chunk)
                        if self._on_progress:
                            self._on_progress(filename, downloaded, total)
            tmp_dest.replace(dest)
        except httpx.HTTPError as e:
            tmp_dest.unlink(missing_ok=True)
            raise DownloadError(filename, e) from e
        except BaseException:
            tmp_dest.unlink(missing_ok=True)
            raise

    def load_json(self, name: str) -> Any:
        """Load and parse a cached JSON document (``.gz`` handled transparently).

        A file that cannot be decoded is treated as corrupt: it is deleted so
        the next call downloads a fresh copy.

        Args:
            name: Logical file name (e.g. ``"meta"``, ``"keywords"``).

        Returns:
            The parsed JSON document.

        Raises:
            CorruptCacheError: If the file was corrupt (it has been removed).
            NotCachedError: If offline and the file was never cached.
        """
        path = self.ensure_resource(name)
        try:
            if path.suffix == ".gz":
                with gzip.open(path, "rt", encoding="utf-8") as f:
                    return json.load(f)
            return json.loads(path.read_text(encoding="utf-8"))
        except _DECODE_ERRORS as e:
            logger.warning("Corrupt cache file %s: %s, removing it", path.name, e)
            path.unlink(missing_ok=True)
            raise CorruptCacheError(
                f"Cache file '{path.name}' was corrupt and has been removed. "
                f"Retry to re-download. Original error: {e}"
            ) from e

    def clear(self) -> None:
        """Delete every cached file and recreate an empty cache directory.

        The memoized remote version is kept; call
        :meth:`reset_remote_version` as well to force a new lookup.
        """
        with self._lock:
            shutil.rmtree(self.cache_dir, ignore_errors=True)
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return f"CacheManager(cache_dir={self.cache_dir!r}, offline={self.offline})"


def _catalog_path(name: str) -> str:
    if name in PARQUET_FILES:
        return PARQUET_FILES[name]
    if name in JSON_FILES:
        return JSON_FILES[name]
    raise UnknownResourceError(name, "cache entry")


def _extract_version(payload: Any) -> str | None:
    """Read ``data.version`` (or ``meta.version``) from a Meta.json payload."""
    if not isinstance(payload, dict):
        return None
    for key in ("data", "meta"):
        section = payload.get(key)
        if isinstance(section, dict):
            version = section.get("version")
            if isinstance(version, str) and version:
                return version
    return None
