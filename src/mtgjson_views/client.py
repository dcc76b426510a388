"""MtgJsonViews main entry point."""

from __future__ import annotations

from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from .cache import CacheManager
from .config import ClientConfig, ProgressCallback
from .connection import Connection
from .errors import MtgJsonViewsError
from .models import Meta

T = TypeVar("T")


class MtgJsonViews:
    """Queryable local mirror of MTGJSON data.

    Parquet files are downloaded from the MTGJSON CDN on first use and
    exposed as DuckDB views with native list and JSON columns.

    Usage::

        with MtgJsonViews() as mtg:
            mtg.ensure_views("cards", "card_legalities")
            sql, params = (
                SQLBuilder("cards")
                .where_contains("keywords", "Flying")
                .limit(10)
                .build()
            )
            rows = mtg.sql(sql, params)
    """

    def __init__(
        self,
        cache_dir: Path | str | None = None,
        *,
        offline: bool = False,
        timeout: float = 120.0,
        on_progress: ProgressCallback | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            cache_dir: Directory for cached data files. Defaults to the
                platform cache directory.
            offline: If True, never download from the CDN.
            timeout: HTTP request timeout in seconds.
            on_progress: Optional callback ``(filename, downloaded, total)``
                called during downloads.
            config: A :class:`ClientConfig` (e.g. ``ClientConfig.from_env()``);
                when given, the other arguments are ignored.
        """
        if config is None:
            config = ClientConfig(
                offline=offline, timeout=timeout, on_progress=on_progress
            )
            if cache_dir is not None:
                config.cache_dir = Path(cache_dir)
        self.config = config
        self._cache = CacheManager(
            config.cache_dir,
            offline=config.offline,
            timeout=config.timeout,
            on_progress=config.on_progress,
        )
        self._conn = Connection(self._cache)

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def connection(self) -> Connection:
        return self._conn

    def ensure_views(self, *view_names: str) -> None:
        """Register views so raw SQL can reference them.

        Example::

            mtg.ensure_views("cards", "sets")
            mtg.sql("SELECT s.name, COUNT(*) FROM cards c "
                    "JOIN sets s ON c.setCode = s.code GROUP BY s.name")
        """
        self._conn.ensure_views(*view_names)

    @property
    def views(self) -> list[str]:
        """Names of the registered DuckDB views/tables, sorted."""
        return self._conn.views()

    @property
    def meta(self) -> Meta | None:
        """MTGJSON build metadata, or None if Meta.json is unavailable."""
        try:
            raw = self._cache.load_json("meta")
        except (FileNotFoundError, MtgJsonViewsError):
            return None
        data = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(data, dict):
            return None
        try:
            return Meta.model_validate(data)
        except ValidationError:
            return None

    def sql(
        self,
        query: str,
        params: list[Any] | None = None,
        *,
        as_dataframe: bool = False,
    ) -> list[dict[str, Any]] | Any:
        """Execute raw SQL.

        Views are registered lazily; call :meth:`ensure_views` for the ones
        the query touches first.

        Args:
            query: SQL with ``$1``, ``$2``, ... placeholders.
            params: Placeholder values.
            as_dataframe: Return a Polars DataFrame instead of dicts.
        """
        if as_dataframe:
            return self._conn.execute_df(query, params)
        return self._conn.execute(query, params)

    def models(
        self, query: str, model: type[T], params: list[Any] | None = None
    ) -> list[T]:
        """Execute SQL and decode each row into *model*.

        Example::

            mtg.ensure_views("card_legalities")
            rows = mtg.models(
                "SELECT * FROM card_legalities WHERE uuid = $1",
                LegalityEntry,
                [uuid],
            )
        """
        return self._conn.execute_models(query, params, model=model)

    def refresh(self) -> bool:
        """Drop view registrations if the CDN published a new version.

        Long-running processes can call this periodically; after it returns
        True, the next :meth:`ensure_views` re-downloads and re-registers.

        Returns:
            True if the cache was stale and state was reset.
        """
        if not self._cache.is_stale():
            return False
        self._conn.clear_views()
        self._cache.reset_remote_version()
        return True

    def export_db(self, path: Path | str) -> Path:
        """Write every registered view to a standalone ``.duckdb`` file.

        The file can be opened by any DuckDB client without this package.
        An existing file at *path* is replaced.

        Returns:
            The output path.
        """
        path = Path(path)
        path.unlink(missing_ok=True)
        self._conn.export(path.as_posix())
        return path

    def close(self) -> None:
        """Close the DuckDB connection and HTTP client."""
        self._conn.close()
        self._cache.close()

    def __enter__(self) -> MtgJsonViews:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"MtgJsonViews(cache_dir={self._cache.cache_dir!r})"
