"""DuckDB connection wrapper: view materialization and query execution."""

from __future__ import annotations

import datetime
import json
import logging
import os
import tempfile
import threading
from typing import Any, TypeVar

import duckdb

from . import schema
from .cache import CacheManager
from .config import PARQUET_FILES
from .errors import UnknownResourceError, ViewRegistrationError
from .models import decode_rows

logger = logging.getLogger("mtgjson_views")

T = TypeVar("T")


class ViewRegistry:
    """Names of the views registered on one connection.

    Readers check an immutable snapshot without locking. Writers hold
    :attr:`lock`, re-check, do their work, and only then publish a new
    snapshot, so a name is visible exactly when its view exists.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._names: frozenset[str] = frozenset()

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def names(self) -> list[str]:
        return sorted(self._names)

    def add(self, name: str) -> None:
        """Publish *name*; the caller must hold :attr:`lock`."""
        self._names = self._names | {name}

    def clear(self) -> None:
        with self.lock:
            self._names = frozenset()


class Connection:
    """Wraps an in-memory DuckDB database and registers parquet files as views.

    Views adapt to the parquet schema they find:

    - comma-separated VARCHAR list columns become ``VARCHAR[]``
    - JSON text columns become DuckDB ``JSON``
    - wide-format legalities are unpivoted to ``(uuid, format, status)`` rows

    Queries run on a per-thread cursor, so the connection can be used from
    worker threads concurrently.
    """

    def __init__(
        self,
        cache: CacheManager,
        *,
        rules: schema.ClassificationRules = schema.DEFAULT_RULES,
    ) -> None:
        """Create a connection backed by the given cache.

        Args:
            cache: CacheManager used to download/locate parquet files.
            rules: Column classification rules for generic views.
        """
        self.cache = cache
        self.rules = rules
        self._conn: duckdb.DuckDBPyConnection = duckdb.connect(":memory:")
        self._registry = ViewRegistry()
        self._local = threading.local()
        self._cursors: list[duckdb.DuckDBPyConnection] = []
        self._cursors_lock = threading.Lock()

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        cursor = getattr(self._local, "cursor", None)
        if cursor is None:
            with self._cursors_lock:
                cursor = self._conn.cursor()
                self._cursors.append(cursor)
            self._local.cursor = cursor
        return cursor

    def close(self) -> None:
        """Close every cursor and the underlying DuckDB database."""
        with self._cursors_lock:
            cursors, self._cursors = self._cursors, []
        for cursor in cursors:
            cursor.close()
        self._local = threading.local()
        self._conn.close()

    # -- view registration -------------------------------------------------

    def ensure_views(
        self, *view_names: str, cancel: threading.Event | None = None
    ) -> None:
        """Register views, downloading and materializing each at most once.

        Args:
            *view_names: Logical view names (e.g. ``"cards"``, ``"sets"``).
            cancel: Optional event that aborts a running download.

        Raises:
            UnknownResourceError: For a name outside the parquet catalog.
            ViewRegistrationError: If probing or creating a view failed.
        """
        unknown = [
            name
            for name in view_names
            if name not in PARQUET_FILES and name not in self._registry
        ]
        if unknown:
            raise UnknownResourceError(unknown[0], "view")
        for name in view_names:
            self._ensure_view(name, cancel)

    def _ensure_view(self, view_name: str, cancel: threading.Event | None) -> None:
        if view_name in self._registry:
            return
        with self._registry.lock:
            if view_name in self._registry:
                return
            path = self.cache.ensure_resource(view_name, cancel=cancel)
            self._materialize(view_name, path.as_posix())
            self._registry.add(view_name)

    def _materialize(self, view_name: str, path_str: str) -> None:
        """Probe the parquet schema and create the view in one statement."""
        source = schema.parquet_source(path_str)
        cursor = self._cursor()
        try:
            probe = cursor.execute(schema.describe_statement(source)).fetchall()
            columns = {row[0]: row[1] for row in probe}
            pivot = schema.PIVOT_VIEWS.get(view_name)
            if pivot is not None:
                statement = schema.build_pivot_statement(
                    view_name, source, columns, pivot
                )
                logger.debug(
                    "Unpivoting %s over %d categories",
                    view_name,
                    len(pivot.category_columns(columns)),
                )
            else:
                classification = schema.classify_columns(
                    view_name, columns, self.rules
                )
                statement = schema.build_view_statement(
                    view_name, source, classification, self.rules
                )
                logger.debug(
                    "Adapting %s: lists=%s json=%s",
                    view_name,
                    classification.list_columns,
                    classification.json_columns,
                )
            cursor.execute(statement)
        except duckdb.Error as e:
            raise ViewRegistrationError(view_name, e) from e
        logger.debug("Registered view: %s -> %s", view_name, path_str)

    def register_table_from_data(
        self, table_name: str, data: list[dict[str, Any]]
    ) -> None:
        """Create a table from a list of row dicts.

        The rows are written to a temporary JSON file and loaded with
        ``read_json_auto``, so column types are inferred the same way as for
        CDN data. An empty list is a no-op.
        """
        if not data:
            return
        fd, tmp_name = tempfile.mkstemp(suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            self._load_json_table(table_name, tmp_name, "")
        finally:
            os.unlink(tmp_name)

    def register_table_from_ndjson(self, table_name: str, ndjson_path: str) -> None:
        """Create a table from a newline-delimited JSON file.

        Streams from disk, so large datasets never sit in a Python list.
        """
        self._load_json_table(
            table_name, ndjson_path, ", format='newline_delimited'"
        )

    def _load_json_table(self, table_name: str, path: str, options: str) -> None:
        path_lit = schema.quote_literal(path.replace("\\", "/"))
        table = schema.quote_ident(table_name)
        with self._registry.lock:
            cursor = self._cursor()
            try:
                cursor.execute(f"DROP TABLE IF EXISTS {table}")
                cursor.execute(
                    f"CREATE TABLE {table} AS "
                    f"SELECT * FROM read_json_auto({path_lit}{options})"
                )
            except duckdb.Error as e:
                raise ViewRegistrationError(table_name, e) from e
            self._registry.add(table_name)

    def has_view(self, name: str) -> bool:
        return name in self._registry

    def views(self) -> list[str]:
        """Sorted names of all registered views and tables."""
        return self._registry.names()

    def clear_views(self) -> None:
        """Forget all registrations so the next access re-materializes.

        Existing DuckDB views are replaced when re-registered.
        """
        self._registry.clear()

    # -- execution ---------------------------------------------------------

    def _run(self, sql: str, params: list[Any] | None) -> duckdb.DuckDBPyConnection:
        cursor = self._cursor()
        if params:
            return cursor.execute(sql, params)
        return cursor.execute(sql)

    def execute(
        self, sql: str, params: list[Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute SQL and return the rows as dicts.

        Dates and datetimes, including those nested in structs and lists,
        are returned as ISO strings.

        Args:
            sql: SQL using ``$1``, ``$2``, ... placeholders.
            params: Values for the placeholders, in order.
        """
        result = self._run(sql, params)
        if result.description is None:
            return []
        columns = [desc[0] for desc in result.description]
        return [
            {col: _coerce_dates(val) for col, val in zip(columns, row)}
            for row in result.fetchall()
        ]

    def execute_scalar(self, sql: str, params: list[Any] | None = None) -> Any:
        """First column of the first row, or None for an empty result."""
        row = self._run(sql, params).fetchone()
        return row[0] if row else None

    def execute_json(self, sql: str, params: list[Any] | None = None) -> str:
        """Execute SQL and return the rows as a JSON array string.

        Serialization happens inside DuckDB (``to_json(list(...))``), skipping
        Python dict construction. Returns ``"[]"`` for an empty result.
        """
        wrapped = f"SELECT CAST(to_json(list(sub)) AS VARCHAR) FROM ({sql}) sub"
        row = self._run(wrapped, params).fetchone()
        if row is None or row[0] is None:
            return "[]"
        return row[0]

    def execute_models(
        self,
        sql: str,
        params: list[Any] | None = None,
        *,
        model: type[T],
    ) -> list[T]:
        """Execute SQL and decode the rows into *model* instances.

        Runs :meth:`execute_json`, then :func:`mtgjson_views.models.decode_rows`.
        """
        return decode_rows(self.execute_json(sql, params), model)

    def execute_df(self, sql: str, params: list[Any] | None = None) -> Any:
        """Execute SQL and return a Polars DataFrame.

        Raises:
            ImportError: If ``polars`` is not installed.
        """
        try:
            import polars as pl
        except ImportError as err:
            raise ImportError(
                "polars is required for DataFrame output. "
                "Install with: pip install mtgjson-views[polars]"
            ) from err
        return pl.from_arrow(self._run(sql, params).fetch_arrow_table())

    def export(self, path: str) -> None:
        """Copy every registered view into tables of a new DuckDB file at *path*."""
        cursor = self._cursor()
        cursor.execute(f"ATTACH {schema.quote_literal(path)} AS export_db")
        try:
            for name in self.views():
                ident = schema.quote_ident(name)
                cursor.execute(
                    f"CREATE TABLE export_db.{ident} AS SELECT * FROM {ident}"
                )
        finally:
            cursor.execute("DETACH export_db")

    @property
    def raw(self) -> duckdb.DuckDBPyConnection:
        """The underlying DuckDB connection, for features not wrapped here."""
        return self._conn


def _coerce_dates(val: Any) -> Any:
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, dict):
        return {k: _coerce_dates(v) for k, v in val.items()}
    if isinstance(val, list):
        return [_coerce_dates(item) for item in val]
    return val
