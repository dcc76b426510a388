"""Async wrapper for MtgJsonViews.

Every call runs on a thread pool, so async frameworks (FastAPI, aiohttp,
bots) never block their event loop on downloads or DuckDB queries. DuckDB
releases the GIL while executing, and the connection hands each worker
thread its own cursor, so queries on different workers run in parallel.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from .client import MtgJsonViews

T = TypeVar("T")


class AsyncMtgJsonViews:
    """Async wrapper around :class:`MtgJsonViews`.

    Usage::

        async with AsyncMtgJsonViews() as mtg:
            await mtg.ensure_views("cards")
            rows = await mtg.sql("SELECT COUNT(*) AS n FROM cards")
    """

    def __init__(self, *, max_workers: int = 4, **kwargs: Any) -> None:
        """Initialize the async client.

        Args:
            max_workers: Thread pool size for concurrent calls.
            **kwargs: Forwarded to :class:`MtgJsonViews` (cache_dir, offline, ...).
        """
        self._inner = MtgJsonViews(**kwargs)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="mtgjson-views"
        )

    @property
    def inner(self) -> MtgJsonViews:
        """The wrapped synchronous client."""
        return self._inner

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run any synchronous callable on the worker pool.

        Example::

            meta = await mtg.run(lambda: mtg.inner.meta)
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(fn, *args, **kwargs)
        )

    async def ensure_views(self, *view_names: str) -> None:
        await self.run(self._inner.ensure_views, *view_names)

    async def sql(
        self,
        query: str,
        params: list[Any] | None = None,
        **kwargs: Any,
    ) -> list[dict[str, Any]] | Any:
        """Execute raw SQL; keyword arguments go to :meth:`MtgJsonViews.sql`."""
        return await self.run(self._inner.sql, query, params, **kwargs)

    async def refresh(self) -> bool:
        return await self.run(self._inner.refresh)

    async def close(self) -> None:
        """Wait for running calls, then close the client."""
        self._executor.shutdown(wait=True)
        self._inner.close()

    async def __aenter__(self) -> AsyncMtgJsonViews:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
