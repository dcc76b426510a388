"""mtgjson-views: MTGJSON CDN data as local DuckDB views."""

from .async_client import AsyncMtgJsonViews
from .cache import CacheManager
from .client import MtgJsonViews
from .config import ClientConfig
from .connection import Connection
from .errors import (
    CorruptCacheError,
    DownloadCancelled,
    DownloadError,
    MtgJsonViewsError,
    NotCachedError,
    UnknownResourceError,
    ViewRegistrationError,
)
from .sql import SQLBuilder

__all__ = [
    "AsyncMtgJsonViews",
    "CacheManager",
    "ClientConfig",
    "Connection",
    "CorruptCacheError",
    "DownloadCancelled",
    "DownloadError",
    "MtgJsonViews",
    "MtgJsonViewsError",
    "NotCachedError",
    "SQLBuilder",
    "UnknownResourceError",
    "ViewRegistrationError",
]
__version__ = "0.1.0"
