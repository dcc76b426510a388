"""CDN endpoints, the cache catalog, and client defaults.

The catalog maps every logical name the package knows about to a path
relative to the MTGJSON v5 CDN root. Local copies mirror those relative
paths under the cache directory.
"""

from __future__ import annotations

import os
import platform
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

#: Base URL for the MTGJSON v5 API / CDN.
CDN_BASE = "https://mtgjson.com/api/v5"

#: URL for the MTGJSON version metadata endpoint.
META_URL = f"{CDN_BASE}/Meta.json"

#: Name of the version marker written at the cache root.
VERSION_FILE = "version.txt"

#: Logical view names mapped to CDN parquet paths.
PARQUET_FILES: dict[str, str] = {
    # Flat normalized tables
    "cards": "parquet/cards.parquet",
    "tokens": "parquet/tokens.parquet",
    "sets": "parquet/sets.parquet",
    "card_identifiers": "parquet/cardIdentifiers.parquet",
    "card_legalities": "parquet/cardLegalities.parquet",
    "card_foreign_data": "parquet/cardForeignData.parquet",
    "card_rulings": "parquet/cardRulings.parquet",
    "card_purchase_urls": "parquet/cardPurchaseUrls.parquet",
    "set_translations": "parquet/setTranslations.parquet",
    "token_identifiers": "parquet/tokenIdentifiers.parquet",
    # Booster tables
    "set_booster_content_weights": "parquet/setBoosterContentWeights.parquet",
    "set_booster_contents": "parquet/setBoosterContents.parquet",
    "set_booster_sheet_cards": "parquet/setBoosterSheetCards.parquet",
    "set_booster_sheets": "parquet/setBoosterSheets.parquet",
    # Full nested
    "all_printings": "parquet/AllPrintings.parquet",
    # Prices and SKUs
    "all_prices_today": "parquet/AllPricesToday.parquet",
    "all_prices": "parquet/AllPrices.parquet",
    "tcgplayer_skus": "parquet/TcgplayerSkus.parquet",
}

#: Logical document names mapped to CDN JSON paths (``.gz`` is gunzipped on load).
JSON_FILES: dict[str, str] = {
    "all_prices_today_json": "AllPricesToday.json.gz",
    "tcgplayer_skus_json": "TcgplayerSkus.json.gz",
    "keywords": "Keywords.json",
    "card_types": "CardTypes.json",
    "deck_list": "DeckList.json",
    "enum_values": "EnumValues.json",
    "meta": "Meta.json",
}

#: Signature of download progress callbacks:
#: ``(filename, bytes_downloaded, total_bytes_or_None)``.
ProgressCallback = Callable[[str, int, int | None], None]

_APP_DIR = "mtgjson-views"


def default_cache_dir() -> Path:
    """Platform-appropriate cache directory.

    Returns:
        ``%LOCALAPPDATA%/mtgjson-views`` on Windows,
        ``~/Library/Caches/mtgjson-views`` on macOS,
        ``$XDG_CACHE_HOME/mtgjson-views`` (or ``~/.cache/mtgjson-views``)
        everywhere else.
    """
    system = platform.system()
    if system == "Windows":
        local = os.environ.get("LOCALAPPDATA")
        base = Path(local) if local else Path.home() / "AppData" / "Local"
    elif system == "Darwin":
        base = Path.home() / "Library" / "Caches"
    else:
        xdg = os.environ.get("XDG_CACHE_HOME")
        base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / _APP_DIR


def _env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class ClientConfig:
    """Settings shared by the cache manager and the client facade.

    Attributes:
        cache_dir: Directory for cached data files.
        offline: Never touch the network; serve cached files only.
        timeout: HTTP timeout in seconds for each request.
        on_progress: Optional download progress callback.
    """

    cache_dir: Path = field(default_factory=default_cache_dir)
    offline: bool = False
    timeout: float = 120.0
    on_progress: ProgressCallback | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Build a config from ``MTGJSON_VIEWS_*`` environment variables.

        Recognised variables: ``MTGJSON_VIEWS_CACHE_DIR``,
        ``MTGJSON_VIEWS_OFFLINE`` (``1``/``true``/``yes``/``on``) and
        ``MTGJSON_VIEWS_TIMEOUT`` (seconds). Unset variables keep defaults.

        Raises:
            ValueError: If ``MTGJSON_VIEWS_TIMEOUT`` is not a positive number.
        """
        env = os.environ if environ is None else environ
        config = cls()
        cache_dir = env.get("MTGJSON_VIEWS_CACHE_DIR")
        if cache_dir:
            config.cache_dir = Path(cache_dir).expanduser()
        if "MTGJSON_VIEWS_OFFLINE" in env:
            config.offline = _env_flag(env["MTGJSON_VIEWS_OFFLINE"])
        timeout = env.get("MTGJSON_VIEWS_TIMEOUT")
        if timeout:
            config.timeout = float(timeout)
            if config.timeout <= 0:
                raise ValueError(
                    f"MTGJSON_VIEWS_TIMEOUT must be positive, got {timeout!r}"
                )
        return config
