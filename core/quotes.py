"""
core/quotes.py -- Quote, search, and market overview served through the
tiered cache.

No side effects beyond cache writes. Called by the REST API (via
api/routes/v1/stocks.py). The fetch functions are injectable so tests run
without the network.

Cache keys:
    quote:<SYMBOL>         ttl = cache_ttl_quotes
    search:<query>         ttl = cache_ttl_search
    market:overview        ttl = cache_ttl_movers
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from cache.tiered import TieredCache
from core.config import Settings
from core.fetcher import MarketDataError, fetch_quote, search_symbols

logger = logging.getLogger("stockfolio.quotes")

_SYMBOL_RE = re.compile(r"^[A-Z0-9.^=-]{1,12}$")
_MAX_QUERY_LENGTH = 64

INDICES = {
    "^GSPC": "S&P 500",
    "^DJI": "Dow Jones",
    "^IXIC": "NASDAQ",
    "^RUT": "Russell 2000",
}
TRENDING = ["AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "META", "NVDA", "NFLX"]


def normalize_symbol(symbol: str) -> str:
    """Strip and uppercase symbol. Raises ValueError if it is not a ticker."""
    normalized = symbol.strip().upper()
    if not _SYMBOL_RE.match(normalized):
        raise ValueError(f"Invalid symbol: {symbol!r}")
    return normalized


class QuoteService:
    def __init__(
        self,
        cache: TieredCache,
        settings: Settings,
        quote_fetcher: Callable[[str], Optional[dict]] = fetch_quote,
        search_fetcher: Callable[[str], list] = search_symbols,
    ) -> None:
        self.cache = cache
        self.quote_ttl = settings.cache_ttl_quotes
        self.search_ttl = settings.cache_ttl_search
        self.overview_ttl = settings.cache_ttl_movers
        self._fetch_quote = quote_fetcher
        self._search = search_fetcher

    def get_quote(self, symbol: str) -> Optional[dict[str, Any]]:
        """Return the quote for symbol, or None if the provider has no such symbol.

        Raises ValueError for a malformed symbol and MarketDataError when the
        provider fails on a cache miss.
        """
        normalized = normalize_symbol(symbol)
        return self.cache.get(f"quote:{normalized}", self.quote_ttl, lambda _key: self._fetch_quote(normalized))

    def refresh_quote(self, symbol: str) -> Optional[dict[str, Any]]:
        """Drop the cached quote from both tiers, then read it again from the provider."""
        normalized = normalize_symbol(symbol)
        self.cache.invalidate(f"quote:{normalized}")
        return self.get_quote(normalized)

    def get_quotes(self, symbols: list[str]) -> list[dict[str, Any]]:
        """Quotes for many symbols, in first-occurrence order.

        Deduplicates input. Skips malformed symbols, unknown symbols, and
        symbols whose fetch failed; one bad ticker never sinks the batch.
        """
        seen: set[str] = set()
        results: list[dict[str, Any]] = []
        for symbol in symbols:
            try:
                normalized = normalize_symbol(symbol)
            except ValueError:
                continue
            if normalized in seen:
                continue
            seen.add(normalized)
            try:
                quote = self.get_quote(normalized)
            except MarketDataError as e:
                logger.warning("Skipping %s in batch: %s", normalized, e)
                continue
            if quote is not None:
                results.append(quote)
        return results

    def search(self, query: str) -> list[dict[str, str]]:
        query = " ".join(query.split()).lower()
        if not query:
            return []
        if len(query) > _MAX_QUERY_LENGTH:
            raise ValueError("Search query too long")
        return self.cache.get(f"search:{query}", self.search_ttl, lambda _key: self._search(query))

    def market_overview(self) -> dict[str, Any]:
        return self.cache.get("market:overview", self.overview_ttl, lambda _key: self._build_overview())

    def _build_overview(self) -> dict[str, Any]:
        """Assemble indices and movers. Every quote ends up under its quote: key."""
        indices = []
        for symbol, name in INDICES.items():
            quote = self._fetch_for_overview(symbol)
            if quote is not None:
                indices.append(
                    {
                        "symbol": symbol,
                        "name": name,
                        "price": quote["price"],
                        "change": quote["change"],
                        "change_percent": quote["change_percent"],
                    }
                )

        # Cached trending quotes are reused; misses are fetched and cached per symbol.
        trending = self.get_quotes(TRENDING)
        gainers = sorted((q for q in trending if q["change_percent"] > 0), key=lambda q: -q["change_percent"])
        losers = sorted((q for q in trending if q["change_percent"] < 0), key=lambda q: q["change_percent"])
        most_active = sorted(trending, key=lambda q: -q["volume"])

        if not indices and not trending:
            raise MarketDataError("Market overview unavailable")

        return {
            "indices": indices,
            "top_gainers": gainers[:5],
            "top_losers": losers[:5],
            "most_active": most_active[:5],
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    def _fetch_for_overview(self, symbol: str) -> Optional[dict[str, Any]]:
        try:
            quote = self._fetch_quote(symbol)
        except MarketDataError as e:
            logger.warning("Overview skipped %s: %s", symbol, e)
            return None
        if quote is not None:
            self.cache.set(f"quote:{symbol}", quote, self.quote_ttl)
        return quote
