"""
fetcher.py -- All external market-data fetching.

Source: Yahoo Finance public JSON endpoints (no API key). These functions are
the "origin" behind cache.tiered.TieredCache: they know nothing about
caching and are called only on a cache miss.

Failure contract:
  - Unknown symbol  -> None (nothing to cache, nothing went wrong).
  - Network / HTTP / malformed payload -> MarketDataError. The cache lets it
    propagate so a failure is never cached, and the API maps it to 502.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import requests

logger = logging.getLogger("stockfolio.fetcher")

CHART_API = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
SEARCH_API = "https://query2.finance.yahoo.com/v1/finance/search"

_TIMEOUT = 10
_MAX_SEARCH_RESULTS = 10

# Module-level session shared across all fetcher calls for connection pooling.
# Yahoo rejects the default python-requests User-Agent.
_session = requests.Session()
_session.max_redirects = 3
_session.headers.update({"User-Agent": "Mozilla/5.0 (compatible; StockFolio/0.1)"})


class MarketDataError(Exception):
    """The market-data provider failed or returned something unusable."""


def fetch_quote(symbol: str) -> Optional[dict[str, Any]]:
    """Fetch the latest quote for symbol from the chart endpoint.

    Returns a flat quote dict, or None if Yahoo does not know the symbol.
    """
    try:
        resp = _session.get(
            CHART_API.format(symbol=symbol),
            params={"range": "1d", "interval": "1d"},
            timeout=_TIMEOUT,
        )
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        results = resp.json().get("chart", {}).get("result") or []
    except (requests.RequestException, ValueError) as e:
        logger.warning("Quote fetch failed for %s: %s", symbol, e)
        raise MarketDataError(f"Quote provider unavailable for {symbol}") from e

    if not results:
        return None
    return _quote_from_meta(symbol, results[0].get("meta") or {})


def _quote_from_meta(symbol: str, meta: dict[str, Any]) -> dict[str, Any]:
    price = meta.get("regularMarketPrice")
    if price is None:
        raise MarketDataError(f"Quote for {symbol} has no price")
    previous_close = meta.get("chartPreviousClose") or meta.get("previousClose") or 0.0
    change = price - previous_close if previous_close else 0.0
    change_percent = (change / previous_close * 100) if previous_close else 0.0
    return {
        "symbol": meta.get("symbol", symbol),
        "name": meta.get("longName") or meta.get("shortName") or symbol,
        "price": float(price),
        "change": round(change, 4),
        "change_percent": round(change_percent, 4),
        "volume": int(meta.get("regularMarketVolume") or 0),
        "day_high": meta.get("regularMarketDayHigh"),
        "day_low": meta.get("regularMarketDayLow"),
        "previous_close": previous_close or None,
        "currency": meta.get("currency"),
        "exchange": meta.get("exchangeName"),
        "last_updated": datetime.now(timezone.utc).isoformat(),
    }


def search_symbols(query: str) -> list[dict[str, str]]:
    """Search symbols and company names. Returns up to 10 {symbol, name, exchange}."""
    try:
        resp = _session.get(
            SEARCH_API,
            params={"q": query, "quotesCount": _MAX_SEARCH_RESULTS, "newsCount": 0},
            timeout=_TIMEOUT,
        )
        resp.raise_for_status()
        quotes = resp.json().get("quotes") or []
    except (requests.RequestException, ValueError) as e:
        logger.warning("Symbol search failed for %r: %s", query, e)
        raise MarketDataError("Search provider unavailable") from e

    results = []
    for q in quotes:
        if not q.get("symbol") or not (q.get("shortname") or q.get("longname")):
            continue
        results.append(
            {
                "symbol": q["symbol"],
                "name": q.get("shortname") or q.get("longname"),
                "exchange": q.get("exchDisp") or q.get("exchange") or "",
            }
        )
    return results[:_MAX_SEARCH_RESULTS]
