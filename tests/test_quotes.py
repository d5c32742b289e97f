"""Unit tests for core/quotes.py and core/fetcher.py.

All HTTP is mocked. Tests focus on:
- symbol validation and normalization
- cache hit / cache miss behavior through the tiered cache
- batch deduplication and per-symbol failure isolation
- market overview assembly and proactive quote seeding
- fetcher payload mapping and failure contract
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from cache.tiered import LocalCache, TieredCache
from core.fetcher import MarketDataError, fetch_quote, search_symbols
from core.quotes import INDICES, TRENDING, QuoteService, normalize_symbol

from conftest import SAMPLE_QUOTE


def _quote(symbol: str, change_percent: float = 1.0, volume: int = 100) -> dict:
    return {**SAMPLE_QUOTE, "symbol": symbol, "change_percent": change_percent, "volume": volume}


@pytest.fixture
def cache() -> TieredCache:
    return TieredCache(LocalCache())


class TestNormalizeSymbol:
    @pytest.mark.parametrize("raw,expected", [("aapl", "AAPL"), (" brk.b ", "BRK.B"), ("^gspc", "^GSPC")])
    def test_valid(self, raw, expected):
        assert normalize_symbol(raw) == expected

    @pytest.mark.parametrize("raw", ["", "AAPL; DROP", "WAYTOOLONGSYMBOL", "a/b"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError, match="Invalid symbol"):
            normalize_symbol(raw)


class TestQuoteService:
    def test_cache_hit_skips_fetcher(self, cache, settings):
        fetcher = MagicMock(return_value=_quote("AAPL"))
        service = QuoteService(cache, settings, quote_fetcher=fetcher)
        service.get_quote("aapl")
        service.get_quote("AAPL")
        fetcher.assert_called_once_with("AAPL")

    def test_unknown_symbol_returns_none(self, cache, settings):
        service = QuoteService(cache, settings, quote_fetcher=MagicMock(return_value=None))
        assert service.get_quote("ZZZZ") is None

    def test_provider_error_propagates(self, cache, settings):
        service = QuoteService(cache, settings, quote_fetcher=MagicMock(side_effect=MarketDataError("down")))
        with pytest.raises(MarketDataError):
            service.get_quote("AAPL")

    def test_get_quotes_dedupes_and_skips_failures(self, cache, settings):
        def fetch(symbol):
            if symbol == "BAD":
                raise MarketDataError("down")
            if symbol == "NONE":
                return None
            return _quote(symbol)

        fetcher = MagicMock(side_effect=fetch)
        service = QuoteService(cache, settings, quote_fetcher=fetcher)
        results = service.get_quotes(["aapl", "AAPL", "BAD", "NONE", "not valid!", "msft"])
        assert [q["symbol"] for q in results] == ["AAPL", "MSFT"]
        assert fetcher.call_count == 4

    def test_search_normalizes_and_caches(self, cache, settings):
        search = MagicMock(return_value=[{"symbol": "AAPL", "name": "Apple Inc.", "exchange": "NASDAQ"}])
        service = QuoteService(cache, settings, search_fetcher=search)
        service.search("  Apple ")
        service.search("apple")
        search.assert_called_once_with("apple")

    def test_empty_search_skips_provider(self, cache, settings):
        search = MagicMock()
        service = QuoteService(cache, settings, search_fetcher=search)
        assert service.search("   ") == []
        search.assert_not_called()

    def test_market_overview_seeds_quote_cache(self, cache, settings):
        moves = {"AAPL": 2.0, "MSFT": -1.5, "TSLA": 5.0}

        def fetch(symbol):
            return _quote(symbol, change_percent=moves.get(symbol, 0.0), volume=len(symbol))

        fetcher = MagicMock(side_effect=fetch)
        service = QuoteService(cache, settings, quote_fetcher=fetcher)
        overview = service.market_overview()

        assert [i["symbol"] for i in overview["indices"]] == list(INDICES)
        assert [q["symbol"] for q in overview["top_gainers"]] == ["TSLA", "AAPL"]
        assert [q["symbol"] for q in overview["top_losers"]] == ["MSFT"]
        assert len(overview["most_active"]) == 5
        assert fetcher.call_count == len(INDICES) + len(TRENDING)

        # Quotes fetched for the overview are now served from cache.
        service.get_quote("AAPL")
        service.market_overview()
        assert fetcher.call_count == len(INDICES) + len(TRENDING)

    def test_market_overview_reuses_cached_trending_quotes(self, cache, settings):
        fetcher = MagicMock(side_effect=lambda symbol: _quote(symbol))
        service = QuoteService(cache, settings, quote_fetcher=fetcher)
        service.get_quote("NVDA")
        fetcher.reset_mock()

        service.market_overview()
        fetched = [call.args[0] for call in fetcher.call_args_list]
        assert "NVDA" not in fetched
        assert len(fetched) == len(INDICES) + len(TRENDING) - 1

    def test_refresh_quote_bypasses_cache(self, cache, settings):
        fetcher = MagicMock(side_effect=[_quote("AAPL", change_percent=1.0), _quote("AAPL", change_percent=2.0)])
        service = QuoteService(cache, settings, quote_fetcher=fetcher)
        assert service.get_quote("AAPL")["change_percent"] == 1.0
        assert service.refresh_quote("aapl")["change_percent"] == 2.0
        assert service.get_quote("AAPL")["change_percent"] == 2.0
        assert fetcher.call_count == 2

    def test_market_overview_total_failure_raises(self, cache, settings):
        service = QuoteService(cache, settings, quote_fetcher=MagicMock(side_effect=MarketDataError("down")))
        with pytest.raises(MarketDataError):
            service.market_overview()


class TestFetcher:
    def _response(self, status_code=200, payload=None):
        resp = MagicMock()
        resp.status_code = status_code
        resp.json.return_value = payload
        if status_code >= 400:
            resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code}")
        return resp

    def test_fetch_quote_maps_chart_meta(self):
        payload = {
            "chart": {
                "result": [
                    {
                        "meta": {
                            "symbol": "AAPL",
                            "longName": "Apple Inc.",
                            "regularMarketPrice": 110.0,
                            "chartPreviousClose": 100.0,
                            "regularMarketVolume": 1234,
                            "currency": "USD",
                            "exchangeName": "NMS",
                        }
                    }
                ]
            }
        }
        with patch("core.fetcher._session.get", return_value=self._response(payload=payload)):
            quote = fetch_quote("AAPL")
        assert quote["symbol"] == "AAPL"
        assert quote["name"] == "Apple Inc."
        assert quote["change"] == pytest.approx(10.0)
        assert quote["change_percent"] == pytest.approx(10.0)
        assert quote["volume"] == 1234

    def test_fetch_quote_404_returns_none(self):
        with patch("core.fetcher._session.get", return_value=self._response(status_code=404)):
            assert fetch_quote("ZZZZ") is None

    def test_fetch_quote_network_error_raises(self):
        with patch("core.fetcher._session.get", side_effect=requests.ConnectionError("boom")):
            with pytest.raises(MarketDataError):
                fetch_quote("AAPL")

    def test_fetch_quote_server_error_raises(self):
        with patch("core.fetcher._session.get", return_value=self._response(status_code=503)):
            with pytest.raises(MarketDataError):
                fetch_quote("AAPL")

    def test_search_filters_and_caps_results(self):
        quotes = [{"symbol": f"S{i}", "shortname": f"Name {i}", "exchDisp": "NYSE"} for i in range(15)]
        quotes.insert(0, {"symbol": "NONAME"})
        with patch("core.fetcher._session.get", return_value=self._response(payload={"quotes": quotes})):
            results = search_symbols("s")
        assert len(results) == 10
        assert results[0] == {"symbol": "S0", "name": "Name 0", "exchange": "NYSE"}
