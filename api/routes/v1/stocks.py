"""
api/routes/v1/stocks.py -- Market data REST endpoints.

Routes:
  GET /api/v1/stocks/quote/{symbol}   -- one quote (cached, cache_ttl_quotes);
                                        ?refresh=true drops the cached copy first
  GET /api/v1/stocks/search?q=        -- symbol/company search (cache_ttl_search)
  GET /api/v1/stocks/overview         -- indices and movers (cache_ttl_movers)

All three read through the TieredCache held by QuoteService. Provider
failures raise MarketDataError, mapped to 502 upstream_error in api/main.py.
Quotes are public; no auth dependency.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from api.models import ErrorDetail, MarketOverviewResponse, QuoteResponse, SearchResult
from core.quotes import QuoteService

router = APIRouter()


def _quotes(request: Request) -> QuoteService:
    return request.app.state.quotes


@router.get("/stocks/quote/{symbol}", response_model=QuoteResponse)
def get_quote(request: Request, symbol: str, refresh: bool = False) -> QuoteResponse:
    service = _quotes(request)
    try:
        quote = service.refresh_quote(symbol) if refresh else service.get_quote(symbol)
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="invalid_symbol", message=str(exc)).model_dump(),
        ) from None
    if quote is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="not_found", message=f"No quote for {symbol.upper()}.").model_dump(),
        )
    return QuoteResponse(**quote)


@router.get("/stocks/search", response_model=list[SearchResult])
def search(request: Request, q: str = Query(min_length=1, max_length=64)) -> list[SearchResult]:
    return [SearchResult(**item) for item in _quotes(request).search(q)]


@router.get("/stocks/overview", response_model=MarketOverviewResponse)
def overview(request: Request) -> MarketOverviewResponse:
    return MarketOverviewResponse(**_quotes(request).market_overview())
