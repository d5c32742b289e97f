"""
api/main.py -- FastAPI application entry point for StockFolio.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for the mobile/web dev origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds every service once from Settings (store, hasher, token
issuer, session and credential managers, tiered cache, quote service),
starts the local-cache purge task, and tears everything down symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.stocks import router as stocks_router
from auth.credentials import CredentialManager
from auth.errors import AuthError
from auth.passwords import PasswordHasher
from auth.sessions import SessionLifecycleManager
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from cache.redis_tier import RedisTier
from cache.tiered import LocalCache, TieredCache
from core.config import Settings, get_settings
from core.fetcher import MarketDataError
from core.quotes import QuoteService

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("stockfolio.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def attach_services(app: FastAPI, settings: Settings, store: AccountStore, cache: TieredCache) -> None:
    """Build the auth and quote services and hang them on app.state.

    Shared by the real lifespan and the test lifespan in tests/conftest.py,
    so tests exercise exactly the production object graph.
    """
    hasher = PasswordHasher(settings)
    issuer = TokenIssuer(settings)
    sessions = SessionLifecycleManager(store, issuer, hasher, settings)
    app.state.settings = settings
    app.state.store = store
    app.state.cache = cache
    app.state.token_issuer = issuer
    app.state.sessions = sessions
    app.state.credentials = CredentialManager(store, hasher, sessions)
    app.state.quotes = QuoteService(cache, settings)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop expired local-cache entries that nobody reads again.

    Reads already evict lazily; this only bounds memory. The shared tier
    expires on its own. CancelledError from task.cancel() on shutdown
    propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.cache.local.purge_expired()
        if removed:
            logger.debug("Purged %d expired local cache entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info("StockFolio API starting up")

    store = AccountStore(settings.database_url)
    shared = RedisTier.from_settings(settings)
    cache = TieredCache(LocalCache(), shared)
    if shared is None:
        logger.warning("REDIS_URL not set -- running with the local cache tier only")
    elif not cache.ping():
        logger.warning("Redis unreachable at startup -- shared cache tier will degrade to misses")
    attach_services(app, settings, store, cache)
    logger.info("Auth and cache services initialized")

    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.cache_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    if shared is not None:
        shared.close()
    store.close()
    logger.info("StockFolio API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="StockFolio API",
    description="Portfolio tracking backend: accounts, sessions, and cached market data.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3001", "http://localhost:5173"],
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(stocks_router, prefix="/api/v1", tags=["Stocks"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth taxonomy onto HTTP. Messages are already user-safe."""
    response = _error(exc.status_code, exc.code, exc.message)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(MarketDataError)
async def market_data_error_handler(request: Request, exc: MarketDataError) -> JSONResponse:
    return _error(502, "upstream_error", "Market data provider unavailable.", str(exc))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After so clients know how long to back off."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured error for HTTPException; dict details are used verbatim."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    response = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected failures (store outages included).

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus database and shared-cache reachability. No auth, no rate limit."""
    components = {"app": "ok"}
    try:
        with request.app.state.store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"

    cache: TieredCache = request.app.state.cache
    if cache.shared is None:
        components["cache"] = "local_only"
    else:
        components["cache"] = "ok" if cache.ping() else "degraded"

    status = "healthy" if components["database"] == "ok" else "unhealthy"
    return HealthResponse(status=status, version=__version__, components=components)
