"""
api/main.py -- FastAPI application entry point for the Carter Island auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one log line per request with latency

Lifespan builds the shared resources once (credential store, cache client,
identity resolver, activity recorder) and tears them down symmetrically.
Route code reaches them through request.app.state, never through globals.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import SERVER_ERROR_MESSAGE
from api.routes.v1.auth import router as auth_router
from auth.activity import ActivityRecorder
from auth.resolver import IdentityResolver
from auth.store import UserStore
from cache.store import CacheService
from core.config import get_settings

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("carterisland.api")

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Credential store -- the source of truth; everything else reads it.
      2. Cache -- optional; a failed probe is logged and the service runs
         purely on the store.
      3. Resolver and recorder -- both need the store and the cache.
    """
    logger.info("Auth API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    logger.info("Credential store initialized")
    app.state.cache = CacheService.from_settings(_settings)
    await app.state.cache.connect()
    app.state.resolver = IdentityResolver(
        app.state.user_store,
        app.state.cache,
        ttl_seconds=_settings.user_cache_ttl_seconds,
    )
    app.state.recorder = ActivityRecorder(app.state.user_store, app.state.cache)
    logger.info("Auth initialized (cache_enabled=%s)", app.state.cache.enabled)

    yield

    # Shutdown -- let in-flight audit writes finish before closing the store
    await app.state.recorder.drain()
    await app.state.cache.close()
    app.state.user_store.close()
    logger.info("Auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Carter Island Auth API",
    description="Credential login, bearer tokens, exclusive sessions and cached identity resolution.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {success: false, message} envelope so clients
# see exactly one failure shape regardless of which layer rejected them.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request body or parameters -> 400. Details go to the log only."""
    logger.debug("Validation failed on %s %s: %s", request.method, request.url.path, exc.errors())
    return _error(400, "Invalid request.")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return the envelope for all FastAPI/Starlette HTTP exceptions.

    Route and dependency code raises HTTPException with a {"code", "message"}
    dict as detail; only the message reaches the client. Framework-raised
    405s are normalized to "Method not allowed".
    """
    if exc.status_code == 405:
        message = "Method not allowed"
    elif isinstance(exc.detail, dict):
        message = str(exc.detail.get("message", ""))
    else:
        message = str(exc.detail)
    return _error(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, SERVER_ERROR_MESSAGE)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# The cache is optional infrastructure: its state is reported but never makes
# the service unhealthy. A failing database does.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Report database and cache connectivity."""
    components = {"app": "ok"}
    status_code = 200
    try:
        await asyncio.to_thread(request.app.state.user_store.ping)
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
        status_code = 503

    cache: CacheService = request.app.state.cache
    if not cache.enabled:
        components["cache"] = "disabled"
    else:
        components["cache"] = "ok" if await cache.ping() else "error"

    body = HealthResponse(
        status="healthy" if status_code == 200 else "unhealthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        components=components,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())
