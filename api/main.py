"""
api/main.py -- FastAPI application entry point for identity-rbac.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SessionMiddleware     -- holds OAuth state between redirect and callback

Lifespan handles startup (database, notifier, RbacService, OAuth registry,
session purge task) and shutdown (stop purge task, dispose engine)
symmetrically.

This module and main.py are the only places get_settings() is called. Every
component below receives the Settings object or values taken from it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.errors import error_response, identity_error_handler
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.rbac import router as rbac_router
from auth.oauth import build_oauth
from auth.service import build_service
from auth.store import Database
from core.config import get_settings
from core.errors import IdentityError
from mail.notifier import build_notifier

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("identityrbac.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float, stop: asyncio.Event) -> None:
    """Reclaim expired sessions every SESSION_PURGE_INTERVAL_SECONDS until stop is set.

    The purge itself is blocking database work, so it runs in a worker thread.
    A failed sweep is logged and retried on the next tick. Shutdown sets stop
    and awaits the task, so a sweep in progress finishes before the engine is
    disposed.
    """
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            return
        except asyncio.TimeoutError:
            pass
        try:
            await asyncio.to_thread(app.state.rbac.purge_expired_sessions)
        except IdentityError as exc:
            logger.error("Session purge failed (%s); retrying next interval", exc.code)
        except Exception:
            logger.exception("Session purge crashed; retrying next interval")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Database first -- the schema must exist before any request arrives.
      2. Service second -- depends on the database and the notifier.
      3. Purge task last -- references app.state.rbac.
    """
    settings = get_settings()
    logger.info("identity-rbac API starting up")
    db = Database(settings.database_url)
    app.state.settings = settings
    app.state.rbac = build_service(settings, db, build_notifier(settings))
    app.state.oauth = build_oauth(settings)
    app.state.purge_stop = asyncio.Event()
    app.state.purge_task = asyncio.create_task(
        _purge_loop(app, settings.session_purge_interval_seconds, app.state.purge_stop)
    )
    logger.info("Service initialized")

    yield

    # Shutdown. The engine is disposed only after the purge task has finished.
    app.state.purge_stop.set()
    await app.state.purge_task
    db.close()
    logger.info("identity-rbac API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="identity-rbac API",
    description="Token-based authentication, invitation onboarding, and role-based access control.",
    version=API_VERSION,
    lifespan=lifespan,
    # Schema browsing only in development.
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST call is the outermost
# layer. Register innermost first: Session -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

# Authlib stores the OAuth state value in the session between the
# authorization redirect and the callback.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=not _settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


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
app.include_router(rbac_router, prefix="/api/v1", tags=["RBAC"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

app.add_exception_handler(IdentityError, identity_error_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Validation errors echo the rejected input, so password fields are dropped
    from the detail before it is serialized.
    """
    errors = [{k: v for k, v in err.items() if k != "input"} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(errors),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route dependencies raise HTTPException with a {"code", "message"} dict as
    detail. Use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the server log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    db_ok = request.app.state.rbac.db.ping()
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        version=API_VERSION,
        database="ok" if db_ok else "error",
    )
